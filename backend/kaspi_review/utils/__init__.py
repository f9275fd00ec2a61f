# backend/kaspi_review/utils/__init__.py

"""共通ユーティリティ（環境変数の読み取りなど）。"""
