# backend/kaspi_review/orders/__init__.py

"""
注文と送信許可リストの永続化モジュール群。

- models: SQLAlchemy の ORM モデル（orders / allowed_phones）
- schemas: リポジトリが返す pydantic モデルとステータス Enum
- db: エンジン / セッションファクトリ
- repository: 注文の重複排除 insert・通知ステータス更新・統計
- allowed_phones: 送信許可リスト
"""
