"""
Kaspi ショップ API からの注文取り込み。
"""
