"""
Kaspi 注文の取り込みと WhatsApp でのレビュー依頼送信を行うバックエンド。
"""
