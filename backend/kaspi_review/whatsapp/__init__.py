"""
WhatsApp Cloud API（Meta Graph API）経由のメッセージ送信。
"""
