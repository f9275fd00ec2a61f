"""
定期実行（注文の取り込み・レビュー依頼の送信）とその CLI。
"""
