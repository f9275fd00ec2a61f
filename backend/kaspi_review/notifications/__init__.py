"""
レビュー依頼通知（リンク生成・文面・送信・統計）。
"""
