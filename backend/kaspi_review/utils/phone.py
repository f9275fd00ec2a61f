# backend/kaspi_review/utils/phone.py

"""
電話番号の正規化ヘルパー。
"""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: Optional[str]) -> str:
    """
    電話番号から数字以外を取り除く。

    許可リスト（allowed_phones）の照合キーとして使う形式。
    None や空文字の場合は空文字を返す。
    """
    if not phone:
        return ""
    return _NON_DIGITS.sub("", str(phone))


def to_international(phone: Optional[str]) -> str:
    """
    WhatsApp 送信用に国番号付きの数字列へ変換する。

    カザフスタン / ロシアの国内表記（8 から始まる 11 桁）は 7 に置き換える。
    """
    digits = normalize_phone(phone)
    if digits.startswith("8") and len(digits) == 11:
        digits = "7" + digits[1:]
    return digits
