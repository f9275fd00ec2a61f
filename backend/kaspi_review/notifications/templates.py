# backend/kaspi_review/notifications/templates.py

"""
WhatsApp に送るテキストメッセージのテンプレート。

顧客向けの文面はロシア語。{{name}} 形式のプレースホルダを置換し、
置換されなかったプレースホルダは取り除く。
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional

from kaspi_review.orders.schemas import OrderRecord
from kaspi_review.utils.config import get_env

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"{{\s*([A-Za-z_][A-Za-z0-9_]*)\s*}}")

DEFAULT_COMPANY_NAME = "Kaspi Store"
DEFAULT_CUSTOMER_NAME = "Уважаемый клиент"

REVIEW_REQUEST = "review_request"
TEST_MESSAGE = "test_message"

BUILTIN_TEMPLATES: Dict[str, str] = {
    REVIEW_REQUEST: (
        "Здравствуйте, {{customerName}}!\n\n"
        "Благодарим Вас за покупку \"{{productName}}\" в магазине \"{{companyName}}\".\n\n"
        "Мы будем очень признательны за Ваш отзыв о товаре и нашем сервисе. "
        "Это поможет нам стать лучше для Вас!\n\n"
        "Чтобы оставить отзыв, пожалуйста, перейдите по ссылке:\n"
        "{{reviewLink}}\n\n"
        "(Отправьте нам любое сообщение, чтобы ссылка стала кликабельной)\n\n"
        "С уважением,\n"
        "{{companyName}}"
    ),
    TEST_MESSAGE: (
        "Это тестовое сообщение от системы Kaspi WhatsApp Integration для {{companyName}}.\n\n"
        "Время отправки: {{timestamp}}\n\n"
        "Если Вы получили это сообщение, значит система работает корректно."
    ),
}


class TemplateNotFoundError(KeyError):
    """指定名のテンプレートが存在しない。"""


class MessageTemplates:
    """
    組み込みテンプレートの置換を行う。

    テンプレートの追加・編集（管理画面）は扱わない。
    """

    def __init__(
        self,
        company_name: Optional[str] = None,
        templates: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.company_name = company_name or get_env(
            "COMPANY_NAME", default=DEFAULT_COMPANY_NAME, required=False
        )
        self._templates: Dict[str, str] = dict(templates or BUILTIN_TEMPLATES)

    def names(self) -> list[str]:
        return sorted(self._templates)

    def compile(self, template_name: str, variables: Mapping[str, object]) -> str:
        """
        テンプレートに変数を埋め込む。

        :raises TemplateNotFoundError: テンプレートが存在しない場合
        """
        try:
            template = self._templates[template_name]
        except KeyError:
            raise TemplateNotFoundError(template_name) from None

        values = {"companyName": self.company_name, **variables}

        def _replace(match: re.Match) -> str:
            value = values.get(match.group(1))
            return "" if value is None else str(value)

        return _PLACEHOLDER.sub(_replace, template)

    def review_request_message(self, order: OrderRecord, review_link: str) -> str:
        """
        レビュー依頼の本文。明細が無い場合は簡易な代替文面を返す。
        """
        first_item = order.first_item
        if first_item is None:
            logger.warning("Order %s has no items; using fallback text", order.kaspi_order_id)
            return self.fallback_review_request_message(order, review_link)

        return self.compile(
            REVIEW_REQUEST,
            {
                "customerName": order.customer_first_name or DEFAULT_CUSTOMER_NAME,
                "productName": first_item.name,
                "reviewLink": review_link,
            },
        )

    def fallback_review_request_message(self, order: Optional[OrderRecord], review_link: str) -> str:
        name = (order.customer_first_name if order else "") or DEFAULT_CUSTOMER_NAME
        return (
            f"Здравствуйте, {name}! Благодарим за покупку в {self.company_name}. "
            f"Пожалуйста, оставьте отзыв: {review_link}"
        )

    def test_message(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        return self.compile(TEST_MESSAGE, {"timestamp": now.strftime("%d.%m.%Y %H:%M:%S")})
