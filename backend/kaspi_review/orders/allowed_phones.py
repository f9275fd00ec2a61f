# backend/kaspi_review/orders/allowed_phones.py

"""
送信許可リスト（allowed_phones）の参照・更新。

判定に失敗した場合は「許可しない」に倒す（fail closed）。
"""

from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from kaspi_review.utils.phone import normalize_phone

from .db import session_scope
from .models import AllowedPhone
from .repository import RepositoryError
from .schemas import AllowedPhoneRecord

logger = logging.getLogger(__name__)


class PhoneAlreadyAllowedError(ValueError):
    """既に有効な番号として登録済み。"""


class AllowedPhoneRepository:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def is_allowed(self, phone: Optional[str]) -> bool:
        normalized = normalize_phone(phone)
        if not normalized:
            return False

        try:
            with session_scope(self._session_factory) as session:
                stmt = (
                    select(AllowedPhone.id)
                    .where(AllowedPhone.phone_number == normalized)
                    .where(AllowedPhone.is_active.is_(True))
                    .limit(1)
                )
                return session.scalar(stmt) is not None
        except SQLAlchemyError:
            logger.exception("Failed to check allow-list for %s; denying", normalized)
            return False

    def list_active(self) -> List[AllowedPhoneRecord]:
        try:
            with session_scope(self._session_factory) as session:
                stmt = select(AllowedPhone).where(AllowedPhone.is_active.is_(True)).order_by(AllowedPhone.id)
                return [AllowedPhoneRecord.model_validate(row) for row in session.scalars(stmt)]
        except SQLAlchemyError:
            logger.exception("Failed to list allowed phones")
            return []

    def add(
        self,
        phone: str,
        description: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> AllowedPhoneRecord:
        """
        番号を許可リストに追加する。無効化済みの番号なら再有効化する。

        :raises ValueError: 番号が空の場合
        :raises PhoneAlreadyAllowedError: 既に有効な番号の場合
        """
        normalized = normalize_phone(phone)
        if not normalized:
            raise ValueError("phone number is required")

        try:
            with session_scope(self._session_factory) as session:
                existing = session.scalar(select(AllowedPhone).where(AllowedPhone.phone_number == normalized))
                if existing is not None:
                    if existing.is_active:
                        raise PhoneAlreadyAllowedError(f"Phone {normalized} is already allowed")
                    existing.is_active = True
                    if description:
                        existing.description = description
                    session.flush()
                    logger.info("Re-activated allowed phone %s", normalized)
                    return AllowedPhoneRecord.model_validate(existing)

                row = AllowedPhone(
                    phone_number=normalized,
                    description=description or "",
                    is_active=True,
                    user_id=user_id,
                )
                session.add(row)
                session.flush()
                logger.info("Added allowed phone %s", normalized)
                return AllowedPhoneRecord.model_validate(row)
        except SQLAlchemyError as exc:
            logger.exception("Failed to add allowed phone %s", normalized)
            raise RepositoryError(f"Failed to add allowed phone {normalized}: {exc}") from exc

    def deactivate(self, phone: str) -> bool:
        normalized = normalize_phone(phone)
        try:
            with session_scope(self._session_factory) as session:
                row = session.scalar(select(AllowedPhone).where(AllowedPhone.phone_number == normalized))
                if row is None or not row.is_active:
                    return False
                row.is_active = False
                return True
        except SQLAlchemyError as exc:
            logger.exception("Failed to deactivate allowed phone %s", normalized)
            raise RepositoryError(f"Failed to deactivate allowed phone {normalized}: {exc}") from exc
