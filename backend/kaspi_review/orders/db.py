# backend/kaspi_review/orders/db.py

"""
DB エンジン / セッションファクトリの管理。

- DATABASE_URL ごとにエンジンとセッションファクトリをキャッシュする
- SQLite のインメモリ DB（テスト用）はコネクションを 1 本に固定する
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from kaspi_review.utils.config import get_env

from .models import Base

DEFAULT_DATABASE_URL = "sqlite:///./kaspi_review.db"

_engine_cache: Dict[str, Engine] = {}
_session_factory_cache: Dict[str, sessionmaker[Session]] = {}


def get_database_url() -> str:
    return get_env("DATABASE_URL", default=DEFAULT_DATABASE_URL, required=False)


def create_db_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def get_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or get_database_url()
    if url not in _engine_cache:
        _engine_cache[url] = create_db_engine(url)
    return _engine_cache[url]


def get_session_factory(database_url: Optional[str] = None) -> sessionmaker[Session]:
    url = database_url or get_database_url()
    if url not in _session_factory_cache:
        _session_factory_cache[url] = sessionmaker(get_engine(url), expire_on_commit=False)
    return _session_factory_cache[url]


def init_db(engine: Optional[Engine] = None) -> None:
    """テーブルが無ければ作成する。"""
    Base.metadata.create_all(engine or get_engine())


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """
    1 トランザクション分のセッションを払い出す。

    正常終了でコミット、例外時はロールバックして再送出する。
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
