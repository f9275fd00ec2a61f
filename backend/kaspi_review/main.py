# backend/kaspi_review/main.py

"""
バックエンドアプリケーションのエントリーポイント。

- /kaspi/*: 注文の取り込み・注文/商品の参照・レビューリンク生成
- /notifications/*: レビュー依頼の送信・再送・送信時間帯・集計
- /health: ヘルスチェック

SCHEDULER_ENABLED=true の場合、起動時にスケジューラも開始する。
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from kaspi_review.automation.config import get_scheduler_settings
from kaspi_review.automation.state import get_scheduler
from kaspi_review.kaspi.router import router as kaspi_router
from kaspi_review.notifications.router import router as notifications_router
from kaspi_review.orders.db import init_db
from kaspi_review.utils.config import EnvVarMissingError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()

    scheduler = None
    if get_scheduler_settings().enabled:
        scheduler = get_scheduler()
        scheduler.start()
    else:
        logger.info("Scheduler disabled (set SCHEDULER_ENABLED=true to enable)")

    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


async def _config_error_handler(request: Request, exc: EnvVarMissingError) -> JSONResponse:
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": exc.errors()},
    )


def create_app() -> FastAPI:
    """
    FastAPI アプリケーションファクトリ。
    """
    app = FastAPI(title="Kaspi Review Requests Backend", lifespan=lifespan)

    # ルーター登録
    app.include_router(kaspi_router)
    app.include_router(notifications_router)

    app.add_exception_handler(EnvVarMissingError, _config_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    @app.get("/health", tags=["health"])
    def health_check() -> dict:
        """
        簡易ヘルスチェックエンドポイント。
        モニタリングや動作確認用。
        """
        return {"status": "ok"}

    return app


# uvicorn 実行時のエントリーポイント
app = create_app()
