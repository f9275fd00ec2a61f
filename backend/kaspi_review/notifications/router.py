# backend/kaspi_review/notifications/router.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status

from kaspi_review.automation.scheduler import NotificationScheduler
from kaspi_review.automation.state import get_scheduler
from kaspi_review.utils.config import EnvVarMissingError

from .dispatcher import PhoneNotAllowedError
from .factory import build_notification_stats_service
from .gateway import MessagingGatewayError, SendResult
from .schemas import (
    DailyNotificationStat,
    DispatchBatchResponse,
    ManualDispatchRequest,
    NotificationStats,
    SchedulerStatus,
    TestMessageRequest,
    TimeWindowRequest,
)
from .stats import DEFAULT_DAILY_DAYS, NotificationStatsService

router = APIRouter(prefix="/notifications", tags=["notifications"])


# Dependency providers
# - テスト時に FastAPI dependency_overrides で差し替え可能にする
def get_notification_scheduler() -> NotificationScheduler:
    return get_scheduler()


def get_stats_service() -> NotificationStatsService:
    return build_notification_stats_service()


def _internal_error(action: str, exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}: {exc}",
    )


@router.post(
    "/send-review-requests",
    response_model=DispatchBatchResponse,
    summary="レビュー依頼を今すぐ送信（送信時間帯を無視）",
)
def send_review_requests(
    request: ManualDispatchRequest = ManualDispatchRequest(),
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
) -> DispatchBatchResponse:
    try:
        results = scheduler.trigger_manual_dispatch(request.limit)
    except EnvVarMissingError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise _internal_error("send review requests", exc) from exc
    return DispatchBatchResponse(count=len(results), results=results)


@router.post(
    "/retry-failed",
    response_model=DispatchBatchResponse,
    summary="送信に失敗したレビュー依頼を再送",
)
def retry_failed(
    limit: int = Query(20, ge=1, le=50),
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
) -> DispatchBatchResponse:
    try:
        results = scheduler.retry_failed(limit)
    except EnvVarMissingError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise _internal_error("retry failed notifications", exc) from exc
    return DispatchBatchResponse(count=len(results), results=results)


@router.put(
    "/time-window",
    response_model=SchedulerStatus,
    summary="送信時間帯を変更",
)
def update_time_window(
    request: TimeWindowRequest,
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
) -> SchedulerStatus:
    """
    0 <= start_hour < end_hour <= 23 でなければ 400（現在の時間帯は変わらない）。
    """
    if not scheduler.set_dispatch_window(request.start_hour, request.end_hour):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid time window: require 0 <= start_hour < end_hour <= 23",
        )
    return scheduler.status()


@router.get(
    "/status",
    response_model=SchedulerStatus,
    summary="スケジューラの状態",
)
def get_status(
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
) -> SchedulerStatus:
    return scheduler.status()


@router.get(
    "/stats",
    response_model=NotificationStats,
    summary="通知の集計",
)
def get_stats(
    service: NotificationStatsService = Depends(get_stats_service),
) -> NotificationStats:
    return service.get_notification_stats()


@router.get(
    "/daily-stats",
    response_model=List[DailyNotificationStat],
    summary="日別の送信件数",
)
def get_daily_stats(
    days: int = Query(DEFAULT_DAILY_DAYS, ge=1, le=365),
    service: NotificationStatsService = Depends(get_stats_service),
) -> List[DailyNotificationStat]:
    return service.get_daily_stats(days)


@router.post(
    "/test",
    response_model=SendResult,
    summary="許可リスト登録済みの番号にテストメッセージを送信",
)
def send_test_message(
    request: TestMessageRequest,
    scheduler: NotificationScheduler = Depends(get_notification_scheduler),
) -> SendResult:
    try:
        return scheduler.dispatcher.send_test_message(request.phone)
    except PhoneNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except MessagingGatewayError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to send test message: {exc}",
        ) from exc
