"""
알림 서비스
스케줄링, 전송 스윕, 재시도 스윕, 취소, 사용자 상호작용, 분석을 묶는 진입점
"""

import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from config.notification_config import (
    DISPATCH_CLAIM_TIMEOUT_SECONDS,
    SWEEP_BATCH_SIZE,
    get_retention_settings
)
from crud.notification import (
    create_notification,
    claim_for_dispatch,
    get_notifications_by_user,
    get_sent_notification_ids,
    get_unread_notification_count,
    search_notifications,
    delete_old_notifications
)
from crud.user import get_user_by_id
from crud.notification_log import create_notification_log, get_logs_by_notification, delete_logs_older_than
from models.notification import Notification, NotificationStatus, NotificationType
from models.notification_log import NotificationLog, NotificationLogEvent
from schemas.analytics import NotificationDeliveryStats, NotificationInsights, NotificationSystemMetrics
from schemas.notification import (
    NotificationCreate,
    DeliveryReceipt,
    DispatchOutcome,
    NotificationOutcome,
    SweepResult,
    RetrySweepResult
)
from services.analytics_service import NotificationAnalytics, HealthScorePolicy
from services.cancellation_service import CancellationManager
from services.delivery_scheduler import DeliveryScheduler
from services.dispatchers import Dispatcher, InAppDispatcher
from services.lifecycle_service import LifecycleTracker
from services.retry_policy import RetryPolicy
from utils.clock import Clock, SystemClock, to_utc_naive
from utils.exceptions import DispatchError, InvalidTransition, NotificationValidationError

logger = logging.getLogger(__name__)

DISPATCH_EXCEPTION = "DISPATCH_EXCEPTION"


class NotificationService:
    """알림 엔진 진입점 (의존성은 생성자로 주입)"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        dispatcher: Optional[Dispatcher] = None,
        retry_policy: Optional[RetryPolicy] = None,
        health_policy: Optional[HealthScorePolicy] = None,
        batch_size: Optional[int] = SWEEP_BATCH_SIZE,
        claim_timeout_seconds: int = DISPATCH_CLAIM_TIMEOUT_SECONDS
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher or InAppDispatcher()
        self.lifecycle = LifecycleTracker(db, claim_timeout_seconds)
        self.scheduler = DeliveryScheduler(db, batch_size)
        self.retry_policy = retry_policy or RetryPolicy(db, batch_size=batch_size)
        self.cancellation = CancellationManager(db, self.lifecycle)
        self.analytics = NotificationAnalytics(db, self.clock, health_policy)
        self.claim_timeout_seconds = claim_timeout_seconds

    def _now(self, now: Optional[datetime]) -> datetime:
        return to_utc_naive(now) if now is not None else self.clock.now()

    # 스케줄링
    def schedule_notification(self, data) -> Notification:
        """
        알림 예약 (PENDING)

        Args:
            data: NotificationCreate 또는 dict

        Returns:
            저장된 알림

        Raises:
            NotificationValidationError: 유효하지 않은 알림
        """
        try:
            payload = data if isinstance(data, NotificationCreate) else NotificationCreate.model_validate(data)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(loc) for loc in error['loc']) or 'notification'}: {error['msg']}"
                for error in e.errors()
            ]
            logger.warning(f"⚠️ 알림 검증 실패: {errors}")
            raise NotificationValidationError(errors) from e

        candidate = Notification(**payload.model_dump(), status=NotificationStatus.PENDING, is_read=False)
        if not candidate.is_valid():
            raise NotificationValidationError(["알림 불변식을 만족하지 않습니다"])
        if get_user_by_id(self.db, payload.user_id) is None:
            raise NotificationValidationError([f"user_id: 사용자 {payload.user_id}가 존재하지 않습니다"])

        now = self.clock.now()
        notification = create_notification(self.db, payload, now)

        create_notification_log(
            self.db,
            user_id=notification.user_id,
            notification_id=notification.id,
            event_type=NotificationLogEvent.SCHEDULED,
            event_timestamp=now,
            retry_count=notification.retry_count
        )
        logger.info(
            f"📅 알림 예약: {notification.id} ({notification.type.value}, {notification.priority.value}) "
            f"→ {notification.scheduled_time.isoformat()}"
        )
        return notification

    # 조회
    def get_notification(self, notification_id: int) -> Notification:
        return self.lifecycle.get(notification_id)

    def list_notifications(
        self,
        user_id: int,
        status: Optional[NotificationStatus] = None,
        notification_type: Optional[NotificationType] = None,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 100
    ) -> List[Notification]:
        return get_notifications_by_user(
            self.db, user_id, skip=skip, limit=limit, status=status,
            notification_type=notification_type, unread_only=unread_only
        )

    def get_notification_timeline(self, notification_id: int) -> List[NotificationLog]:
        """알림의 이벤트 로그 (시간순)"""
        self.lifecycle.get(notification_id)
        return get_logs_by_notification(self.db, notification_id)

    def search_notifications(self, user_id: int, keyword: str, limit: int = 50) -> List[Notification]:
        return search_notifications(self.db, user_id, keyword, limit)

    def get_unread_count(self, user_id: int) -> int:
        return get_unread_notification_count(self.db, user_id)

    def due_notifications(self, now: Optional[datetime] = None) -> List[Notification]:
        return self.scheduler.due_notifications(self._now(now))

    def overdue_notifications(self, now: Optional[datetime] = None) -> List[Notification]:
        return self.scheduler.overdue_notifications(self._now(now))

    # 전송 스윕
    async def run_due_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        전송 대상 알림 전송

        점유(claim) → 디스패처 호출 (잠금 없이) → SENT/FAILED 확정 순서로 알림별 처리.
        상태 전이 충돌과 전송 실패는 알림 단위로 처리하고, 저장소 오류는 호출자에게 전파.
        """
        now = self._now(now)
        start_time = time.perf_counter()
        result = SweepResult(started_at=now)
        due = self.scheduler.due_notifications(now)
        logger.info(f"🔍 전송 스윕 시작: 대상 {len(due)}개")

        for notification in due:
            outcome = await self._dispatch_one(notification, now)
            result.outcomes.append(outcome)
            if outcome.outcome == DispatchOutcome.SENT:
                result.sent += 1
            elif outcome.outcome == DispatchOutcome.FAILED:
                result.failed += 1
            else:
                result.skipped += 1

        elapsed = time.perf_counter() - start_time
        logger.info(
            f"✅ 전송 스윕 완료: 성공 {result.sent}개, 실패 {result.failed}개, "
            f"건너뜀 {result.skipped}개 ({elapsed:.2f}초)"
        )
        return result

    async def _dispatch_one(self, notification: Notification, now: datetime) -> NotificationOutcome:
        notification_id = notification.id
        token = uuid.uuid4().hex
        if not claim_for_dispatch(self.db, notification_id, token, now, self.claim_timeout_seconds):
            logger.info(f"ℹ️ 알림 {notification_id}는 이미 처리 중이거나 대상이 아님")
            return NotificationOutcome(notification_id=notification_id, outcome=DispatchOutcome.SKIPPED)

        self.db.refresh(notification)
        started = time.perf_counter()
        error: Optional[DispatchError] = None
        receipt: Optional[DeliveryReceipt] = None
        try:
            receipt = await self.dispatcher.send(notification) or DeliveryReceipt()
        except DispatchError as e:
            error = e
        except Exception as e:
            logger.error(f"❌ 디스패처 예외: 알림 {notification_id}: {e}")
            error = DispatchError(DISPATCH_EXCEPTION, str(e))
        processing_ms = int((time.perf_counter() - started) * 1000)

        try:
            if error is None:
                self.lifecycle.mark_sent(
                    notification_id,
                    now,
                    dispatch_token=token,
                    processing_duration_ms=processing_ms,
                    delivery_channel=self.dispatcher.channel,
                    platform_response=receipt.platform_response,
                    platform_notification_id=receipt.platform_notification_id
                )
                return NotificationOutcome(notification_id=notification_id, outcome=DispatchOutcome.SENT)

            self.lifecycle.mark_failed(
                notification_id,
                now,
                error.error_code,
                error_message=error.message,
                dispatch_token=token,
                processing_duration_ms=processing_ms,
                delivery_channel=self.dispatcher.channel
            )
            return NotificationOutcome(
                notification_id=notification_id,
                outcome=DispatchOutcome.FAILED,
                error_code=error.error_code,
                detail=error.message
            )
        except InvalidTransition as e:
            # 전송 중 취소되었거나 점유가 만료되어 다른 스윕이 가져간 경우
            logger.warning(f"⚠️ 알림 {notification_id} 확정 건너뜀: {e.detail}")
            return NotificationOutcome(
                notification_id=notification_id,
                outcome=DispatchOutcome.SKIPPED,
                error_code=e.error_code,
                detail=e.detail
            )

    # 재시도 스윕
    def run_retry_sweep(self, now: Optional[datetime] = None) -> RetrySweepResult:
        """재시도 가능한 FAILED 알림을 PENDING으로 재예약"""
        now = self._now(now)
        result = RetrySweepResult(started_at=now)
        candidates = self.retry_policy.retryable_notifications(now)
        logger.info(f"🔄 재시도 스윕 시작: 대상 {len(candidates)}개")

        for notification in candidates:
            try:
                self.retry_policy.schedule_retry(notification, now)
                result.rescheduled += 1
                result.notification_ids.append(notification.id)
            except InvalidTransition as e:
                logger.warning(f"⚠️ 재시도 건너뜀: {e.detail}")
                result.skipped += 1

        logger.info(f"✅ 재시도 스윕 완료: 재예약 {result.rescheduled}개, 건너뜀 {result.skipped}개")
        return result

    # 취소
    def cancel(self, notification_id: int, now: Optional[datetime] = None) -> Notification:
        return self.lifecycle.cancel(notification_id, self._now(now))

    def cancel_for_entity(
        self, user_id: int, entity_type: str, entity_id: int, now: Optional[datetime] = None
    ) -> int:
        return self.cancellation.cancel_for_entity(user_id, entity_type, entity_id, self._now(now))

    # 사용자 상호작용
    def mark_read(self, notification_id: int, now: Optional[datetime] = None) -> Notification:
        return self.lifecycle.mark_read(notification_id, self._now(now))

    def mark_clicked(self, notification_id: int, now: Optional[datetime] = None) -> Notification:
        return self.lifecycle.mark_clicked(notification_id, self._now(now))

    def mark_dismissed(self, notification_id: int, now: Optional[datetime] = None) -> Notification:
        return self.lifecycle.mark_dismissed(notification_id, self._now(now))

    def mark_all_read(self, user_id: int, now: Optional[datetime] = None) -> int:
        """사용자의 SENT 알림 전체 읽음 처리"""
        now = self._now(now)
        count = 0
        for notification_id in get_sent_notification_ids(self.db, user_id):
            try:
                self.lifecycle.mark_read(notification_id, now)
                count += 1
            except InvalidTransition as e:
                logger.info(f"ℹ️ 읽음 처리 건너뜀: {e.detail}")
        return count

    # 분석
    def get_stats(self, user_id: Optional[int] = None) -> NotificationDeliveryStats:
        return self.analytics.get_stats(user_id)

    def get_insights(self, user_id: Optional[int] = None) -> NotificationInsights:
        return self.analytics.get_insights(user_id)

    def get_performance_metrics(self, user_id: Optional[int] = None) -> NotificationSystemMetrics:
        return self.analytics.get_performance_metrics(user_id)

    # 보존 정책
    def cleanup_expired_records(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """보존 기간이 지난 로그와 종료 상태 알림 삭제"""
        now = self._now(now)
        retention = get_retention_settings()
        deleted_logs = delete_logs_older_than(
            self.db, now - timedelta(days=retention['log_retention_days'])
        )
        deleted_notifications = delete_old_notifications(
            self.db, now - timedelta(days=retention['notification_retention_days'])
        )
        logger.info(f"🧹 보존 기간 정리: 로그 {deleted_logs}개, 알림 {deleted_notifications}개 삭제")
        return {'deleted_logs': deleted_logs, 'deleted_notifications': deleted_notifications}
