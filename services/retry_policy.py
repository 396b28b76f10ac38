"""
재시도 정책
실패한 알림을 백오프 간격으로 재예약 (markFailed와 분리된 멱등 스윕)
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from config.notification_config import get_retry_settings, SWEEP_BATCH_SIZE
from crud.notification import compare_and_set, get_retryable_notifications
from crud.notification_log import create_notification_log
from models.notification import Notification, NotificationStatus
from models.notification_log import NotificationLogEvent
from utils.exceptions import InvalidTransition

logger = logging.getLogger(__name__)


class BackoffStrategy:
    """재시도 횟수 → 대기 시간 (시도 횟수에 대해 감소하지 않아야 함)"""

    def delay(self, attempt: int) -> timedelta:
        raise NotImplementedError


class LinearBackoff(BackoffStrategy):
    def __init__(self, base_delay_seconds: float = 60):
        if base_delay_seconds < 0:
            raise ValueError("base_delay_seconds는 0 이상이어야 합니다")
        self.base_delay_seconds = base_delay_seconds

    def delay(self, attempt: int) -> timedelta:
        return timedelta(seconds=self.base_delay_seconds * max(1, attempt))


class ExponentialBackoff(BackoffStrategy):
    def __init__(
        self,
        base_delay_seconds: float = 60,
        factor: float = 2.0,
        max_delay_seconds: Optional[float] = None
    ):
        if base_delay_seconds < 0:
            raise ValueError("base_delay_seconds는 0 이상이어야 합니다")
        if factor < 1:
            raise ValueError("factor는 1 이상이어야 합니다")
        if max_delay_seconds is not None and max_delay_seconds < base_delay_seconds:
            raise ValueError("max_delay_seconds는 base_delay_seconds 이상이어야 합니다")
        self.base_delay_seconds = base_delay_seconds
        self.factor = factor
        self.max_delay_seconds = max_delay_seconds

    def delay(self, attempt: int) -> timedelta:
        seconds = self.base_delay_seconds * (self.factor ** (max(1, attempt) - 1))
        if self.max_delay_seconds is not None:
            seconds = min(seconds, self.max_delay_seconds)
        return timedelta(seconds=seconds)


def create_backoff(settings: Optional[dict] = None) -> BackoffStrategy:
    """설정값으로 백오프 전략 생성"""
    settings = settings or get_retry_settings()
    strategy = settings.get('strategy', 'exponential')
    if strategy == 'linear':
        return LinearBackoff(settings['base_delay_seconds'])
    if strategy == 'exponential':
        return ExponentialBackoff(
            settings['base_delay_seconds'],
            settings.get('factor', 2.0),
            settings.get('max_delay_seconds')
        )
    raise ValueError(f"지원하지 않는 백오프 전략입니다: {strategy}")


class RetryPolicy:
    """실패 알림 재시도 여부와 시점 결정"""

    def __init__(
        self,
        db: Session,
        backoff: Optional[BackoffStrategy] = None,
        batch_size: Optional[int] = SWEEP_BATCH_SIZE
    ):
        self.db = db
        self.backoff = backoff or create_backoff()
        self.batch_size = batch_size

    def retryable_notifications(self, now: datetime) -> List[Notification]:
        return get_retryable_notifications(self.db, now, limit=self.batch_size)

    @staticmethod
    def is_exhausted(notification: Notification) -> bool:
        """재시도 소진 여부 (영구 실패)"""
        return notification.is_exhausted

    def next_scheduled_time(self, notification: Notification, now: datetime) -> datetime:
        return now + self.backoff.delay(notification.retry_count + 1)

    def schedule_retry(self, notification: Notification, now: datetime) -> Notification:
        """
        FAILED → PENDING 재예약

        Args:
            notification: 재시도할 알림 (FAILED)
            now: 현재 시각

        Returns:
            재예약된 알림

        Raises:
            InvalidTransition: FAILED가 아니거나 재시도가 소진된 경우, 또는 다른 스윕이 먼저 처리한 경우
        """
        observed_retry_count = notification.retry_count
        if notification.status != NotificationStatus.FAILED or self.is_exhausted(notification):
            raise InvalidTransition(notification.id, notification.status, NotificationStatus.PENDING)

        next_time = self.next_scheduled_time(notification, now)
        updated = compare_and_set(
            self.db,
            notification.id,
            NotificationStatus.FAILED,
            {
                'status': NotificationStatus.PENDING,
                'retry_count': observed_retry_count + 1,
                'scheduled_time': next_time,
                'updated_at': now,
            },
            Notification.retry_count == observed_retry_count,
            Notification.retry_count < Notification.max_retries
        )
        self.db.refresh(notification)
        if not updated:
            raise InvalidTransition(notification.id, notification.status, NotificationStatus.PENDING)

        create_notification_log(
            self.db,
            user_id=notification.user_id,
            notification_id=notification.id,
            event_type=NotificationLogEvent.RETRIED,
            event_timestamp=now,
            retry_count=notification.retry_count
        )
        logger.info(
            f"🔄 알림 {notification.id} 재시도 예약: {notification.retry_count}/{notification.max_retries}회, "
            f"{next_time.isoformat()}"
        )
        return notification
