"""
알림 생명주기 관리
상태 전이 규칙과 단일 행 compare-and-set 기반 전이, 전이별 이벤트 로그 기록
"""

import logging
from datetime import datetime
from typing import Dict, Optional, Set

from sqlalchemy.orm import Session

from config.notification_config import DISPATCH_CLAIM_TIMEOUT_SECONDS
from crud.notification import compare_and_set, get_notification_by_id, not_reserved
from crud.notification_log import create_notification_log
from models.notification import Notification, NotificationStatus
from models.notification_log import NotificationLogEvent, DeliveryChannel
from utils.exceptions import InvalidTransition, NotificationNotFound

logger = logging.getLogger(__name__)

# 허용된 상태 전이 (CLICKED와 DISMISSED는 서로 배타적인 종료 상태)
ALLOWED_TRANSITIONS: Dict[NotificationStatus, Set[NotificationStatus]] = {
    NotificationStatus.PENDING: {
        NotificationStatus.SENT,
        NotificationStatus.FAILED,
        NotificationStatus.CANCELLED,
    },
    NotificationStatus.SENT: {
        NotificationStatus.READ,
        NotificationStatus.CLICKED,
        NotificationStatus.DISMISSED,
    },
    NotificationStatus.FAILED: {
        NotificationStatus.PENDING,  # 재시도 정책을 통해서만
    },
    NotificationStatus.READ: set(),
    NotificationStatus.CLICKED: set(),
    NotificationStatus.DISMISSED: set(),
    NotificationStatus.CANCELLED: set(),
}


def can_transition(current: NotificationStatus, target: NotificationStatus) -> bool:
    """상태 전이 가능 여부"""
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _elapsed_ms(start: Optional[datetime], end: datetime) -> Optional[int]:
    if start is None:
        return None
    return max(0, int((end - start).total_seconds() * 1000))


class LifecycleTracker:
    """상태 전이 적용 및 이벤트 로그 기록"""

    def __init__(self, db: Session, claim_timeout_seconds: int = DISPATCH_CLAIM_TIMEOUT_SECONDS):
        self.db = db
        self.claim_timeout_seconds = claim_timeout_seconds

    def get(self, notification_id: int) -> Notification:
        notification = get_notification_by_id(self.db, notification_id)
        if notification is None:
            raise NotificationNotFound(notification_id)
        return notification

    def transition(
        self,
        notification_id: int,
        target: NotificationStatus,
        values: Dict,
        *criteria
    ) -> Notification:
        """
        현재 상태에서 target으로 원자적 전이

        Args:
            notification_id: 알림 ID
            target: 목표 상태
            values: 상태 외에 함께 갱신할 컬럼
            criteria: 추가 compare-and-set 조건

        Returns:
            전이된 알림

        Raises:
            NotificationNotFound: 알림이 없는 경우
            InvalidTransition: 현재 상태에서 허용되지 않거나 다른 작업이 먼저 전이한 경우
        """
        notification = self.get(notification_id)
        current = notification.status
        if not can_transition(current, target):
            raise InvalidTransition(notification_id, current, target)

        updated = compare_and_set(
            self.db, notification_id, current, {**values, 'status': target}, *criteria
        )
        if not updated:
            # 조회와 갱신 사이에 다른 스윕이 상태를 바꾼 경우
            self.db.expire(notification)
            latest = get_notification_by_id(self.db, notification_id)
            raise InvalidTransition(
                notification_id, latest.status if latest is not None else current, target
            )

        self.db.refresh(notification)
        return notification

    def _append_log(self, notification: Notification, event: NotificationLogEvent, now: datetime, **fields):
        return create_notification_log(
            self.db,
            user_id=notification.user_id,
            notification_id=notification.id,
            event_type=event,
            event_timestamp=now,
            retry_count=notification.retry_count,
            **fields
        )

    def mark_sent(
        self,
        notification_id: int,
        now: datetime,
        dispatch_token: Optional[str] = None,
        processing_duration_ms: Optional[int] = None,
        delivery_channel: DeliveryChannel = DeliveryChannel.SYSTEM,
        platform_response: Optional[str] = None,
        platform_notification_id: Optional[int] = None
    ) -> Notification:
        """PENDING → SENT"""
        values = {
            'sent_time': now,
            'updated_at': now,
            'dispatch_token': None,
            'dispatch_claimed_at': None,
        }
        if platform_notification_id is not None:
            values['notification_id'] = platform_notification_id
        criteria = []
        if dispatch_token is not None:
            criteria.append(Notification.dispatch_token == dispatch_token)

        notification = self.transition(notification_id, NotificationStatus.SENT, values, *criteria)
        self._append_log(
            notification,
            NotificationLogEvent.SENT,
            now,
            delivery_channel=delivery_channel,
            processing_duration_ms=processing_duration_ms,
            delivery_duration_ms=_elapsed_ms(notification.scheduled_time, now),
            platform_response=platform_response
        )
        logger.info(f"✅ 알림 {notification_id} 전송 완료")
        return notification

    def mark_failed(
        self,
        notification_id: int,
        now: datetime,
        error_code: str,
        error_message: Optional[str] = None,
        dispatch_token: Optional[str] = None,
        processing_duration_ms: Optional[int] = None,
        delivery_channel: DeliveryChannel = DeliveryChannel.SYSTEM
    ) -> Notification:
        """PENDING → FAILED (재시도는 별도 스윕에서 처리)"""
        values = {
            'updated_at': now,
            'dispatch_token': None,
            'dispatch_claimed_at': None,
        }
        criteria = []
        if dispatch_token is not None:
            criteria.append(Notification.dispatch_token == dispatch_token)

        notification = self.transition(notification_id, NotificationStatus.FAILED, values, *criteria)
        self._append_log(
            notification,
            NotificationLogEvent.FAILED,
            now,
            delivery_channel=delivery_channel,
            is_success=False,
            error_code=error_code,
            error_message=error_message,
            processing_duration_ms=processing_duration_ms
        )
        logger.warning(f"⚠️ 알림 {notification_id} 전송 실패: {error_code}")
        return notification

    def mark_read(self, notification_id: int, now: datetime) -> Notification:
        """SENT → READ"""
        notification = self.transition(
            notification_id,
            NotificationStatus.READ,
            {'read_time': now, 'is_read': True, 'updated_at': now}
        )
        self._append_log(notification, NotificationLogEvent.READ, now)
        return notification

    def mark_clicked(self, notification_id: int, now: datetime) -> Notification:
        """SENT → CLICKED (읽음 처리 포함)"""
        notification = self.transition(
            notification_id,
            NotificationStatus.CLICKED,
            {'clicked_time': now, 'is_read': True, 'updated_at': now}
        )
        self._append_log(
            notification,
            NotificationLogEvent.CLICKED,
            now,
            delivery_duration_ms=_elapsed_ms(notification.sent_time, now)
        )
        return notification

    def mark_dismissed(self, notification_id: int, now: datetime) -> Notification:
        """SENT → DISMISSED (읽음 아님)"""
        notification = self.transition(
            notification_id,
            NotificationStatus.DISMISSED,
            {'dismissed_time': now, 'updated_at': now}
        )
        self._append_log(notification, NotificationLogEvent.DISMISSED, now)
        return notification

    def cancel(self, notification_id: int, now: datetime) -> Notification:
        """
        PENDING → CANCELLED

        전송 스윕이 점유 중인(만료되지 않은) 알림은 이미 전송 단계에 들어간 것으로 보고 취소하지 않음

        Raises:
            InvalidTransition: PENDING이 아니거나 전송 점유 중인 경우
        """
        notification = self.transition(
            notification_id,
            NotificationStatus.CANCELLED,
            {'updated_at': now, 'dispatch_token': None, 'dispatch_claimed_at': None},
            not_reserved(now, self.claim_timeout_seconds)
        )
        self._append_log(notification, NotificationLogEvent.CANCELLED, now)
        logger.info(f"🚫 알림 {notification_id} 취소됨")
        return notification
