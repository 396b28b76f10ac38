"""
전송 대상 선정
PENDING이고 예약 시각이 지난 알림을 우선순위, 예약 시각 순으로 조회 (읽기 전용)
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from config.notification_config import SWEEP_BATCH_SIZE
from crud.notification import get_due_notifications, get_overdue_notifications
from models.notification import Notification


class DeliveryScheduler:
    def __init__(self, db: Session, batch_size: Optional[int] = SWEEP_BATCH_SIZE):
        self.db = db
        self.batch_size = batch_size

    def due_notifications(self, now: datetime) -> List[Notification]:
        """전송 대상 (scheduled_time <= now)"""
        return get_due_notifications(self.db, now, limit=self.batch_size)

    def overdue_notifications(self, now: datetime) -> List[Notification]:
        """지연 알림 (scheduled_time < now), 모니터링 용도"""
        return get_overdue_notifications(self.db, now, limit=self.batch_size)
