"""
연관 엔티티 기반 알림 취소
목표 삭제 등으로 더 이상 의미가 없는 PENDING 알림을 취소 (이미 전송된 알림은 유지)
"""

import logging
from datetime import datetime
from typing import List

from sqlalchemy.orm import Session

from crud.notification import get_pending_ids_for_entity
from services.lifecycle_service import LifecycleTracker
from utils.exceptions import InvalidTransition

logger = logging.getLogger(__name__)


class CancellationManager:
    def __init__(self, db: Session, lifecycle: LifecycleTracker):
        self.db = db
        self.lifecycle = lifecycle

    def cancel_for_entity(self, user_id: int, entity_type: str, entity_id: int, now: datetime) -> int:
        """
        연관 엔티티에 묶인 PENDING 알림 일괄 취소 (전송 점유 중인 알림은 그대로 전송)

        Returns:
            취소된 알림 개수
        """
        cancelled: List[int] = []
        pending_ids = get_pending_ids_for_entity(
            self.db, user_id, entity_type, entity_id, now, self.lifecycle.claim_timeout_seconds
        )
        for notification_id in pending_ids:
            try:
                self.lifecycle.cancel(notification_id, now)
                cancelled.append(notification_id)
            except InvalidTransition as e:
                # 조회 이후 전송 스윕이 먼저 점유했거나 전송을 완료한 경우
                logger.info(f"ℹ️ 취소 건너뜀: {e.detail}")

        logger.info(
            f"🚫 {entity_type}#{entity_id} 관련 알림 {len(cancelled)}개 취소 (사용자 {user_id})"
        )
        return len(cancelled)
