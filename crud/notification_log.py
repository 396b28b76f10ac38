from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import case, extract, func
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from models.notification_log import NotificationLog, NotificationLogEvent, DeliveryChannel
from utils.exceptions import StoreError

INTERACTION_EVENTS = (
    NotificationLogEvent.READ,
    NotificationLogEvent.CLICKED,
    NotificationLogEvent.DISMISSED,
)

def create_notification_log(
    db: Session,
    user_id: int,
    notification_id: int,
    event_type: NotificationLogEvent,
    event_timestamp: datetime,
    delivery_channel: DeliveryChannel = DeliveryChannel.SYSTEM,
    is_success: bool = True,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    retry_count: int = 0,
    processing_duration_ms: Optional[int] = None,
    delivery_duration_ms: Optional[int] = None,
    platform_response: Optional[str] = None
) -> NotificationLog:
    """알림 이벤트 로그 추가"""
    try:
        db_log = NotificationLog(
            user_id=user_id,
            notification_id=notification_id,
            event_type=event_type,
            delivery_channel=delivery_channel,
            is_success=is_success,
            error_code=error_code,
            error_message=error_message,
            retry_count=retry_count,
            processing_duration_ms=processing_duration_ms,
            delivery_duration_ms=delivery_duration_ms,
            platform_response=platform_response,
            event_timestamp=event_timestamp,
            created_at=event_timestamp
        )
        db.add(db_log)
        db.commit()
        db.refresh(db_log)
        return db_log
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"알림 로그 저장 실패: {str(e)}") from e

def get_logs_by_notification(db: Session, notification_id: int) -> List[NotificationLog]:
    """알림별 이벤트 타임라인"""
    try:
        return db.query(NotificationLog).filter(
            NotificationLog.notification_id == notification_id
        ).order_by(NotificationLog.event_timestamp.asc(), NotificationLog.id.asc()).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"알림 로그 조회 실패: {str(e)}") from e

def _windowed(query, user_id: Optional[int], since: Optional[datetime], until: Optional[datetime]):
    if user_id is not None:
        query = query.filter(NotificationLog.user_id == user_id)
    if since is not None:
        query = query.filter(NotificationLog.event_timestamp >= since)
    if until is not None:
        query = query.filter(NotificationLog.event_timestamp <= until)
    return query

def count_events(
    db: Session,
    user_id: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None
) -> Dict[NotificationLogEvent, int]:
    """기간 내 이벤트 타입별 개수"""
    try:
        query = db.query(NotificationLog.event_type, func.count(NotificationLog.id))
        query = _windowed(query, user_id, since, until)
        return {event: count for event, count in query.group_by(NotificationLog.event_type).all()}
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"이벤트 통계 조회 실패: {str(e)}") from e

def get_error_code_counts(
    db: Session,
    user_id: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: Optional[int] = None
) -> List[Tuple[str, int]]:
    """실패 이벤트의 에러 코드별 개수 (많은 순)"""
    try:
        count_col = func.count(NotificationLog.id)
        query = db.query(NotificationLog.error_code, count_col).filter(
            NotificationLog.event_type == NotificationLogEvent.FAILED,
            NotificationLog.error_code.isnot(None)
        )
        query = _windowed(query, user_id, since, until)
        query = query.group_by(NotificationLog.error_code).order_by(
            count_col.desc(), NotificationLog.error_code.asc()
        )
        if limit is not None:
            query = query.limit(limit)
        return [(code, count) for code, count in query.all()]
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"에러 코드 통계 조회 실패: {str(e)}") from e

def get_max_retry_count(
    db: Session,
    user_id: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None
) -> int:
    try:
        query = _windowed(db.query(func.max(NotificationLog.retry_count)), user_id, since, until)
        return query.scalar() or 0
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"최대 재시도 횟수 조회 실패: {str(e)}") from e

def get_average_duration(
    db: Session,
    event_type: NotificationLogEvent = NotificationLogEvent.SENT,
    user_id: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None
) -> Optional[float]:
    """이벤트의 평균 소요 시간 (ms)

    SENT: 예약 시각 → 전송, CLICKED: 전송 → 클릭
    """
    try:
        query = db.query(func.avg(NotificationLog.delivery_duration_ms)).filter(
            NotificationLog.event_type == event_type,
            NotificationLog.delivery_duration_ms.isnot(None)
        )
        value = _windowed(query, user_id, since, until).scalar()
        return float(value) if value is not None else None
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"평균 소요 시간 조회 실패: {str(e)}") from e

def get_channel_attempt_counts(
    db: Session,
    user_id: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None
) -> List[Tuple[DeliveryChannel, int, int]]:
    """채널별 전송 시도 수와 성공 수 (SENT/FAILED 이벤트 기준)"""
    try:
        successful = func.sum(case((NotificationLog.is_success.is_(True), 1), else_=0))
        query = db.query(
            NotificationLog.delivery_channel,
            func.count(NotificationLog.id),
            successful
        ).filter(
            NotificationLog.event_type.in_([NotificationLogEvent.SENT, NotificationLogEvent.FAILED])
        )
        query = _windowed(query, user_id, since, until)
        rows = query.group_by(NotificationLog.delivery_channel).all()
        return [(channel, total, int(success or 0)) for channel, total, success in rows]
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"채널별 전송 통계 조회 실패: {str(e)}") from e

def get_interaction_counts_by_hour(
    db: Session,
    user_id: Optional[int] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None
) -> List[Tuple[int, int]]:
    """시간대(0-23시, UTC)별 사용자 반응 수 (읽음, 클릭, 닫기)"""
    try:
        hour = extract('hour', NotificationLog.event_timestamp)
        query = db.query(hour, func.count(NotificationLog.id)).filter(
            NotificationLog.event_type.in_(INTERACTION_EVENTS)
        )
        query = _windowed(query, user_id, since, until)
        rows = query.group_by(hour).order_by(hour).all()
        return [(int(h), count) for h, count in rows]
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"시간대별 반응 통계 조회 실패: {str(e)}") from e

def delete_logs_older_than(db: Session, cutoff: datetime) -> int:
    """보존 기간이 지난 로그 삭제"""
    try:
        deleted = db.query(NotificationLog).filter(
            NotificationLog.event_timestamp < cutoff
        ).delete(synchronize_session=False)
        db.commit()
        return deleted
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"오래된 로그 삭제 실패: {str(e)}") from e
