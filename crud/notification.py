from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import and_, or_, case, func
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from models.notification import (
    Notification,
    NotificationStatus,
    NotificationType,
    DELIVERED_STATUSES,
    PRIORITY_RANK
)
from schemas.notification import NotificationCreate
from utils.exceptions import StoreError

# 우선순위 정렬용 순위 (문자열 정렬이 아닌 URGENT > HIGH > DEFAULT > LOW)
priority_rank = case(
    *[(Notification.priority == priority, rank) for priority, rank in PRIORITY_RANK.items()],
    else_=0
)

TERMINAL_STATUSES = (
    NotificationStatus.READ,
    NotificationStatus.CLICKED,
    NotificationStatus.DISMISSED,
    NotificationStatus.CANCELLED,
)

# 기본 CRUD
def create_notification(db: Session, notification: NotificationCreate, now: datetime) -> Notification:
    """알림 생성 (PENDING 상태)"""
    try:
        db_notification = Notification(
            **notification.model_dump(),
            status=NotificationStatus.PENDING,
            is_read=False,
            created_at=now,
            updated_at=now
        )
        db.add(db_notification)
        db.commit()
        db.refresh(db_notification)
        return db_notification
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"알림 생성 실패: {str(e)}") from e

def get_notification_by_id(db: Session, notification_id: int) -> Optional[Notification]:
    """ID로 알림 조회"""
    try:
        return db.query(Notification).filter(Notification.id == notification_id).first()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"알림 조회 실패: {str(e)}") from e

def get_notifications_by_user(
    db: Session,
    user_id: int,
    skip: int = 0,
    limit: int = 100,
    status: Optional[NotificationStatus] = None,
    notification_type: Optional[NotificationType] = None,
    unread_only: bool = False
) -> List[Notification]:
    """사용자별 알림 조회"""
    try:
        query = db.query(Notification).filter(Notification.user_id == user_id)

        if status is not None:
            query = query.filter(Notification.status == status)
        if notification_type is not None:
            query = query.filter(Notification.type == notification_type)
        if unread_only:
            query = query.filter(Notification.is_read == False)

        return query.order_by(
            Notification.scheduled_time.desc(), Notification.id.desc()
        ).offset(skip).limit(limit).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"사용자 알림 조회 실패: {str(e)}") from e

def get_notifications_by_related_entity(
    db: Session, user_id: int, entity_type: str, entity_id: int
) -> List[Notification]:
    """연관 엔티티별 알림 조회"""
    try:
        return db.query(Notification).filter(
            and_(
                Notification.user_id == user_id,
                Notification.related_entity_type == entity_type,
                Notification.related_entity_id == entity_id
            )
        ).order_by(Notification.scheduled_time.asc()).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"연관 엔티티 알림 조회 실패: {str(e)}") from e

def search_notifications(db: Session, user_id: int, keyword: str, limit: int = 50) -> List[Notification]:
    """제목/본문 검색"""
    try:
        pattern = f"%{keyword}%"
        return db.query(Notification).filter(
            Notification.user_id == user_id,
            or_(Notification.title.ilike(pattern), Notification.message.ilike(pattern))
        ).order_by(Notification.scheduled_time.desc()).limit(limit).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"알림 검색 실패: {str(e)}") from e

def get_unread_notification_count(db: Session, user_id: int) -> int:
    """사용자의 읽지 않은 전달 완료 알림 개수"""
    try:
        return db.query(Notification).filter(
            and_(
                Notification.user_id == user_id,
                Notification.status.in_(DELIVERED_STATUSES),
                Notification.is_read == False
            )
        ).count()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"읽지 않은 알림 개수 조회 실패: {str(e)}") from e

def get_sent_notification_ids(db: Session, user_id: int) -> List[int]:
    """읽음 처리 대상 (SENT) 알림 ID 목록"""
    try:
        rows = db.query(Notification.id).filter(
            Notification.user_id == user_id,
            Notification.status == NotificationStatus.SENT
        ).all()
        return [row.id for row in rows]
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"전송 완료 알림 조회 실패: {str(e)}") from e

# 스케줄링 쿼리
def get_due_notifications(db: Session, now: datetime, limit: Optional[int] = None) -> List[Notification]:
    """전송 대상 알림 (우선순위 내림차순, 예약 시각 오름차순)"""
    try:
        query = db.query(Notification).filter(
            and_(
                Notification.status == NotificationStatus.PENDING,
                Notification.scheduled_time <= now
            )
        ).order_by(priority_rank.desc(), Notification.scheduled_time.asc(), Notification.id.asc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"전송 대상 알림 조회 실패: {str(e)}") from e

def get_overdue_notifications(db: Session, now: datetime, limit: Optional[int] = None) -> List[Notification]:
    """예약 시각이 지난 미전송 알림"""
    try:
        query = db.query(Notification).filter(
            and_(
                Notification.status == NotificationStatus.PENDING,
                Notification.scheduled_time < now
            )
        ).order_by(Notification.scheduled_time.asc(), Notification.id.asc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"지연 알림 조회 실패: {str(e)}") from e

def get_retryable_notifications(db: Session, now: datetime, limit: Optional[int] = None) -> List[Notification]:
    """재시도 가능한 실패 알림"""
    try:
        query = db.query(Notification).filter(
            and_(
                Notification.status == NotificationStatus.FAILED,
                Notification.retry_count < Notification.max_retries,
                Notification.scheduled_time <= now
            )
        ).order_by(Notification.scheduled_time.asc(), Notification.id.asc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"재시도 대상 알림 조회 실패: {str(e)}") from e

def not_reserved(now: datetime, claim_timeout_seconds: int):
    """전송 점유가 없거나 만료된 알림 조건"""
    stale_before = now - timedelta(seconds=claim_timeout_seconds)
    return or_(
        Notification.dispatch_claimed_at.is_(None),
        Notification.dispatch_claimed_at <= stale_before
    )

def get_pending_ids_for_entity(
    db: Session,
    user_id: int,
    entity_type: str,
    entity_id: int,
    now: datetime,
    claim_timeout_seconds: int
) -> List[int]:
    """연관 엔티티에 묶인 PENDING 알림 ID 목록 (전송 점유 중인 알림 제외)"""
    try:
        rows = db.query(Notification.id).filter(
            and_(
                Notification.user_id == user_id,
                Notification.related_entity_type == entity_type,
                Notification.related_entity_id == entity_id,
                Notification.status == NotificationStatus.PENDING,
                not_reserved(now, claim_timeout_seconds)
            )
        ).all()
        return [row.id for row in rows]
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"취소 대상 알림 조회 실패: {str(e)}") from e

# 상태 전이 (단일 행 compare-and-set)
def compare_and_set(
    db: Session,
    notification_id: int,
    expected_status: NotificationStatus,
    values: Dict,
    *criteria
) -> bool:
    """
    상태가 expected_status인 경우에만 values로 갱신

    Returns:
        갱신 성공 여부 (다른 스윕이 먼저 전이했으면 False)
    """
    try:
        updated = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.status == expected_status,
            *criteria
        ).update(values, synchronize_session=False)
        db.commit()
        return updated == 1
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"알림 상태 변경 실패: {str(e)}") from e

def claim_for_dispatch(
    db: Session,
    notification_id: int,
    token: str,
    now: datetime,
    claim_timeout_seconds: int
) -> bool:
    """전송 전 임시 점유 (만료된 점유는 다시 가져올 수 있음)"""
    return compare_and_set(
        db,
        notification_id,
        NotificationStatus.PENDING,
        {'dispatch_token': token, 'dispatch_claimed_at': now},
        not_reserved(now, claim_timeout_seconds),
        Notification.scheduled_time <= now
    )

# 통계 쿼리
def get_status_counts(db: Session, user_id: Optional[int] = None) -> Dict[NotificationStatus, int]:
    """상태별 알림 개수"""
    try:
        query = db.query(Notification.status, func.count(Notification.id))
        if user_id is not None:
            query = query.filter(Notification.user_id == user_id)
        return {status: count for status, count in query.group_by(Notification.status).all()}
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"상태별 통계 조회 실패: {str(e)}") from e

def get_retry_counts(db: Session, user_id: Optional[int] = None) -> Tuple[int, int]:
    """(재시도된 알림 수, 재시도 소진 알림 수)"""
    try:
        query = db.query(
            func.count(case((Notification.retry_count > 0, 1))),
            func.count(case((
                and_(
                    Notification.status == NotificationStatus.FAILED,
                    Notification.retry_count >= Notification.max_retries
                ), 1
            )))
        )
        if user_id is not None:
            query = query.filter(Notification.user_id == user_id)
        retried, exhausted = query.one()
        return retried or 0, exhausted or 0
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"재시도 통계 조회 실패: {str(e)}") from e

def get_unread_delivered_count(db: Session, user_id: Optional[int] = None) -> int:
    try:
        query = db.query(Notification).filter(
            Notification.status.in_(DELIVERED_STATUSES),
            Notification.is_read == False
        )
        if user_id is not None:
            query = query.filter(Notification.user_id == user_id)
        return query.count()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"읽지 않은 알림 통계 조회 실패: {str(e)}") from e

def get_delivery_timings(
    db: Session, user_id: Optional[int] = None
) -> List[Tuple[datetime, Optional[datetime], Optional[datetime]]]:
    """전달 완료 알림의 (scheduled_time, sent_time, clicked_time)"""
    try:
        query = db.query(
            Notification.scheduled_time, Notification.sent_time, Notification.clicked_time
        ).filter(
            Notification.status.in_(DELIVERED_STATUSES),
            Notification.sent_time.isnot(None)
        )
        if user_id is not None:
            query = query.filter(Notification.user_id == user_id)
        return [tuple(row) for row in query.all()]
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"전달 시간 통계 조회 실패: {str(e)}") from e

# 보존 정책
def delete_old_notifications(db: Session, cutoff: datetime) -> int:
    """cutoff 이전에 생성된 종료 상태 알림 삭제 (로그는 FK cascade)"""
    try:
        deleted = db.query(Notification).filter(
            Notification.created_at < cutoff,
            or_(
                Notification.status.in_(TERMINAL_STATUSES),
                and_(
                    Notification.status == NotificationStatus.FAILED,
                    Notification.retry_count >= Notification.max_retries
                )
            )
        ).delete(synchronize_session=False)
        db.commit()
        return deleted
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"오래된 알림 삭제 실패: {str(e)}") from e
