"""
알림 관련 API 라우터
알림 예약, 조회, 상호작용 처리, 취소, 스윕 실행 엔드포인트 제공
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from database import get_db
from models.notification import NotificationStatus, NotificationType
from schemas.notification import (
    Notification,
    NotificationCreate,
    NotificationLog,
    EntityCancellation,
    SweepResult,
    RetrySweepResult
)
from services.notification_service import NotificationService
from utils.exceptions import (
    NotificationError,
    NotificationValidationError,
    NotificationNotFound,
    InvalidTransition
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])

def get_notification_service(request: Request, db: Session = Depends(get_db)) -> NotificationService:
    """요청별 알림 서비스 (시계와 디스패처는 app.state에서 주입)"""
    return NotificationService(
        db,
        clock=getattr(request.app.state, "clock", None),
        dispatcher=getattr(request.app.state, "dispatcher", None)
    )

def to_http_exception(e: Exception, action: str) -> HTTPException:
    """도메인 예외 → HTTP 예외"""
    if isinstance(e, NotificationValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors)
    if isinstance(e, NotificationNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="알림을 찾을 수 없습니다")
    if isinstance(e, InvalidTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail)
    logger.error(f"❌ {action} 중 오류 발생: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{action} 중 오류가 발생했습니다"
    )

@router.post("/", response_model=Notification, status_code=status.HTTP_201_CREATED)
def schedule_notification(
    notification: NotificationCreate,
    service: NotificationService = Depends(get_notification_service)
):
    """알림 예약"""
    try:
        return service.schedule_notification(notification)
    except NotificationError as e:
        raise to_http_exception(e, "알림 예약")

@router.get("/", response_model=List[Notification])
def get_notifications(
    user_id: int = Query(..., gt=0, description="사용자 ID"),
    status_filter: Optional[NotificationStatus] = Query(None, alias="status", description="상태 필터"),
    notification_type: Optional[NotificationType] = Query(None, alias="type", description="타입 필터"),
    unread_only: bool = Query(False, description="읽지 않은 알림만 조회"),
    skip: int = Query(0, ge=0, description="건너뛸 레코드 수"),
    limit: int = Query(100, ge=1, le=1000, description="가져올 레코드 수"),
    service: NotificationService = Depends(get_notification_service)
):
    """사용자의 알림 목록 조회"""
    try:
        return service.list_notifications(
            user_id,
            status=status_filter,
            notification_type=notification_type,
            unread_only=unread_only,
            skip=skip,
            limit=limit
        )
    except NotificationError as e:
        raise to_http_exception(e, "알림 조회")

@router.get("/due", response_model=List[Notification])
def get_due_notifications(service: NotificationService = Depends(get_notification_service)):
    """전송 대상 알림 조회 (우선순위, 예약 시각 순)"""
    try:
        return service.due_notifications()
    except NotificationError as e:
        raise to_http_exception(e, "전송 대상 조회")

@router.get("/overdue", response_model=List[Notification])
def get_overdue_notifications(service: NotificationService = Depends(get_notification_service)):
    """예약 시각이 지난 미전송 알림 조회"""
    try:
        return service.overdue_notifications()
    except NotificationError as e:
        raise to_http_exception(e, "지연 알림 조회")

@router.get("/search", response_model=List[Notification])
def search_notifications(
    user_id: int = Query(..., gt=0),
    q: str = Query(..., min_length=1, description="검색어"),
    limit: int = Query(50, ge=1, le=200),
    service: NotificationService = Depends(get_notification_service)
):
    """알림 제목/본문 검색"""
    try:
        return service.search_notifications(user_id, q, limit)
    except NotificationError as e:
        raise to_http_exception(e, "알림 검색")

@router.get("/unread-count")
def get_unread_count(
    user_id: int = Query(..., gt=0),
    service: NotificationService = Depends(get_notification_service)
):
    """읽지 않은 알림 개수"""
    try:
        return {"count": service.get_unread_count(user_id)}
    except NotificationError as e:
        raise to_http_exception(e, "알림 개수 조회")

@router.put("/read-all")
def mark_all_as_read(
    user_id: int = Query(..., gt=0),
    service: NotificationService = Depends(get_notification_service)
):
    """사용자의 전송된 알림을 모두 읽음으로 표시"""
    try:
        count = service.mark_all_read(user_id)
        return {"message": f"{count}개의 알림을 읽음으로 표시했습니다", "count": count}
    except NotificationError as e:
        raise to_http_exception(e, "알림 읽음 처리")

@router.post("/cancel-entity")
def cancel_for_entity(
    request: EntityCancellation,
    service: NotificationService = Depends(get_notification_service)
):
    """연관 엔티티(목표, 운동 등)에 묶인 PENDING 알림 취소"""
    try:
        cancelled = service.cancel_for_entity(request.user_id, request.entity_type, request.entity_id)
        return {"cancelled": cancelled}
    except NotificationError as e:
        raise to_http_exception(e, "알림 취소")

@router.post("/sweeps/due", response_model=SweepResult)
async def run_due_sweep(service: NotificationService = Depends(get_notification_service)):
    """전송 스윕 수동 실행"""
    try:
        return await service.run_due_sweep()
    except NotificationError as e:
        raise to_http_exception(e, "전송 스윕")

@router.post("/sweeps/retry", response_model=RetrySweepResult)
def run_retry_sweep(service: NotificationService = Depends(get_notification_service)):
    """재시도 스윕 수동 실행"""
    try:
        return service.run_retry_sweep()
    except NotificationError as e:
        raise to_http_exception(e, "재시도 스윕")

@router.get("/{notification_id}", response_model=Notification)
def get_notification(
    notification_id: int,
    service: NotificationService = Depends(get_notification_service)
):
    """특정 알림 조회"""
    try:
        return service.get_notification(notification_id)
    except NotificationError as e:
        raise to_http_exception(e, "알림 조회")

@router.get("/{notification_id}/logs", response_model=List[NotificationLog])
def get_notification_logs(
    notification_id: int,
    service: NotificationService = Depends(get_notification_service)
):
    """알림 이벤트 타임라인"""
    try:
        return service.get_notification_timeline(notification_id)
    except NotificationError as e:
        raise to_http_exception(e, "알림 로그 조회")

@router.put("/{notification_id}/read", response_model=Notification)
def mark_as_read(notification_id: int, service: NotificationService = Depends(get_notification_service)):
    """알림을 읽음으로 표시"""
    try:
        return service.mark_read(notification_id)
    except NotificationError as e:
        raise to_http_exception(e, "알림 읽음 처리")

@router.put("/{notification_id}/click", response_model=Notification)
def mark_as_clicked(notification_id: int, service: NotificationService = Depends(get_notification_service)):
    """알림 클릭 처리"""
    try:
        return service.mark_clicked(notification_id)
    except NotificationError as e:
        raise to_http_exception(e, "알림 클릭 처리")

@router.put("/{notification_id}/dismiss", response_model=Notification)
def mark_as_dismissed(notification_id: int, service: NotificationService = Depends(get_notification_service)):
    """알림 닫기 처리"""
    try:
        return service.mark_dismissed(notification_id)
    except NotificationError as e:
        raise to_http_exception(e, "알림 닫기 처리")

@router.put("/{notification_id}/cancel", response_model=Notification)
def cancel_notification(notification_id: int, service: NotificationService = Depends(get_notification_service)):
    """예약된 알림 취소"""
    try:
        return service.cancel(notification_id)
    except NotificationError as e:
        raise to_http_exception(e, "알림 취소")
