"""
알림 분석 API 라우터
"""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from datetime import datetime

from routers.notification import get_notification_service, to_http_exception
from schemas.analytics import (
    NotificationDeliveryStats,
    NotificationInsights,
    NotificationSystemMetrics,
    ErrorFrequency,
    ChannelDeliveryStats,
    NotificationEngagement
)
from services.notification_service import NotificationService
from utils.clock import to_utc_naive
from utils.exceptions import NotificationError

router = APIRouter(prefix="/analytics", tags=["analytics"])

@router.get("/stats", response_model=NotificationDeliveryStats)
def get_stats(
    user_id: Optional[int] = Query(None, gt=0, description="없으면 전체"),
    service: NotificationService = Depends(get_notification_service)
):
    """전달 통계"""
    try:
        return service.get_stats(user_id)
    except NotificationError as e:
        raise to_http_exception(e, "전달 통계 조회")

@router.get("/insights", response_model=NotificationInsights)
def get_insights(
    user_id: Optional[int] = Query(None, gt=0),
    service: NotificationService = Depends(get_notification_service)
):
    """최근 30일 인사이트"""
    try:
        return service.get_insights(user_id)
    except NotificationError as e:
        raise to_http_exception(e, "인사이트 조회")

@router.get("/metrics", response_model=NotificationSystemMetrics)
def get_metrics(
    user_id: Optional[int] = Query(None, gt=0),
    service: NotificationService = Depends(get_notification_service)
):
    """전달 파이프라인 성능 지표"""
    try:
        return service.get_performance_metrics(user_id)
    except NotificationError as e:
        raise to_http_exception(e, "성능 지표 조회")

@router.get("/errors", response_model=List[ErrorFrequency])
def get_errors(
    user_id: Optional[int] = Query(None, gt=0),
    since: Optional[datetime] = Query(None, description="집계 시작 시각"),
    limit: int = Query(10, ge=1, le=100),
    service: NotificationService = Depends(get_notification_service)
):
    """실패 원인 순위"""
    try:
        return service.analytics.get_error_frequencies(user_id, since=to_utc_naive(since), limit=limit)
    except NotificationError as e:
        raise to_http_exception(e, "에러 통계 조회")

@router.get("/channels", response_model=List[ChannelDeliveryStats])
def get_channels(
    user_id: Optional[int] = Query(None, gt=0),
    since: Optional[datetime] = Query(None, description="집계 시작 시각"),
    until: Optional[datetime] = Query(None, description="집계 종료 시각"),
    service: NotificationService = Depends(get_notification_service)
):
    """채널별 전달 성공률"""
    try:
        return service.analytics.get_channel_success_rates(user_id, to_utc_naive(since), to_utc_naive(until))
    except NotificationError as e:
        raise to_http_exception(e, "채널별 성공률 조회")

@router.get("/engagement", response_model=NotificationEngagement)
def get_engagement(
    user_id: Optional[int] = Query(None, gt=0),
    service: NotificationService = Depends(get_notification_service)
):
    """최근 30일 반응률과 시간대별 반응 패턴"""
    try:
        return service.analytics.get_engagement(user_id)
    except NotificationError as e:
        raise to_http_exception(e, "반응률 조회")

@router.get("/export")
def export_analytics(
    user_id: Optional[int] = Query(None, gt=0),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    service: NotificationService = Depends(get_notification_service)
):
    """분석 데이터 내보내기"""
    try:
        return service.analytics.export_analytics(user_id, to_utc_naive(start), to_utc_naive(end))
    except NotificationError as e:
        raise to_http_exception(e, "분석 데이터 내보내기")
