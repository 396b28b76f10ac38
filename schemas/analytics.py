from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime

from models.notification_log import DeliveryChannel

class NotificationDeliveryStats(BaseModel):
    total: int = 0
    pending: int = 0
    delivered: int = 0  # SENT 이후 상태 전체
    sent: int = 0
    read: int = 0
    clicked: int = 0
    dismissed: int = 0
    failed: int = 0
    cancelled: int = 0
    unread: int = 0
    retried: int = 0
    exhausted: int = 0
    delivery_success_rate: float = 0.0  # 0-100
    click_through_rate: float = 0.0
    dismissal_rate: float = 0.0
    average_delivery_latency_ms: Optional[float] = None
    average_response_time_ms: Optional[float] = None

class ErrorFrequency(BaseModel):
    error_code: str
    count: int
    percentage: float

class NotificationInsights(BaseModel):
    period_start: datetime
    period_end: datetime
    total_sent: int = 0
    total_failed: int = 0
    total_clicked: int = 0
    total_dismissed: int = 0
    delivery_success_rate: float = 0.0
    click_through_rate: float = 0.0
    average_delivery_latency_ms: Optional[float] = None
    average_response_time_ms: Optional[float] = None
    max_retry_count: int = 0
    common_errors: List[ErrorFrequency] = []
    weekly_trend: float = 0.0  # 최근 7일 성공률 - 30일 성공률
    health_score: float = 100.0

class NotificationSystemMetrics(BaseModel):
    daily_volume: int = 0
    weekly_volume: int = 0
    average_latency_ms: Optional[float] = None
    error_rate: float = 0.0
    retry_rate: float = 0.0
    max_retry_count: int = 0
    top_errors: List[str] = []
    health_score: float = 100.0

class ChannelDeliveryStats(BaseModel):
    delivery_channel: DeliveryChannel
    total_attempts: int
    successful_attempts: int
    success_rate: float  # 0-100

class HourlyInteraction(BaseModel):
    hour: int  # 0-23 (UTC)
    interaction_count: int

class NotificationEngagement(BaseModel):
    period_start: datetime
    period_end: datetime
    delivered: int = 0
    interactions: int = 0  # 읽음 + 클릭
    engagement_rate: float = 0.0  # 0-100
    hourly_pattern: List[HourlyInteraction] = []
