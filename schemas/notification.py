from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime
import enum

from config.notification_config import (
    DEFAULT_MAX_RETRIES,
    MAX_TITLE_LENGTH,
    MAX_MESSAGE_LENGTH,
    get_default_channel
)
from models.notification import NotificationType, NotificationPriority, NotificationStatus, EPOCH
from models.notification_log import NotificationLogEvent, DeliveryChannel
from utils.clock import to_utc_naive

class NotificationBase(BaseModel):
    type: NotificationType
    title: str = Field(..., max_length=MAX_TITLE_LENGTH)
    message: str = Field(..., max_length=MAX_MESSAGE_LENGTH)
    priority: NotificationPriority = NotificationPriority.DEFAULT
    scheduled_time: datetime
    is_recurring: bool = False
    recurrence_pattern: Optional[str] = Field(None, max_length=100)
    channel_id: Optional[str] = Field(None, max_length=50)  # 없으면 타입별 기본 채널
    related_entity_id: Optional[int] = Field(None, gt=0)
    related_entity_type: Optional[str] = Field(None, max_length=50)
    action_data: Optional[str] = None

class NotificationCreate(NotificationBase):
    user_id: int = Field(..., gt=0)
    retry_count: int = Field(0, ge=0)
    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=0)

    @field_validator('title', 'message')
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError('비어 있을 수 없습니다')
        return value

    @field_validator('channel_id', 'related_entity_type')
    @classmethod
    def not_blank_if_set(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError('비어 있을 수 없습니다')
        return value

    @field_validator('scheduled_time')
    @classmethod
    def after_epoch(cls, value: datetime) -> datetime:
        value = to_utc_naive(value)
        if value <= EPOCH:
            raise ValueError('예약 시각은 1970-01-01 이후여야 합니다')
        return value

    @model_validator(mode='after')
    def check_consistency(self):
        if self.retry_count > self.max_retries:
            raise ValueError('retry_count는 max_retries를 넘을 수 없습니다')
        if (self.related_entity_id is None) != (self.related_entity_type is None):
            raise ValueError('related_entity_id와 related_entity_type은 함께 지정해야 합니다')
        if self.channel_id is None:
            self.channel_id = get_default_channel(self.type.value.lower())
        return self

class Notification(NotificationBase):
    id: int
    user_id: int
    status: NotificationStatus
    channel_id: str
    sent_time: Optional[datetime] = None
    read_time: Optional[datetime] = None
    dismissed_time: Optional[datetime] = None
    clicked_time: Optional[datetime] = None
    is_read: bool
    notification_id: Optional[int] = None
    retry_count: int
    max_retries: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class NotificationLog(BaseModel):
    id: int
    user_id: int
    notification_id: int
    event_type: NotificationLogEvent
    delivery_channel: DeliveryChannel
    is_success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retry_count: int
    processing_duration_ms: Optional[int] = None
    delivery_duration_ms: Optional[int] = None
    platform_response: Optional[str] = None
    event_timestamp: datetime

    class Config:
        from_attributes = True

class EntityCancellation(BaseModel):
    user_id: int = Field(..., gt=0)
    entity_type: str = Field(..., min_length=1, max_length=50)
    entity_id: int = Field(..., gt=0)

# 스윕 결과
class DeliveryReceipt(BaseModel):
    """디스패처 전달 결과"""
    platform_response: Optional[str] = None
    platform_notification_id: Optional[int] = None  # 이후 플랫폼 측 취소에 사용

class DispatchOutcome(str, enum.Enum):
    SENT = "SENT"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

class NotificationOutcome(BaseModel):
    notification_id: int
    outcome: DispatchOutcome
    error_code: Optional[str] = None
    detail: Optional[str] = None

class SweepResult(BaseModel):
    started_at: datetime
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    outcomes: List[NotificationOutcome] = []

    @property
    def total(self) -> int:
        return self.sent + self.failed + self.skipped

class RetrySweepResult(BaseModel):
    started_at: datetime
    rescheduled: int = 0
    skipped: int = 0
    notification_ids: List[int] = []
