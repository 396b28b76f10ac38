import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, Enum, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base

from config.notification_config import DEFAULT_MAX_RETRIES, MAX_TITLE_LENGTH, MAX_MESSAGE_LENGTH

EPOCH = datetime(1970, 1, 1)


class NotificationType(str, enum.Enum):
    WORKOUT_REMINDER = "WORKOUT_REMINDER"
    GOAL_ACHIEVEMENT = "GOAL_ACHIEVEMENT"
    GOAL_DEADLINE_APPROACHING = "GOAL_DEADLINE_APPROACHING"
    DAILY_MOTIVATION = "DAILY_MOTIVATION"
    STEP_MILESTONE = "STEP_MILESTONE"
    WEEKLY_PROGRESS = "WEEKLY_PROGRESS"
    NUTRITION_REMINDER = "NUTRITION_REMINDER"
    HYDRATION_REMINDER = "HYDRATION_REMINDER"
    REST_DAY_REMINDER = "REST_DAY_REMINDER"
    ACHIEVEMENT_UNLOCKED = "ACHIEVEMENT_UNLOCKED"
    WORKOUT_STREAK = "WORKOUT_STREAK"
    INACTIVE_USER_ENGAGEMENT = "INACTIVE_USER_ENGAGEMENT"


class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    DEFAULT = "DEFAULT"
    HIGH = "HIGH"
    URGENT = "URGENT"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {
    NotificationPriority.LOW: 0,
    NotificationPriority.DEFAULT: 1,
    NotificationPriority.HIGH: 2,
    NotificationPriority.URGENT: 3,
}


class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    READ = "READ"
    DISMISSED = "DISMISSED"
    CLICKED = "CLICKED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# 전달 완료 이후 상태 (성공률 계산 기준)
DELIVERED_STATUSES = (
    NotificationStatus.SENT,
    NotificationStatus.READ,
    NotificationStatus.DISMISSED,
    NotificationStatus.CLICKED,
)
READ_STATUSES = (NotificationStatus.READ, NotificationStatus.CLICKED)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(Enum(NotificationType, native_enum=False, length=40), nullable=False)
    title = Column(String(MAX_TITLE_LENGTH), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(
        Enum(NotificationPriority, native_enum=False, length=10),
        nullable=False, default=NotificationPriority.DEFAULT
    )
    status = Column(
        Enum(NotificationStatus, native_enum=False, length=10),
        nullable=False, default=NotificationStatus.PENDING
    )
    scheduled_time = Column(DateTime, nullable=False)
    sent_time = Column(DateTime, nullable=True)
    read_time = Column(DateTime, nullable=True)
    dismissed_time = Column(DateTime, nullable=True)
    clicked_time = Column(DateTime, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_pattern = Column(String(100), nullable=True)  # 해석하지 않음
    channel_id = Column(String(50), nullable=False)
    notification_id = Column(Integer, nullable=True)  # 플랫폼 알림 ID
    action_data = Column(Text, nullable=True)  # 디스패처로 전달되는 JSON
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=DEFAULT_MAX_RETRIES)
    related_entity_id = Column(Integer, nullable=True)
    related_entity_type = Column(String(50), nullable=True)

    # 디스패치 예약 (전송 중 임시 점유)
    dispatch_token = Column(String(36), nullable=True)
    dispatch_claimed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="notifications")
    logs = relationship(
        "NotificationLog", back_populates="notification",
        cascade="all, delete-orphan", passive_deletes=True,
        order_by="NotificationLog.event_timestamp"
    )

    __table_args__ = (
        Index("idx_notifications_user_id", "user_id"),
        Index("idx_notifications_type", "type"),
        Index("idx_notifications_status", "status"),
        Index("idx_notifications_scheduled_time", "scheduled_time"),
        Index("idx_notifications_is_read", "is_read"),
        Index("idx_notifications_user_type", "user_id", "type"),
        Index("idx_notifications_user_status", "user_id", "status"),
        Index("idx_notifications_user_scheduled", "user_id", "scheduled_time"),
        Index("idx_notifications_status_scheduled", "status", "scheduled_time"),
        Index(
            "idx_notifications_related_entity",
            "user_id", "related_entity_type", "related_entity_id"
        ),
    )

    @property
    def is_exhausted(self) -> bool:
        """재시도 소진 (영구 실패)"""
        return self.status == NotificationStatus.FAILED and self.retry_count >= self.max_retries

    def is_valid(self) -> bool:
        """저장된 알림의 불변식 확인"""
        has_entity_id = self.related_entity_id is not None
        has_entity_type = self.related_entity_type is not None
        is_read_consistent = (self.status in READ_STATUSES) == bool(self.is_read)
        return (
            bool(self.title and self.title.strip())
            and len(self.title) <= MAX_TITLE_LENGTH
            and bool(self.message and self.message.strip())
            and len(self.message) <= MAX_MESSAGE_LENGTH
            and bool(self.channel_id and self.channel_id.strip())
            and self.max_retries is not None and self.max_retries >= 0
            and 0 <= self.retry_count <= self.max_retries
            and has_entity_id == has_entity_type
            and self.scheduled_time is not None and self.scheduled_time > EPOCH
            and is_read_consistent
        )

    def __repr__(self):
        return f"<Notification(id={self.id}, type={self.type}, status={self.status})>"
