import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, Enum, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class NotificationLogEvent(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    FAILED = "FAILED"
    RETRIED = "RETRIED"
    READ = "READ"
    CLICKED = "CLICKED"
    DISMISSED = "DISMISSED"
    CANCELLED = "CANCELLED"


class DeliveryChannel(str, enum.Enum):
    SYSTEM = "SYSTEM"
    IN_APP = "IN_APP"
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    SMS = "SMS"
    WEBHOOK = "WEBHOOK"


class NotificationLog(Base):
    """알림 생명주기 이벤트 기록 (삽입 후 수정하지 않음)"""
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    notification_id = Column(Integer, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(Enum(NotificationLogEvent, native_enum=False, length=10), nullable=False)
    delivery_channel = Column(
        Enum(DeliveryChannel, native_enum=False, length=10),
        nullable=False, default=DeliveryChannel.SYSTEM
    )
    is_success = Column(Boolean, nullable=False, default=True)
    error_code = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    processing_duration_ms = Column(Integer, nullable=True)  # 디스패처 호출 시간
    delivery_duration_ms = Column(Integer, nullable=True)  # sent_time - scheduled_time
    platform_response = Column(Text, nullable=True)
    event_timestamp = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    user = relationship("User", back_populates="notification_logs")
    notification = relationship("Notification", back_populates="logs")

    __table_args__ = (
        Index("idx_notification_logs_user_id", "user_id"),
        Index("idx_notification_logs_notification_id", "notification_id"),
        Index("idx_notification_logs_event_type", "event_type"),
        Index("idx_notification_logs_event_timestamp", "event_timestamp"),
        Index("idx_notification_logs_user_event", "user_id", "event_type"),
        Index("idx_notification_logs_user_timestamp", "user_id", "event_timestamp"),
        Index("idx_notification_logs_success_event", "is_success", "event_type"),
    )

    def __repr__(self):
        return (
            f"<NotificationLog(id={self.id}, notification_id={self.notification_id}, "
            f"event={self.event_type}, success={self.is_success})>"
        )
