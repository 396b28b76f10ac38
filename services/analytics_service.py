"""
알림 분석 서비스
전달 성공률, 클릭률, 응답 시간, 에러 빈도, 채널별 성공률, 반응 패턴, 헬스 스코어 집계 (읽기 전용)
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from config.notification_config import get_health_score_weights
from crud.notification import (
    get_status_counts,
    get_retry_counts,
    get_unread_delivered_count,
    get_delivery_timings
)
from crud.notification_log import (
    count_events,
    get_error_code_counts,
    get_max_retry_count,
    get_average_duration,
    get_channel_attempt_counts,
    get_interaction_counts_by_hour
)
from models.notification import NotificationStatus, DELIVERED_STATUSES
from models.notification_log import NotificationLogEvent
from schemas.analytics import (
    NotificationDeliveryStats,
    ErrorFrequency,
    NotificationInsights,
    NotificationSystemMetrics,
    ChannelDeliveryStats,
    HourlyInteraction,
    NotificationEngagement
)
from utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

INSIGHTS_WINDOW_DAYS = 30
WEEKLY_WINDOW_DAYS = 7
DAILY_WINDOW_DAYS = 1


def rate(part: int, whole: int) -> float:
    """백분율 (0-100), 분모가 0이면 0.0"""
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(sum(values) / len(values), 2)


def _millis(start: datetime, end: datetime) -> float:
    return max(0.0, (end - start).total_seconds() * 1000)


class HealthScorePolicy:
    """
    0-100 헬스 스코어

    score = 100 * (w_s * 성공률 + w_r * (1 - 재시도율) + w_d / (1 + 에러 코드 종류 수)) / (w_s + w_r + w_d)
    성공률이 오르거나 재시도율이 내려가면 점수는 내려가지 않음
    """

    def __init__(self, success_weight: float = 60, retry_weight: float = 25, diversity_weight: float = 15):
        weights = (success_weight, retry_weight, diversity_weight)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            raise ValueError("헬스 스코어 가중치는 0 이상이고 합이 0보다 커야 합니다")
        self.success_weight = success_weight
        self.retry_weight = retry_weight
        self.diversity_weight = diversity_weight

    @classmethod
    def from_config(cls) -> "HealthScorePolicy":
        return cls(*get_health_score_weights())

    def score(
        self,
        success_rate: float,
        retry_rate: float,
        distinct_error_codes: int,
        has_data: bool = True
    ) -> float:
        """
        Args:
            success_rate: 전달 성공률 (0-100)
            retry_rate: 재시도율 (0-100)
            distinct_error_codes: 서로 다른 에러 코드 수
            has_data: 집계 대상 이력 존재 여부

        Returns:
            0-100 점수 (이력이 없으면 100.0)
        """
        if not has_data:
            return 100.0
        success = min(max(success_rate / 100, 0.0), 1.0)
        retry = min(max(retry_rate / 100, 0.0), 1.0)
        diversity = 1 / (1 + max(distinct_error_codes, 0))
        total = self.success_weight + self.retry_weight + self.diversity_weight
        value = 100 * (
            self.success_weight * success
            + self.retry_weight * (1 - retry)
            + self.diversity_weight * diversity
        ) / total
        return round(min(max(value, 0.0), 100.0), 2)


class NotificationAnalytics:
    """알림 분석 집계"""

    def __init__(self, db: Session, clock: Optional[Clock] = None, health_policy: Optional[HealthScorePolicy] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.health_policy = health_policy or HealthScorePolicy.from_config()

    def get_stats(self, user_id: Optional[int] = None) -> NotificationDeliveryStats:
        """알림 테이블 기준 전달 통계 (user_id가 없으면 전체)"""
        counts = get_status_counts(self.db, user_id)
        total = sum(counts.values())
        delivered = sum(counts.get(status, 0) for status in DELIVERED_STATUSES)
        clicked = counts.get(NotificationStatus.CLICKED, 0)
        dismissed = counts.get(NotificationStatus.DISMISSED, 0)
        retried, exhausted = get_retry_counts(self.db, user_id)

        latencies = []
        response_times = []
        for scheduled_time, sent_time, clicked_time in get_delivery_timings(self.db, user_id):
            latencies.append(_millis(scheduled_time, sent_time))
            if clicked_time is not None:
                response_times.append(_millis(sent_time, clicked_time))

        return NotificationDeliveryStats(
            total=total,
            pending=counts.get(NotificationStatus.PENDING, 0),
            delivered=delivered,
            sent=counts.get(NotificationStatus.SENT, 0),
            read=counts.get(NotificationStatus.READ, 0),
            clicked=clicked,
            dismissed=dismissed,
            failed=counts.get(NotificationStatus.FAILED, 0),
            cancelled=counts.get(NotificationStatus.CANCELLED, 0),
            unread=get_unread_delivered_count(self.db, user_id),
            retried=retried,
            exhausted=exhausted,
            delivery_success_rate=rate(delivered, total),
            click_through_rate=rate(clicked, delivered),
            dismissal_rate=rate(dismissed, delivered),
            average_delivery_latency_ms=_mean(latencies),
            average_response_time_ms=_mean(response_times)
        )

    def get_error_frequencies(
        self,
        user_id: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = 10
    ) -> List[ErrorFrequency]:
        """실패 원인 순위 (비율은 전체 실패 대비)"""
        all_codes = get_error_code_counts(self.db, user_id, since, until)
        total_failures = sum(count for _, count in all_codes)
        ranked = all_codes if limit is None else all_codes[:limit]
        return [
            ErrorFrequency(error_code=code, count=count, percentage=rate(count, total_failures))
            for code, count in ranked
        ]

    def _window_summary(self, user_id: Optional[int], since: datetime, until: datetime) -> Dict:
        events = count_events(self.db, user_id, since, until)
        sent = events.get(NotificationLogEvent.SENT, 0)
        failed = events.get(NotificationLogEvent.FAILED, 0)
        retried = events.get(NotificationLogEvent.RETRIED, 0)
        attempts = sent + failed
        return {
            'sent': sent,
            'failed': failed,
            'retried': retried,
            'clicked': events.get(NotificationLogEvent.CLICKED, 0),
            'dismissed': events.get(NotificationLogEvent.DISMISSED, 0),
            'attempts': attempts,
            'success_rate': rate(sent, attempts),
            'retry_rate': rate(retried, attempts),
        }

    def _health(self, user_id: Optional[int], summary: Dict, since: datetime, until: datetime) -> float:
        distinct_codes = len(get_error_code_counts(self.db, user_id, since, until))
        return self.health_policy.score(
            summary['success_rate'],
            summary['retry_rate'],
            distinct_codes,
            has_data=summary['attempts'] > 0
        )

    def get_insights(self, user_id: Optional[int] = None, now: Optional[datetime] = None) -> NotificationInsights:
        """최근 30일 이벤트 로그 기준 인사이트"""
        now = now or self.clock.now()
        month_start = now - timedelta(days=INSIGHTS_WINDOW_DAYS)
        week_start = now - timedelta(days=WEEKLY_WINDOW_DAYS)

        monthly = self._window_summary(user_id, month_start, now)
        weekly = self._window_summary(user_id, week_start, now)
        weekly_trend = round(weekly['success_rate'] - monthly['success_rate'], 2) if weekly['attempts'] else 0.0

        return NotificationInsights(
            period_start=month_start,
            period_end=now,
            total_sent=monthly['sent'],
            total_failed=monthly['failed'],
            total_clicked=monthly['clicked'],
            total_dismissed=monthly['dismissed'],
            delivery_success_rate=monthly['success_rate'],
            click_through_rate=rate(monthly['clicked'], monthly['sent']),
            average_delivery_latency_ms=get_average_duration(
                self.db, NotificationLogEvent.SENT, user_id, month_start, now
            ),
            average_response_time_ms=get_average_duration(
                self.db, NotificationLogEvent.CLICKED, user_id, month_start, now
            ),
            max_retry_count=get_max_retry_count(self.db, user_id, month_start, now),
            common_errors=self.get_error_frequencies(user_id, month_start, now, limit=5),
            weekly_trend=weekly_trend,
            health_score=self._health(user_id, monthly, month_start, now)
        )

    def get_performance_metrics(
        self, user_id: Optional[int] = None, now: Optional[datetime] = None
    ) -> NotificationSystemMetrics:
        """최근 7일 전달 파이프라인 지표"""
        now = now or self.clock.now()
        day_start = now - timedelta(days=DAILY_WINDOW_DAYS)
        week_start = now - timedelta(days=WEEKLY_WINDOW_DAYS)

        daily = self._window_summary(user_id, day_start, now)
        weekly = self._window_summary(user_id, week_start, now)

        return NotificationSystemMetrics(
            daily_volume=daily['attempts'],
            weekly_volume=weekly['attempts'],
            average_latency_ms=get_average_duration(
                self.db, NotificationLogEvent.SENT, user_id, week_start, now
            ),
            error_rate=rate(weekly['failed'], weekly['attempts']),
            retry_rate=weekly['retry_rate'],
            max_retry_count=get_max_retry_count(self.db, user_id, week_start, now),
            top_errors=[code for code, _ in get_error_code_counts(self.db, user_id, week_start, now, limit=3)],
            health_score=self._health(user_id, weekly, week_start, now)
        )

    def get_channel_success_rates(
        self,
        user_id: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None
    ) -> List[ChannelDeliveryStats]:
        """채널별 전달 성공률 (성공률 높은 순)"""
        stats = [
            ChannelDeliveryStats(
                delivery_channel=channel,
                total_attempts=total,
                successful_attempts=successful,
                success_rate=rate(successful, total)
            )
            for channel, total, successful in get_channel_attempt_counts(self.db, user_id, since, until)
        ]
        return sorted(stats, key=lambda s: (-s.success_rate, s.delivery_channel.value))

    def get_engagement(self, user_id: Optional[int] = None, now: Optional[datetime] = None) -> NotificationEngagement:
        """
        최근 30일 사용자 반응률과 시간대별 반응 패턴

        반응률 = (읽음 + 클릭) / 전송 * 100
        """
        now = now or self.clock.now()
        since = now - timedelta(days=INSIGHTS_WINDOW_DAYS)
        events = count_events(self.db, user_id, since, now)
        delivered = events.get(NotificationLogEvent.SENT, 0)
        interactions = events.get(NotificationLogEvent.READ, 0) + events.get(NotificationLogEvent.CLICKED, 0)

        return NotificationEngagement(
            period_start=since,
            period_end=now,
            delivered=delivered,
            interactions=interactions,
            engagement_rate=rate(interactions, delivered),
            hourly_pattern=[
                HourlyInteraction(hour=hour, interaction_count=count)
                for hour, count in get_interaction_counts_by_hour(self.db, user_id, since, now)
            ]
        )

    def export_analytics(
        self,
        user_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> Dict:
        """분석 결과 내보내기"""
        end = end or self.clock.now()
        start = start or end - timedelta(days=INSIGHTS_WINDOW_DAYS)
        logger.info(f"📊 분석 데이터 내보내기: 사용자 {user_id}, {start.isoformat()} ~ {end.isoformat()}")
        return {
            'period': {'start': start.isoformat(), 'end': end.isoformat()},
            'delivery_stats': self.get_stats(user_id).model_dump(mode='json'),
            'insights': self.get_insights(user_id, end).model_dump(mode='json'),
            'errors': [
                error.model_dump() for error in self.get_error_frequencies(user_id, start, end, limit=None)
            ],
            'performance': self.get_performance_metrics(user_id, end).model_dump(mode='json'),
            'channels': [
                channel.model_dump(mode='json') for channel in self.get_channel_success_rates(user_id, start, end)
            ],
            'engagement': self.get_engagement(user_id, end).model_dump(mode='json'),
            'export_timestamp': self.clock.now().isoformat(),
        }
