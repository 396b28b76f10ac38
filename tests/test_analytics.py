import asyncio
import pytest
from datetime import timedelta
from models.notification_log import DeliveryChannel
from services.analytics_service import HealthScorePolicy, NotificationAnalytics, rate
from tests.conftest import NOW, ScriptedDispatcher, build_service

class TestDeliveryStats:
    """전달 통계 테스트"""

    def test_empty_history_returns_neutral_defaults(self, service, sample_user):
        """이력이 없으면 0과 빈 목록"""
        stats = service.get_stats(sample_user.id)

        assert stats.total == 0
        assert stats.delivery_success_rate == 0.0
        assert stats.click_through_rate == 0.0
        assert stats.dismissal_rate == 0.0
        assert stats.average_delivery_latency_ms is None
        assert stats.average_response_time_ms is None
        assert service.analytics.get_error_frequencies(sample_user.id) == []

    def test_eight_of_ten_delivered(self, service, make_notification, sample_user):
        """10개 중 8개 전달 → 성공률 80.0"""
        notifications = [make_notification() for _ in range(10)]
        delivered = notifications[:8]
        for notification in delivered:
            service.lifecycle.mark_sent(notification.id, NOW)
        service.mark_read(delivered[0].id, NOW + timedelta(minutes=1))
        service.mark_read(delivered[1].id, NOW + timedelta(minutes=1))
        service.mark_clicked(delivered[2].id, NOW + timedelta(seconds=30))
        service.mark_clicked(delivered[3].id, NOW + timedelta(seconds=90))
        service.mark_dismissed(delivered[4].id, NOW + timedelta(minutes=2))

        stats = service.get_stats(sample_user.id)

        assert stats.total == 10
        assert stats.pending == 2
        assert stats.delivered == 8
        assert stats.delivery_success_rate == 80.0
        assert stats.click_through_rate == 25.0
        assert stats.dismissal_rate == 12.5
        assert stats.unread == 4
        assert stats.average_delivery_latency_ms == 3600 * 1000
        assert stats.average_response_time_ms == 60 * 1000

    def test_system_wide_stats(self, service, make_notification, db_session):
        from crud.user import create_user
        from schemas.user import UserCreate

        other = create_user(db_session, UserCreate(name="Other", email="other@example.com"))
        make_notification()
        make_notification(user_id=other.id)

        assert service.get_stats().total == 2
        assert service.get_stats(other.id).total == 1

    def test_retry_counts(self, db_session, make_notification, sample_user):
        exhausted = make_notification(max_retries=0)
        service = build_service(db_session, ScriptedDispatcher(failures={exhausted.id: "NET_DOWN"}))
        asyncio.run(service.run_due_sweep(NOW))

        stats = service.get_stats(sample_user.id)

        assert stats.failed == 1
        assert stats.exhausted == 1
        assert stats.retried == 0

class TestErrorFrequencies:
    """에러 빈도 테스트"""

    def test_ranked_with_percentages(self, db_session, make_notification, sample_user):
        notifications = [make_notification() for _ in range(4)]
        failures = {
            notifications[0].id: "NET_DOWN",
            notifications[1].id: "NET_DOWN",
            notifications[2].id: "NET_DOWN",
            notifications[3].id: "INVALID_TOKEN",
        }
        service = build_service(db_session, ScriptedDispatcher(failures=failures))
        asyncio.run(service.run_due_sweep(NOW))

        errors = service.analytics.get_error_frequencies(sample_user.id)

        assert [(e.error_code, e.count, e.percentage) for e in errors] == [
            ("NET_DOWN", 3, 75.0),
            ("INVALID_TOKEN", 1, 25.0),
        ]
        assert len(service.analytics.get_error_frequencies(sample_user.id, limit=1)) == 1

class TestInsights:
    """인사이트 및 성능 지표 테스트"""

    def test_empty_insights(self, service, sample_user):
        insights = service.analytics.get_insights(sample_user.id, NOW)

        assert insights.total_sent == 0
        assert insights.common_errors == []
        assert insights.weekly_trend == 0.0
        assert insights.health_score == 100.0

        metrics = service.analytics.get_performance_metrics(sample_user.id, NOW)
        assert metrics.daily_volume == 0
        assert metrics.error_rate == 0.0
        assert metrics.health_score == 100.0

    def test_insights_from_event_log(self, db_session, make_notification, sample_user):
        notifications = [make_notification() for _ in range(4)]
        service = build_service(db_session, ScriptedDispatcher(failures={notifications[3].id: "NET_DOWN"}))
        asyncio.run(service.run_due_sweep(NOW))
        service.mark_clicked(notifications[0].id, NOW + timedelta(seconds=10))
        service.mark_dismissed(notifications[1].id, NOW + timedelta(seconds=10))
        service.run_retry_sweep(NOW)

        later = NOW + timedelta(hours=1)
        insights = service.analytics.get_insights(sample_user.id, later)

        assert insights.total_sent == 3
        assert insights.total_failed == 1
        assert insights.total_clicked == 1
        assert insights.total_dismissed == 1
        assert insights.delivery_success_rate == 75.0
        assert insights.click_through_rate == pytest.approx(33.33)
        assert insights.average_delivery_latency_ms == 3600 * 1000
        assert insights.average_response_time_ms == 10 * 1000
        assert insights.max_retry_count == 1
        assert [e.error_code for e in insights.common_errors] == ["NET_DOWN"]
        assert 0.0 <= insights.health_score < 100.0

        metrics = service.analytics.get_performance_metrics(sample_user.id, later)
        assert metrics.daily_volume == 4
        assert metrics.weekly_volume == 4
        assert metrics.error_rate == 25.0
        assert metrics.retry_rate == 25.0
        assert metrics.top_errors == ["NET_DOWN"]

    def test_weekly_trend(self, db_session, make_notification, sample_user):
        """최근 7일 성공률 - 30일 성공률"""
        old = make_notification()
        service = build_service(db_session, ScriptedDispatcher(failures={old.id: "NET_DOWN"}))
        asyncio.run(service.run_due_sweep(NOW))
        make_notification(scheduled_time=NOW + timedelta(days=19))
        asyncio.run(service.run_due_sweep(NOW + timedelta(days=20)))

        insights = service.analytics.get_insights(sample_user.id, NOW + timedelta(days=20))

        # 30일: 1/2 성공, 7일: 1/1 성공
        assert insights.delivery_success_rate == 50.0
        assert insights.weekly_trend == 50.0

    def test_export(self, service, make_notification, sample_user):
        make_notification()
        exported = service.analytics.export_analytics(sample_user.id, NOW - timedelta(days=7), NOW)

        assert set(exported) == {
            'period', 'delivery_stats', 'insights', 'errors', 'performance',
            'channels', 'engagement', 'export_timestamp'
        }
        assert exported['delivery_stats']['total'] == 1
        assert exported['export_timestamp'] == NOW.isoformat()

class TestChannelAndEngagement:
    """채널별 성공률과 반응률 테스트"""

    def test_channel_success_rates(self, service, make_notification, sample_user):
        in_app, ok, slow, down = [make_notification() for _ in range(4)]
        service.lifecycle.mark_sent(in_app.id, NOW, delivery_channel=DeliveryChannel.IN_APP)
        service.lifecycle.mark_sent(ok.id, NOW, delivery_channel=DeliveryChannel.WEBHOOK)
        service.lifecycle.mark_failed(slow.id, NOW, "TIMEOUT", delivery_channel=DeliveryChannel.WEBHOOK)
        service.lifecycle.mark_failed(down.id, NOW, "DEVICE_UNREACHABLE", delivery_channel=DeliveryChannel.WEBHOOK)

        channels = service.analytics.get_channel_success_rates(sample_user.id)

        assert [
            (c.delivery_channel, c.total_attempts, c.successful_attempts, c.success_rate) for c in channels
        ] == [
            (DeliveryChannel.IN_APP, 1, 1, 100.0),
            (DeliveryChannel.WEBHOOK, 3, 1, 33.33),
        ]

    def test_engagement_and_hourly_pattern(self, service, make_notification, sample_user):
        """반응률 = (읽음 + 클릭) / 전송, 닫기는 시간대 패턴에만 포함"""
        notifications = [make_notification() for _ in range(4)]
        for notification in notifications:
            service.lifecycle.mark_sent(notification.id, NOW)
        service.mark_read(notifications[0].id, NOW + timedelta(minutes=1))
        service.mark_clicked(notifications[1].id, NOW + timedelta(hours=2))
        service.mark_dismissed(notifications[2].id, NOW + timedelta(hours=2, minutes=5))

        engagement = service.analytics.get_engagement(sample_user.id, NOW + timedelta(hours=3))

        assert engagement.delivered == 4
        assert engagement.interactions == 2
        assert engagement.engagement_rate == 50.0
        assert [(h.hour, h.interaction_count) for h in engagement.hourly_pattern] == [(12, 1), (14, 2)]

    def test_empty_engagement(self, service, sample_user):
        engagement = service.analytics.get_engagement(sample_user.id)

        assert engagement.engagement_rate == 0.0
        assert engagement.hourly_pattern == []
        assert service.analytics.get_channel_success_rates(sample_user.id) == []

class TestHealthScore:
    """헬스 스코어 정책 테스트"""

    RATES = [0, 10, 25, 50, 75, 90, 100]

    def test_no_history_is_perfect(self):
        assert HealthScorePolicy().score(0, 0, 0, has_data=False) == 100.0

    def test_bounded(self):
        policy = HealthScorePolicy()
        assert policy.score(100, 0, 0) == 100.0
        assert policy.score(0, 100, 1000) >= 0.0

    @pytest.mark.parametrize("weights", [(60, 25, 15), (40, 30, 30), (1, 0, 0), (0, 1, 0)])
    def test_monotonic_in_success_rate(self, weights):
        """성공률이 오르면 점수는 내려가지 않음"""
        policy = HealthScorePolicy(*weights)
        for retry_rate in self.RATES:
            scores = [policy.score(success, retry_rate, 2) for success in self.RATES]
            assert scores == sorted(scores)

    @pytest.mark.parametrize("weights", [(60, 25, 15), (40, 30, 30), (0, 1, 0)])
    def test_monotonic_in_retry_rate(self, weights):
        """재시도율이 내려가면 점수는 내려가지 않음"""
        policy = HealthScorePolicy(*weights)
        for success in self.RATES:
            scores = [policy.score(success, retry_rate, 2) for retry_rate in reversed(self.RATES)]
            assert scores == sorted(scores)

    def test_invalid_weights(self):
        with pytest.raises(ValueError):
            HealthScorePolicy(-1, 50, 50)
        with pytest.raises(ValueError):
            HealthScorePolicy(0, 0, 0)

    def test_rate_helper(self):
        assert rate(8, 10) == 80.0
        assert rate(1, 0) == 0.0
