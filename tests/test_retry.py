import pytest
from datetime import timedelta
from models.notification import NotificationStatus
from models.notification_log import NotificationLogEvent
from crud.notification_log import get_logs_by_notification
from services.retry_policy import (
    LinearBackoff,
    ExponentialBackoff,
    RetryPolicy,
    create_backoff
)
from utils.exceptions import InvalidTransition
from tests.conftest import NOW

class TestBackoff:
    """백오프 전략 테스트"""

    @pytest.mark.parametrize("backoff", [
        LinearBackoff(30),
        ExponentialBackoff(10, 2.0),
        ExponentialBackoff(10, 3.0, max_delay_seconds=100),
        ExponentialBackoff(5, 1.0),
    ])
    def test_delay_is_non_decreasing(self, backoff):
        """시도 횟수가 늘어도 대기 시간은 줄지 않음"""
        delays = [backoff.delay(attempt) for attempt in range(1, 12)]
        assert all(earlier <= later for earlier, later in zip(delays, delays[1:]))

    def test_exponential_values_and_cap(self):
        backoff = ExponentialBackoff(60, 2.0, max_delay_seconds=200)
        assert backoff.delay(1) == timedelta(seconds=60)
        assert backoff.delay(2) == timedelta(seconds=120)
        assert backoff.delay(3) == timedelta(seconds=200)

    def test_linear_values(self):
        assert LinearBackoff(60).delay(3) == timedelta(minutes=3)

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValueError):
            ExponentialBackoff(10, 0.5)
        with pytest.raises(ValueError):
            LinearBackoff(-1)
        with pytest.raises(ValueError):
            create_backoff({'strategy': 'random', 'base_delay_seconds': 1})

    def test_create_backoff_from_settings(self):
        backoff = create_backoff({'strategy': 'linear', 'base_delay_seconds': 15})
        assert isinstance(backoff, LinearBackoff)
        assert backoff.delay(2) == timedelta(seconds=30)

class TestRetryPolicy:
    """재시도 정책 테스트"""

    @pytest.fixture
    def failed_notification(self, make_notification, service):
        def make(**overrides):
            notification = make_notification(**overrides)
            service.lifecycle.mark_failed(notification.id, NOW, "NET_DOWN")
            return service.get_notification(notification.id)
        return make

    def test_schedule_retry_moves_back_to_pending(self, retry_policy, failed_notification, db_session):
        """FAILED → PENDING, retry_count 증가, 백오프 적용"""
        notification = failed_notification()

        retried = retry_policy.schedule_retry(notification, NOW)

        assert retried.status == NotificationStatus.PENDING
        assert retried.retry_count == 1
        assert retried.scheduled_time == NOW + timedelta(seconds=60)
        log = get_logs_by_notification(db_session, notification.id)[-1]
        assert log.event_type == NotificationLogEvent.RETRIED
        assert log.retry_count == 1

    def test_exhausted_notification_is_terminal(self, retry_policy, failed_notification):
        """retry_count == max_retries이면 재시도 불가"""
        notification = failed_notification(max_retries=1, retry_count=1)

        assert retry_policy.is_exhausted(notification)
        assert retry_policy.retryable_notifications(NOW) == []
        with pytest.raises(InvalidTransition):
            retry_policy.schedule_retry(notification, NOW)
        assert notification.status == NotificationStatus.FAILED

    def test_schedule_retry_is_idempotent(self, retry_policy, failed_notification, db_session):
        """같은 실패에 대한 두 번째 재예약은 충돌"""
        notification = failed_notification()
        retry_policy.schedule_retry(notification, NOW)

        with pytest.raises(InvalidTransition):
            retry_policy.schedule_retry(notification, NOW)
        assert notification.retry_count == 1

    def test_stale_snapshot_cannot_double_retry(self, db_session, failed_notification):
        """다른 스윕이 먼저 재예약했다면 오래된 조회 결과로는 재예약 불가"""
        notification = failed_notification()
        first = RetryPolicy(db_session, backoff=LinearBackoff(60))
        second = RetryPolicy(db_session, backoff=LinearBackoff(60))
        candidates = second.retryable_notifications(NOW)

        first.schedule_retry(notification, NOW)

        with pytest.raises(InvalidTransition):
            second.schedule_retry(candidates[0], NOW)

    def test_retryable_ordered_by_scheduled_time(self, retry_policy, failed_notification):
        later = failed_notification(scheduled_time=NOW - timedelta(minutes=5))
        earlier = failed_notification(scheduled_time=NOW - timedelta(hours=3))

        assert [n.id for n in retry_policy.retryable_notifications(NOW)] == [earlier.id, later.id]

    def test_successive_retry_delays_non_decreasing(self, service, make_notification, db_session):
        """연속 재시도 간격은 줄지 않음"""
        policy = RetryPolicy(db_session, backoff=ExponentialBackoff(60, 2.0))
        notification = make_notification(max_retries=3)
        now = NOW
        delays = []
        for _ in range(3):
            service.lifecycle.mark_failed(notification.id, now, "NET_DOWN")
            retried = policy.schedule_retry(service.get_notification(notification.id), now)
            delays.append(retried.scheduled_time - now)
            now = retried.scheduled_time

        assert delays == sorted(delays)
        assert service.get_notification(notification.id).retry_count == 3
