import pytest
from datetime import timedelta
from crud.notification_log import get_logs_by_notification
from models.notification import NotificationStatus
from models.notification_log import NotificationLogEvent
from services.lifecycle_service import LifecycleTracker, ALLOWED_TRANSITIONS, can_transition
from utils.exceptions import InvalidTransition, NotificationNotFound
from tests.conftest import NOW

TERMINAL = [
    NotificationStatus.READ,
    NotificationStatus.CLICKED,
    NotificationStatus.DISMISSED,
    NotificationStatus.CANCELLED,
]

@pytest.fixture
def tracker(db_session):
    return LifecycleTracker(db_session)

class TestTransitionTable:
    """상태 전이 표 테스트"""

    def test_every_status_has_entry(self):
        assert set(ALLOWED_TRANSITIONS) == set(NotificationStatus)

    @pytest.mark.parametrize("terminal", TERMINAL)
    def test_terminal_states_have_no_exit(self, terminal):
        """종료 상태에서는 어떤 전이도 불가"""
        assert all(not can_transition(terminal, target) for target in NotificationStatus)

    def test_sent_cannot_fail(self):
        """SENT → FAILED 불가"""
        assert not can_transition(NotificationStatus.SENT, NotificationStatus.FAILED)

    def test_clicked_and_dismissed_are_exclusive(self):
        assert not can_transition(NotificationStatus.CLICKED, NotificationStatus.DISMISSED)
        assert not can_transition(NotificationStatus.DISMISSED, NotificationStatus.CLICKED)

class TestLifecycleTracker:
    """생명주기 전이 테스트"""

    def test_mark_sent_sets_time_and_logs(self, tracker, make_notification, db_session):
        """PENDING → SENT 전이와 SENT 로그 기록"""
        notification = make_notification()

        sent = tracker.mark_sent(notification.id, NOW, processing_duration_ms=12)

        assert sent.status == NotificationStatus.SENT
        assert sent.sent_time == NOW
        assert sent.updated_at == NOW
        logs = get_logs_by_notification(db_session, notification.id)
        assert [log.event_type for log in logs] == [NotificationLogEvent.SCHEDULED, NotificationLogEvent.SENT]
        assert logs[-1].delivery_duration_ms == 3600 * 1000
        assert logs[-1].processing_duration_ms == 12

    def test_mark_sent_twice_is_invalid(self, tracker, make_notification, db_session):
        """두 번째 mark_sent는 InvalidTransition이고 sent_time은 그대로"""
        notification = make_notification()
        tracker.mark_sent(notification.id, NOW)

        with pytest.raises(InvalidTransition) as exc_info:
            tracker.mark_sent(notification.id, NOW + timedelta(minutes=5))

        assert exc_info.value.current_status == NotificationStatus.SENT
        refreshed = tracker.get(notification.id)
        assert refreshed.sent_time == NOW
        sent_logs = [
            log for log in get_logs_by_notification(db_session, notification.id)
            if log.event_type == NotificationLogEvent.SENT
        ]
        assert len(sent_logs) == 1

    def test_mark_sent_with_wrong_token_is_invalid(self, tracker, make_notification):
        """다른 스윕의 점유 토큰으로는 확정 불가"""
        notification = make_notification()
        with pytest.raises(InvalidTransition):
            tracker.mark_sent(notification.id, NOW, dispatch_token="someone-else")
        assert tracker.get(notification.id).status == NotificationStatus.PENDING

    def test_mark_failed_records_error_code(self, tracker, make_notification, db_session):
        """PENDING → FAILED 전이와 에러 코드 로그"""
        notification = make_notification()

        failed = tracker.mark_failed(notification.id, NOW, "NET_DOWN", error_message="network down")

        assert failed.status == NotificationStatus.FAILED
        log = get_logs_by_notification(db_session, notification.id)[-1]
        assert log.event_type == NotificationLogEvent.FAILED
        assert log.is_success is False
        assert log.error_code == "NET_DOWN"
        assert log.error_message == "network down"

    def test_mark_failed_after_sent_is_invalid(self, tracker, make_notification):
        notification = make_notification()
        tracker.mark_sent(notification.id, NOW)
        with pytest.raises(InvalidTransition):
            tracker.mark_failed(notification.id, NOW, "NET_DOWN")

    def test_mark_read_sets_is_read(self, tracker, make_notification):
        """READ는 is_read=True"""
        notification = make_notification()
        tracker.mark_sent(notification.id, NOW)

        read = tracker.mark_read(notification.id, NOW + timedelta(minutes=1))

        assert read.status == NotificationStatus.READ
        assert read.is_read is True
        assert read.read_time == NOW + timedelta(minutes=1)
        assert read.is_valid()

    def test_mark_clicked_sets_is_read(self, tracker, make_notification):
        """CLICKED는 is_read=True"""
        notification = make_notification()
        tracker.mark_sent(notification.id, NOW)

        clicked = tracker.mark_clicked(notification.id, NOW + timedelta(seconds=30))

        assert clicked.status == NotificationStatus.CLICKED
        assert clicked.is_read is True
        assert clicked.clicked_time == NOW + timedelta(seconds=30)

    def test_mark_dismissed_is_not_read(self, tracker, make_notification):
        """DISMISSED는 읽음이 아님"""
        notification = make_notification()
        tracker.mark_sent(notification.id, NOW)

        dismissed = tracker.mark_dismissed(notification.id, NOW)

        assert dismissed.status == NotificationStatus.DISMISSED
        assert dismissed.is_read is False
        assert dismissed.dismissed_time == NOW

    def test_read_requires_sent(self, tracker, make_notification):
        """PENDING 알림은 읽음 처리 불가"""
        notification = make_notification()
        with pytest.raises(InvalidTransition):
            tracker.mark_read(notification.id, NOW)

    def test_dismiss_after_click_is_invalid(self, tracker, make_notification):
        notification = make_notification()
        tracker.mark_sent(notification.id, NOW)
        tracker.mark_clicked(notification.id, NOW)
        with pytest.raises(InvalidTransition):
            tracker.mark_dismissed(notification.id, NOW)

    def test_cancel_only_from_pending(self, tracker, make_notification):
        """취소는 PENDING에서만 가능"""
        pending = make_notification()
        sent = make_notification()
        tracker.mark_sent(sent.id, NOW)

        assert tracker.cancel(pending.id, NOW).status == NotificationStatus.CANCELLED
        with pytest.raises(InvalidTransition):
            tracker.cancel(sent.id, NOW)
        with pytest.raises(InvalidTransition):
            tracker.mark_sent(pending.id, NOW)

    def test_unknown_notification(self, tracker, db_session):
        with pytest.raises(NotificationNotFound):
            tracker.mark_read(12345, NOW)
