import pytest
from datetime import datetime, timedelta
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from database import Base, get_db
from crud.user import create_user
from schemas.user import UserCreate
from schemas.notification import DeliveryReceipt
from services.dispatchers import Dispatcher
from services.notification_service import NotificationService
from services.retry_policy import RetryPolicy, LinearBackoff
from utils.clock import FixedClock
from utils.exceptions import DispatchError

# 테스트용 데이터베이스 설정
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2024, 6, 1, 12, 0, 0)


class SucceedingDispatcher(Dispatcher):
    """항상 성공하는 디스패처"""

    def __init__(self):
        self.sent = []

    async def send(self, notification):
        self.sent.append(notification.id)
        return DeliveryReceipt(platform_response="ok")


class FailingDispatcher(Dispatcher):
    """항상 지정한 에러 코드로 실패하는 디스패처"""

    def __init__(self, error_code="NET_DOWN"):
        self.error_code = error_code
        self.attempts = []

    async def send(self, notification):
        self.attempts.append(notification.id)
        raise DispatchError(self.error_code, "전송 실패")


class ScriptedDispatcher(Dispatcher):
    """알림 ID별로 결과를 지정하는 디스패처 (지정이 없으면 성공)"""

    def __init__(self, failures=None, on_send=None, platform_ids=None):
        self.failures = failures or {}
        self.on_send = on_send
        self.platform_ids = platform_ids or {}
        self.sent = []

    async def send(self, notification):
        if self.on_send is not None:
            self.on_send(notification)
        error_code = self.failures.get(notification.id)
        if error_code:
            raise DispatchError(error_code)
        self.sent.append(notification.id)
        return DeliveryReceipt(platform_notification_id=self.platform_ids.get(notification.id))


def build_service(db_session, dispatcher, now=NOW):
    """지정한 디스패처와 고정 시계로 서비스 생성"""
    return NotificationService(
        db_session,
        clock=FixedClock(now),
        dispatcher=dispatcher,
        retry_policy=RetryPolicy(db_session, backoff=LinearBackoff(60))
    )


@pytest.fixture(scope="function")
def db_session():
    """테스트용 데이터베이스 세션"""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture
def clock():
    """고정 시계"""
    return FixedClock(NOW)

@pytest.fixture
def dispatcher():
    return SucceedingDispatcher()

@pytest.fixture
def retry_policy(db_session):
    """1분 단위 선형 백오프"""
    return RetryPolicy(db_session, backoff=LinearBackoff(60))

@pytest.fixture
def service(db_session, clock, dispatcher, retry_policy):
    """테스트용 알림 서비스"""
    return NotificationService(db_session, clock=clock, dispatcher=dispatcher, retry_policy=retry_policy)

@pytest.fixture(scope="function")
def client(db_session, clock, dispatcher):
    """테스트용 FastAPI 클라이언트"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.clock = clock
    app.state.dispatcher = dispatcher
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    del app.state.clock
    del app.state.dispatcher

@pytest.fixture
def sample_user(db_session):
    """샘플 사용자"""
    return create_user(db_session, UserCreate(name="Test User", email="test@example.com"))

@pytest.fixture
def notification_data(sample_user):
    """알림 생성 데이터 팩토리"""
    def build(**overrides):
        data = {
            "user_id": sample_user.id,
            "type": "GOAL_DEADLINE_APPROACHING",
            "title": "목표 마감 임박",
            "message": "목표 마감까지 하루 남았습니다",
            "scheduled_time": NOW - timedelta(hours=1),
        }
        data.update(overrides)
        return data
    return build

@pytest.fixture
def make_notification(service, notification_data):
    """알림을 예약하고 반환하는 팩토리"""
    def make(**overrides):
        return service.schedule_notification(notification_data(**overrides))
    return make
