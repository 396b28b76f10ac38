"""
알림 디스패처
플랫폼으로 알림을 넘기는 유일한 비동기 경계. 실패 시 DispatchError 발생
"""

import logging
from typing import Optional

import httpx

from config.notification_config import DISPATCHER, WEBHOOK_URL, WEBHOOK_TIMEOUT_SECONDS
from models.notification import Notification
from models.notification_log import DeliveryChannel
from schemas.notification import DeliveryReceipt
from utils.exceptions import DispatchError

logger = logging.getLogger(__name__)

# 에러 코드
PERMANENT_FAILURE = "PERMANENT_FAILURE"
TEMPORARY_FAILURE = "TEMPORARY_FAILURE"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
DEVICE_UNREACHABLE = "DEVICE_UNREACHABLE"
INVALID_TOKEN = "INVALID_TOKEN"
TIMEOUT = "TIMEOUT"


class Dispatcher:
    """디스패처 인터페이스"""

    channel = DeliveryChannel.SYSTEM

    async def send(self, notification: Notification) -> DeliveryReceipt:
        """
        알림 전달

        Returns:
            플랫폼 응답과 플랫폼 알림 ID

        Raises:
            DispatchError: 전달 실패
        """
        raise NotImplementedError


class InAppDispatcher(Dispatcher):
    """앱 내부 알림함으로 전달 (항상 성공)"""

    channel = DeliveryChannel.IN_APP

    async def send(self, notification: Notification) -> DeliveryReceipt:
        logger.info(f"📱 인앱 알림 전달: {notification.id} [{notification.channel_id}] {notification.title}")
        return DeliveryReceipt()


class WebhookDispatcher(Dispatcher):
    """HTTP 웹훅으로 전달"""

    channel = DeliveryChannel.WEBHOOK

    def __init__(
        self,
        url: str,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None
    ):
        if not url:
            raise ValueError("WEBHOOK_URL이 설정되지 않았습니다")
        self.url = url
        self.timeout = timeout
        self.client = client

    def build_payload(self, notification: Notification) -> dict:
        return {
            "id": notification.id,
            "user_id": notification.user_id,
            "type": notification.type.value,
            "title": notification.title,
            "message": notification.message,
            "priority": notification.priority.value,
            "channel_id": notification.channel_id,
            "scheduled_time": notification.scheduled_time.isoformat(),
            "retry_count": notification.retry_count,
            "action_data": notification.action_data,
        }

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        return await client.post(self.url, json=payload)

    async def send(self, notification: Notification) -> DeliveryReceipt:
        payload = self.build_payload(notification)
        try:
            if self.client is not None:
                response = await self._post(self.client, payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await self._post(client, payload)
        except httpx.TimeoutException:
            logger.warning(f"⏰ 웹훅 타임아웃: 알림 {notification.id}")
            raise DispatchError(TIMEOUT, f"웹훅 응답 시간 초과 ({self.timeout}초)")
        except httpx.ConnectError as e:
            logger.error(f"🔌 웹훅 연결 오류: {self.url}")
            raise DispatchError(DEVICE_UNREACHABLE, str(e))
        except httpx.HTTPError as e:
            raise DispatchError(TEMPORARY_FAILURE, str(e))

        if response.is_success:
            return self.parse_receipt(response)

        raise DispatchError(
            self.error_code_for_status(response.status_code),
            f"HTTP {response.status_code}: {response.text[:200]}"
        )

    @staticmethod
    def parse_receipt(response: httpx.Response) -> DeliveryReceipt:
        """응답 본문이 JSON이고 정수 notification_id가 있으면 플랫폼 알림 ID로 사용"""
        platform_notification_id = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            value = body.get("notification_id")
            if isinstance(value, int) and not isinstance(value, bool):
                platform_notification_id = value
        return DeliveryReceipt(
            platform_response=response.text or None,
            platform_notification_id=platform_notification_id
        )

    @staticmethod
    def error_code_for_status(status_code: int) -> str:
        """HTTP 상태 코드 → 에러 코드"""
        if status_code == 429:
            return RATE_LIMIT_EXCEEDED
        if status_code in (401, 403):
            return INVALID_TOKEN
        if status_code >= 500:
            return TEMPORARY_FAILURE
        return PERMANENT_FAILURE


def create_dispatcher(kind: str = DISPATCHER) -> Dispatcher:
    """설정값으로 디스패처 생성"""
    if kind == 'in_app':
        return InAppDispatcher()
    if kind == 'webhook':
        return WebhookDispatcher(WEBHOOK_URL)
    raise ValueError(f"지원하지 않는 디스패처입니다: {kind}")
