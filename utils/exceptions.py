"""
알림 엔진 예외 클래스
서비스 계층에서 발생하는 도메인 예외 정의 (HTTP 변환은 라우터에서 처리)
"""

from typing import List, Optional


class NotificationError(Exception):
    """알림 엔진 기본 예외"""

    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.error_code = error_code


class NotificationValidationError(NotificationError):
    """잘못된 알림 데이터 (저장 전에 거부)"""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors), error_code="VALIDATION_ERROR")
        self.errors = errors


class NotificationNotFound(NotificationError):
    """존재하지 않는 알림"""

    def __init__(self, notification_id: int):
        super().__init__(f"알림을 찾을 수 없습니다: {notification_id}", error_code="NOT_FOUND")
        self.notification_id = notification_id


class InvalidTransition(NotificationError):
    """현재 상태에서 허용되지 않는 상태 전이"""

    def __init__(self, notification_id: int, current_status, target_status):
        current = getattr(current_status, 'value', current_status)
        target = getattr(target_status, 'value', target_status)
        super().__init__(
            f"알림 {notification_id}: {current} → {target} 전이는 허용되지 않습니다",
            error_code="INVALID_TRANSITION"
        )
        self.notification_id = notification_id
        self.current_status = current_status
        self.target_status = target_status


class DispatchError(NotificationError):
    """플랫폼 전달 실패"""

    def __init__(self, error_code: str, message: str = ""):
        super().__init__(message or error_code, error_code=error_code)
        self.message = message


class StoreError(NotificationError):
    """저장소 오류 (스윕 호출자에게 전파)"""

    def __init__(self, detail: str):
        super().__init__(detail, error_code="STORE_ERROR")
