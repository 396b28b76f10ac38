"""
시간 소스
모든 시각은 naive UTC datetime으로 저장/비교
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """aware datetime을 naive UTC로 변환"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Clock:
    """현재 시각 제공자"""

    def now(self) -> datetime:
        raise NotImplementedError


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """테스트용 고정 시계"""

    def __init__(self, current: datetime):
        self.current = to_utc_naive(current)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current
