"""
시간 유틸리티

모든 비즈니스 시각은 UTC(timezone-aware) 기준으로 다룹니다.
SQLite 등 timezone 정보를 보존하지 않는 저장소에서 읽은 naive datetime은
UTC로 간주합니다.
"""

import math
from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """naive datetime은 UTC로 간주하여 timezone을 부여합니다."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_timestamp(dt: datetime) -> int:
    return int(ensure_utc(dt).timestamp())


def from_timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def seconds_until(target: datetime, now: datetime) -> int:
    """target까지 남은 초 (올림, 음수는 0)"""
    remaining = (ensure_utc(target) - ensure_utc(now)).total_seconds()
    return max(0, math.ceil(remaining))
