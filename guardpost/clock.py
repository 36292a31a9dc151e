from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, timezone, tzinfo
from functools import lru_cache
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from guardpost.settings import get_settings


def normalize_ts(ts_utc: datetime) -> datetime:
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


class Clock(Protocol):
    @property
    def tz(self) -> tzinfo: ...

    def now_utc(self) -> datetime: ...

    def local_now(self) -> datetime: ...

    def today(self) -> date: ...


class _ZonedClock(ABC):
    def __init__(self, tz: tzinfo) -> None:
        self._tz = tz

    @property
    def tz(self) -> tzinfo:
        return self._tz

    @abstractmethod
    def now_utc(self) -> datetime: ...

    def local_now(self) -> datetime:
        return self.now_utc().astimezone(self._tz)

    def today(self) -> date:
        return self.local_now().date()


class SystemClock(_ZonedClock):
    def now_utc(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(_ZonedClock):
    def __init__(self, instant: datetime, tz: tzinfo = timezone.utc) -> None:
        super().__init__(tz)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=tz)
        self._instant = normalize_ts(instant)

    def now_utc(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self.tz)
        self._instant = normalize_ts(instant)


@lru_cache
def attendance_timezone() -> tzinfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


@lru_cache
def _system_clock() -> SystemClock:
    return SystemClock(attendance_timezone())


def get_clock() -> Clock:
    return _system_clock()
