"""Time-based triggers used by the job scheduler."""

from __future__ import annotations

from datetime import datetime, timedelta, tzinfo
from typing import Optional, Tuple, Union

__all__ = ["Trigger", "IntervalTrigger", "DailyTrigger", "parse_time_of_day"]


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Parse ``"HH:MM"`` (24h) into ``(hour, minute)``.

    Raises:
        ValueError: If the value is not a valid time of day
    """
    parts = value.strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"expected HH:MM, got {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"not a valid 24h time: {value!r}")
    return hour, minute


class Trigger:
    """Computes when a job should next fire."""

    def next_fire(self, after: datetime) -> datetime:
        raise NotImplementedError


class IntervalTrigger(Trigger):
    """Fire every fixed interval, measured from the previous firing."""

    def __init__(
        self,
        *,
        hours: Union[int, float] = 0,
        minutes: Union[int, float] = 0,
        seconds: Union[int, float] = 0,
    ) -> None:
        self.interval = timedelta(hours=hours, minutes=minutes, seconds=seconds)
        if self.interval <= timedelta(0):
            raise ValueError("interval must be positive")

    def next_fire(self, after: datetime) -> datetime:
        return after + self.interval

    def __repr__(self) -> str:
        return f"IntervalTrigger(every={self.interval})"


class DailyTrigger(Trigger):
    """Fire once a day at ``HH:MM``.

    The wall-clock time is interpreted in the timezone of the datetimes the
    scheduler passes in (local time unless ``tz`` is given).
    """

    def __init__(self, time_of_day: str, tz: Optional[tzinfo] = None) -> None:
        self.time_of_day = time_of_day
        self.hour, self.minute = parse_time_of_day(time_of_day)
        self.tz = tz

    def next_fire(self, after: datetime) -> datetime:
        local = after.astimezone(self.tz) if after.tzinfo is not None else after
        candidate = local.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
        if candidate <= local:
            candidate += timedelta(days=1)
        return candidate

    def __repr__(self) -> str:
        return f"DailyTrigger({self.time_of_day!r})"
