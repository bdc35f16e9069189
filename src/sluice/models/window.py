"""Window configuration and execution windows."""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
DEFAULT_WINDOW_SIZE = timedelta(hours=1)

_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}

# "30m", "1.5h", "500ms" and the trigger form "m30"
_SUFFIX = re.compile(r"^(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)$")
_PREFIX = re.compile(r"^(ms|s|m|h|d)(\d+)$")


def parse_duration(value: str | int | float | timedelta) -> timedelta:
    """Parse a duration like '30m', '1h', '90s', '500ms', 'm30' or bare seconds."""
    if isinstance(value, timedelta):
        result = value
    elif isinstance(value, (int, float)):
        result = timedelta(seconds=value)
    else:
        text = value.strip().lower()
        match = _SUFFIX.match(text)
        if match:
            result = _UNITS[match.group(2)] * float(match.group(1))
        elif _PREFIX.match(text):
            unit, amount = _PREFIX.match(text).groups()
            result = _UNITS[unit] * int(amount)
        else:
            try:
                result = timedelta(seconds=float(text))
            except ValueError:
                raise ValueError(f"Invalid duration: {value!r}") from None

    if result <= timedelta(0):
        raise ValueError(f"Duration must be positive: {value!r}")
    return result


def format_duration(value: timedelta) -> str:
    """Shortest exact string for a duration: 1h, 30m, 45s, 250ms."""
    micros = value // timedelta(microseconds=1)
    for unit in ("d", "h", "m", "s", "ms"):
        step = _UNITS[unit] // timedelta(microseconds=1)
        if micros % step == 0:
            return f"{micros // step}{unit}"
    return f"{value.total_seconds()}s"


def floor_time(moment: datetime, size: timedelta) -> datetime:
    """Truncate a moment to the start of its size-aligned bucket (epoch aligned, UTC)."""
    moment = ensure_utc(moment)
    buckets = (moment - EPOCH) // size
    return EPOCH + buckets * size


def ensure_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


@dataclass(frozen=True)
class WindowConfig:
    """How a workflow ticks. Only tumbling windows are supported."""
    type: str = "tumbling"
    size: timedelta = field(default=DEFAULT_WINDOW_SIZE)

    def __post_init__(self):
        if self.type != "tumbling":
            raise ValueError(f"Unsupported window type: {self.type!r}")
        object.__setattr__(self, "size", parse_duration(self.size))

    def window_at(self, moment: datetime) -> "ExecutionWindow":
        """The window containing `moment`."""
        start = floor_time(moment, self.size)
        return ExecutionWindow(start=start, end=start + self.size)

    def following(self, window: "ExecutionWindow") -> "ExecutionWindow":
        """The next window: starts exactly where `window` ends."""
        return ExecutionWindow(start=window.end, end=window.end + self.size)


@dataclass(frozen=True, order=True)
class ExecutionWindow:
    """Half-open interval [start, end)."""
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.end <= self.start:
            raise ValueError(f"Window end {self.end} must be after start {self.start}")

    @property
    def size(self) -> timedelta:
        return self.end - self.start

    def contains(self, moment: datetime) -> bool:
        return self.start <= ensure_utc(moment) < self.end

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}
