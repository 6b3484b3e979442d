"""Per-day service bitmaps over explicit date intervals."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from transit_unify.models.gtfs import CalendarEntry, CalendarException, ExceptionType


class BitmapIntervalError(ValueError):
    """Raised when bitmap intervals or lengths cannot be reconciled."""


def interval_length(start: date, end: date) -> int:
    """Number of days in the inclusive interval ``start..end``."""
    return (end - start).days + 1


def date_range(start: date, end: date) -> Iterator[date]:
    """Yield all days between ``start`` and ``end`` inclusive."""
    for offset in range(interval_length(start, end)):
        yield start + timedelta(days=offset)


@dataclass(frozen=True)
class DateBitmap:
    """Immutable day bitmap; ``bits[i]`` describes ``start + i`` days."""

    start: date
    end: date
    bits: tuple[bool, ...]

    def __post_init__(self) -> None:
        if self.end < self.start:
            msg = f"Bitmap interval ends before it starts: {self.start}..{self.end}"
            raise BitmapIntervalError(msg)
        expected = interval_length(self.start, self.end)
        if len(self.bits) != expected:
            msg = (
                f"Bitmap has {len(self.bits)} days, interval "
                f"{self.start}..{self.end} has {expected}"
            )
            raise BitmapIntervalError(msg)

    @classmethod
    def filled(cls, start: date, end: date, value: bool) -> DateBitmap:
        return cls(start, end, (value,) * interval_length(start, end))

    @classmethod
    def from_string(cls, start: date, end: date, bits: str) -> DateBitmap:
        """Parse a bitmap like ``"1101"`` (one character per day)."""
        invalid = set(bits) - {"0", "1"}
        if invalid:
            msg = f"Invalid bitmap characters: {sorted(invalid)}"
            raise BitmapIntervalError(msg)
        return cls(start, end, tuple(c == "1" for c in bits))

    @classmethod
    def from_dates(cls, start: date, end: date, active: Iterable[date]) -> DateBitmap:
        active_set = set(active)
        return cls(start, end, tuple(d in active_set for d in date_range(start, end)))

    @property
    def interval(self) -> tuple[date, date]:
        return (self.start, self.end)

    @property
    def day_count(self) -> int:
        return len(self.bits)

    def to_string(self) -> str:
        return "".join("1" if b else "0" for b in self.bits)

    def contains_interval(self, start: date, end: date) -> bool:
        return self.start <= start and end <= self.end

    def is_set(self, day: date) -> bool:
        """Whether ``day`` is set; days outside the interval are never set."""
        if not self.start <= day <= self.end:
            return False
        return self.bits[(day - self.start).days]

    def active_dates(self) -> list[date]:
        return [d for d, bit in zip(date_range(self.start, self.end), self.bits) if bit]

    def has_any_set(self) -> bool:
        return any(self.bits)

    def extend_to(self, start: date, end: date, pad: bool) -> DateBitmap:
        """Widen the bitmap to ``start..end``, filling new days with ``pad``.

        Raises:
            BitmapIntervalError: If the new interval does not contain the
                current one.
        """
        if not (start <= self.start and self.end <= end):
            msg = (
                f"Cannot extend {self.start}..{self.end} to {start}..{end}: "
                "new interval must contain the old one"
            )
            raise BitmapIntervalError(msg)
        before = (pad,) * (self.start - start).days
        after = (pad,) * (end - self.end).days
        return DateBitmap(start, end, before + self.bits + after)

    def restrict_to(self, start: date, end: date) -> DateBitmap:
        """Narrow the bitmap to ``start..end``, which it must contain."""
        if not self.contains_interval(start, end):
            msg = f"Cannot restrict {self.start}..{self.end} to {start}..{end}"
            raise BitmapIntervalError(msg)
        offset = (start - self.start).days
        return DateBitmap(start, end, self.bits[offset : offset + interval_length(start, end)])

    def project_onto(self, start: date, end: date, pad: bool) -> DateBitmap:
        """Re-express the bitmap over ``start..end``.

        Days missing from this bitmap are filled with ``pad``, days outside
        the target interval are dropped.
        """
        union_start = min(self.start, start)
        union_end = max(self.end, end)
        return self.extend_to(union_start, union_end, pad).restrict_to(start, end)

    def and_(self, other: DateBitmap) -> DateBitmap:
        """Bitwise AND. Both bitmaps must cover the same interval."""
        if self.interval != other.interval:
            msg = (
                f"Cannot combine bitmaps over {self.start}..{self.end} and "
                f"{other.start}..{other.end}; extend one of them first"
            )
            raise BitmapIntervalError(msg)
        combined = tuple(a and b for a, b in zip(self.bits, other.bits))
        return DateBitmap(self.start, self.end, combined)

    def not_(self) -> DateBitmap:
        return DateBitmap(self.start, self.end, tuple(not b for b in self.bits))

    __and__ = and_
    __invert__ = not_


def apply_cancellation(message: DateBitmap, cancellation: DateBitmap) -> Optional[DateBitmap]:
    """Remove the days set in ``cancellation`` from ``message``.

    An unset cancellation day means "no change". The cancellation is
    projected onto the message's interval, so days it mentions outside that
    interval have no effect.

    Returns:
        The remaining service days, or None if no day remains.
    """
    cancelled = cancellation.project_onto(message.start, message.end, pad=False)
    remaining = message.and_(cancelled.not_())
    if not remaining.has_any_set():
        return None
    return remaining


def bitmap_from_calendar(
    entry: Optional[CalendarEntry],
    exceptions: Sequence[CalendarException],
    start: date,
    end: date,
) -> DateBitmap:
    """Evaluate a GTFS service (weekly pattern plus exceptions) over ``start..end``."""
    bits: list[bool] = []
    overrides = {exc.date: exc.exception_type for exc in exceptions}
    for day in date_range(start, end):
        active = (
            entry is not None
            and entry.start_date <= day <= entry.end_date
            and entry.runs_on_weekday(day)
        )
        override = overrides.get(day)
        if override == ExceptionType.SERVICE_ADDED:
            active = True
        elif override == ExceptionType.SERVICE_REMOVED:
            active = False
        bits.append(active)
    return DateBitmap(start, end, tuple(bits))


def bitmap_to_exceptions(service_id: str, bitmap: DateBitmap) -> list[CalendarException]:
    """Express a bitmap as one added/removed exception per day."""
    return [
        CalendarException(
            id=service_id,
            date=day,
            exception_type=ExceptionType.SERVICE_ADDED if bit else ExceptionType.SERVICE_REMOVED,
        )
        for day, bit in zip(date_range(bitmap.start, bitmap.end), bitmap.bits)
    ]
