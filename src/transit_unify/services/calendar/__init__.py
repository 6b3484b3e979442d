"""Service calendar bitmaps."""

from transit_unify.services.calendar.bitmap import (
    BitmapIntervalError,
    DateBitmap,
    apply_cancellation,
    bitmap_from_calendar,
    bitmap_to_exceptions,
)

__all__ = [
    "BitmapIntervalError",
    "DateBitmap",
    "apply_cancellation",
    "bitmap_from_calendar",
    "bitmap_to_exceptions",
]
