"""Keyed store of railway timetable messages with cancellation support."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Union

from transit_unify.logging import bind_merge_context, clear_merge_context, get_logger
from transit_unify.models.gtfs import GtfsFeed
from transit_unify.models.timetable import CancellationMessage, TimetableMessage
from transit_unify.services.calendar.bitmap import apply_cancellation
from transit_unify.services.merge.engine import MergedFeed

logger = get_logger(__name__)

ScheduleMessage = Union[TimetableMessage, CancellationMessage]


class TimetableMerger:
    """Collects timetable messages and applies cancellations to them.

    Messages live here from :meth:`add` until they are cancelled down to no
    service day at all, or until the surviving ones are inserted into a
    :class:`MergedFeed`.
    """

    def __init__(self) -> None:
        self.messages: dict[str, TimetableMessage] = {}
        self.removed_count = 0

    def __len__(self) -> int:
        return len(self.messages)

    def add(self, message: TimetableMessage) -> None:
        if message.key in self.messages:
            logger.error("Tried to add duplicate timetable message", key=message.key)
            return
        self.messages[message.key] = message

    def cancel(self, cancellation: CancellationMessage) -> None:
        message = self.messages.get(cancellation.key)
        if message is None:
            logger.error("Tried to cancel non-existing timetable message", key=cancellation.key)
            return

        remaining = apply_cancellation(message.calendar, cancellation.calendar)
        if remaining is None:
            # No service day left, the transport is gone entirely
            del self.messages[cancellation.key]
            self.removed_count += 1
            logger.info("Timetable message fully cancelled", key=cancellation.key)
        else:
            message.calendar = remaining

    def process(self, message: ScheduleMessage) -> None:
        if isinstance(message, TimetableMessage):
            self.add(message)
        else:
            self.cancel(message)

    def process_all(self, messages: Iterable[tuple[str, ScheduleMessage]]) -> int:
        """Process named messages, timetables before cancellations.

        A failing message is logged with its name and skipped.

        Returns:
            Number of messages that failed.
        """
        failed = 0
        # Stable sort keeps file order within each group
        ordered = sorted(messages, key=lambda item: isinstance(item[1], CancellationMessage))
        for name, message in ordered:
            bind_merge_context(schedule_file=name)
            logger.info("Merging schedule message", schedule_file=name)
            try:
                self.process(message)
            except Exception as exc:
                failed += 1
                logger.error("Error while merging schedule message", exc_info=exc)
            finally:
                clear_merge_context()
        return failed

    def feeds(self) -> Iterator[GtfsFeed]:
        for message in self.messages.values():
            yield message.to_feed()

    def insert_into(self, merged: MergedFeed) -> None:
        """Insert every surviving message into ``merged``, in arrival order."""
        for key, message in self.messages.items():
            bind_merge_context(timetable_key=key)
            try:
                merged.insert_feed(message.to_feed())
            finally:
                clear_merge_context()
