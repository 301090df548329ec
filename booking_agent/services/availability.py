"""Availability engine: bookable start times for one date.

A start ``s`` (minutes since midnight) is offered when:

* the weekday is open and has a parseable open/close range;
* ``s`` lies on the step grid anchored at the opening time;
* ``s >= open`` and, depending on ``close_rule``:
    - ``"fit"``:       ``s + duration <= close``  (service ends by closing)
    - ``"inclusive"``: ``s <= close``             (last start at closing time)
* on the tenant's "today", ``s >= ceil_to_step(now) + margin``;
* with a professional given, ``[s, s + duration)`` overlaps none of their
  non-cancelled appointments that day;
* with a period given, the start hour falls inside it.

"Today" and "now" are evaluated in the tenant's timezone.  Without a
professional no overlap filtering is done: the caller has no preference
yet, and the booking itself is still checked atomically.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from booking_agent.config import (
    DEFAULT_TIMEZONE,
    SAME_DAY_MARGIN_MINUTES,
    SLOT_CLOSE_RULE,
    SLOT_STEP_MINUTES,
)
from booking_agent.services.booking_store import BookedInterval, BookingStore

logger = logging.getLogger(__name__)

CLOSE_RULES = ("fit", "inclusive")

# Hour-of-day ranges, [start, end)
PERIODS: dict[str, tuple[int, int]] = {
    "morning": (5, 12),
    "afternoon": (12, 18),
    "evening": (18, 24),
}

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


def parse_hhmm(value: str | None) -> int | None:
    """``"09:30"`` / ``"09:30:00"`` → 570; ``None`` for anything else."""
    if not value:
        return None
    match = _HHMM_RE.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 24 or minutes > 59 or (hours == 24 and minutes):
        return None
    return hours * 60 + minutes


def format_minutes(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


def overlaps(start: int, end: int, other: BookedInterval) -> bool:
    return not (end <= other.start_minute or start >= other.end_minute)


def ceil_to_step(minute: int, step: int) -> int:
    return -(-minute // step) * step


def tenant_zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", name, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


@dataclass(frozen=True)
class OpeningWindow:
    open_minute: int
    close_minute: int


class AvailabilityEngine:
    def __init__(
        self,
        store: BookingStore,
        *,
        clock: Callable[[], datetime] | None = None,
        step_minutes: int = SLOT_STEP_MINUTES,
        margin_minutes: int = SAME_DAY_MARGIN_MINUTES,
        close_rule: str = SLOT_CLOSE_RULE,
    ):
        if close_rule not in CLOSE_RULES:
            raise ValueError(f"close_rule must be one of {CLOSE_RULES}, got {close_rule!r}")
        self._store = store
        self._clock = clock or (lambda: datetime.now(UTC))
        self._step = step_minutes
        self._margin = margin_minutes
        self._close_rule = close_rule

    def local_now(self, tenant_id: str) -> datetime:
        """Current time in the tenant's business timezone."""
        tenant = self._store.get_tenant(tenant_id)
        return self._clock().astimezone(tenant_zone(tenant.timezone if tenant else None))

    def opening_window(self, tenant_id: str, day: date) -> OpeningWindow | None:
        business_day = self._store.get_business_hours(tenant_id).get(day.weekday())
        if business_day is None or not business_day.is_open:
            return None
        open_minute = parse_hhmm(business_day.open_time)
        close_minute = parse_hhmm(business_day.close_time)
        if open_minute is None or close_minute is None or close_minute <= open_minute:
            logger.warning(
                "Tenant %s has unusable hours for weekday %d: %r-%r",
                tenant_id, day.weekday(), business_day.open_time, business_day.close_time,
            )
            return None
        return OpeningWindow(open_minute, close_minute)

    def available_slots(
        self,
        tenant_id: str,
        day: date,
        duration_minutes: int,
        *,
        professional_id: str | None = None,
        period: str | None = None,
    ) -> list[str]:
        """Ascending ``HH:MM`` start times that can be booked on *day*."""
        window = self.opening_window(tenant_id, day)
        if window is None:
            return []

        now = self.local_now(tenant_id)
        if day < now.date():
            return []

        earliest = window.open_minute
        if day == now.date():
            now_minute = now.hour * 60 + now.minute + (1 if now.second or now.microsecond else 0)
            earliest = max(earliest, ceil_to_step(now_minute, self._step) + self._margin)

        if self._close_rule == "fit":
            last_start = window.close_minute - duration_minutes
        else:
            last_start = window.close_minute

        hours = PERIODS.get(period) if period and period != "all" else None
        booked = (
            self._store.list_booked_intervals(tenant_id, professional_id, day)
            if professional_id
            else []
        )

        slots = []
        for start in range(window.open_minute, last_start + 1, self._step):
            if start < earliest:
                continue
            if hours is not None and not hours[0] <= start // 60 < hours[1]:
                continue
            end = start + duration_minutes
            if any(overlaps(start, end, b) for b in booked):
                continue
            slots.append(format_minutes(start))

        logger.debug(
            "Availability tenant=%s date=%s professional=%s duration=%d period=%s → %d slots",
            tenant_id, day, professional_id, duration_minutes, period, len(slots),
        )
        return slots

    def is_available(
        self,
        tenant_id: str,
        day: date,
        start_minute: int,
        duration_minutes: int,
        *,
        professional_id: str | None = None,
    ) -> bool:
        slots = self.available_slots(
            tenant_id, day, duration_minutes, professional_id=professional_id,
        )
        return format_minutes(start_minute) in slots
