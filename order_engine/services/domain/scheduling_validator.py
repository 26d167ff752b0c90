"""
Scheduling Validator.

Decides whether a candidate booking time is acceptable for a set of
schedulable cart lines. Checks run per item in a fixed order and the first
failing check wins, so the customer always gets the most actionable reason:

1. lead time (minimum advance notice)
2. availability window (item weekdays and time-of-day, then the scope's
   opening hours minus the last-order lead)
3. capacity (overlapping bookings of the same item)

The checks are plain functions; SchedulingValidator only loads the data
they need (opening hours, overlapping bookings) and applies them.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta

from shared.config.constants import ScheduleRule, WEEKDAYS
from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.utils.timeutils import as_utc, get_zone, utcnow
from order_engine.models import Business, Item, OpeningHours, OrderItem
from order_engine.repositories import CatalogRepository, DraftStore
from order_engine.schemas import Scope

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScheduleLine:
    """Demand of one item at the candidate time: total staged quantity and the longest duration."""

    item: Item
    quantity: int
    duration_minutes: int


@dataclass(frozen=True)
class ScheduleRejection:
    """
    Why a candidate time was refused.

    window_start / window_end are the bounds that were checked (UTC), enough
    for a caller to search for the nearest valid alternative. A weekday or
    closed-day rejection points at the next day that qualifies; a lead-time
    rejection has no window_end.
    """

    rule: str
    reason: str
    item_id: int | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    shortfall_minutes: int | None = None
    earliest_allowed: datetime | None = None
    deficit: int | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("window_start", "window_end", "earliest_allowed"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class ScheduleDecision:
    scheduled_for: datetime
    rejection: ScheduleRejection | None = None

    @property
    def accepted(self) -> bool:
        return self.rejection is None


# =============================================================================
# Pure checks
# =============================================================================


def normalize_candidate(candidate: datetime) -> datetime:
    """Aware UTC, truncated to the minute. Naive values are taken as UTC."""
    return as_utc(candidate).replace(second=0, microsecond=0)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: back-to-back bookings do not collide."""
    return a_start < b_end and b_start < a_end


def check_lead_time(
    candidate: datetime,
    now: datetime,
    min_lead_hours: int,
    item: Item | None = None,
) -> ScheduleRejection | None:
    """Candidate must be at least ``min_lead_hours`` after now, and never in the past."""
    earliest = now + timedelta(hours=min_lead_hours)
    if candidate >= earliest and candidate >= now:
        return None

    shortfall = math.ceil((earliest - candidate).total_seconds() / 60)
    if min_lead_hours <= 0:
        reason = "The requested time is in the past"
    else:
        label = item.name if item is not None else "This booking"
        reason = (
            f"{label} must be booked at least {min_lead_hours} hours in advance; "
            f"the requested time is {shortfall} minutes too early"
        )
    return ScheduleRejection(
        rule=ScheduleRule.LEAD_TIME,
        reason=reason,
        item_id=item.id if item is not None else None,
        window_start=earliest,
        shortfall_minutes=shortfall,
        earliest_allowed=earliest,
    )


def _local_bounds(day: date, start: time, end: time, zone) -> tuple[datetime, datetime]:
    """Local [start, end] on ``day`` as aware datetimes; an end not after start rolls to the next day."""
    start_dt = datetime.combine(day, start, tzinfo=zone)
    end_dt = datetime.combine(day, end, tzinfo=zone)
    if end_dt <= start_dt:
        end_dt += timedelta(days=1)
    return start_dt, end_dt


def check_item_window(local_candidate: datetime, item: Item) -> ScheduleRejection | None:
    """Weekday in ``available_days`` and time-of-day within [available_from, available_to]."""
    weekday = WEEKDAYS[local_candidate.weekday()]
    days = [day.lower() for day in (item.available_days or [])]
    if days and weekday not in days:
        # Offer the window of the next weekday the item is sold on
        next_day = next(
            (
                local_candidate.date() + timedelta(days=offset)
                for offset in range(1, 8)
                if WEEKDAYS[(local_candidate.weekday() + offset) % 7] in days
            ),
            None,
        )
        window_start = window_end = None
        if next_day is not None:
            window_start, window_end = _local_bounds(
                next_day,
                item.available_from or time(0, 0),
                item.available_to or time(23, 59),
                local_candidate.tzinfo,
            )
        return ScheduleRejection(
            rule=ScheduleRule.AVAILABILITY_WINDOW,
            reason=f"{item.name} is only available on {', '.join(d.capitalize() for d in days)}",
            item_id=item.id,
            window_start=as_utc(window_start),
            window_end=as_utc(window_end),
        )

    if item.available_from is None and item.available_to is None:
        return None

    zone = local_candidate.tzinfo
    day = local_candidate.date()
    start_time = item.available_from or time(0, 0)
    end_time = item.available_to or time(23, 59)
    # Overnight windows also admit the early hours that started the day before
    for offset in (0, -1):
        start_dt, end_dt = _local_bounds(day + timedelta(days=offset), start_time, end_time, zone)
        if start_dt <= local_candidate <= end_dt:
            return None

    start_dt, end_dt = _local_bounds(day, start_time, end_time, zone)
    return ScheduleRejection(
        rule=ScheduleRule.AVAILABILITY_WINDOW,
        reason=(
            f"{item.name} can only be booked between "
            f"{start_time.strftime('%H:%M')} and {end_time.strftime('%H:%M')}"
        ),
        item_id=item.id,
        window_start=as_utc(start_dt),
        window_end=as_utc(end_dt),
    )


def _next_open_window(
    day: date,
    hours_by_day: dict[int, list[OpeningHours]],
    lead: timedelta,
    zone,
) -> tuple[datetime, datetime] | None:
    """First [open, last order] window on one of the seven days after ``day``."""
    for offset in range(1, 8):
        check_day = day + timedelta(days=offset)
        rows = [
            row for row in hours_by_day.get(check_day.weekday(), [])
            if not row.is_closed and row.open_time is not None and row.close_time is not None
        ]
        if rows:
            row = min(rows, key=lambda r: r.open_time)
            open_dt, close_dt = _local_bounds(check_day, row.open_time, row.close_time, zone)
            return open_dt, close_dt - lead
    return None


def check_opening_hours(
    local_candidate: datetime,
    hours_by_day: dict[int, list[OpeningHours]],
    last_order_lead_minutes: int,
    item: Item | None = None,
) -> ScheduleRejection | None:
    """
    The scope must be open on that weekday and the candidate must fall in
    [open, close - last_order_lead_minutes] of one of the day's rows.

    Rows closing after midnight also cover the early hours of the next day.
    """
    zone = local_candidate.tzinfo
    day = local_candidate.date()
    weekday = local_candidate.weekday()
    lead = timedelta(minutes=last_order_lead_minutes)
    item_id = item.id if item is not None else None

    windows: list[tuple[datetime, datetime]] = []
    for offset in (0, -1):
        check_day = day + timedelta(days=offset)
        for row in hours_by_day.get(check_day.weekday(), []):
            if row.is_closed or row.open_time is None or row.close_time is None:
                continue
            open_dt, close_dt = _local_bounds(check_day, row.open_time, row.close_time, zone)
            if offset == -1 and close_dt.date() == check_day:
                continue
            windows.append((open_dt, close_dt - lead))

    for open_dt, last_dt in windows:
        if open_dt <= local_candidate <= last_dt:
            return None

    today = [w for w in windows if w[0].date() == day]
    if not today:
        next_open = _next_open_window(day, hours_by_day, lead, zone)
        return ScheduleRejection(
            rule=ScheduleRule.OPENING_HOURS,
            reason=f"We are closed on {WEEKDAYS[weekday].capitalize()}",
            item_id=item_id,
            window_start=as_utc(next_open[0]) if next_open else None,
            window_end=as_utc(next_open[1]) if next_open else None,
        )

    # Report the first window that is still ahead, or the day's last one
    open_dt, last_dt = next(
        (w for w in sorted(today) if w[1] >= local_candidate),
        sorted(today)[-1],
    )
    if last_order_lead_minutes and last_dt < local_candidate <= last_dt + lead:
        reason = (
            f"The last order of the day is accepted until {last_dt.strftime('%H:%M')} "
            f"({last_order_lead_minutes} minutes before closing)"
        )
    else:
        reason = f"We are open from {open_dt.strftime('%H:%M')} to {(last_dt + lead).strftime('%H:%M')}"
    return ScheduleRejection(
        rule=ScheduleRule.OPENING_HOURS,
        reason=reason,
        item_id=item_id,
        window_start=as_utc(open_dt),
        window_end=as_utc(last_dt),
    )


def check_capacity(
    item: Item,
    start: datetime,
    end: datetime,
    requested: int,
    bookings: Iterable[tuple[datetime, datetime, int]],
) -> ScheduleRejection | None:
    """
    Compare overlapping bookings with the item's capacity.

    - finite capacity: reserved + requested must not exceed capacity
    - unlimited and exclusive: any overlapping booking rejects
    - unlimited and shared: always accepted

    ``bookings`` are (start, end, quantity) of committed bookings.
    """
    overlapping = [b for b in bookings if overlaps(b[0], b[1], start, end)]
    latest_end = max((b[1] for b in overlapping), default=None)

    if item.capacity is not None:
        reserved = sum(b[2] for b in overlapping)
        if reserved + requested <= item.capacity:
            return None
        remaining = max(item.capacity - reserved, 0)
        deficit = reserved + requested - item.capacity
        return ScheduleRejection(
            rule=ScheduleRule.CAPACITY,
            reason=(
                f"Only {remaining} of {item.capacity} {item.name} available at that time; "
                f"{deficit} short for the requested {requested}"
            ),
            item_id=item.id,
            window_start=start,
            window_end=end,
            deficit=deficit,
            earliest_allowed=latest_end,
        )

    if item.is_exclusive and overlapping:
        return ScheduleRejection(
            rule=ScheduleRule.CAPACITY,
            reason=f"{item.name} is already booked at that time",
            item_id=item.id,
            window_start=start,
            window_end=end,
            earliest_allowed=latest_end,
        )

    return None


def group_lines(
    lines: Sequence[OrderItem],
    items: dict[int, Item],
    default_duration_minutes: int,
) -> list[ScheduleLine]:
    """One ScheduleLine per schedulable item, in first-appearance order."""
    grouped: dict[int, ScheduleLine] = {}
    for line in lines:
        item = items.get(line.item_id)
        if item is None or not item.requires_scheduling:
            continue
        duration = line.duration_minutes or item.duration_minutes or default_duration_minutes
        current = grouped.get(item.id)
        if current is None:
            grouped[item.id] = ScheduleLine(item=item, quantity=line.quantity, duration_minutes=duration)
        else:
            grouped[item.id] = ScheduleLine(
                item=item,
                quantity=current.quantity + line.quantity,
                duration_minutes=max(current.duration_minutes, duration),
            )
    return list(grouped.values())


# =============================================================================
# Validator
# =============================================================================


class SchedulingValidator:
    """
    Applies the scheduling checks against the store's committed bookings.

    Validation only reads: running it twice without a booking commit in
    between gives the same outcome.
    """

    def __init__(
        self,
        store: DraftStore,
        catalog: CatalogRepository,
        clock: Callable[[], datetime] = utcnow,
        default_duration_minutes: int | None = None,
    ):
        self._store = store
        self._catalog = catalog
        self._clock = clock
        self._default_duration = default_duration_minutes or settings.default_duration_minutes

    @property
    def default_duration_minutes(self) -> int:
        return self._default_duration

    async def _hours_by_day(self, scope: Scope) -> dict[int, list[OpeningHours]]:
        grouped: dict[int, list[OpeningHours]] = {}
        for row in await self._catalog.get_opening_hours(scope):
            grouped.setdefault(row.day_of_week, []).append(row)
        return grouped

    async def _booked_intervals(
        self,
        line: ScheduleLine,
        start: datetime,
        end: datetime,
        exclude_order_id: int | None,
    ) -> list[tuple[datetime, datetime, int]]:
        rows = await self._store.find_bookings(
            line.item.id,
            start,
            end,
            min_lookback_minutes=max(line.duration_minutes, line.item.duration_minutes or 0),
            exclude_order_id=exclude_order_id,
        )
        intervals = []
        for booked_line, order in rows:
            booked_start = as_utc(order.scheduled_for)
            minutes = booked_line.duration_minutes or line.item.duration_minutes or self._default_duration
            intervals.append((booked_start, booked_start + timedelta(minutes=minutes), booked_line.quantity))
        return intervals

    async def validate(
        self,
        business: Business,
        scope: Scope,
        candidate: datetime,
        lines: Sequence[ScheduleLine],
        exclude_order_id: int | None = None,
    ) -> ScheduleDecision:
        """
        Validate ``candidate`` for every schedulable line.

        With no schedulable lines the time must still be in the future and
        inside opening hours (scheduled pickup or delivery).
        """
        scheduled_for = normalize_candidate(candidate)
        now = self._clock()
        zone = get_zone(business.timezone)
        local_candidate = scheduled_for.astimezone(zone)
        hours = await self._hours_by_day(scope)

        if not lines:
            rejection = (
                check_lead_time(scheduled_for, now, 0)
                or check_opening_hours(local_candidate, hours, business.last_order_lead_minutes)
            )
            return self._decide(scheduled_for, rejection, business)

        for line in lines:
            item = line.item
            rejection = check_lead_time(scheduled_for, now, item.min_lead_hours, item)
            if rejection is None:
                rejection = (
                    check_item_window(local_candidate, item)
                    or check_opening_hours(local_candidate, hours, business.last_order_lead_minutes, item)
                )
            if rejection is None:
                end = scheduled_for + timedelta(minutes=line.duration_minutes)
                booked = await self._booked_intervals(line, scheduled_for, end, exclude_order_id)
                rejection = check_capacity(item, scheduled_for, end, line.quantity, booked)
            if rejection is not None:
                return self._decide(scheduled_for, rejection, business)

        return self._decide(scheduled_for, None, business)

    async def check_item(
        self,
        business: Business,
        scope: Scope,
        item: Item,
        candidate: datetime,
        quantity: int = 1,
        duration_minutes: int | None = None,
        exclude_order_id: int | None = None,
    ) -> ScheduleDecision:
        """Availability enquiry for an item that is not (yet) in the cart."""
        line = ScheduleLine(
            item=item,
            quantity=quantity,
            duration_minutes=duration_minutes or item.duration_minutes or self._default_duration,
        )
        lines = [line] if item.requires_scheduling else []
        return await self.validate(business, scope, candidate, lines, exclude_order_id)

    def _decide(
        self,
        scheduled_for: datetime,
        rejection: ScheduleRejection | None,
        business: Business,
    ) -> ScheduleDecision:
        if rejection is not None:
            logger.info(
                "Schedule rejected",
                business_id=business.id,
                rule=rejection.rule,
                item_id=rejection.item_id,
                scheduled_for=scheduled_for.isoformat(),
            )
        return ScheduleDecision(scheduled_for=scheduled_for, rejection=rejection)
