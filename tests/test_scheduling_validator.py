"""
Tests for the scheduling validator: pure checks and booking-backed validation.
"""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from shared.config.constants import OrderStatus, ScheduleRule
from order_engine.models import Item, OpeningHours
from order_engine.schemas import Scope
from order_engine.services.domain import ScheduleLine
from order_engine.services.domain.scheduling_validator import (
    check_capacity,
    check_item_window,
    check_lead_time,
    check_opening_hours,
    normalize_candidate,
    overlaps,
)
from tests.conftest import FIXED_NOW, next_id

UTC = timezone.utc


def at(hour: int, minute: int = 0, day: int = 2) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


def transient_item(**overrides) -> Item:
    values = {
        "id": 1,
        "name": "Room",
        "price_cents": 100,
        "requires_scheduling": True,
        "min_lead_hours": 0,
        "duration_minutes": 60,
        "capacity": None,
        "is_exclusive": True,
        "available_days": None,
        "available_from": None,
        "available_to": None,
    }
    values.update(overrides)
    return Item(**values)


def hours(day: int, open_at: time, close_at: time) -> OpeningHours:
    return OpeningHours(day_of_week=day, open_time=open_at, close_time=close_at, is_closed=False)


class TestIntervalHelpers:
    def test_back_to_back_intervals_do_not_overlap(self):
        """Should treat intervals as half-open."""
        assert overlaps(at(18), at(19), at(19), at(20)) is False
        assert overlaps(at(19), at(20), at(18), at(19)) is False

    def test_partial_overlap_detected(self):
        """Should detect an interval starting inside another."""
        assert overlaps(at(18), at(19), at(18, 30), at(19, 30)) is True

    def test_normalize_candidate_converts_to_utc_minute(self):
        """Should convert to UTC and drop seconds."""
        local = datetime(2026, 3, 2, 15, 30, 45, tzinfo=ZoneInfo("America/Argentina/Buenos_Aires"))

        result = normalize_candidate(local)

        assert result == at(18, 30)


class TestLeadTime:
    def test_rejects_with_shortfall_in_minutes(self):
        """Should reject 'in 30 minutes' for a 2-hour lead with a 90 minute shortfall."""
        item = transient_item(min_lead_hours=2)

        rejection = check_lead_time(FIXED_NOW + timedelta(minutes=30), FIXED_NOW, 2, item)

        assert rejection is not None
        assert rejection.rule == ScheduleRule.LEAD_TIME
        assert rejection.shortfall_minutes == 90
        assert rejection.earliest_allowed == FIXED_NOW + timedelta(hours=2)
        assert rejection.window_start == FIXED_NOW + timedelta(hours=2)
        assert rejection.window_end is None
        assert "90 minutes" in rejection.reason

    def test_accepts_exactly_at_lead(self):
        """Should accept a candidate exactly min_lead_hours ahead."""
        assert check_lead_time(FIXED_NOW + timedelta(hours=2), FIXED_NOW, 2) is None

    def test_rejects_past_without_lead(self):
        """Should reject a time in the past even with no lead requirement."""
        rejection = check_lead_time(FIXED_NOW - timedelta(minutes=5), FIXED_NOW, 0)

        assert rejection is not None
        assert rejection.reason == "The requested time is in the past"


class TestItemWindow:
    def test_rejects_day_not_offered(self):
        """Should reject a weekday missing from available_days and point at the next one."""
        item = transient_item(available_days=["saturday", "sunday"])

        rejection = check_item_window(at(12), item)  # Monday

        assert rejection.rule == ScheduleRule.AVAILABILITY_WINDOW
        assert "Saturday" in rejection.reason
        assert rejection.window_start == at(0, day=7)
        assert rejection.window_end == at(23, 59, day=7)

    def test_rejects_outside_time_of_day(self):
        """Should reject a time outside [available_from, available_to]."""
        item = transient_item(available_from=time(10, 0), available_to=time(14, 0))

        assert check_item_window(at(13), item) is None
        rejection = check_item_window(at(15), item)
        assert rejection is not None
        assert rejection.window_start == at(10)
        assert rejection.window_end == at(14)

    def test_overnight_window_admits_early_hours(self):
        """Should accept 01:00 for a 22:00-02:00 window."""
        item = transient_item(available_from=time(22, 0), available_to=time(2, 0))

        assert check_item_window(at(1), item) is None
        assert check_item_window(at(23), item) is None
        assert check_item_window(at(3), item) is not None


class TestOpeningHours:
    def test_day_without_rows_is_closed(self):
        """Should reject a weekday with no rows and offer the next open day."""
        rejection = check_opening_hours(at(12), {1: [hours(1, time(9), time(22))]}, 0)

        assert rejection.rule == ScheduleRule.OPENING_HOURS
        assert rejection.reason == "We are closed on Monday"
        assert rejection.window_start == at(9, day=3)
        assert rejection.window_end == at(22, day=3)

    def test_closed_all_week_has_no_window(self):
        """Should leave the window empty when no day of the week opens."""
        rejection = check_opening_hours(at(12), {}, 0)

        assert rejection.rule == ScheduleRule.OPENING_HOURS
        assert rejection.window_start is None
        assert rejection.window_end is None

    def test_last_order_lead_shortens_the_day(self):
        """Should stop accepting last_order_lead_minutes before closing."""
        by_day = {0: [hours(0, time(9), time(22))]}

        assert check_opening_hours(at(21, 30), by_day, 30) is None
        rejection = check_opening_hours(at(21, 45), by_day, 30)
        assert rejection is not None
        assert "21:30" in rejection.reason

    def test_split_shifts(self):
        """Should accept either shift of a split day and reject the gap."""
        by_day = {0: [hours(0, time(9), time(14)), hours(0, time(19), time(23))]}

        assert check_opening_hours(at(10), by_day, 0) is None
        assert check_opening_hours(at(20), by_day, 0) is None
        rejection = check_opening_hours(at(16), by_day, 0)
        assert rejection.window_start == at(19)

    def test_overnight_row_covers_next_morning(self):
        """Should accept Tuesday 01:00 when Monday closes at 02:00."""
        by_day = {0: [hours(0, time(18), time(2))]}

        assert check_opening_hours(at(1, day=3), by_day, 0) is None


class TestCapacity:
    def test_finite_capacity_reports_deficit(self):
        """Should reject when reserved + requested exceeds capacity."""
        item = transient_item(capacity=3)
        bookings = [(at(10), at(11), 2)]

        rejection = check_capacity(item, at(10, 30), at(11, 30), 2, bookings)

        assert rejection.rule == ScheduleRule.CAPACITY
        assert rejection.deficit == 1
        assert rejection.earliest_allowed == at(11)
        assert check_capacity(item, at(10, 30), at(11, 30), 1, bookings) is None

    def test_unlimited_exclusive_rejects_any_overlap(self):
        """Should reject overlap for an exclusive item without capacity."""
        item = transient_item(capacity=None, is_exclusive=True)

        assert check_capacity(item, at(10), at(11), 1, [(at(10, 30), at(11, 30), 1)]) is not None

    def test_unlimited_shared_always_accepts(self):
        """Should accept overlaps for a non-exclusive item without capacity."""
        item = transient_item(capacity=None, is_exclusive=False)

        assert check_capacity(item, at(10), at(11), 5, [(at(10), at(11), 50)]) is None


class TestSchedulingValidator:
    @pytest.mark.asyncio
    async def test_overlapping_booking_rejected_adjacent_accepted(
        self, services, seed_business, scope, private_room, make_booking
    ):
        """Should reject 18:30 and accept 19:00 next to an 18:00-19:00 booking."""
        await make_booking(private_room, at(18))
        line = [ScheduleLine(item=private_room, quantity=1, duration_minutes=60)]

        overlap = await services.validator.validate(seed_business, scope, at(18, 30), line)
        adjacent = await services.validator.validate(seed_business, scope, at(19), line)

        assert not overlap.accepted
        assert overlap.rejection.rule == ScheduleRule.CAPACITY
        assert overlap.rejection.deficit == 1
        assert adjacent.accepted

    @pytest.mark.asyncio
    async def test_lead_time_shortfall(self, services, seed_business, scope, make_item):
        """Should cite a 90 minute shortfall for a 2-hour lead item requested in 30 minutes."""
        item = await make_item(name="Cake", requires_scheduling=True, min_lead_hours=2, duration_minutes=30)
        line = [ScheduleLine(item=item, quantity=1, duration_minutes=30)]

        decision = await services.validator.validate(
            seed_business, scope, FIXED_NOW + timedelta(minutes=30), line
        )

        assert decision.rejection.rule == ScheduleRule.LEAD_TIME
        assert decision.rejection.shortfall_minutes == 90

    @pytest.mark.asyncio
    async def test_only_booking_statuses_consume_capacity(
        self, services, seed_business, scope, private_room, make_booking
    ):
        """Should ignore carts, rejected and incomplete orders."""
        for status in (OrderStatus.CART, OrderStatus.REJECTED, OrderStatus.INCOMPLETE):
            await make_booking(private_room, at(18), status=status)
        line = [ScheduleLine(item=private_room, quantity=1, duration_minutes=60)]

        decision = await services.validator.validate(seed_business, scope, at(18), line)

        assert decision.accepted

    @pytest.mark.asyncio
    async def test_own_order_excluded(self, services, seed_business, scope, private_room, make_booking):
        """Should not count the order being re-validated against itself."""
        order = await make_booking(private_room, at(18))
        line = [ScheduleLine(item=private_room, quantity=1, duration_minutes=60)]

        decision = await services.validator.validate(
            seed_business, scope, at(18), line, exclude_order_id=order.id
        )

        assert decision.accepted

    @pytest.mark.asyncio
    async def test_long_booking_found_by_lookback(self, services, seed_business, scope, kayak, make_booking):
        """Should see a 3-hour booking that started before the candidate."""
        await make_booking(kayak, at(9), quantity=3, duration_minutes=180)
        line = [ScheduleLine(item=kayak, quantity=1, duration_minutes=60)]

        blocked = await services.validator.validate(seed_business, scope, at(11), line)
        free = await services.validator.validate(seed_business, scope, at(12), line)

        assert blocked.rejection.rule == ScheduleRule.CAPACITY
        assert free.accepted

    @pytest.mark.asyncio
    async def test_outside_opening_hours(self, services, seed_business, scope, private_room):
        """Should reject a booking after closing time."""
        line = [ScheduleLine(item=private_room, quantity=1, duration_minutes=60)]

        decision = await services.validator.validate(seed_business, scope, at(23), line)

        assert decision.rejection.rule == ScheduleRule.OPENING_HOURS

    @pytest.mark.asyncio
    async def test_branch_hours_override_business(
        self, db_session, services, seed_business, seed_branch, private_room
    ):
        """Should apply the branch's own row for a weekday instead of the business row."""
        db_session.add(
            OpeningHours(
                id=next_id(),
                business_id=seed_business.id,
                branch_id=seed_branch.id,
                day_of_week=0,
                is_closed=True,
            )
        )
        await db_session.commit()
        line = [ScheduleLine(item=private_room, quantity=1, duration_minutes=60)]

        branch_decision = await services.validator.validate(
            seed_business, Scope(seed_business.id, seed_branch.id), at(15), line
        )
        business_decision = await services.validator.validate(
            seed_business, Scope(seed_business.id), at(15), line
        )

        assert branch_decision.rejection.rule == ScheduleRule.OPENING_HOURS
        assert business_decision.accepted

    @pytest.mark.asyncio
    async def test_hours_use_business_timezone(self, db_session, services, seed_business, scope, private_room):
        """Should evaluate opening hours in the business's local time."""
        seed_business.timezone = "America/Argentina/Buenos_Aires"
        await db_session.commit()
        line = [ScheduleLine(item=private_room, quantity=1, duration_minutes=60)]

        # 20:30 local
        inside = await services.validator.validate(seed_business, scope, at(23, 30), line)
        # 23:00 local
        outside = await services.validator.validate(seed_business, scope, at(2, day=3), line)

        assert inside.accepted
        assert outside.rejection.rule == ScheduleRule.OPENING_HOURS

    @pytest.mark.asyncio
    async def test_validation_is_repeatable(self, services, seed_business, scope, private_room, make_booking):
        """Should give the same decision twice when nothing was booked in between."""
        await make_booking(private_room, at(18))
        line = [ScheduleLine(item=private_room, quantity=1, duration_minutes=60)]

        first = await services.validator.validate(seed_business, scope, at(18, 30), line)
        second = await services.validator.validate(seed_business, scope, at(18, 30), line)

        assert first == second

    @pytest.mark.asyncio
    async def test_check_item_for_unscheduled_item(self, services, seed_business, scope, pizza):
        """Should only check future time and opening hours for a regular item."""
        decision = await services.validator.check_item(seed_business, scope, pizza, at(13))

        assert decision.accepted
