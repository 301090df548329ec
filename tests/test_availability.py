"""Tests for the availability engine."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from booking_agent.services.availability import (
    AvailabilityEngine,
    ceil_to_step,
    format_minutes,
    parse_hhmm,
)

MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
SUNDAY = date(2030, 1, 6)


def _engine(store, clock, **kwargs) -> AvailabilityEngine:
    return AvailabilityEngine(store, clock=clock, step_minutes=30, margin_minutes=30, **kwargs)


def _book(store, seed, day, start, end, status="confirmed", professional=None):
    from booking_agent.services.database import Appointment, Client, create_session_factory, new_id

    with create_session_factory(store._engine)() as db:
        client = Client(id=new_id(), tenant_id=seed.tenant, phone=new_id())
        db.add(client)
        db.flush()
        db.add(
            Appointment(
                tenant_id=seed.tenant,
                service_id=seed.haircut,
                professional_id=professional or seed.joao,
                client_id=client.id,
                appointment_date=day,
                start_minute=start,
                end_minute=end,
                status=status,
            )
        )
        db.commit()


class TestHelpers:
    def test_parse_hhmm(self):
        assert parse_hhmm("09:30") == 570
        assert parse_hhmm("9:05") == 545
        assert parse_hhmm("18:00:00") == 1080
        assert parse_hhmm("24:00") == 1440

    @pytest.mark.parametrize("value", [None, "", "9h", "25:00", "10:61", "24:30"])
    def test_parse_hhmm_rejects(self, value):
        assert parse_hhmm(value) is None

    def test_format_minutes(self):
        assert format_minutes(570) == "09:30"

    def test_ceil_to_step_keeps_boundaries(self):
        assert ceil_to_step(600, 30) == 600
        assert ceil_to_step(601, 30) == 630


class TestBusinessHours:
    def test_existing_appointment_is_excluded(self, store, seed, clock):
        _book(store, seed, MONDAY, 600, 630)
        slots = _engine(store, clock).available_slots(seed.tenant, MONDAY, 30, professional_id=seed.joao)
        assert slots == ["09:00", "09:30", "10:30", "11:00", "11:30"]

    def test_inclusive_close_offers_start_at_closing(self, store, seed, clock):
        _book(store, seed, MONDAY, 600, 630)
        slots = _engine(store, clock, close_rule="inclusive").available_slots(
            seed.tenant, MONDAY, 30, professional_id=seed.joao,
        )
        assert slots == ["09:00", "09:30", "10:30", "11:00", "11:30", "12:00"]

    def test_long_service_must_fit_around_bookings(self, store, seed, clock):
        _book(store, seed, MONDAY, 600, 630)
        slots = _engine(store, clock).available_slots(seed.tenant, MONDAY, 60, professional_id=seed.joao)
        assert slots == ["09:00", "10:30", "11:00"]

    def test_without_professional_no_overlap_filter(self, store, seed, clock):
        _book(store, seed, MONDAY, 600, 630)
        slots = _engine(store, clock).available_slots(seed.tenant, MONDAY, 30)
        assert "10:00" in slots

    def test_other_professional_not_affected(self, store, seed, clock):
        _book(store, seed, MONDAY, 600, 630)
        slots = _engine(store, clock).available_slots(seed.tenant, MONDAY, 30, professional_id=seed.maria)
        assert "10:00" in slots

    def test_cancelled_appointment_frees_slot(self, store, seed, clock):
        _book(store, seed, MONDAY, 600, 630, status="cancelled")
        slots = _engine(store, clock).available_slots(seed.tenant, MONDAY, 30, professional_id=seed.joao)
        assert "10:00" in slots

    def test_closed_day(self, store, seed, clock):
        clock.now = datetime(2030, 1, 1, 12, 0, tzinfo=UTC)
        assert _engine(store, clock).available_slots(seed.tenant, SUNDAY, 30) == []

    def test_day_without_hours(self, store, seed, clock):
        wednesday = date(2030, 1, 9)
        assert _engine(store, clock).available_slots(seed.tenant, wednesday, 30) == []

    def test_returned_slots_never_overlap_bookings(self, store, seed, clock):
        _book(store, seed, TUESDAY, 660, 720)
        _book(store, seed, TUESDAY, 840, 870)
        slots = _engine(store, clock).available_slots(seed.tenant, TUESDAY, 60, professional_id=seed.joao)
        for slot in slots:
            start = parse_hhmm(slot)
            assert start + 60 <= 660 or start >= 720
            assert start + 60 <= 840 or start >= 870


class TestPeriods:
    def test_afternoon(self, store, seed, clock):
        slots = _engine(store, clock).available_slots(seed.tenant, TUESDAY, 30, period="afternoon")
        assert slots[0] == "12:00"
        assert slots[-1] == "17:30"

    def test_morning(self, store, seed, clock):
        slots = _engine(store, clock).available_slots(seed.tenant, TUESDAY, 30, period="morning")
        assert slots == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]

    def test_evening_outside_hours(self, store, seed, clock):
        assert _engine(store, clock).available_slots(seed.tenant, TUESDAY, 30, period="evening") == []

    def test_all(self, store, seed, clock):
        assert len(_engine(store, clock).available_slots(seed.tenant, TUESDAY, 30, period="all")) == 18


class TestClock:
    def test_past_date_has_no_slots(self, store, seed, clock):
        clock.now = datetime(2030, 1, 9, 12, 0, tzinfo=UTC)
        assert _engine(store, clock).available_slots(seed.tenant, MONDAY, 30) == []

    def test_same_day_cutoff(self, store, seed, clock):
        # 12:10 UTC = 09:10 local → ceil to 09:30, plus 30 min margin
        clock.now = datetime(2030, 1, 7, 12, 10, tzinfo=UTC)
        slots = _engine(store, clock).available_slots(seed.tenant, MONDAY, 30)
        assert slots == ["10:00", "10:30", "11:00", "11:30"]

    def test_same_day_on_boundary_is_not_rounded_further(self, store, seed, clock):
        clock.now = datetime(2030, 1, 7, 12, 30, tzinfo=UTC)  # 09:30 local
        slots = _engine(store, clock).available_slots(seed.tenant, MONDAY, 30)
        assert slots[0] == "10:00"

    def test_today_is_evaluated_in_tenant_timezone(self, store, seed, clock):
        # 02:00 UTC Monday is still Sunday 23:00 in Sao Paulo
        clock.now = datetime(2030, 1, 7, 2, 0, tzinfo=UTC)
        engine = _engine(store, clock)
        assert engine.local_now(seed.tenant).date() == SUNDAY
        assert engine.available_slots(seed.tenant, MONDAY, 30)[0] == "09:00"


class TestIsAvailable:
    def test_open_and_taken(self, store, seed, clock):
        _book(store, seed, MONDAY, 600, 630)
        engine = _engine(store, clock)
        assert engine.is_available(seed.tenant, MONDAY, 570, 30, professional_id=seed.joao)
        assert not engine.is_available(seed.tenant, MONDAY, 600, 30, professional_id=seed.joao)

    def test_off_grid_time(self, store, seed, clock):
        assert not _engine(store, clock).is_available(seed.tenant, MONDAY, 545, 30)


def test_unknown_close_rule_rejected(store):
    with pytest.raises(ValueError):
        AvailabilityEngine(store, close_rule="sometimes")
