"""Shared test fixtures for the booking agent test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from booking_agent.services.database import (
    BusinessHours,
    Professional,
    Service,
    Tenant,
    create_db_engine,
    create_session_factory,
    init_db,
)

# 2030-01-06 is a Sunday; 15:00 UTC is 12:00 in America/Sao_Paulo
SUNDAY_NOON_UTC = datetime(2030, 1, 6, 15, 0, tzinfo=UTC)


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any test module is imported, so config.py won't fail
    on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("METRICS_ENABLED", "false")


class FixedClock:
    """Settable stand-in for ``datetime.now(UTC)``."""

    def __init__(self, now: datetime = SUNDAY_NOON_UTC):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'booking.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seed(engine):
    """Two tenants.

    ``tenant-a``: Mon 09:00-12:00, Tue 09:00-18:00, otherwise closed;
    services Haircut (30), Haircut and Beard (60), Beard Trim (30);
    professionals Joao and Maria.

    ``tenant-b``: one professional (Pedro), one service (Massage).
    """
    ids = SimpleNamespace(
        tenant="tenant-a",
        other_tenant="tenant-b",
        haircut="11111111-1111-4111-8111-111111111111",
        combo="22222222-2222-4222-8222-222222222222",
        beard="33333333-3333-4333-8333-333333333333",
        joao="44444444-4444-4444-8444-444444444444",
        maria="55555555-5555-4555-8555-555555555555",
        massage="66666666-6666-4666-8666-666666666666",
        pedro="77777777-7777-4777-8777-777777777777",
    )
    with create_session_factory(engine)() as db:
        db.add_all(
            [
                Tenant(id=ids.tenant, name="Barbearia Central", agent_name="Bia",
                       timezone="America/Sao_Paulo", address="Rua A, 10"),
                Tenant(id=ids.other_tenant, name="Spa Sul", timezone="America/Sao_Paulo"),
            ]
        )
        db.flush()
        db.add_all(
            [
                BusinessHours(tenant_id=ids.tenant, weekday=0, is_open=True, open_time="09:00", close_time="12:00"),
                BusinessHours(tenant_id=ids.tenant, weekday=1, is_open=True, open_time="09:00", close_time="18:00"),
                BusinessHours(tenant_id=ids.tenant, weekday=6, is_open=False),
                BusinessHours(tenant_id=ids.other_tenant, weekday=0, is_open=True, open_time="10:00", close_time="16:00"),
                Service(id=ids.haircut, tenant_id=ids.tenant, name="Haircut", duration_minutes=30, price=Decimal("40")),
                Service(id=ids.combo, tenant_id=ids.tenant, name="Haircut and Beard", duration_minutes=60,
                        price=Decimal("70")),
                Service(id=ids.beard, tenant_id=ids.tenant, name="Beard Trim", duration_minutes=30, price=Decimal("30")),
                Professional(id=ids.joao, tenant_id=ids.tenant, name="Joao", phone="+5511900000001"),
                Professional(id=ids.maria, tenant_id=ids.tenant, name="Maria", phone="+5511900000002"),
                Service(id=ids.massage, tenant_id=ids.other_tenant, name="Massage", duration_minutes=60,
                        price=Decimal("120")),
                Professional(id=ids.pedro, tenant_id=ids.other_tenant, name="Pedro"),
            ]
        )
        db.commit()
    return ids


@pytest.fixture
def store(engine):
    from booking_agent.services.booking_store import BookingStore

    return BookingStore(engine)
