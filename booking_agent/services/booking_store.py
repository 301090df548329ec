"""Booking store: tenant-scoped reads plus the two conditional writes the
orchestrator relies on.

* ``insert_appointment_if_free`` — one atomic "insert iff no overlapping
  non-cancelled appointment exists" statement.
* ``transition_status`` — one conditional ``UPDATE`` gated by tenant id,
  appointment id and the allowed source statuses.

Lookups by primary key never filter by tenant in SQL: a row of another
tenant is reported as ``TenantMismatchError`` instead of being hidden.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Integer, Numeric, String, func, insert, literal, or_, select, text, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from booking_agent.errors import InvalidTransitionError, NotFoundError, SlotTakenError, TenantMismatchError
from booking_agent.services.database import (
    ACTIVE_STATUSES,
    Appointment,
    BusinessHours,
    Client,
    Professional,
    Service,
    Tenant,
    create_session_factory,
    new_id,
)

logger = logging.getLogger(__name__)

ENTITY_MODELS = {"service": Service, "professional": Professional}

# Allowed status changes: target -> accepted source statuses
TRANSITIONS: dict[str, tuple[str, ...]] = {
    "confirmed": ("pending",),
    "cancelled": ("pending", "confirmed"),
    "finalized": ("confirmed",),
}

MAX_FUZZY_CANDIDATES = 20


@dataclass(frozen=True)
class BusinessDay:
    weekday: int
    is_open: bool
    open_time: str | None
    close_time: str | None


@dataclass(frozen=True)
class BookedInterval:
    start_minute: int
    end_minute: int


@dataclass(frozen=True)
class AppointmentSummary:
    id: str
    date: date
    start_minute: int
    status: str
    service: str
    professional: str


class BookingStore:
    """SQLAlchemy-backed store; every public method is scoped by tenant id."""

    def __init__(self, engine: Engine, session_factory: sessionmaker | None = None):
        self._engine = engine
        self._sessions = session_factory or create_session_factory(engine)

    # ── Tenant & calendar ────────────────────────────────────────────

    def get_tenant(self, tenant_id: str) -> Tenant | None:
        with self._sessions() as db:
            return db.get(Tenant, tenant_id)

    def get_business_hours(self, tenant_id: str) -> dict[int, BusinessDay]:
        with self._sessions() as db:
            rows = db.scalars(
                select(BusinessHours).where(BusinessHours.tenant_id == tenant_id)
            ).all()
        return {
            r.weekday: BusinessDay(r.weekday, r.is_open, r.open_time, r.close_time)
            for r in rows
        }

    # ── Catalog (services / professionals) ───────────────────────────

    def get_entity(self, kind: str, tenant_id: str, entity_id: str) -> Service | Professional | None:
        model = ENTITY_MODELS[kind]
        with self._sessions() as db:
            record = db.get(model, entity_id)
        if record is not None and record.tenant_id != tenant_id:
            logger.error(
                "Tenant %s addressed %s %s owned by another tenant", tenant_id, kind, entity_id,
            )
            raise TenantMismatchError(f"{kind} {entity_id} does not belong to tenant {tenant_id}")
        return record

    def find_by_exact_name(self, kind: str, tenant_id: str, name: str) -> list[Service | Professional]:
        model = ENTITY_MODELS[kind]
        with self._sessions() as db:
            return list(
                db.scalars(
                    select(model)
                    .where(
                        model.tenant_id == tenant_id,
                        model.active.is_(True),
                        func.lower(model.name) == name.strip().lower(),
                    )
                    .order_by(model.name, model.id)
                ).all()
            )

    def find_by_terms(self, kind: str, tenant_id: str, terms: list[str]) -> list[Service | Professional]:
        """Active entities whose name contains any of *terms* (case-insensitive)."""
        if not terms:
            return []
        model = ENTITY_MODELS[kind]
        lowered = func.lower(model.name)
        with self._sessions() as db:
            return list(
                db.scalars(
                    select(model)
                    .where(
                        model.tenant_id == tenant_id,
                        model.active.is_(True),
                        or_(*(lowered.contains(t.lower(), autoescape=True) for t in terms)),
                    )
                    .order_by(model.name, model.id)
                    .limit(MAX_FUZZY_CANDIDATES)
                ).all()
            )

    def list_active(self, kind: str, tenant_id: str) -> list[Service | Professional]:
        model = ENTITY_MODELS[kind]
        with self._sessions() as db:
            return list(
                db.scalars(
                    select(model)
                    .where(model.tenant_id == tenant_id, model.active.is_(True))
                    .order_by(model.name, model.id)
                ).all()
            )

    # ── Clients ──────────────────────────────────────────────────────

    def get_client(self, tenant_id: str, phone: str) -> Client | None:
        with self._sessions() as db:
            return db.scalars(
                select(Client).where(Client.tenant_id == tenant_id, Client.phone == phone)
            ).first()

    def upsert_client(self, tenant_id: str, phone: str, name: str | None = None) -> Client:
        """Return the client for *phone*, creating it (or renaming it) as needed."""
        with self._sessions() as db:
            client = db.scalars(
                select(Client).where(Client.tenant_id == tenant_id, Client.phone == phone)
            ).first()
            if client is None:
                client = Client(id=new_id(), tenant_id=tenant_id, phone=phone, name=name)
                db.add(client)
            elif name and client.name != name:
                client.name = name
            try:
                db.commit()
            except IntegrityError:
                # A concurrent first message created the same client
                db.rollback()
                client = db.scalars(
                    select(Client).where(Client.tenant_id == tenant_id, Client.phone == phone)
                ).one()
                if name and client.name != name:
                    client.name = name
                    db.commit()
            return client

    # ── Appointments: reads ──────────────────────────────────────────

    def list_booked_intervals(self, tenant_id: str, professional_id: str, day: date) -> list[BookedInterval]:
        """Non-cancelled appointments of one professional on one date."""
        with self._sessions() as db:
            rows = db.execute(
                select(Appointment.start_minute, Appointment.end_minute)
                .where(
                    Appointment.tenant_id == tenant_id,
                    Appointment.professional_id == professional_id,
                    Appointment.appointment_date == day,
                    Appointment.status.in_(ACTIVE_STATUSES),
                )
                .order_by(Appointment.start_minute)
            ).all()
        return [BookedInterval(r.start_minute, r.end_minute) for r in rows]

    def list_client_appointments(
        self,
        tenant_id: str,
        client_id: str,
        *,
        from_date: date,
        statuses: tuple[str, ...] = ("pending", "confirmed"),
    ) -> list[AppointmentSummary]:
        with self._sessions() as db:
            rows = db.execute(
                select(
                    Appointment.id,
                    Appointment.appointment_date,
                    Appointment.start_minute,
                    Appointment.status,
                    Service.name.label("service"),
                    Professional.name.label("professional"),
                )
                .join(Service, Service.id == Appointment.service_id)
                .join(Professional, Professional.id == Appointment.professional_id)
                .where(
                    Appointment.tenant_id == tenant_id,
                    Appointment.client_id == client_id,
                    Appointment.status.in_(statuses),
                    Appointment.appointment_date >= from_date,
                )
                .order_by(Appointment.appointment_date, Appointment.start_minute)
            ).all()
        return [
            AppointmentSummary(r.id, r.appointment_date, r.start_minute, r.status, r.service, r.professional)
            for r in rows
        ]

    # ── Appointments: conditional writes ─────────────────────────────

    def insert_appointment_if_free(
        self,
        *,
        tenant_id: str,
        service_id: str,
        professional_id: str,
        client_id: str,
        day: date,
        start_minute: int,
        end_minute: int,
        price: Decimal | float = 0,
        status: str = "confirmed",
    ) -> str:
        """Insert the appointment iff [start, end) overlaps no active one.

        Returns the new appointment id, raises ``SlotTakenError`` otherwise.
        """
        appointment_id = new_id()
        clash = (
            select(Appointment.id)
            .where(
                Appointment.tenant_id == tenant_id,
                Appointment.professional_id == professional_id,
                Appointment.appointment_date == day,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_minute < end_minute,
                Appointment.end_minute > start_minute,
            )
            .correlate(None)
            .exists()
        )
        values = select(
            literal(appointment_id, String),
            literal(tenant_id, String),
            literal(service_id, String),
            literal(professional_id, String),
            literal(client_id, String),
            literal(day, Date),
            literal(start_minute, Integer),
            literal(end_minute, Integer),
            literal(Decimal(str(price)), Numeric(10, 2)),
            literal(status, String),
        ).where(~clash)
        stmt = insert(Appointment).from_select(
            [
                "id", "tenant_id", "service_id", "professional_id", "client_id",
                "appointment_date", "start_minute", "end_minute", "price", "status",
            ],
            values,
        )

        try:
            with self._engine.connect() as conn:
                conn.execution_options(sqlite_begin="IMMEDIATE")
                with conn.begin():
                    if conn.dialect.name == "postgresql":
                        conn.execute(
                            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                            {"key": f"{tenant_id}:{professional_id}:{day.isoformat()}"},
                        )
                    inserted = conn.execute(stmt).rowcount
        except IntegrityError as exc:
            logger.warning("Unique agenda index rejected %s %s@%d", professional_id, day, start_minute)
            raise SlotTakenError("That time was just booked by someone else.") from exc

        if inserted != 1:
            logger.warning(
                "Slot taken: tenant=%s professional=%s date=%s start=%d",
                tenant_id, professional_id, day, start_minute,
            )
            raise SlotTakenError("That time is no longer available for this professional.")

        logger.info("Appointment %s inserted for tenant %s", appointment_id, tenant_id)
        return appointment_id

    def transition_status(
        self,
        tenant_id: str,
        appointment_id: str,
        to_status: str,
        *,
        reason: str | None = None,
        client_phone: str | None = None,
    ) -> None:
        """Move an appointment to *to_status* if its current status allows it.

        With *client_phone* the appointment must also belong to that client
        of the tenant; someone else's appointment reads as not found.
        """
        sources = TRANSITIONS.get(to_status)
        if sources is None:
            raise InvalidTransitionError(f"Unknown target status: {to_status}")

        values: dict[str, object] = {"status": to_status}
        if to_status == "cancelled":
            values["cancel_reason"] = reason

        conditions = [
            Appointment.id == appointment_id,
            Appointment.tenant_id == tenant_id,
            Appointment.status.in_(sources),
        ]
        owner = None
        if client_phone is not None:
            owner = select(Client.id).where(Client.tenant_id == tenant_id, Client.phone == client_phone)
            conditions.append(Appointment.client_id.in_(owner))

        with self._sessions() as db:
            result = db.execute(update(Appointment).where(*conditions).values(**values))
            if result.rowcount == 1:
                db.commit()
                return
            db.rollback()

            current = db.get(Appointment, appointment_id)
            owned = current is not None and (
                owner is None or current.client_id in db.scalars(owner).all()
            )

        if current is None:
            raise NotFoundError(f"Appointment {appointment_id} was not found.")
        if current.tenant_id != tenant_id:
            logger.error(
                "Tenant %s tried to change appointment %s of another tenant", tenant_id, appointment_id,
            )
            raise TenantMismatchError(f"Appointment {appointment_id} does not belong to tenant {tenant_id}")
        if not owned:
            logger.warning(
                "Client %s of tenant %s tried to change appointment %s of another client",
                client_phone, tenant_id, appointment_id,
            )
            raise NotFoundError(f"Appointment {appointment_id} was not found.")
        raise InvalidTransitionError(
            f"Appointment {appointment_id} is {current.status} and cannot become {to_status}."
        )
