"""Booking coordinator: reserve and cancel appointments.

Reservation is delegated to the store's single conditional insert, so two
replicas racing for the same slot cannot both win; the loser gets
``SlotTakenError`` and the conversation is told, never retried silently.
"""

from __future__ import annotations

import logging
from datetime import date

from booking_agent.errors import InvalidIdentifierError
from booking_agent.services.availability import format_minutes
from booking_agent.services.booking_store import BookingStore
from booking_agent.services.database import Client, Professional, Service
from booking_agent.services.metrics import MetricsClient, metrics as default_metrics
from booking_agent.services.notifier import WebhookNotifier
from booking_agent.services.resolver import is_identifier

logger = logging.getLogger(__name__)


class BookingCoordinator:
    def __init__(
        self,
        store: BookingStore,
        notifier: WebhookNotifier | None = None,
        *,
        metrics: MetricsClient | None = None,
    ):
        self._store = store
        self._notifier = notifier
        self._metrics = metrics or default_metrics

    def book(
        self,
        *,
        tenant_id: str,
        client: Client,
        service: Service,
        professional: Professional,
        day: date,
        start_minute: int,
    ) -> str:
        """Reserve the slot and return the new appointment id."""
        try:
            appointment_id = self._store.insert_appointment_if_free(
                tenant_id=tenant_id,
                service_id=service.id,
                professional_id=professional.id,
                client_id=client.id,
                day=day,
                start_minute=start_minute,
                end_minute=start_minute + service.duration_minutes,
                price=service.price,
            )
        except Exception:
            self._metrics.record_outcome(tenant_id, "booking_rejected")
            raise

        self._metrics.record_outcome(tenant_id, "appointment_created")
        logger.info(
            "Booked %s with %s on %s %s for client %s",
            service.name, professional.name, day, format_minutes(start_minute), client.id,
        )
        if self._notifier is not None:
            payload = {
                "event": "appointment.created",
                "tenant_id": tenant_id,
                "appointment_id": appointment_id,
                "professional": {"id": professional.id, "name": professional.name, "phone": professional.phone},
                "client": {"id": client.id, "name": client.name, "phone": client.phone},
                "service": service.name,
                "date": day.isoformat(),
                "time": format_minutes(start_minute),
            }
            try:
                self._notifier.submit(payload)
            except Exception:
                logger.exception("Could not queue notification for appointment %s", appointment_id)
        return appointment_id

    def cancel(
        self,
        tenant_id: str,
        appointment_id: str,
        reason: str | None = None,
        *,
        client_phone: str | None = None,
    ) -> None:
        """Cancel a pending/confirmed appointment of the tenant.

        Malformed ids are rejected here, before reaching the store.  With
        *client_phone* only that client's own appointments can be cancelled.
        """
        if not appointment_id or not is_identifier(appointment_id):
            raise InvalidIdentifierError(f'"{appointment_id}" is not a valid appointment id.')
        self._store.transition_status(
            tenant_id, appointment_id.strip(), "cancelled", reason=reason, client_phone=client_phone,
        )
        self._metrics.record_outcome(tenant_id, "appointment_cancelled")
        logger.info("Cancelled appointment %s for tenant %s", appointment_id, tenant_id)
