"""Tool dispatcher: runs the model's tool calls against the booking core.

Every call yields a structured result carrying the tool name::

    {"success": True,  "tool": "get_available_slots", ...}
    {"success": False, "tool": "create_appointment",
     "error": "...", "error_kind": "slot_taken", "alternatives": [...]}

Handlers run on a worker pool with a per-call timeout; a call that runs
out of time becomes a ``timeout`` result for the model.  Domain errors and
unexpected exceptions are absorbed the same way.  ``TenantMismatchError``
is the exception: it is re-raised and aborts the turn.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from booking_agent.config import TOOL_TIMEOUT_SECONDS
from booking_agent.errors import (
    BookingAgentError,
    PreconditionError,
    SlotTakenError,
    TenantMismatchError,
    ToolArgumentsError,
    ToolTimeoutError,
)
from booking_agent.services.availability import AvailabilityEngine, format_minutes, parse_hhmm
from booking_agent.services.booking import BookingCoordinator
from booking_agent.services.booking_store import BookingStore
from booking_agent.services.database import Professional
from booking_agent.services.metrics import MetricsClient, metrics as default_metrics
from booking_agent.services.resolver import EntityResolver
from booking_agent.tools.schemas import (
    TOOL_REGISTRY,
    CancelAppointmentArgs,
    CreateAppointmentArgs,
    GetAvailableSlotsArgs,
    GetBusinessInfoArgs,
    GetClientProfileArgs,
    ListAppointmentsArgs,
    ToolArgs,
)

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass(frozen=True)
class ToolContext:
    """Who the tools act for: the tenant and the client's transport id."""

    tenant_id: str
    client_id: str


class ToolDispatcher:
    def __init__(
        self,
        store: BookingStore,
        resolver: EntityResolver,
        availability: AvailabilityEngine,
        coordinator: BookingCoordinator,
        *,
        timeout: float = TOOL_TIMEOUT_SECONDS,
        executor: ThreadPoolExecutor | None = None,
        metrics: MetricsClient | None = None,
    ):
        self._store = store
        self._resolver = resolver
        self._availability = availability
        self._coordinator = coordinator
        self._timeout = timeout
        self._executor = executor or ThreadPoolExecutor(max_workers=8, thread_name_prefix="tool")
        self._metrics = metrics or default_metrics
        self._handlers: dict[str, Callable[[ToolContext, Any], dict[str, Any]]] = {
            "get_available_slots": self._get_available_slots,
            "create_appointment": self._create_appointment,
            "list_appointments": self._list_appointments,
            "cancel_appointment": self._cancel_appointment,
            "get_business_info": self._get_business_info,
            "get_client_profile": self._get_client_profile,
        }

    # ── Entry point ──────────────────────────────────────────────────

    def dispatch(self, context: ToolContext, name: str, raw_args: dict[str, Any] | None) -> dict[str, Any]:
        """Run one tool call and return its structured result."""
        logger.info("Tool %s called for %s/%s: %s", name, context.tenant_id, context.client_id, raw_args)
        t0 = time.perf_counter()
        try:
            args = self._validate(name, raw_args or {})
            future = self._executor.submit(self._handlers[name], context, args)
            try:
                payload = future.result(timeout=self._timeout)
            except FutureTimeoutError as exc:
                future.cancel()
                raise ToolTimeoutError(
                    f"{name} did not finish within {self._timeout:.0f}s. Try again."
                ) from exc
        except TenantMismatchError:
            self._metrics.record_failure("tool", name, error_type="tenant_mismatch")
            logger.error("Aborting turn: %s crossed the tenant boundary of %s", name, context.tenant_id)
            raise
        except BookingAgentError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self._metrics.record_failure("tool", name, error_type=exc.kind, latency_ms=elapsed)
            logger.info("Tool %s failed (%s): %s", name, exc.kind, exc)
            return {"success": False, "tool": name, "error": str(exc), "error_kind": exc.kind, **exc.details}
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self._metrics.record_failure("tool", name, error_type=type(exc).__name__, latency_ms=elapsed)
            logger.exception("Tool %s raised unexpectedly", name)
            return {
                "success": False,
                "tool": name,
                "error": "The operation failed unexpectedly. Please try again.",
                "error_kind": "error",
            }

        elapsed = (time.perf_counter() - t0) * 1000
        self._metrics.record_success("tool", name, latency_ms=elapsed)
        return {"success": True, "tool": name, **payload}

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _validate(name: str, raw_args: dict[str, Any]) -> ToolArgs:
        spec = TOOL_REGISTRY.get(name)
        if spec is None:
            raise ToolArgumentsError(f"Unknown tool: {name}")
        try:
            return spec.args_model.model_validate(raw_args)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in exc.errors()
            )
            raise ToolArgumentsError(f"Invalid arguments for {name}: {problems}") from exc

    # ── Shared helpers ───────────────────────────────────────────────

    def _default_professional(self, tenant_id: str, reference: str | None) -> Professional | None:
        """The named professional, or the only one when the tenant has one."""
        if reference:
            return self._resolver.resolve_professional(tenant_id, reference)
        active = self._store.list_active("professional", tenant_id)
        return active[0] if len(active) == 1 else None

    # ── Handlers ─────────────────────────────────────────────────────

    def _get_available_slots(self, ctx: ToolContext, args: GetAvailableSlotsArgs) -> dict[str, Any]:
        service = self._resolver.resolve_service(ctx.tenant_id, args.service)
        professional = self._default_professional(ctx.tenant_id, args.professional)
        slots = self._availability.available_slots(
            ctx.tenant_id,
            args.date,
            service.duration_minutes,
            professional_id=professional.id if professional else None,
            period=args.period,
        )
        result: dict[str, Any] = {
            "date": args.date.isoformat(),
            "service": service.name,
            "duration_minutes": service.duration_minutes,
            "professional": professional.name if professional else None,
            "period": args.period,
            "slots": slots,
        }
        if not slots:
            result["message"] = "No open times on this date. Suggest another day."
        return result

    def _create_appointment(self, ctx: ToolContext, args: CreateAppointmentArgs) -> dict[str, Any]:
        tenant_id = ctx.tenant_id
        if args.client_name:
            client = self._store.upsert_client(tenant_id, ctx.client_id, name=args.client_name)
        else:
            client = self._store.get_client(tenant_id, ctx.client_id)
        if client is None or not client.name:
            raise PreconditionError(
                "The client's name is required before booking. Ask for it, then call again with client_name."
            )

        professional = self._default_professional(tenant_id, args.professional)
        if professional is None:
            names = [p.name for p in self._store.list_active("professional", tenant_id)]
            raise PreconditionError(
                "A professional must be chosen before booking. Ask which one the client prefers.",
                details={"professionals": names},
            )

        service = self._resolver.resolve_service(tenant_id, args.service)
        start_minute = parse_hhmm(args.time)

        def alternatives() -> list[str]:
            return self._availability.available_slots(
                tenant_id, args.date, service.duration_minutes, professional_id=professional.id,
            )

        if not self._availability.is_available(
            tenant_id, args.date, start_minute, service.duration_minutes, professional_id=professional.id,
        ):
            raise SlotTakenError(
                f"{args.time} on {args.date.isoformat()} is not available with {professional.name}.",
                details={"alternatives": alternatives()},
            )

        try:
            appointment_id = self._coordinator.book(
                tenant_id=tenant_id,
                client=client,
                service=service,
                professional=professional,
                day=args.date,
                start_minute=start_minute,
            )
        except SlotTakenError as exc:
            exc.details.setdefault("alternatives", alternatives())
            raise

        return {
            "appointment_id": appointment_id,
            "status": "confirmed",
            "date": args.date.isoformat(),
            "time": args.time,
            "service": service.name,
            "duration_minutes": service.duration_minutes,
            "price": float(service.price),
            "professional": professional.name,
            "client_name": client.name,
        }

    def _list_appointments(self, ctx: ToolContext, args: ListAppointmentsArgs) -> dict[str, Any]:
        client = self._store.get_client(ctx.tenant_id, ctx.client_id)
        if client is None:
            return {"appointments": []}

        now = self._availability.local_now(ctx.tenant_id)
        now_minute = now.hour * 60 + now.minute
        upcoming = [
            a
            for a in self._store.list_client_appointments(ctx.tenant_id, client.id, from_date=now.date())
            if a.date > now.date() or a.start_minute > now_minute
        ]
        return {
            "appointments": [
                {
                    "appointment_id": a.id,
                    "date": a.date.isoformat(),
                    "time": format_minutes(a.start_minute),
                    "service": a.service,
                    "professional": a.professional,
                    "status": a.status,
                }
                for a in upcoming
            ]
        }

    def _cancel_appointment(self, ctx: ToolContext, args: CancelAppointmentArgs) -> dict[str, Any]:
        self._coordinator.cancel(
            ctx.tenant_id, args.appointment_id, reason=args.reason, client_phone=ctx.client_id,
        )
        return {"appointment_id": args.appointment_id, "status": "cancelled"}

    def _get_business_info(self, ctx: ToolContext, args: GetBusinessInfoArgs) -> dict[str, Any]:
        tenant = self._store.get_tenant(ctx.tenant_id)
        hours = self._store.get_business_hours(ctx.tenant_id)
        services = self._store.list_active("service", ctx.tenant_id)
        professionals = self._store.list_active("professional", ctx.tenant_id)

        info: dict[str, Any] = {
            "name": tenant.name if tenant else None,
            "address": tenant.address if tenant else None,
            "opening_hours": {
                WEEKDAYS[wd]: (
                    f"{hours[wd].open_time}-{hours[wd].close_time}"
                    if wd in hours and hours[wd].is_open and hours[wd].open_time
                    else "closed"
                )
                for wd in range(7)
            },
            "services": [
                {"name": s.name, "duration_minutes": s.duration_minutes, "price": float(s.price)}
                for s in services
            ],
            "professionals": [p.name for p in professionals],
        }
        if len(professionals) == 1:
            info["single_professional"] = professionals[0].name
        return info

    def _get_client_profile(self, ctx: ToolContext, args: GetClientProfileArgs) -> dict[str, Any]:
        if args.name:
            client = self._store.upsert_client(ctx.tenant_id, ctx.client_id, name=args.name)
        else:
            client = self._store.get_client(ctx.tenant_id, ctx.client_id)
        if client is None:
            return {"known": False, "name": None}
        return {"known": bool(client.name), "name": client.name, "client_id": client.id}
