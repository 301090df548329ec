"""Tool registry: the six operations the model may call.

Each tool has a validated pydantic parameter model.  Arguments coming
from the model are coerced here, at the boundary, before any handler
runs:

* dates in ``YYYY-MM-DD`` or ``DD/MM/YYYY`` become ``datetime.date``;
* times in ``HH:MM`` or ``HH:MM:SS`` become ``"HH:MM"``;
* legacy argument names (``service_id``, ``barber_id``,
  ``professional_id``) are accepted as aliases.

``anthropic_tools()`` renders the registry in the provider's tool format
(name, description, JSON schema with the required fields).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from booking_agent.services.availability import format_minutes, parse_hhmm

_BR_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def _coerce_date(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    if not isinstance(value, str):
        return value
    text = value.strip()
    match = _BR_DATE_RE.match(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        return date(year, month, day)
    return date.fromisoformat(text)


def _coerce_time(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    minute = parse_hhmm(value)
    if minute is None or minute >= 24 * 60:
        raise ValueError(f"time must be HH:MM (24h), got {value!r}")
    return format_minutes(minute)


IsoDate = Annotated[date, BeforeValidator(_coerce_date)]
ClockTime = Annotated[str, BeforeValidator(_coerce_time)]


class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)


class GetAvailableSlotsArgs(ToolArgs):
    date: IsoDate = Field(description="Day to check, YYYY-MM-DD.")
    service: str = Field(
        validation_alias=AliasChoices("service", "service_id", "service_name"),
        description="Service name or id, as the client said it.",
    )
    professional: str | None = Field(
        default=None,
        validation_alias=AliasChoices("professional", "professional_id", "barber_id", "barber"),
        description="Professional name or id. Omit when the client has no preference.",
    )
    period: Literal["morning", "afternoon", "evening", "all"] = Field(
        default="all",
        description="Part of the day: morning (05-12), afternoon (12-18), evening (18-24) or all.",
    )


class CreateAppointmentArgs(ToolArgs):
    date: IsoDate = Field(description="Appointment day, YYYY-MM-DD.")
    time: ClockTime = Field(description="Start time, HH:MM 24h.")
    service: str = Field(
        validation_alias=AliasChoices("service", "service_id", "service_name"),
        description="Service name or id.",
    )
    professional: str | None = Field(
        default=None,
        validation_alias=AliasChoices("professional", "professional_id", "barber_id", "barber"),
        description="Professional name or id.",
    )
    client_name: str | None = Field(
        default=None,
        description="Client's name, if they just told you. Required unless already on file.",
    )


class ListAppointmentsArgs(ToolArgs):
    pass


class CancelAppointmentArgs(ToolArgs):
    appointment_id: str = Field(
        validation_alias=AliasChoices("appointment_id", "id"),
        description="Id of the appointment, as returned by list_appointments.",
    )
    reason: str | None = Field(default=None, description="Why the client is cancelling.")


class GetBusinessInfoArgs(ToolArgs):
    pass


class GetClientProfileArgs(ToolArgs):
    name: str | None = Field(
        default=None,
        description="Set this to save or correct the client's name.",
    )


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[ToolArgs]


TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        "get_available_slots",
        "List the open start times for a service on one date, optionally for one "
        "professional and one part of the day. Always call this before offering times.",
        GetAvailableSlotsArgs,
    ),
    ToolSpec(
        "create_appointment",
        "Book an appointment. Needs the client's name and a professional; "
        "fails with alternatives when the time is not open.",
        CreateAppointmentArgs,
    ),
    ToolSpec(
        "list_appointments",
        "List this client's upcoming pending and confirmed appointments.",
        ListAppointmentsArgs,
    ),
    ToolSpec(
        "cancel_appointment",
        "Cancel one of the client's appointments by id.",
        CancelAppointmentArgs,
    ),
    ToolSpec(
        "get_business_info",
        "Business profile: address, opening hours, services with prices and "
        "durations, and professionals.",
        GetBusinessInfoArgs,
    ),
    ToolSpec(
        "get_client_profile",
        "Look up the client on file. Pass a name to register the client or fix their name.",
        GetClientProfileArgs,
    ),
)

TOOL_REGISTRY: dict[str, ToolSpec] = {spec.name: spec for spec in TOOLS}


def _input_schema(model: type[ToolArgs]) -> dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    for prop in schema.get("properties", {}).values():
        prop.pop("title", None)
    schema.setdefault("properties", {})
    return schema


def anthropic_tools() -> list[dict[str, Any]]:
    return [
        {"name": spec.name, "description": spec.description, "input_schema": _input_schema(spec.args_model)}
        for spec in TOOLS
    ]
