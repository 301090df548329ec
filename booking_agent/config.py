"""Centralized configuration for the booking agent.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/booking-agent/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

_SSM_PREFIX = "/booking-agent"


def _get_ssm_parameter(name: str) -> str | None:
    """Read ``/booking-agent/<name>`` from SSM; ``None`` when it can't."""
    try:
        import boto3  # noqa: PLC0415 (only needed on AWS)

        resp = boto3.client("ssm").get_parameter(Name=f"{_SSM_PREFIX}/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("No SSM value for %s under %s", name, _SSM_PREFIX)
        return None


def _lookup(name: str) -> str | None:
    # .env placeholders such as "your_api_key" count as unset
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    return _get_ssm_parameter(name) if _ON_AWS else None


def _require_env(name: str) -> str:
    """Config value that the process cannot start without."""
    value = _lookup(name)
    if not value:
        raise OSError(
            f"Missing required configuration: {name}. "
            f"Set it in the environment or in SSM at {_SSM_PREFIX}/{name}."
        )
    return value


def _secret_or_default(name: str, default: str) -> str:
    return _lookup(name) or default


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
MODEL_TEMPERATURE: float = float(os.getenv("MODEL_TEMPERATURE", "0.1"))
MODEL_MAX_TOKENS: int = int(os.getenv("MODEL_MAX_TOKENS", "1024"))
MODEL_TIMEOUT_SECONDS: float = float(os.getenv("MODEL_TIMEOUT_SECONDS", "60"))

# Rate-limit backoff: delay before retry n is BASE ** n seconds
RATE_LIMIT_MAX_RETRIES: int = int(os.getenv("RATE_LIMIT_MAX_RETRIES", "3"))
RATE_LIMIT_BACKOFF_BASE_SECONDS: float = float(
    os.getenv("RATE_LIMIT_BACKOFF_BASE_SECONDS", "2.0")
)

# ── Conversation loop ───────────────────────────────────────────────
MAX_TOOL_ITERATIONS: int = int(os.getenv("MAX_TOOL_ITERATIONS", "10"))
TOOL_TIMEOUT_SECONDS: float = float(os.getenv("TOOL_TIMEOUT_SECONDS", "20"))
TRANSCRIPT_WINDOW: int = int(os.getenv("TRANSCRIPT_WINDOW", "50"))

# ── Storage ─────────────────────────────────────────────────────────
DATABASE_URL: str = _secret_or_default("DATABASE_URL", "sqlite:///booking_agent.db")

# ── Scheduling ──────────────────────────────────────────────────────
DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")
SLOT_STEP_MINUTES: int = int(os.getenv("SLOT_STEP_MINUTES", "30"))
SAME_DAY_MARGIN_MINUTES: int = int(os.getenv("SAME_DAY_MARGIN_MINUTES", "30"))
# "fit": start + duration <= close; "inclusive": start <= close
SLOT_CLOSE_RULE: str = os.getenv("SLOT_CLOSE_RULE", "fit")

# ── Notifications ───────────────────────────────────────────────────
NOTIFY_WEBHOOK_URL: str = os.getenv("NOTIFY_WEBHOOK_URL", "")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
