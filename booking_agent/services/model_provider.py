"""Model provider: Claude via ``langchain-anthropic`` with the booking tools
bound.

The SDK's own retries are disabled (``max_retries=0``) so throttling is
handled in one place, ``call_with_backoff``.  The same ``generate`` call
serves the first model call of a turn and every continuation after tool
results.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any

import anthropic
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, SystemMessage

from booking_agent.config import (
    ANTHROPIC_API_KEY,
    MODEL_MAX_TOKENS,
    MODEL_NAME,
    MODEL_TEMPERATURE,
    MODEL_TIMEOUT_SECONDS,
)
from booking_agent.errors import ToolTimeoutError
from booking_agent.services.metrics import MetricsClient, metrics as default_metrics
from booking_agent.services.retry import call_with_backoff

logger = logging.getLogger(__name__)


def build_chat_model() -> ChatAnthropic:
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=MODEL_TEMPERATURE,
        max_tokens=MODEL_MAX_TOKENS,
        timeout=MODEL_TIMEOUT_SECONDS,
        max_retries=0,
    )


class ModelProvider:
    def __init__(
        self,
        tools: Sequence[dict[str, Any]],
        *,
        llm: BaseChatModel | None = None,
        metrics: MetricsClient | None = None,
    ):
        self._llm = (llm or build_chat_model()).bind_tools(list(tools))
        self._metrics = metrics or default_metrics

    def generate(self, system_prompt: str, messages: list[BaseMessage]) -> AIMessage:
        """One model call, retried with backoff while throttled."""
        return call_with_backoff(self._invoke, [SystemMessage(content=system_prompt), *messages])

    def _invoke(self, messages: list[BaseMessage]) -> AIMessage:
        t0 = time.perf_counter()
        try:
            response = self._llm.invoke(messages)
        except anthropic.APITimeoutError as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self._metrics.record_failure("anthropic", "generate", error_type="timeout", latency_ms=elapsed)
            raise ToolTimeoutError(f"Model call timed out after {elapsed / 1000:.0f}s") from exc
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            self._metrics.record_failure(
                "anthropic", "generate",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        self._metrics.record_success("anthropic", "generate", latency_ms=elapsed)
        logger.debug(
            "Model responded in %.0fms (%d tool calls)", elapsed, len(response.tool_calls),
        )
        return response
