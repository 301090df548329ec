"""Tests for rate-limit backoff around the model provider."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from booking_agent.errors import RateLimitedError, ToolTimeoutError
from booking_agent.services.model_provider import ModelProvider
from booking_agent.services.retry import call_with_backoff

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _rate_limited() -> anthropic.RateLimitError:
    return anthropic.RateLimitError(
        "rate limited", response=httpx.Response(429, request=_REQUEST), body=None,
    )


def _provider(*side_effect):
    llm = MagicMock()
    bound = llm.bind_tools.return_value
    bound.invoke.side_effect = list(side_effect)
    metrics = MagicMock()
    return ModelProvider([{"name": "t", "description": "d", "input_schema": {"type": "object"}}],
                         llm=llm, metrics=metrics), bound, metrics


class TestCallWithBackoff:
    @patch("booking_agent.services.retry.time.sleep")
    def test_returns_without_sleeping_on_success(self, mock_sleep):
        assert call_with_backoff(lambda: 42) == 42
        mock_sleep.assert_not_called()

    @patch("booking_agent.services.retry.time.sleep")
    def test_exponential_delays(self, mock_sleep):
        fn = MagicMock(side_effect=[_rate_limited(), _rate_limited(), _rate_limited(), "ok"])
        assert call_with_backoff(fn, base_delay=2.0, max_retries=3) == "ok"
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2.0, 4.0, 8.0]

    @patch("booking_agent.services.retry.time.sleep")
    def test_gives_up_after_max_retries(self, mock_sleep):
        fn = MagicMock(side_effect=_rate_limited())
        with pytest.raises(RateLimitedError) as excinfo:
            call_with_backoff(fn, max_retries=3)
        assert fn.call_count == 4
        assert mock_sleep.call_count == 3
        assert isinstance(excinfo.value.__cause__, anthropic.RateLimitError)

    @patch("booking_agent.services.retry.time.sleep")
    def test_other_errors_are_not_retried(self, mock_sleep):
        fn = MagicMock(side_effect=ValueError("bad request"))
        with pytest.raises(ValueError):
            call_with_backoff(fn)
        assert fn.call_count == 1
        mock_sleep.assert_not_called()

    @patch("booking_agent.services.retry.time.sleep")
    def test_passes_arguments_through(self, mock_sleep):
        fn = MagicMock(return_value="ok")
        call_with_backoff(fn, 1, key="v")
        fn.assert_called_once_with(1, key="v")


class TestModelProviderRetries:
    @patch("booking_agent.services.retry.time.sleep")
    def test_two_rate_limits_then_success(self, mock_sleep):
        reply = AIMessage(content="Hi there!")
        provider, bound, metrics = _provider(_rate_limited(), _rate_limited(), reply)

        result = provider.generate("You are a booking assistant.", [HumanMessage(content="hi")])

        assert result is reply
        assert bound.invoke.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [2.0, 4.0]
        assert metrics.record_failure.call_count == 2
        metrics.record_success.assert_called_once()

    @patch("booking_agent.services.retry.time.sleep")
    def test_system_prompt_goes_first(self, mock_sleep):
        provider, bound, _ = _provider(AIMessage(content="ok"))
        provider.generate("SYSTEM", [HumanMessage(content="hi")])
        sent = bound.invoke.call_args[0][0]
        assert isinstance(sent[0], SystemMessage)
        assert sent[0].content == "SYSTEM"
        assert sent[1].content == "hi"

    @patch("booking_agent.services.retry.time.sleep")
    def test_exhausted_retries_fail(self, mock_sleep):
        provider, _, _ = _provider(*[_rate_limited()] * 4)
        with pytest.raises(RateLimitedError):
            provider.generate("s", [HumanMessage(content="hi")])

    @patch("booking_agent.services.retry.time.sleep")
    def test_timeout_is_reported_as_timeout(self, mock_sleep):
        provider, _, metrics = _provider(anthropic.APITimeoutError(request=_REQUEST))
        with pytest.raises(ToolTimeoutError):
            provider.generate("s", [HumanMessage(content="hi")])
        mock_sleep.assert_not_called()
        assert metrics.record_failure.call_args.kwargs["error_type"] == "timeout"
