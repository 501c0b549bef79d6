"""Tests for the AI resilience layer."""

from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

import pytest
from tenacity import wait_none

from ai_resilience import (
    DEFAULT_MODELS,
    CircuitBreaker,
    CircuitOpenError,
    CostTracker,
    LLMClient,
    ProviderNotConfigured,
    TransientLLMError,
    _is_transient,
)


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Keep tenacity from sleeping between attempts."""
    monkeypatch.setattr(LLMClient._call_with_retry.retry, "wait", wait_none())


# ── CircuitBreaker Tests ────────────────────────────────────


class TestCircuitBreaker:
    def test_starts_closed(self):
        cb = CircuitBreaker()
        assert not cb.is_open("openai")
        assert cb.get_state("openai") == "closed"

    def test_opens_after_threshold_failures(self):
        cb = CircuitBreaker()
        for _ in range(cb.FAILURE_THRESHOLD):
            cb.record_failure("openai")
        assert cb.is_open("openai")
        assert cb.get_state("openai") == "open"

    def test_success_resets(self):
        cb = CircuitBreaker()
        cb.record_failure("openai")
        cb.record_failure("openai")
        cb.record_success("openai")
        assert not cb.is_open("openai")
        assert cb.get_state("openai") == "closed"

    def test_recovery_timeout(self):
        cb = CircuitBreaker()
        cb.RECOVERY_TIMEOUT = 0.01  # 10ms for test
        for _ in range(cb.FAILURE_THRESHOLD):
            cb.record_failure("openai")
        assert cb.is_open("openai")
        time.sleep(0.02)
        assert not cb.is_open("openai")  # half_open
        assert cb.get_state("openai") == "half_open"

    def test_independent_providers(self):
        cb = CircuitBreaker()
        for _ in range(cb.FAILURE_THRESHOLD):
            cb.record_failure("claude")
        assert cb.is_open("claude")
        assert not cb.is_open("gemini")


# ── CostTracker Tests ───────────────────────────────────────


class TestCostTracker:
    def test_estimate_tokens(self):
        assert CostTracker.estimate_tokens("") == 1  # min 1
        assert CostTracker.estimate_tokens("12345678") == 2

    def test_track_call(self):
        result = CostTracker.track_call("gpt-4o-mini", "Hello world", "Response text here", 150)
        assert result["model"] == "gpt-4o-mini"
        assert result["latency_ms"] == 150
        assert result["cost_estimate_usd"] >= 0


# ── Transient detection ─────────────────────────────────────


@pytest.mark.parametrize("exc", [
    ConnectionError("reset"),
    TimeoutError("slow"),
    RuntimeError("Error code: 429 - rate limit reached"),
    RuntimeError("Request timed out."),
    RuntimeError("503 Service Unavailable"),
])
def test_transient_errors(exc):
    assert _is_transient(exc)


def test_permanent_error():
    assert not _is_transient(ValueError("invalid api key"))


# ── LLMClient ───────────────────────────────────────────────


class TestLLMClient:
    def test_default_model_per_provider(self):
        assert LLMClient("openai", "k").model == DEFAULT_MODELS["openai"]
        assert LLMClient("claude", "k", model="custom").model == "custom"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            LLMClient("mystery", "k")

    def test_from_config_picks_provider_key(self):
        client = LLMClient.from_config({
            "AI_PROVIDER": "gemini",
            "GOOGLE_API_KEY": "g-key",
            "OPENAI_API_KEY": "o-key",
            "AI_TIMEOUT_SECONDS": 12,
        })
        assert client.provider == "gemini"
        assert client.api_key == "g-key"
        assert client.timeout == 12.0

    def test_from_config_unknown_provider_fails_each_call(self):
        client = LLMClient.from_config({"AI_PROVIDER": "azure", "OPENAI_API_KEY": "o-key"})
        assert not client.is_configured
        with patch.object(LLMClient, "_do_call") as mock_call:
            with pytest.raises(ProviderNotConfigured, match="azure"):
                client.complete("prompt")
        mock_call.assert_not_called()

    def test_unconfigured_raises(self):
        with pytest.raises(ProviderNotConfigured):
            LLMClient("openai", "").complete("prompt")

    def test_complete_returns_text_and_metrics(self):
        client = LLMClient("openai", "k")
        with patch.object(LLMClient, "_do_call", return_value="[]") as mock_call:
            text, meta = client.complete("prompt", system="sys")
        mock_call.assert_called_once_with("prompt", "sys")
        assert text == "[]"
        assert meta["provider"] == "openai"
        assert meta["model"] == "gpt-4o-mini"
        assert client.circuit_breaker.get_state("openai") == "closed"

    def test_transient_error_is_retried(self):
        client = LLMClient("openai", "k")
        with patch.object(LLMClient, "_do_call", side_effect=[ConnectionError("reset"), "ok"]) as mock_call:
            text, _ = client.complete("prompt")
        assert text == "ok"
        assert mock_call.call_count == 2

    def test_retries_exhausted(self):
        client = LLMClient("openai", "k")
        with patch.object(LLMClient, "_do_call", side_effect=TimeoutError("slow")) as mock_call:
            with pytest.raises(TransientLLMError):
                client.complete("prompt")
        assert mock_call.call_count == 3
        assert client.circuit_breaker.get_state("openai") == "closed"  # only 1 failure

    def test_permanent_error_not_retried(self):
        client = LLMClient("openai", "k")
        with patch.object(LLMClient, "_do_call", side_effect=ValueError("bad request")) as mock_call:
            with pytest.raises(ValueError):
                client.complete("prompt")
        assert mock_call.call_count == 1

    def test_open_circuit_blocks_call(self):
        cb = CircuitBreaker()
        for _ in range(cb.FAILURE_THRESHOLD):
            cb.record_failure("openai")
        client = LLMClient("openai", "k", circuit_breaker=cb)
        with patch.object(LLMClient, "_do_call") as mock_call:
            with pytest.raises(CircuitOpenError):
                client.complete("prompt")
        mock_call.assert_not_called()

    def test_openai_call_shape(self):
        client = LLMClient("openai", "k", timeout=7)
        fake_openai = MagicMock()
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content="[1]"))]
        fake_openai.return_value.chat.completions.create.return_value = response

        with patch("openai.OpenAI", fake_openai):
            assert client._do_call("prompt", "sys") == "[1]"

        fake_openai.assert_called_once_with(api_key="k", timeout=7, max_retries=0)
        kwargs = fake_openai.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["temperature"] == 0.2
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
