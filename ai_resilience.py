"""AI Resilience Layer — Retry, Circuit Breaker, Timeouts, Cost Tracking.

Provides LLMClient, the single entry point the synthesizer uses to reach a
text-generation provider. Every call is bounded by a timeout, retried on
transient errors with tenacity, and short-circuited by a per-client circuit
breaker once a provider keeps failing.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "claude": "claude-sonnet-4-20250514",
    "gemini": "gemini-2.0-flash",
}

# Scheduled generation wants stable structure more than variety
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 1500


# ── Circuit Breaker ─────────────────────────────────────────

@dataclass
class _ProviderState:
    failures: int = 0
    state: str = "closed"  # closed | open | half_open
    last_failure_time: float = 0.0


class CircuitBreaker:
    """Per-provider state machine: closed -> open -> half_open -> closed."""

    FAILURE_THRESHOLD = 3
    RECOVERY_TIMEOUT = 60  # seconds

    def __init__(self) -> None:
        self._providers: dict[str, _ProviderState] = {}
        self._lock = threading.Lock()

    def _get_state(self, provider: str) -> _ProviderState:
        if provider not in self._providers:
            self._providers[provider] = _ProviderState()
        return self._providers[provider]

    def record_success(self, provider: str) -> None:
        with self._lock:
            state = self._get_state(provider)
            state.failures = 0
            state.state = "closed"

    def record_failure(self, provider: str) -> None:
        with self._lock:
            state = self._get_state(provider)
            state.failures += 1
            state.last_failure_time = time.time()
            if state.failures >= self.FAILURE_THRESHOLD:
                state.state = "open"

    def is_open(self, provider: str) -> bool:
        with self._lock:
            state = self._get_state(provider)
            if state.state == "closed":
                return False
            if state.state == "open":
                elapsed = time.time() - state.last_failure_time
                if elapsed >= self.RECOVERY_TIMEOUT:
                    state.state = "half_open"
                    return False  # allow one attempt
                return True
            return False

    def get_state(self, provider: str) -> str:
        with self._lock:
            return self._get_state(provider).state


# ── Cost Tracker ────────────────────────────────────────────

# Approximate pricing per 1M tokens (input + output averaged)
_MODEL_PRICING: dict[str, float] = {
    "gemini-2.0-flash": 0.075,
    "claude-sonnet-4-20250514": 3.0,
    "gpt-4o": 2.5,
    "gpt-4o-mini": 0.15,
}


class CostTracker:
    """Estimates tokens from character count and applies model-specific pricing."""

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough estimate: 1 token ~ 4 characters."""
        return max(1, len(text) // 4)

    @staticmethod
    def track_call(model: str, input_text: str, output_text: str, latency_ms: int) -> dict:
        input_tokens = CostTracker.estimate_tokens(input_text)
        output_tokens = CostTracker.estimate_tokens(output_text)
        total_tokens = input_tokens + output_tokens
        cost_usd = (total_tokens / 1_000_000) * _MODEL_PRICING.get(model, 1.0)
        return {
            "input_tokens_est": input_tokens,
            "output_tokens_est": output_tokens,
            "total_tokens_est": total_tokens,
            "cost_estimate_usd": round(cost_usd, 6),
            "model": model,
            "latency_ms": latency_ms,
        }


# ── Transient error detection ───────────────────────────────

_TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
)


def _is_transient(exc: BaseException) -> bool:
    """Check if an exception is transient (worth retrying)."""
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    msg = str(exc).lower()
    transient_patterns = [
        "rate limit",
        "429",
        "503",
        "502",
        "500",
        "overloaded",
        "temporarily unavailable",
        "timeout",
        "timed out",
        "connection",
    ]
    return any(p in msg for p in transient_patterns)


class TransientLLMError(Exception):
    """Wrapper for transient LLM errors that should be retried."""
    pass


class ProviderNotConfigured(RuntimeError):
    """No API key for the selected provider."""


class CircuitOpenError(RuntimeError):
    """The provider failed repeatedly and is being skipped."""


# ── Client ──────────────────────────────────────────────────

class LLMClient:
    """One configured text-generation provider.

    Constructed once per pipeline invocation and injected into the
    synthesizer; nothing here is shared process-wide.
    """

    PROVIDERS = ("openai", "claude", "gemini")

    def __init__(
        self,
        provider: str = "openai",
        api_key: str = "",
        model: str = "",
        timeout: float = 60.0,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        circuit_breaker: CircuitBreaker | None = None,
        config_error: str = "",
    ) -> None:
        if provider not in self.PROVIDERS:
            raise ValueError(f"Unknown provider: {provider}")
        self.provider = provider
        self.api_key = api_key
        self.model = model or DEFAULT_MODELS[provider]
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        # set when the app config names no usable provider; every call fails
        self.config_error = config_error

    @classmethod
    def from_config(cls, config) -> LLMClient:
        """Build from app config. A bad AI_PROVIDER yields a client that always fails."""
        provider = config.get("AI_PROVIDER", "openai")
        key_name = {
            "openai": "OPENAI_API_KEY",
            "claude": "ANTHROPIC_API_KEY",
            "gemini": "GOOGLE_API_KEY",
        }.get(provider)
        if key_name is None:
            logger.error("Unknown AI_PROVIDER %r; scheduled synthesis will fail until it is fixed",
                         provider)
            return cls(config_error=f"Unknown AI provider: {provider}")
        return cls(
            provider=provider,
            api_key=config.get(key_name, ""),
            model=config.get("AI_MODEL", ""),
            timeout=float(config.get("AI_TIMEOUT_SECONDS", 60)),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and not self.config_error

    def _do_call(self, prompt: str, system: str) -> str:
        """Execute the actual LLM API call (no retry)."""
        if self.provider == "openai":
            from openai import OpenAI
            client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
            messages: list[dict] = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            response = client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            return response.choices[0].message.content or ""

        if self.provider == "claude":
            import anthropic
            client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout, max_retries=0)
            kwargs: dict = {
                "model": self.model,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
            if system:
                kwargs["system"] = system
            response = client.messages.create(**kwargs)
            return response.content[0].text

        import google.generativeai as genai
        genai.configure(api_key=self.api_key)
        m = genai.GenerativeModel(self.model, system_instruction=system or None)
        response = m.generate_content(
            prompt,
            generation_config={
                "temperature": self.temperature,
                "max_output_tokens": self.max_tokens,
            },
            request_options={"timeout": self.timeout},
        )
        return response.text

    @retry(
        retry=retry_if_exception_type(TransientLLMError),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_with_retry(self, prompt: str, system: str) -> str:
        """Call LLM with tenacity retry on transient errors."""
        try:
            return self._do_call(prompt, system)
        except Exception as exc:
            if _is_transient(exc):
                raise TransientLLMError(str(exc)) from exc
            raise

    def complete(self, prompt: str, system: str = "") -> tuple[str, dict]:
        """Run one completion.

        Returns:
            (response_text, metadata_dict) where metadata includes token
            estimates, cost, latency, provider and model.

        Raises:
            ProviderNotConfigured, CircuitOpenError, or whatever the provider
            raised once retries are exhausted.
        """
        if self.config_error:
            raise ProviderNotConfigured(self.config_error)
        if not self.is_configured:
            raise ProviderNotConfigured(f"No API key configured for provider: {self.provider}")
        if self.circuit_breaker.is_open(self.provider):
            raise CircuitOpenError(f"Circuit breaker open for provider: {self.provider}")

        start = time.time()
        try:
            response_text = self._call_with_retry(prompt, system)
        except Exception:
            self.circuit_breaker.record_failure(self.provider)
            raise

        latency_ms = int((time.time() - start) * 1000)
        self.circuit_breaker.record_success(self.provider)

        metrics = CostTracker.track_call(self.model, system + prompt, response_text, latency_ms)
        metrics["provider"] = self.provider
        return response_text, metrics
