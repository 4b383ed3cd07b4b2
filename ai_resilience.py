"""AI Resilience Layer — Provider dispatch, Retry, Circuit Breaker, Token estimates.

Provides a unified resilient_llm_call() entry point that wraps every LLM API
call with transient-error detection, tenacity retry, per-provider circuit
breaking and token accounting.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Base class for provider call failures."""


class TransientLLMError(LLMError):
    """Wrapper for transient LLM errors that should be retried."""


class ProviderUnavailableError(LLMError):
    """Raised without calling out while a provider's circuit is open."""


@dataclass
class LLMResult:
    text: str
    input_tokens: int
    output_tokens: int
    provider: str
    model: str
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


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
                if time.time() - state.last_failure_time >= self.RECOVERY_TIMEOUT:
                    state.state = "half_open"
                    return False  # allow one attempt
                return True
            return False

    def get_state(self, provider: str) -> str:
        with self._lock:
            return self._get_state(provider).state

    def reset(self) -> None:
        with self._lock:
            self._providers.clear()


_circuit_breaker = CircuitBreaker()


# ── Token estimates ─────────────────────────────────────────

class CostTracker:
    """Character-based token estimates for when a provider omits usage."""

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Rough estimate: 1 token ~ 4 characters, rounded up."""
        return math.ceil(len(text or "") / 4)


# ── Transient error detection ───────────────────────────────

_TRANSIENT_ERRORS = (
    ConnectionError,
    TimeoutError,
    OSError,
)

_TRANSIENT_PATTERNS = (
    "rate limit",
    "429",
    "503",
    "502",
    "500",
    "overloaded",
    "temporarily unavailable",
    "timeout",
    "connection",
)


def _is_transient(exc: BaseException) -> bool:
    """Check if an exception is transient (worth retrying)."""
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    msg = str(exc).lower()
    return any(p in msg for p in _TRANSIENT_PATTERNS)


# ── Provider calls ──────────────────────────────────────────

def _usage_or_estimate(value, fallback_text: str) -> int:
    return int(value) if value else CostTracker.estimate_tokens(fallback_text)


def _do_call(
    provider: str,
    model: str,
    system: str,
    messages: list[dict],
    max_tokens: int,
    api_key: str,
) -> LLMResult:
    """Execute the actual LLM API call (no retry)."""
    prompt_text = system + "".join(m["content"] for m in messages)

    if provider == "claude":
        import anthropic
        client = anthropic.Anthropic(api_key=api_key)
        kwargs: dict = {"model": model, "max_tokens": max_tokens, "messages": messages}
        if system:
            kwargs["system"] = system
        response = client.messages.create(**kwargs)
        text = response.content[0].text if response.content else ""
        usage = getattr(response, "usage", None)
        return LLMResult(
            text=text,
            input_tokens=_usage_or_estimate(getattr(usage, "input_tokens", 0), prompt_text),
            output_tokens=_usage_or_estimate(getattr(usage, "output_tokens", 0), text),
            provider=provider,
            model=model,
        )

    elif provider == "openai":
        from openai import OpenAI
        client = OpenAI(api_key=api_key)
        oai_messages: list[dict] = []
        if system:
            oai_messages.append({"role": "system", "content": system})
        oai_messages.extend(messages)
        response = client.chat.completions.create(
            model=model,
            messages=oai_messages,
            max_tokens=max_tokens,
        )
        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        return LLMResult(
            text=text,
            input_tokens=_usage_or_estimate(getattr(usage, "prompt_tokens", 0), prompt_text),
            output_tokens=_usage_or_estimate(getattr(usage, "completion_tokens", 0), text),
            provider=provider,
            model=model,
        )

    elif provider == "gemini":
        import google.generativeai as genai
        genai.configure(api_key=api_key)
        m = genai.GenerativeModel(model, system_instruction=system or None)
        contents = [
            {"role": "model" if msg["role"] == "assistant" else "user", "parts": [msg["content"]]}
            for msg in messages
        ]
        response = m.generate_content(
            contents,
            generation_config={"max_output_tokens": max_tokens},
        )
        text = response.text
        usage = getattr(response, "usage_metadata", None)
        return LLMResult(
            text=text,
            input_tokens=_usage_or_estimate(getattr(usage, "prompt_token_count", 0), prompt_text),
            output_tokens=_usage_or_estimate(getattr(usage, "candidates_token_count", 0), text),
            provider=provider,
            model=model,
        )

    else:
        raise ValueError(f"Unknown provider: {provider}")


def _call_once(provider: str, model: str, system: str, messages: list[dict],
               max_tokens: int, api_key: str) -> LLMResult:
    try:
        return _do_call(provider, model, system, messages, max_tokens, api_key)
    except Exception as exc:
        if _is_transient(exc):
            raise TransientLLMError(str(exc)) from exc
        raise


# ── Main entry point ────────────────────────────────────────

def resilient_llm_call(
    provider: str,
    model: str,
    messages: list[dict],
    system: str = "",
    max_tokens: int = 180,
    api_key: str = "",
    attempts: int = 1,
) -> LLMResult:
    """Main entry point for resilient LLM calls.

    Args:
        provider: 'claude', 'openai' or 'gemini'
        model: Model name string
        messages: Chat messages ({role, content}) with user/assistant roles
        system: System prompt (optional)
        max_tokens: Completion budget
        api_key: Provider API key
        attempts: Total attempts for transient errors (1 = no retry)

    Returns:
        LLMResult with text, token usage and latency.

    Raises:
        ProviderUnavailableError while the provider's circuit is open, or the
        provider's own exception after retries are exhausted.
    """
    if _circuit_breaker.is_open(provider):
        raise ProviderUnavailableError(f"Circuit breaker open for provider: {provider}")

    retryer = Retrying(
        retry=retry_if_exception_type(TransientLLMError),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(max(1, attempts)),
        reraise=True,
    )

    start = time.time()
    try:
        result = retryer(_call_once, provider, model, system, messages, max_tokens, api_key)
    except Exception:
        _circuit_breaker.record_failure(provider)
        raise

    result.latency_ms = int((time.time() - start) * 1000)
    _circuit_breaker.record_success(provider)
    logger.info(
        "LLM call %s/%s: %d in, %d out, %dms",
        provider, model, result.input_tokens, result.output_tokens, result.latency_ms,
    )
    return result


def get_circuit_breaker() -> CircuitBreaker:
    """Access the module-level circuit breaker singleton."""
    return _circuit_breaker
