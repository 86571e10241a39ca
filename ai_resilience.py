"""AI Resilience Layer: retry, circuit breaker, response cache, cost tracking.

Every LLM request goes through resilient_llm_call(). DeepSeek exposes an
OpenAI-compatible API, so both supported providers use the openai SDK and
differ only in base URL and credentials.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass

import openai
from openai import OpenAI
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

PROVIDER_BASE_URLS = {
    "deepseek": "https://api.deepseek.com",
    "openai": None,
}


# ── TTL Cache ───────────────────────────────────────────────

class TTLCache:
    """In-memory dict with expiry timestamps, evicting the soonest-expiring entry at capacity."""

    MAX_ENTRIES = 1000

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float]] = {}  # key -> (value, expires_at)
        self._lock = threading.Lock()

    @staticmethod
    def make_key(prompt: str, system: str, model: str) -> str:
        raw = f"{prompt}|{system}|{model}"
        return hashlib.sha256(raw.encode()).hexdigest()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.time() > expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int = 86400) -> None:
        with self._lock:
            if key not in self._store and len(self._store) >= self.MAX_ENTRIES:
                self._evict_oldest()
            self._store[key] = (value, time.time() + ttl_seconds)

    def pop(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def _evict_oldest(self) -> None:
        if not self._store:
            return
        oldest_key = min(self._store, key=lambda k: self._store[k][1])
        del self._store[oldest_key]

    def cleanup(self) -> int:
        """Remove all expired entries. Returns count removed."""
        now = time.time()
        with self._lock:
            expired = [k for k, (_, exp) in self._store.items() if now > exp]
            for k in expired:
                del self._store[k]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


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
        return self._providers.setdefault(provider, _ProviderState())

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
            if state.state == "open":
                if time.time() - state.last_failure_time >= self.RECOVERY_TIMEOUT:
                    state.state = "half_open"
                    return False  # allow one trial request
                return True
            return False

    def get_state(self, provider: str) -> str:
        with self._lock:
            return self._get_state(provider).state

    def reset(self) -> None:
        with self._lock:
            self._providers.clear()


_circuit_breaker = CircuitBreaker()
_cache = TTLCache()


# ── Cost Tracker ────────────────────────────────────────────

# Approximate USD per 1M tokens (input and output averaged)
_MODEL_PRICING: dict[str, float] = {
    "deepseek-chat": 0.7,
    "deepseek-reasoner": 1.4,
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
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
    ConnectionError,
    TimeoutError,
)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, _TRANSIENT_ERRORS):
        return True
    msg = str(exc).lower()
    return any(p in msg for p in ("rate limit", "429", "502", "503", "overloaded", "temporarily unavailable"))


class TransientLLMError(Exception):
    """Wrapper for transient LLM errors that should be retried."""


class CircuitOpenError(RuntimeError):
    """The provider has failed repeatedly and is temporarily short-circuited."""


# ── Main entry point ────────────────────────────────────────

def _do_call(
    provider: str,
    model: str,
    api_key: str,
    messages: list[dict],
    temperature: float | None,
    max_tokens: int,
    json_mode: bool,
    base_url: str | None,
) -> str:
    """Execute the actual chat completion (no retry, no cache)."""
    if provider not in PROVIDER_BASE_URLS:
        raise ValueError(f"Unknown provider: {provider}")
    client = OpenAI(api_key=api_key, base_url=base_url or PROVIDER_BASE_URLS[provider])
    kwargs: dict = {"model": model, "messages": messages, "max_tokens": max_tokens}
    if temperature is not None:
        kwargs["temperature"] = temperature
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    response = client.chat.completions.create(**kwargs)
    return response.choices[0].message.content or ""


@retry(
    retry=retry_if_exception_type(TransientLLMError),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _call_with_retry(*args, **kwargs) -> str:
    """Call the provider with tenacity retry on transient errors."""
    try:
        return _do_call(*args, **kwargs)
    except Exception as exc:
        if _is_transient(exc):
            logger.warning("Transient LLM error, retrying: %s", exc)
            raise TransientLLMError(str(exc)) from exc
        raise


def resilient_llm_call(
    provider: str,
    model: str,
    prompt: str,
    api_key: str,
    system: str = "",
    messages: list[dict] | None = None,
    temperature: float | None = None,
    max_tokens: int = 4096,
    json_mode: bool = False,
    base_url: str | None = None,
    cache_ttl: int = 0,
) -> tuple[str, dict]:
    """Main entry point for resilient LLM calls.

    Args:
        provider: 'deepseek' or 'openai'
        model: Model name string
        prompt: The user prompt (ignored when messages is given)
        api_key: Provider API key
        system: System prompt (optional)
        messages: Chat messages for multi-turn (optional)
        temperature: Sampling temperature (provider default when None)
        max_tokens: Completion token cap
        json_mode: Ask the provider for a JSON object response
        base_url: Override the provider's API base URL
        cache_ttl: Cache TTL in seconds (0 = no caching)

    Returns:
        (response_text, metadata_dict) where metadata includes token and cost
        estimates, latency, cache_hit, provider and model.
    """
    if _circuit_breaker.is_open(provider):
        raise CircuitOpenError(f"Circuit breaker open for provider: {provider}")

    chat: list[dict] = [{"role": "system", "content": system}] if system else []
    chat.extend(messages or [{"role": "user", "content": prompt}])

    cache_key = TTLCache.make_key(str(chat), str(temperature), model)
    if cache_ttl > 0:
        cached = _cache.get(cache_key)
        if cached is not None:
            return cached, {
                "cache_hit": True,
                "provider": provider,
                "model": model,
                "input_tokens_est": 0,
                "output_tokens_est": 0,
                "cost_estimate_usd": 0.0,
                "latency_ms": 0,
            }

    start = time.time()
    try:
        response_text = _call_with_retry(
            provider, model, api_key, chat, temperature, max_tokens, json_mode, base_url,
        )
    except Exception:
        _circuit_breaker.record_failure(provider)
        raise

    latency_ms = int((time.time() - start) * 1000)
    _circuit_breaker.record_success(provider)

    if cache_ttl > 0:
        _cache.set(cache_key, response_text, cache_ttl)

    metrics = CostTracker.track_call(model, str(chat), response_text, latency_ms)
    metrics["cache_hit"] = False
    metrics["provider"] = provider
    logger.info(
        "LLM call provider=%s model=%s latency=%dms tokens~%d",
        provider, model, latency_ms, metrics["total_tokens_est"],
    )
    return response_text, metrics


def get_circuit_breaker() -> CircuitBreaker:
    return _circuit_breaker


def get_cache() -> TTLCache:
    return _cache
