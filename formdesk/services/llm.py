"""
LLM client. The text-completion capability behind every handler.

Talks the OpenAI chat-completions dialect to Gemini, AIML or OpenAI:
  - 429 / 5xx / network errors are retried with exponential backoff + jitter
  - if the configured provider still fails, one fallback provider is tried
  - complete() and complete_with_tools() are bounded by LLM_TIMEOUT_SECONDS
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..core.config import get_settings
from ..core.errors import AdapterError, AdapterTimeout, MalformedOutput
from ..core.flags import get_flags

logger = logging.getLogger(__name__)

# ── HTTP client ──────────────────────────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _http() -> httpx.AsyncClient:
    """Shared pooled client, recreated if it was closed."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=60, write=30, pool=10),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
    _client = None


# ── Providers ────────────────────────────────────────────────────────
# All three speak the OpenAI chat-completions dialect.

GEMINI_OPENAI_URL = "https://generativelanguage.googleapis.com/v1beta/openai"
PROVIDER_ORDER = ("gemini", "aiml", "openai")


@dataclass(frozen=True)
class Provider:
    name: str
    base_url: str
    api_key: str
    model: str

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"


def _provider(name: str) -> Provider:
    settings = get_settings()
    urls_and_keys = {
        "gemini": (GEMINI_OPENAI_URL, settings.gemini_api_key),
        "aiml": (settings.aiml_base_url, settings.aiml_api_key),
        "openai": (settings.openai_base_url, settings.openai_api_key),
    }
    base_url, api_key = urls_and_keys.get(name, urls_and_keys["openai"])
    return Provider(name=name, base_url=base_url, api_key=api_key, model=settings.default_llm_model)


def provider_chain() -> list[Provider]:
    """
    FF_LLM_PROVIDER first, then the first other provider with a key as fallback.
    Providers without an API key are left out.
    """
    primary = get_flags().llm_provider.lower()
    chain = [_provider(primary)]
    chain += [_provider(name) for name in PROVIDER_ORDER if name != primary]
    chain = [p for p in chain if p.api_key]
    return chain[:2]


# ── Retries ──────────────────────────────────────────────────────────

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_ATTEMPTS = 4
BASE_DELAY = 1.0
MAX_DELAY = 16.0


def _backoff(attempt: int, retry_after: Optional[str] = None) -> float:
    if retry_after:
        try:
            return min(MAX_DELAY, float(retry_after))
        except ValueError:
            pass
    return min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 1))


async def _post(provider: Provider, payload: dict) -> dict:
    """POST one completion request, retrying rate limits, 5xx and network errors."""
    headers = {"Authorization": f"Bearer {provider.api_key}", "Content-Type": "application/json"}
    last_error: Exception = RuntimeError(f"{provider.name}: no attempts made")

    for attempt in range(MAX_ATTEMPTS):
        try:
            resp = await _http().post(provider.endpoint, json=payload, headers=headers)
        except httpx.TransportError as e:
            last_error = e
            delay = _backoff(attempt)
            logger.warning(
                "LLM %s unreachable (attempt %d/%d), retrying in %.1fs: %s",
                provider.name, attempt + 1, MAX_ATTEMPTS, delay, e,
            )
        else:
            if resp.status_code not in RETRYABLE_STATUS:
                if resp.is_error:
                    logger.error("LLM %s error %d: %s", provider.name, resp.status_code, resp.text[:500])
                resp.raise_for_status()
                return resp.json()
            last_error = httpx.HTTPStatusError(
                f"{provider.name} returned {resp.status_code}", request=resp.request, response=resp,
            )
            delay = _backoff(attempt, resp.headers.get("retry-after"))
            logger.warning(
                "LLM %s %d (attempt %d/%d), retrying in %.1fs",
                provider.name, resp.status_code, attempt + 1, MAX_ATTEMPTS, delay,
            )

        if attempt + 1 < MAX_ATTEMPTS:
            await asyncio.sleep(delay)

    raise last_error


# ── Chat completions ─────────────────────────────────────────────────

async def chat(
    messages: list[dict],
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    tools: Optional[list[dict]] = None,
    model: Optional[str] = None,
) -> dict:
    """
    One chat completion. Tries the configured provider, then the fallback.
    Returns the raw response body.
    """
    chain = provider_chain()
    if not chain:
        raise AdapterError(
            "completion",
            "no LLM provider configured (set GEMINI_API_KEY, AIML_API_KEY or OPENAI_API_KEY)",
        )

    settings = get_settings()
    last_error: Optional[Exception] = None
    for provider in chain:
        payload: dict[str, Any] = {
            "model": model or provider.model,
            "messages": messages,
            "temperature": settings.default_llm_temperature if temperature is None else temperature,
            "max_tokens": max_tokens or settings.default_llm_max_tokens,
        }
        if tools:
            payload["tools"] = tools
            if provider.name != "gemini":
                payload["parallel_tool_calls"] = True

        start = time.monotonic()
        try:
            data = await _post(provider, payload)
        except Exception as e:
            logger.error("LLM %s failed after %.1fs: %s", provider.name, time.monotonic() - start, e)
            last_error = e
            continue

        usage = data.get("usage") or {}
        logger.info(
            "LLM %s: %dms | in=%d out=%d tokens | model=%s",
            provider.name,
            int((time.monotonic() - start) * 1000),
            usage.get("prompt_tokens", 0),
            usage.get("completion_tokens", 0),
            payload["model"],
        )
        return data

    raise last_error


# ── Bounded capability calls ─────────────────────────────────────────
# Handlers only use these two. Both finish within LLM_TIMEOUT_SECONDS or
# raise AdapterTimeout; any other failure surfaces as AdapterError.

MAX_CONTEXT_TOKENS = 12000


async def _bounded(coro, what: str):
    timeout = get_settings().llm_timeout_seconds
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning("LLM %s timed out after %.0fs", what, timeout)
        raise AdapterTimeout("completion", f"{what} timed out after {timeout:.0f}s") from e
    except AdapterError:
        raise
    except Exception as e:
        raise AdapterError("completion", str(e)) from e


def history_messages(history: list, budget: int = MAX_CONTEXT_TOKENS) -> list[dict]:
    """
    Convert session turns into chat messages, newest kept first when the
    token budget runs out.
    """
    messages: list[dict] = []
    used = 0
    for turn in reversed(history or []):
        if isinstance(turn, dict):
            role, content = turn.get("role", "user"), turn.get("content") or ""
        else:
            role, content = turn.role, turn.content
        cost = estimate_tokens(content) + 4
        if used + cost > budget:
            break
        messages.append({"role": role, "content": content})
        used += cost
    messages.reverse()
    return messages


async def complete(
    system_context: str,
    history: Optional[list] = None,
    user_turn: str = "",
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> str:
    """
    Text completion: system context + prior turns + this turn → text.
    The returned text is stripped once. Empty output is MalformedOutput.
    """
    messages = [{"role": "system", "content": system_context}]
    messages.extend(history_messages(history or []))
    if user_turn:
        messages.append({"role": "user", "content": user_turn})

    data = await _bounded(
        chat(messages=messages, temperature=temperature, max_tokens=max_tokens),
        "completion",
    )
    try:
        text = data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedOutput("completion", "response had no message content") from e

    text = text.strip()
    if not text:
        raise MalformedOutput("completion", "empty response")
    return text


async def complete_with_tools(messages: list[dict], tools: list[dict]) -> dict:
    """One tool-calling round. Returns the assistant message dict."""
    data = await _bounded(chat(messages=messages, tools=tools), "tool round")
    try:
        return data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise MalformedOutput("completion", "response had no message") from e


# ── Token estimation ─────────────────────────────────────────────────

def estimate_tokens(text: str) -> int:
    """
    Estimate token count without tiktoken dependency.
    Rule of thumb: ~4 chars per token for English.
    """
    return max(1, len(text) // 4)
