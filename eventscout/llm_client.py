"""OpenRouter LLM client via the OpenAI-compatible SDK."""
from __future__ import annotations

import time
from typing import Any

from openai import AsyncOpenAI

from eventscout.config import settings
from eventscout.errors import ProviderError
from eventscout.services.logger import log_llm_call

PROVIDER = "openrouter"


def _temperature_for_model(model: str) -> int:
    # Some OpenAI GPT-5-compatible gateways reject temperature=0.
    lowered = (model or "").lower()
    if "gpt-5" in lowered:
        return 1
    return 0


def get_client() -> AsyncOpenAI:
    """Get OpenRouter client via OpenAI-compatible SDK."""
    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )


def get_model() -> str:
    """Get the active OpenRouter model id."""
    return settings.openrouter_model


def llm_available() -> bool:
    return bool(settings.openrouter_api_key.strip())


_client: AsyncOpenAI | None = None


def client() -> AsyncOpenAI:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


async def complete(
    *,
    system: str,
    prompt: str,
    caller: str,
    max_tokens: int | None = None,
    model: str | None = None,
) -> str:
    """Run one chat completion and return its text.

    Any SDK failure is raised as ``ProviderError`` so callers can fall back.
    """
    used_model = model or get_model()
    started = time.monotonic()
    kwargs: dict[str, Any] = {
        "model": used_model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        "max_tokens": max_tokens or settings.llm_max_tokens,
        "temperature": _temperature_for_model(used_model),
    }
    try:
        response = await client().chat.completions.create(**kwargs)
    except Exception as exc:
        log_llm_call(
            model=used_model,
            caller=caller,
            duration_ms=int((time.monotonic() - started) * 1000),
            status="error",
            error=str(exc),
        )
        status_code = getattr(exc, "status_code", None)
        raise ProviderError(PROVIDER, exc, status_code=status_code) from exc

    usage = getattr(response, "usage", None)
    log_llm_call(
        model=used_model,
        caller=caller,
        input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    return getattr(choices[0].message, "content", None) or ""
