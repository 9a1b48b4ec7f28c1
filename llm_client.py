#!/usr/bin/env python3
"""Async OpenAI-compatible helper providing `chat_completion` for per-user AI configs.

Each user brings their own endpoint, key and model, so clients are cached per
(base_url, api_key). The SDK's own retries are disabled: rate limiting is
surfaced as `AIRequestError(status_code=429)` and handled by the caller's backoff.
"""
from __future__ import annotations
from typing import Dict, Any, Optional, Tuple

from openai import AsyncOpenAI, APIStatusError, APIConnectionError

from config import config, get_logger
from errors import AIRequestError

logger = get_logger("llm_client")

_clients: Dict[Tuple[str, str], Any] = {}

# Providers that accept unauthenticated requests
KEYLESS_PROVIDERS = ("ollama",)


def is_ai_configured(ai_config: Optional[Dict[str, Any]]) -> bool:
    """True when the config has an endpoint and either a key or a keyless provider."""
    if not ai_config or not ai_config.get("apiUrl"):
        return False
    if ai_config.get("provider") in KEYLESS_PROVIDERS:
        return True
    return bool(ai_config.get("apiKey"))


def normalize_base_url(url: str) -> str:
    """Turn a user-supplied endpoint into an SDK base URL.

    Users may paste either the API root or the full chat completions URL.
    """
    normalized = url.strip().rstrip("/")
    if normalized.endswith("/chat/completions"):
        normalized = normalized[: -len("/chat/completions")]
    return normalized


def _get_client(ai_config: Dict[str, Any]) -> Any:
    base_url = normalize_base_url(ai_config["apiUrl"])
    # The SDK insists on a key even for local providers that ignore it
    api_key = ai_config.get("apiKey") or "unused"
    cache_key = (base_url, api_key)
    client = _clients.get(cache_key)
    if client is None:
        client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=config.AI_REQUEST_TIMEOUT,
            max_retries=0,
        )
        _clients[cache_key] = client
    return client


async def chat_completion(
    prompt: str,
    ai_config: Dict[str, Any],
    *,
    purpose: str = "generic",
    client_override: Optional[Any] = None,
) -> str:
    """Send a single user message and return the generated text ('' when the model returns nothing).

    Raises:
        AIRequestError: on provider errors (with status_code) or transport failures (status_code None).
    """
    if not is_ai_configured(ai_config):
        raise AIRequestError("AI not configured")

    client = client_override or _get_client(ai_config)
    temperature = ai_config.get("temperature")
    params: Dict[str, Any] = {
        "model": ai_config.get("model") or config.AI_DEFAULT_MODEL,
        "temperature": 1 if temperature is None else temperature,
        "messages": [{"role": "user", "content": prompt}],
        "stream": False,
    }
    try:
        resp = await client.chat.completions.create(**params)
    except APIStatusError as e:
        body = e.body if isinstance(e.body, dict) else {}
        error_obj = body.get("error") if isinstance(body.get("error"), dict) else body
        message = (error_obj or {}).get("message") or f"AI API Error: {e.status_code}"
        logger.debug("%s request failed with HTTP %s: %s", purpose, e.status_code, message)
        raise AIRequestError(message, status_code=e.status_code) from e
    except APIConnectionError as e:
        raise AIRequestError(f"AI API connection error: {e}") from e

    choices = getattr(resp, "choices", None) or []
    if not choices:
        logger.warning("No choices in %s response", purpose)
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    return content if isinstance(content, str) else ""


__all__ = ["chat_completion", "is_ai_configured", "normalize_base_url"]
