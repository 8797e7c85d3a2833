import asyncio
import logging
from typing import Dict, List, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from mountain_guide.config import (
    GEMINI_API_KEY,
    GEMINI_MODEL,
    LLM_PROVIDER,
    MODEL_MAX_TOKENS,
    MODEL_TEMPERATURE,
    MODEL_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    OPENAI_MODEL,
)
from mountain_guide.core.errors import ModelTimeoutError, UpstreamCallError

log = logging.getLogger(__name__)

# env var name per provider, used in the "missing credential" error
API_KEY_NAMES = {"openai": "OPENAI_API_KEY", "gemini": "GEMINI_API_KEY"}

_gemini_clients: Dict[str, genai.Client] = {}


def get_model_api_key(provider: Optional[str] = None) -> Optional[str]:
    provider = provider or LLM_PROVIDER
    if provider == "gemini":
        return GEMINI_API_KEY
    return OPENAI_API_KEY


def _get_gemini_client(api_key: str) -> genai.Client:
    client = _gemini_clients.get(api_key)
    if client is None:
        client = genai.Client(api_key=api_key)
        _gemini_clients[api_key] = client
    return client


async def _call_openai(
    messages: List[Dict[str, str]],
    api_key: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """OpenAI-compatible chat completions in JSON-object mode."""
    url = f"{OPENAI_BASE_URL.rstrip('/')}/chat/completions"
    body = {
        "model": OPENAI_MODEL,
        "temperature": MODEL_TEMPERATURE,
        "max_tokens": MODEL_MAX_TOKENS,
        "response_format": {"type": "json_object"},
        "messages": messages,
    }
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }

    try:
        async with httpx.AsyncClient(timeout=MODEL_TIMEOUT_SECONDS, transport=transport) as client:
            r = await client.post(url, json=body, headers=headers)
    except httpx.TimeoutException as exc:
        raise ModelTimeoutError(f"OpenAI request timed out: {exc}") from exc
    except httpx.HTTPError as exc:
        raise UpstreamCallError(f"OpenAI request failed: {exc}") from exc

    if r.status_code >= 400:
        raise UpstreamCallError(
            f"OpenAI HTTP {r.status_code}: {r.text}",
            upstream_status=r.status_code,
            payload=r.text,
        )

    try:
        data = r.json()
    except ValueError as exc:
        raise UpstreamCallError("OpenAI returned a non-JSON envelope", upstream_status=r.status_code) from exc

    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        return ""
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else ""


async def _call_gemini(messages: List[Dict[str, str]], api_key: str) -> str:
    """Gemini with the system turn as system_instruction and JSON output."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    contents = "\n\n".join(m["content"] for m in messages if m["role"] != "system")

    try:
        response = await _get_gemini_client(api_key).aio.models.generate_content(
            model=GEMINI_MODEL,
            contents=contents,
            config=types.GenerateContentConfig(
                system_instruction=system or None,
                response_mime_type="application/json",
                temperature=MODEL_TEMPERATURE,
                max_output_tokens=MODEL_MAX_TOKENS,
            ),
        )
    except genai_errors.APIError as exc:
        raise UpstreamCallError(
            f"Gemini HTTP {exc.code}: {exc.message}",
            upstream_status=exc.code,
            payload=exc.details,
        ) from exc
    except httpx.TimeoutException as exc:
        raise ModelTimeoutError(f"Gemini request timed out: {exc}") from exc
    except httpx.HTTPError as exc:
        raise UpstreamCallError(f"Gemini request failed: {exc}") from exc
    return response.text or ""


async def call_model_json(
    messages: List[Dict[str, str]],
    api_key: str,
    *,
    provider: Optional[str] = None,
    timeout: float = MODEL_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """
    One model call, no retry and no provider fallback.
    The whole call is cancelled once `timeout` seconds pass.
    Returns the raw text content (expected to be a JSON object).
    """
    provider = provider or LLM_PROVIDER
    if provider == "gemini":
        call = _call_gemini(messages, api_key)
    else:
        call = _call_openai(messages, api_key, transport=transport)

    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as exc:
        log.warning("model_call_timeout provider=%s timeout_s=%.1f", provider, timeout)
        raise ModelTimeoutError(f"Model call exceeded {timeout:g}s") from exc
