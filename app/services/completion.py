"""
Completion backends used by the queue worker.
Supports mock (testing) and OpenAI-compatible servers (LM Studio, Ollama, vLLM).

Content-safe: NEVER log prompts, messages or model output.
"""
import json
import time
from typing import Optional

import httpx

from app.core.config import get_settings
from app.core.logging import get_safe_logger
from app.schemas.message import ChatMessage, get_text_content
from app.services.exceptions import (
    BackendTimeoutError,
    BackendUnavailableError,
    ModelError,
    RateLimitedError,
)

logger = get_safe_logger(__name__)

MOCK_REPLY_PREFIX = "Echo: "


def _build_chat_messages(
    messages: list[ChatMessage],
    system_prompt: Optional[str],
) -> list[dict]:
    """Flatten transcript messages into chat.completions messages."""
    settings = get_settings()
    chat = [{"role": "system", "content": system_prompt or settings.system_prompt_default}]
    for message in messages:
        if message.role == "system":
            continue
        text = get_text_content(message)
        if message.attachments:
            names = ", ".join(a.name for a in message.attachments)
            text = f"{text}\n\n[Attached files: {names}]"
        chat.append({"role": message.role, "content": text})
    return chat


def _mock_complete(messages: list[ChatMessage]) -> str:
    last_user = next(
        (m for m in reversed(messages) if m.role == "user"),
        None,
    )
    prompt = get_text_content(last_user) if last_user else ""
    return f"{MOCK_REPLY_PREFIX}{prompt}"


async def openai_compat_complete(
    messages: list[ChatMessage],
    model: str,
    system_prompt: Optional[str] = None,
) -> str:
    """
    Run one chat completion against an OpenAI-compatible API.

    Raises:
        BackendUnavailableError: If backend is not reachable
        BackendTimeoutError: If request times out
        RateLimitedError: If backend returns 429
        ModelError: If the response has no usable content
    """
    settings = get_settings()
    start_time = time.perf_counter()

    url = f"{settings.openai_compat_base_url}/chat/completions"
    timeout_s = settings.openai_compat_timeout_ms / 1000.0
    model_name = settings.openai_compat_model or model

    payload = {
        "model": model_name,
        "messages": _build_chat_messages(messages, system_prompt),
        "stream": False,
    }

    try:
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            response = await client.post(
                url,
                json=payload,
                headers={"Content-Type": "application/json"}
            )

            if response.status_code == 429:
                raise RateLimitedError()

            if response.status_code >= 500:
                raise BackendUnavailableError("openai_compat")

            response.raise_for_status()

    except httpx.ConnectError:
        raise BackendUnavailableError("openai_compat")
    except httpx.TimeoutException:
        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
        raise BackendTimeoutError(elapsed_ms)
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 429:
            raise RateLimitedError()
        raise BackendUnavailableError("openai_compat")

    try:
        result = response.json()
    except json.JSONDecodeError:
        raise ModelError("Invalid JSON response from backend")

    # OpenAI-style error object
    if isinstance(result, dict) and "error" in result:
        logger.error(
            "openai_compat backend returned error object",
            error_code="MODEL_ERROR",
            status_code=response.status_code,
        )
        raise ModelError("Backend returned an error response")

    try:
        choices = result.get("choices", []) if isinstance(result, dict) else []
        first = choices[0] if isinstance(choices[0], dict) else {}
        msg = first.get("message")

        if isinstance(msg, dict) and isinstance(msg.get("content"), str):
            content = msg["content"]
        elif isinstance(first.get("text"), str):
            # fallback for some servers
            content = first["text"]
        else:
            raise KeyError("content")
    except (KeyError, IndexError, TypeError):
        raise ModelError("Invalid response format from backend")

    logger.debug(
        "openai_compat completion finished",
        model=model_name,
        latency_ms=int((time.perf_counter() - start_time) * 1000),
    )
    return content


async def complete_chat(
    messages: list[ChatMessage],
    model: str,
    system_prompt: Optional[str] = None,
) -> str:
    """Produce the assistant reply for a queued prompt with the configured backend."""
    backend = get_settings().completion_backend

    if backend == "openai_compat":
        return await openai_compat_complete(messages, model, system_prompt)

    return _mock_complete(messages)
