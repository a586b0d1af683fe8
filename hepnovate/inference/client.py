import asyncio
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import time
from threading import Lock
from typing import Any
from uuid import uuid4

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    NotFoundError,
    RateLimitError,
)

from hepnovate.config import settings

_client: AsyncOpenAI | None = None
_semaphore: asyncio.Semaphore | None = None
logger = logging.getLogger(__name__)
_log_write_lock = Lock()

TRANSIENT_LLM_ERRORS = (
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    RateLimitError,
)


def get_semaphore() -> asyncio.Semaphore:
    """Lazy-init semaphore for concurrent model call control."""
    global _semaphore
    if _semaphore is None:
        _semaphore = asyncio.Semaphore(settings.llm_max_concurrent_calls)
    return _semaphore


def _llm_log_path() -> Path:
    log_path = Path(settings.llm_log_path)
    if log_path.is_absolute():
        return log_path
    project_root = Path(__file__).resolve().parents[2]
    return project_root / log_path


def _append_llm_log(record: dict) -> None:
    if not settings.llm_log_enabled:
        return

    path = _llm_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, ensure_ascii=False)
        with _log_write_lock:
            with path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
    except Exception:
        logger.exception("Failed to write model call log.")


def get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            timeout=settings.llm_request_timeout_seconds,
            max_retries=0,
        )
    return _client


def coerce_generated_text(content: Any) -> str:
    """Normalize the shapes model servers return into one string.

    Accepts a plain string, a list of content parts (``{"type": "text",
    "text": ...}``), Hugging Face style ``[{"generated_text": ...}]`` or a
    single such dict. Anything else yields an empty string.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        for key in ("generated_text", "text", "content"):
            value = content.get(key)
            if isinstance(value, str):
                return value
        return ""
    if isinstance(content, list):
        return "".join(coerce_generated_text(part) for part in content)
    text = getattr(content, "text", None)
    return text if isinstance(text, str) else ""


def build_user_content(user_prompt: str, image_base64: str | None = None) -> str | list[dict]:
    """Plain text, or text plus an inline image part for vision models."""
    if not image_base64:
        return user_prompt
    data_url = (
        image_base64
        if image_base64.startswith("data:")
        else f"data:image/png;base64,{image_base64}"
    )
    return [
        {"type": "image_url", "image_url": {"url": data_url}},
        {"type": "text", "text": user_prompt},
    ]


async def chat_completion(
    system_prompt: str,
    user_prompt: str,
    *,
    model: str,
    max_tokens: int,
    temperature: float,
    image_base64: str | None = None,
    call_type: str = "unspecified",
) -> str:
    """Send a chat completion request to the OpenAI-compatible model server."""
    client = get_client()
    retries = max(0, settings.llm_max_retries)
    last_error: Exception | None = None
    call_id = str(uuid4())
    call_started_at = datetime.now(timezone.utc).isoformat()
    messages = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": build_user_content(user_prompt, image_base64)},
    ]

    def log_attempt(
        attempt: int,
        request_started: float,
        *,
        output: str | None,
        error: Exception | None = None,
    ) -> None:
        _append_llm_log(
            {
                "ts_utc": datetime.now(timezone.utc).isoformat(),
                "call_started_at_utc": call_started_at,
                "call_id": call_id,
                "call_type": call_type,
                "attempt": attempt + 1,
                "max_attempts": retries + 1,
                "base_url": settings.llm_base_url,
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "has_image": bool(image_base64),
                "output": output,
                "latency_ms": int((time.perf_counter() - request_started) * 1000),
                "success": error is None,
                "error_type": error.__class__.__name__ if error else None,
                "error_message": str(error) if error else None,
            }
        )

    async with get_semaphore():
        for attempt in range(retries + 1):
            request_started = time.perf_counter()
            try:
                response = await client.chat.completions.create(
                    model=model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
                output = coerce_generated_text(response.choices[0].message.content)
                log_attempt(attempt, request_started, output=output)
                return output
            except NotFoundError as exc:
                log_attempt(attempt, request_started, output=None, error=exc)
                base = settings.llm_base_url.rstrip("/")
                raise RuntimeError(
                    f"Model endpoint not found (404) at {base}/chat/completions for "
                    f"model {model!r}. Check HEPNOVATE_LLM_BASE_URL and that the model "
                    "is served."
                ) from exc
            except TRANSIENT_LLM_ERRORS as exc:
                log_attempt(attempt, request_started, output=None, error=exc)
                last_error = exc
                if attempt >= retries:
                    break
                backoff = settings.llm_retry_backoff_seconds * (2**attempt)
                logger.warning(
                    "Model request failed (%s). retry %s/%s in %.2fs",
                    exc.__class__.__name__,
                    attempt + 1,
                    retries + 1,
                    backoff,
                )
                await asyncio.sleep(backoff)

    assert last_error is not None
    raise last_error
