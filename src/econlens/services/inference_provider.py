"""Inference provider interface, an OpenAI-compatible HTTP client and the bounded worker pool.

Providers turn a prompt into raw text. They signal failure only through the
`InferenceError` family so that the pipeline can map every failure to a
fallback reason.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional, Protocol

import httpx

from econlens.config import env_value
from econlens.errors import (
    InferenceError,
    InferenceProviderError,
    InferenceRateLimitedError,
    InferenceTimeoutError,
    PipelineBusyError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"


class InferenceProvider(Protocol):
    def invoke(self, prompt: str, max_tokens: int, temperature: float, timeout: float) -> str:
        ...


class OpenAICompatibleProvider:
    """Synchronous client for `/chat/completions` endpoints.

    Status mapping: timeouts raise `InferenceTimeoutError`, HTTP 429 raises
    `InferenceRateLimitedError`, any other non-2xx status, transport error or
    malformed body raises `InferenceProviderError`.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        system_prompt: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.system_prompt = system_prompt
        self._client = client or httpx.Client()

    @classmethod
    def from_env(cls) -> "OpenAICompatibleProvider":
        return cls(
            base_url=env_value("PROVIDER_BASE_URL") or DEFAULT_BASE_URL,
            api_key=env_value("PROVIDER_API_KEY"),
            model=env_value("PROVIDER_MODEL") or DEFAULT_MODEL,
        )

    def _headers(self) -> dict:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers

    def invoke(self, prompt: str, max_tokens: int, temperature: float, timeout: float) -> str:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        body = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }

        try:
            response = self._client.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json=body,
                timeout=httpx.Timeout(timeout),
            )
        except httpx.TimeoutException as exc:
            raise InferenceTimeoutError(f"Inference call timed out after {timeout:.0f}s") from exc
        except httpx.HTTPError as exc:
            raise InferenceProviderError(f"Inference transport error: {exc}") from exc

        if response.status_code == 429:
            raise InferenceRateLimitedError(f"Inference provider rate limited the request: {response.text[:200]}")
        if response.status_code >= 400:
            raise InferenceProviderError(f"Inference provider returned {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InferenceProviderError("Malformed inference response body") from exc
        if not isinstance(content, str):
            raise InferenceProviderError("Inference response has no text content")

        usage = data.get("usage") or {}
        logger.info(
            "Inference call to %s complete (%d chars, %s+%s tokens)",
            self.model,
            len(content),
            usage.get("prompt_tokens", "?"),
            usage.get("completion_tokens", "?"),
        )
        return content

    def close(self) -> None:
        self._client.close()


class BoundedWorkerPool:
    """Thread pool with a hard cap on running plus queued inference calls.

    `submit` raises `PipelineBusyError` instead of queueing without bound
    once `max_workers + max_queued` calls are outstanding.
    """

    def __init__(self, max_workers: int = 8, max_queued: int = 32):
        self.capacity = max_workers + max_queued
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="econlens-inference")
        self._slots = threading.BoundedSemaphore(self.capacity)

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        if not self._slots.acquire(blocking=False):
            logger.warning("Inference pool saturated (%d outstanding calls)", self.capacity)
            raise PipelineBusyError(f"Inference pool is full ({self.capacity} outstanding calls)")
        try:
            future = self._executor.submit(fn, *args, **kwargs)
        except RuntimeError:
            self._slots.release()
            raise
        future.add_done_callback(lambda _f: self._slots.release())
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def call_provider(
    pool: BoundedWorkerPool,
    provider: InferenceProvider,
    prompt: str,
    max_tokens: int,
    temperature: float,
    timeout: float,
) -> str:
    """Run one provider call on the pool, enforcing the timeout on the caller's side too."""
    future = pool.submit(provider.invoke, prompt, max_tokens, temperature, timeout)
    try:
        return future.result(timeout=timeout)
    except InferenceError:
        raise
    except FutureTimeoutError as exc:
        future.cancel()
        raise InferenceTimeoutError(f"Inference call exceeded {timeout:.0f}s") from exc
    except Exception as exc:
        logger.exception("Inference provider raised an unexpected error")
        raise InferenceProviderError(f"Unexpected provider failure: {exc}") from exc
