import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from core.config import LLMConfig
from core.errors import CompletionError, ConfigurationError
from core.progress import ProgressSink
from core.types import Candidate, CompletionRequest, CompletionResult

logger = logging.getLogger(__name__)

# rate limit, server error, bad gateway, server busy, gateway timeout
TRANSIENT_STATUSES = frozenset({429, 500, 502, 503, 504})

Sleep = Callable[[float], Awaitable[Any]]


def parse_retry_after(response: httpx.Response | None) -> float:
    """Seconds the server asked us to wait, 0.0 when absent or unparsable."""
    if response is None:
        return 0.0
    value = response.headers.get("retry-after")
    if not value:
        return 0.0
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 0.0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _error_body(error: openai.APIError) -> str:
    if error.body is not None:
        try:
            return json.dumps(error.body, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(error.body)
    response = getattr(error, "response", None)
    if isinstance(response, httpx.Response):
        try:
            return response.text
        except httpx.ResponseNotRead:
            return ""
    return ""


def is_transient(error: Exception) -> bool:
    if isinstance(error, openai.APITimeoutError):
        return True
    return isinstance(error, openai.APIStatusError) and error.status_code in TRANSIENT_STATUSES


class CompletionClient:
    """OpenAI-compatible chat completion client that owns retry and backoff.

    Transient failures (timeouts and statuses in TRANSIENT_STATUSES) are retried
    up to ``max_retries`` times, sleeping ``max(backoff, retry-after)`` and doubling
    ``backoff`` after each retry. Anything else raises CompletionError straight away.
    """

    def __init__(
        self,
        config: LLMConfig,
        progress: ProgressSink | None = None,
        client: AsyncOpenAI | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.progress = progress
        self.max_retries = config.max_retries
        self.initial_backoff = config.initial_backoff_s
        self._sleep = sleep
        self.api_key = os.environ.get(config.api_key_env, "")

        if client is None:
            if not self.api_key:
                raise ConfigurationError(f"{config.api_key_env} is required in environment variables.")
            client = AsyncOpenAI(
                base_url=config.base_url,
                api_key=self.api_key,
                timeout=config.timeout_s,
                max_retries=0,
                default_headers=self._extra_headers(),
            )
        self.client = client

    def _extra_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        referer = os.environ.get(self.config.referer_env)
        if referer:
            headers["HTTP-Referer"] = referer
        title = os.environ.get(self.config.title_env)
        if title:
            headers["X-Title"] = title
        return headers

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        attempt = 0
        backoff = self.initial_backoff
        while True:
            try:
                response = await self._send(request)
            except openai.APIError as e:
                status = e.status_code if isinstance(e, openai.APIStatusError) else None
                if not is_transient(e) or attempt >= self.max_retries:
                    raise CompletionError(
                        e.message,
                        status=status,
                        body=_error_body(e),
                        model=request.model,
                        attempts=attempt + 1,
                    ) from e
                retry_after = parse_retry_after(e.response if isinstance(e, openai.APIStatusError) else None)
                delay = max(backoff, retry_after)
                logger.warning(
                    "Transient LLM failure for %s (%s), retry %d/%d in %.1fs",
                    request.model,
                    status if status is not None else "timeout",
                    attempt + 1,
                    self.max_retries,
                    delay,
                )
                await self._sleep(delay)
                backoff *= 2
                attempt += 1
                continue

            if self.progress is not None:
                self.progress.tick(1)
            return _to_result(response)

    async def _send(self, request: CompletionRequest) -> Any:
        kwargs: dict[str, Any] = {
            "model": request.model,
            "messages": request.to_messages(),
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens
        return await self.client.chat.completions.create(**kwargs)

    async def key_status(self) -> dict:
        """Fetch usage and limits for the configured key (OpenRouter /auth/key)."""
        async with httpx.AsyncClient(timeout=self.config.timeout_s) as client:
            resp = await client.get(
                f"{self.config.base_url.rstrip('/')}/auth/key",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            resp.raise_for_status()
            data: dict = resp.json()
            return data

    async def close(self) -> None:
        await self.client.close()


def _to_result(response: Any) -> CompletionResult:
    candidates = []
    for choice in getattr(response, "choices", None) or []:
        message = getattr(choice, "message", None)
        if message is None:
            candidates.append(Candidate(content=None))
            continue
        candidates.append(
            Candidate(
                content=getattr(message, "content", None),
                reasoning=getattr(message, "reasoning", None),
            )
        )
    return CompletionResult(candidates=tuple(candidates))
