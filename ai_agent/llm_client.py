"""Async gateway to the Anthropic Messages API.

Wraps one request/response (or streamed) exchange with the provider:

* builds the ``/v1/messages`` payload from an :class:`LLMRequest`;
* issues it through ``httpx.AsyncClient``, optionally as a server-sent-event
  stream that feeds a per-chunk callback;
* enforces a per-call deadline;
* retries retryable provider failures with backoff;
* records exactly one :class:`~ai_agent.ledger.TokenUsageRecord` per
  successful completion when a stage tag is given.

Typical usage::

    client = LLMClient(config.provider, ledger=ledger)
    resp = await client.complete(
        LLMRequest(model="claude-3-haiku-20240307", messages=[Message(role="user", content="hi")]),
        stage="intent",
    )
    print(resp.text, resp.usage.output_tokens)
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

import httpx
from pydantic import BaseModel, Field

from .config import ProviderConfig
from .errors import (
    PipelineError,
    ProviderError,
    StreamCancelled,
    classify_provider_error,
    error_from_stream_event,
)
from .ledger import TokenLedger, TokenUsageRecord
from .retry import DEFAULT_POLICY, STREAMING_POLICY, RetryPolicy, RetryStrategy
from .utils import print_warning

# Returned from a stream callback to stop the stream after the current chunk.
STOP_STREAM = object()

StreamCallback = Callable[[str, str], Any]

MESSAGES_PATH = "/v1/messages"


class Message(BaseModel):
    """A role-tagged chat message."""

    role: Literal["system", "user", "assistant"] = "user"
    content: str


class LLMRequest(BaseModel):
    """A single chat completion request."""

    model: str
    system: str = ""
    messages: list[Message] = Field(default_factory=list)
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    max_tokens: int = Field(default=4096, ge=1)
    stream: bool = False
    on_stream: Optional[StreamCallback] = Field(default=None, exclude=True)
    timeout: Optional[float] = Field(default=None, gt=0, description="Deadline in seconds")


class Usage(BaseModel):
    """Token counts reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0


class LLMResponse(BaseModel):
    """Structured response from a completion."""

    id: str = ""
    text: str = ""
    model: str = ""
    usage: Usage = Field(default_factory=Usage)
    stop_reason: Optional[str] = None
    duration_ms: float = 0.0
    cancelled: bool = Field(default=False, description="Stream stopped by the callback")


class LLMClient:
    """Async client for the Anthropic Messages API.

    Args:
        config: Connection settings (API key, base URL, deadlines).
        ledger: Run-scoped ledger that receives one record per successful
            completion with a stage tag.  ``None`` disables recording.
        retry_policy: Retry budget for non-streamed calls.
        streaming_retry_policy: Stricter budget for streamed calls.
        http_client: Optional shared ``httpx.AsyncClient``.  It is used
            read-only and never closed by this class; without one a fresh
            client is opened per call.
        sleep: Backoff sleep function (injectable for tests).
        verbose: Print a warning for every retry.
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        ledger: TokenLedger | None = None,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        streaming_retry_policy: RetryPolicy = STREAMING_POLICY,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        verbose: bool = False,
    ) -> None:
        self.config = config or ProviderConfig()
        self.ledger = ledger
        self.retry_policy = retry_policy
        self.streaming_retry_policy = streaming_retry_policy
        self.verbose = verbose
        self._http = http_client
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared client, or a fresh one closed on exit."""
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.stream_timeout, connect=10.0),
        ) as client:
            yield client

    @property
    def url(self) -> str:
        """Absolute Messages endpoint, so a shared client needs no ``base_url``."""
        return self.config.base_url.rstrip("/") + MESSAGES_PATH

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self.config.api_version,
            "content-type": "application/json",
        }

    @staticmethod
    def build_payload(request: LLMRequest) -> dict[str, Any]:
        """Translate a request into the ``/v1/messages`` JSON body.

        System-role messages are folded into the system prompt; every other
        message keeps its order and maps to ``user`` or ``assistant``.
        """
        system_parts = [request.system] if request.system else []
        system_parts += [m.content for m in request.messages if m.role == "system"]
        messages = [
            {"role": "assistant" if m.role == "assistant" else "user", "content": m.content}
            for m in request.messages
            if m.role != "system"
        ]
        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": messages,
        }
        if system_parts:
            payload["system"] = "\n".join(system_parts)
        return payload

    @staticmethod
    def _extract_text(data: dict) -> str:
        """Concatenate the ``text`` content blocks of a non-streamed response."""
        return "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )

    @staticmethod
    async def _iter_events(response: httpx.Response) -> AsyncIterator[dict[str, Any]]:
        """Yield the JSON payload of every ``data:`` line of an SSE stream."""
        async for line in response.aiter_lines():
            if not line.startswith("data:"):
                continue
            raw = line[5:].strip()
            if not raw:
                continue
            try:
                yield json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ProviderError(
                    f"Malformed stream event from provider: {raw[:200]}",
                    status_class="stream",
                    retryable=True,
                ) from exc

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(self, payload: dict[str, Any], api_key: str) -> LLMResponse:
        async with self._client() as client:
            response = await client.post(self.url, json=payload, headers=self._headers(api_key))
            response.raise_for_status()
            data = response.json()
        if data.get("type") == "error":
            raise error_from_stream_event(data)
        usage = data.get("usage") or {}
        return LLMResponse(
            id=data.get("id", ""),
            text=self._extract_text(data),
            model=data.get("model", payload["model"]),
            usage=Usage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
            stop_reason=data.get("stop_reason"),
        )

    async def _stream(
        self,
        payload: dict[str, Any],
        api_key: str,
        on_stream: StreamCallback | None,
    ) -> LLMResponse:
        text = ""
        response_id = ""
        input_tokens = 0
        output_tokens = 0
        stop_reason: str | None = None
        cancelled = False

        async with self._client() as client:
            async with client.stream(
                "POST", self.url, json={**payload, "stream": True}, headers=self._headers(api_key)
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    response.raise_for_status()
                async for event in self._iter_events(response):
                    kind = event.get("type")
                    if kind == "message_start":
                        message = event.get("message") or {}
                        response_id = message.get("id", "")
                        input_tokens = (message.get("usage") or {}).get("input_tokens", 0)
                    elif kind == "content_block_delta":
                        delta = event.get("delta") or {}
                        chunk = delta.get("text")
                        if delta.get("type") != "text_delta" or not chunk:
                            continue
                        text += chunk
                        if on_stream is None:
                            continue
                        try:
                            signal = on_stream(chunk, text)
                        except StreamCancelled:
                            signal = STOP_STREAM
                        if signal is STOP_STREAM:
                            cancelled = True
                            break
                    elif kind == "message_delta":
                        usage = event.get("usage") or {}
                        output_tokens = usage.get("output_tokens", output_tokens)
                        stop_reason = (event.get("delta") or {}).get("stop_reason", stop_reason)
                    elif kind == "error":
                        raise error_from_stream_event(event)
                    elif kind == "message_stop":
                        break

        return LLMResponse(
            id=response_id,
            text=text,
            model=payload["model"],
            usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
            stop_reason=stop_reason,
            cancelled=cancelled,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def complete(self, request: LLMRequest, stage: str | None = None) -> LLMResponse:
        """Run a completion with retries, a deadline and usage recording.

        Args:
            request: The completion request.  ``stream=True`` streams the
                reply and calls ``on_stream(chunk, accumulated)`` per chunk.
            stage: Pipeline stage tag; defaults to the ledger's active
                stage scope.  When set, one usage record is appended to the
                ledger for the successful attempt.

        Returns:
            The provider response.

        Raises:
            ConfigurationError: If no API key is configured.
            ProviderError: If the provider failed and retries were exhausted
                (or the failure is not retryable).
        """
        stage = stage or (self.ledger.current_stage if self.ledger is not None else None)
        api_key = self.config.require_api_key(stage)

        payload = self.build_payload(request)
        streaming = request.stream
        deadline = request.timeout or (
            self.config.stream_timeout if streaming else self.config.timeout
        )
        strategy = RetryStrategy(
            self.streaming_retry_policy if streaming else self.retry_policy,
            retry_on=(ProviderError,),
            sleep=self._sleep,
        )

        async def attempt() -> LLMResponse:
            started = time.monotonic()
            try:
                if streaming:
                    call = self._stream(payload, api_key, request.on_stream)
                else:
                    call = self._send(payload, api_key)
                response = await asyncio.wait_for(call, timeout=deadline)
            except PipelineError as exc:
                raise classify_provider_error(exc, stage)
            except Exception as exc:  # noqa: BLE001
                raise classify_provider_error(exc, stage) from exc
            response.duration_ms = (time.monotonic() - started) * 1000.0
            return response

        def on_retry(attempt_no: int, exc: PipelineError, delay: float) -> None:
            if self.verbose:
                print_warning(
                    f"  {stage or 'llm'}: attempt {attempt_no} failed ({exc.message}); "
                    f"retrying in {delay:.1f}s"
                )

        response = await strategy.run(attempt, on_retry=on_retry)

        if stage and self.ledger is not None:
            self.ledger.record(
                TokenUsageRecord(
                    stage=stage,
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    model=request.model,
                    cached=False,
                    duration_ms=response.duration_ms,
                )
            )
        return response
