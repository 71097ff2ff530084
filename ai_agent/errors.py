"""Error taxonomy for the generation pipeline.

Every failure that crosses a stage boundary is one of the classes below.
Provider-specific exceptions (``httpx`` errors, HTTP status codes, stream
error events) are translated exactly once by :func:`classify_provider_error`
so the rest of the pipeline only ever sees :class:`PipelineError` subclasses.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

# Maximum number of characters of raw model output carried on a RepairFailure.
RAW_EXCERPT_LIMIT = 500


class PipelineError(Exception):
    """Base class for every error the pipeline surfaces.

    Attributes:
        code: Machine-readable error code, e.g. ``"provider_429"``.
        message: Human-readable explanation.
        retryable: Whether re-issuing the same request may succeed.
        stage: Pipeline stage that raised the error, if known.
        context: Extra diagnostic data (field errors, raw excerpt, status).
        attempts: Number of attempts made before the error was surfaced.
    """

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        stage: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.retryable = retryable
        self.stage = stage
        self.context: dict[str, Any] = context or {}
        self.attempts = 1
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "stage": self.stage,
            "attempts": self.attempts,
            "context": self.context,
        }


class ProviderError(PipelineError):
    """Network, rate-limit, timeout or server-side failure of the LLM provider."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        status_class: str = "unknown",
        retryable: bool = False,
        stage: str | None = None,
    ) -> None:
        self.status = status
        self.status_class = status_class
        code = f"provider_{status}" if status is not None else f"provider_{status_class}"
        super().__init__(
            code,
            message,
            retryable=retryable,
            stage=stage,
            context={"status": status, "status_class": status_class},
        )


class ValidationError(PipelineError):
    """The model's output parsed, but does not match the expected shape."""

    def __init__(
        self,
        shape: str,
        field_errors: list[dict[str, str]],
        stage: str | None = None,
    ) -> None:
        self.shape = shape
        self.field_errors = field_errors
        summary = ", ".join(f"{e['path']}: {e['message']}" for e in field_errors[:5])
        if len(field_errors) > 5:
            summary += f" (+{len(field_errors) - 5} more)"
        super().__init__(
            "validation_error",
            f"Invalid AI output for '{shape}': {summary}",
            retryable=True,
            stage=stage,
            context={"shape": shape, "field_errors": field_errors},
        )


class RepairFailure(PipelineError):
    """The model's output could not be recovered into structured data."""

    def __init__(self, error: str, raw_text: str, stage: str | None = None) -> None:
        self.raw_excerpt = raw_text[:RAW_EXCERPT_LIMIT]
        super().__init__(
            "repair_failure",
            f"Failed to parse AI response: {error}",
            retryable=False,
            stage=stage,
            context={"raw_excerpt": self.raw_excerpt, "error": error},
        )


class ConfigurationError(PipelineError):
    """Missing credentials, unknown template or tier. Never retried."""

    def __init__(self, message: str, code: str = "configuration_error", stage: str | None = None) -> None:
        super().__init__(code, message, retryable=False, stage=stage)


class TemplateNotFoundError(ConfigurationError):
    """The intent suggested a template id the catalogue does not know."""

    def __init__(self, template_id: str, known: list[str]) -> None:
        self.template_id = template_id
        super().__init__(
            f"Unknown template '{template_id}'. Known templates: {', '.join(sorted(known))}",
            code="template_not_found",
        )


class StreamCancelled(Exception):
    """Raised from a stream callback to stop the stream cooperatively."""


# ---------------------------------------------------------------------------
# Provider error classification
# ---------------------------------------------------------------------------

_STATUS_MESSAGES: dict[int, str] = {
    400: "Invalid request to the model provider.",
    401: "Invalid API key. Please check your ANTHROPIC_API_KEY.",
    403: "The API key is not permitted to use this model.",
    404: "The requested model or endpoint does not exist.",
    413: "The request is too large for the model provider.",
    429: "Rate limit exceeded. Retrying later may help.",
    500: "The model provider had an internal error. Retrying later may help.",
    503: "The model provider is temporarily unavailable. Retrying later may help.",
    529: "The model provider is overloaded. Retrying later may help.",
}

# Provider stream ``error`` event types mapped to the equivalent HTTP status.
_STREAM_ERROR_STATUS: dict[str, int] = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "request_too_large": 413,
    "rate_limit_error": 429,
    "api_error": 500,
    "overloaded_error": 529,
}


def status_class(status: int) -> str:
    """Return the coarse class of an HTTP status: ``rate_limited``, ``server`` or ``client``."""
    if status == 429:
        return "rate_limited"
    if 500 <= status < 600:
        return "server"
    if 400 <= status < 500:
        return "client"
    return "unknown"


def error_from_status(status: int, detail: str = "", stage: str | None = None) -> ProviderError:
    """Build a ``ProviderError`` from an HTTP status code.

    429 and 5xx are retryable; every other 4xx is fatal.
    """
    klass = status_class(status)
    retryable = klass in ("rate_limited", "server")
    message = _STATUS_MESSAGES.get(status, f"Provider returned HTTP {status}.")
    if detail:
        message = f"{message} ({detail[:300]})"
    return ProviderError(message, status=status, status_class=klass, retryable=retryable, stage=stage)


def error_from_stream_event(event: dict[str, Any], stage: str | None = None) -> ProviderError:
    """Translate a streamed ``{"type": "error", "error": {...}}`` event."""
    error = event.get("error") or {}
    status = _STREAM_ERROR_STATUS.get(error.get("type", ""), 500)
    return error_from_status(status, error.get("message", ""), stage=stage)


def classify_provider_error(exc: BaseException, stage: str | None = None) -> PipelineError:
    """Map any exception raised while talking to the provider to the taxonomy.

    Already-classified ``PipelineError`` instances pass through unchanged.
    """
    if isinstance(exc, PipelineError):
        if stage and exc.stage is None:
            exc.stage = stage
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        detail = ""
        try:
            detail = exc.response.json().get("error", {}).get("message", "")
        except (ValueError, AttributeError, httpx.ResponseNotRead):
            detail = ""
        return error_from_status(exc.response.status_code, detail, stage=stage)
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ProviderError(
            "Request to the model provider timed out. Retrying later may help.",
            status_class="timeout",
            retryable=True,
            stage=stage,
        )
    if isinstance(exc, httpx.TransportError):
        return ProviderError(
            f"Cannot reach the model provider: {exc}",
            status_class="network",
            retryable=True,
            stage=stage,
        )
    return PipelineError(
        "unknown_error",
        f"Unexpected error: {exc}",
        retryable=False,
        stage=stage,
        context={"error": repr(exc)},
    )
