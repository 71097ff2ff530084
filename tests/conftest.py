"""Shared pytest fixtures for the ai_agent test suite.

Provides reusable fixtures for:
- A configuration with a test API key
- A scripted fake of the Anthropic Messages endpoint (httpx.MockTransport)
- Sample model replies: intent, architecture, generated code, context
- Architecture factories for small and large projects
"""

from __future__ import annotations

import json
from typing import Any, Callable
from unittest.mock import AsyncMock

import httpx
import pytest

from ai_agent.config import Config, ProviderConfig
from ai_agent.schemas.models import ProjectArchitecture


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> Config:
    """Config with a dummy API key and the default tiers."""
    return Config(provider=ProviderConfig(api_key="test-key"))


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that returns immediately."""
    return AsyncMock()


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """Scripted stand-in for ``POST /v1/messages``.

    Each queued reply is consumed by one request and may be:
    - a ``str`` or ``dict``: the assistant text (dicts are JSON-encoded);
      streamed as SSE when the request asked for ``stream``
    - an ``int``: an HTTP error status with an Anthropic error body
    - an ``httpx.Response``: returned as-is
    - an ``Exception``: raised by the transport
    - a callable taking the ``httpx.Request``: its result is used
    """

    _ERROR_TYPES = {
        400: "invalid_request_error",
        401: "authentication_error",
        403: "permission_error",
        404: "not_found_error",
        429: "rate_limit_error",
        500: "api_error",
        529: "overloaded_error",
    }

    def __init__(self) -> None:
        self.replies: list[Any] = []
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []

    def queue(self, *replies: Any) -> "FakeProvider":
        self.replies.extend(replies)
        return self

    @property
    def calls(self) -> int:
        return len(self.requests)

    # -- Response builders --------------------------------------------------

    @staticmethod
    def message(text: str, model: str = "claude-3-haiku-20240307", input_tokens: int = 100, output_tokens: int = 50) -> dict[str, Any]:
        return {
            "id": "msg_test",
            "type": "message",
            "role": "assistant",
            "model": model,
            "content": [{"type": "text", "text": text}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        }

    @staticmethod
    def sse(chunks: list[str], input_tokens: int = 100, output_tokens: int = 50) -> str:
        events: list[dict[str, Any]] = [
            {
                "type": "message_start",
                "message": {"id": "msg_stream", "usage": {"input_tokens": input_tokens, "output_tokens": 1}},
            },
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        ]
        events += [
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": c}}
            for c in chunks
        ]
        events += [
            {"type": "content_block_stop", "index": 0},
            {
                "type": "message_delta",
                "delta": {"stop_reason": "end_turn"},
                "usage": {"output_tokens": output_tokens},
            },
            {"type": "message_stop"},
        ]
        return "".join(f"event: {e['type']}\ndata: {json.dumps(e)}\n\n" for e in events)

    @classmethod
    def error(cls, status: int, message: str = "something went wrong") -> httpx.Response:
        body = {
            "type": "error",
            "error": {"type": cls._ERROR_TYPES.get(status, "api_error"), "message": message},
        }
        return httpx.Response(status, json=body)

    # -- Transport ------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        self.headers.append(request.headers)
        if not self.replies:
            raise AssertionError(f"Unexpected provider call #{len(self.requests)}")

        reply = self.replies.pop(0)
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        if isinstance(reply, int):
            return self.error(reply)

        text = reply if isinstance(reply, str) else json.dumps(reply)
        if body.get("stream"):
            return httpx.Response(
                200,
                text=self.sse([text[i : i + 40] for i in range(0, len(text), 40)]),
                headers={"content-type": "text/event-stream"},
            )
        return httpx.Response(200, json=self.message(text, model=body["model"]))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def provider() -> FakeProvider:
    """Empty scripted provider; queue replies with ``provider.queue(...)``."""
    return FakeProvider()


@pytest.fixture
def provider_factory() -> Callable[[], FakeProvider]:
    """Factory for additional independent providers (e.g. concurrent runs)."""
    return FakeProvider


# ---------------------------------------------------------------------------
# Sample model replies
# ---------------------------------------------------------------------------


@pytest.fixture
def intent_data() -> dict[str, Any]:
    """Intent for 'a todo app with login' as the model would return it."""
    return {
        "category": "productivity",
        "confidence": 0.92,
        "reasoning": "Task tracking with user accounts fits the SaaS starter.",
        "suggestedTemplate": "saas",
        "features": ["task list", "login"],
        "integrations": {"auth": "supabase"},
        "complexity": "simple",
        "keyEntities": ["Task", "User"],
    }


@pytest.fixture
def small_architecture_data() -> dict[str, Any]:
    """Two pages, one new component, one reused component, one API route."""
    return {
        "pages": [
            {
                "path": "/dashboard",
                "name": "Dashboard",
                "description": "Lists the user's tasks",
                "components": ["TaskList"],
                "routes": ["/api/tasks"],
            },
            {
                "path": "/login",
                "name": "Login",
                "description": "Sign-in form",
                "components": ["LoginForm"],
                "routes": [],
            },
        ],
        "components": [
            {
                "name": "TaskList",
                "type": "feature",
                "description": "Renders and toggles tasks",
                "template": "create-new",
                "props": ["tasks"],
            },
            {
                "name": "LoginForm",
                "type": "form",
                "description": "Email and password form",
                "template": "auth-form",
                "props": [],
            },
        ],
        "routes": [
            {
                "path": "/api/tasks",
                "type": "api",
                "method": "GET",
                "description": "List tasks",
                "page": "/dashboard",
            }
        ],
    }


@pytest.fixture
def small_architecture(small_architecture_data: dict[str, Any]) -> ProjectArchitecture:
    return ProjectArchitecture.model_validate(small_architecture_data)


def _build_architecture_data(n_pages: int) -> dict[str, Any]:
    pages, components, routes = [], [], []
    components.append(
        {"name": "Navbar", "type": "layout", "description": "Top navigation", "template": "create-new"}
    )
    for i in range(n_pages):
        name = f"Section{i}"
        path = f"/section-{i}"
        api = f"/api/section-{i}"
        pages.append(
            {
                "path": path,
                "name": name,
                "description": f"Section {i}",
                "components": ["Navbar", f"{name}Panel"],
                "routes": [api],
            }
        )
        components.append(
            {"name": f"{name}Panel", "type": "feature", "description": f"Panel {i}", "template": "create-new"}
        )
        routes.append({"path": api, "type": "api", "method": "GET", "description": f"Data {i}", "page": path})
    return {"pages": pages, "components": components, "routes": routes}


@pytest.fixture
def build_architecture_data() -> Callable[[int], dict[str, Any]]:
    """Factory: architecture with *n* pages, each owning a panel and an API route,
    all sharing a ``Navbar`` component."""
    return _build_architecture_data


@pytest.fixture
def code_data() -> dict[str, Any]:
    """Generated files for the small architecture."""
    return {
        "files": [
            {"path": "app/layout.tsx", "content": "export default function RootLayout() {}", "description": "Root layout"},
            {"path": "components/TaskList.tsx", "content": "export function TaskList() {}", "description": "Task list"},
            {"path": "app/dashboard/page.tsx", "content": "export default function Page() {}", "description": "Dashboard page"},
            {"path": "app/login/page.tsx", "content": "export default function Page() {}", "description": "Login page"},
            {"path": "app/api/tasks/route.ts", "content": "export async function GET() {}", "description": "Tasks API"},
        ],
        "integrationCode": [
            {
                "provider": "supabase",
                "files": [{"path": "lib/supabase.ts", "content": "export const supabase = null;"}],
            }
        ],
    }


@pytest.fixture
def context_text() -> str:
    """Context-stage reply in the delimiter format."""
    return (
        "===CURSORRULES===\n"
        "Use the Next.js App Router and TypeScript.\n"
        "===START_PROMPT===\n"
        "# Todo App\n\nRun `npm run dev` to start.\n"
    )
