"""Stage 4: editor context documents.

The model answers in a delimiter format rather than JSON, because both
documents are long Markdown and JSON-escaping them is where smaller models
most often break::

    ===CURSORRULES===
    ...rules...
    ===START_PROMPT===
    ...guide...
"""

from __future__ import annotations

from typing import Any

from .. import repair
from ..errors import RepairFailure
from ..llm_client import LLMRequest
from ..prompts import PromptLoader
from ..schemas.models import GeneratedCode, ProjectArchitecture, ProjectIntent, ProjectInput
from . import make_request

PROMPT_NAME = "context-builder"

CURSORRULES_DELIMITER = "===CURSORRULES==="
START_PROMPT_DELIMITER = "===START_PROMPT==="


def build_request(
    project_input: ProjectInput,
    intent: ProjectIntent,
    architecture: ProjectArchitecture,
    code: GeneratedCode,
    prompts: PromptLoader,
    model: str,
    max_tokens: int = 4096,
    temperature: float = 0.0,
) -> LLMRequest:
    files = "\n".join(f"- {path}" for path in code.paths)
    system = prompts.load(
        PROMPT_NAME,
        {
            "project_name": project_input.project_name or "project",
            "description": project_input.description,
            "intent": intent.model_dump(mode="json", by_alias=True),
            "architecture": architecture.model_dump(mode="json", by_alias=True),
            "files": files,
        },
    )
    return make_request(
        model,
        system,
        "Write the .cursorrules file and the START_PROMPT.md guide for this project.",
        max_tokens=max_tokens,
        temperature=temperature,
    )


def parse_context_response(text: str) -> dict[str, Any]:
    """Split a delimiter-format reply into ``cursorrules`` and ``startPrompt``.

    Either delimiter may come first.  A reply with no delimiters is tried as
    JSON (``{"cursorrules": ..., "startPrompt": ...}``).  Missing sections come
    back as empty strings and are rejected by the ``context`` shape.

    Raises:
        RepairFailure: If the reply has no delimiters and no JSON object.
    """
    rules_at = text.find(CURSORRULES_DELIMITER)
    prompt_at = text.find(START_PROMPT_DELIMITER)

    if rules_at < 0 and prompt_at < 0:
        result = repair.parse(text)
        if result.success and isinstance(result.data, dict):
            return result.data
        raise RepairFailure(
            result.error or "expected delimited sections or a JSON object", text, stage="context"
        )

    def section(start: int, delimiter: str, other: int) -> str:
        if start < 0:
            return ""
        body_start = start + len(delimiter)
        end = other if other > start else len(text)
        return text[body_start:end].strip()

    return {
        "cursorrules": section(rules_at, CURSORRULES_DELIMITER, prompt_at),
        "startPrompt": section(prompt_at, START_PROMPT_DELIMITER, rules_at),
    }
