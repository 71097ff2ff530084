"""Stage 3: code generation, one request per planned batch."""

from __future__ import annotations

from ..llm_client import LLMRequest
from ..planner import Batch, summarize_previous
from ..prompts import PromptLoader
from ..schemas.models import (
    FileDefinition,
    GeneratedCode,
    IntegrationCode,
    ProjectArchitecture,
    ProjectInput,
)
from . import make_request

PROMPT_NAME = "code-generation"


def build_request(
    batch: Batch,
    batch_count: int,
    architecture: ProjectArchitecture,
    project_input: ProjectInput,
    previous: list[FileDefinition],
    prompts: PromptLoader,
    model: str,
    max_tokens: int = 4096,
    temperature: float = 0.0,
) -> LLMRequest:
    """Request for one batch.

    Batches after the first carry a summary (path and description, never
    content) of every file generated so far.
    """
    system = prompts.load(
        PROMPT_NAME,
        {
            "project_name": project_input.project_name or "project",
            "description": project_input.description,
            "batch": batch.to_payload(architecture),
            "batch_number": batch.index + 1,
            "batch_count": batch_count,
            "previous": summarize_previous(previous) if previous else "",
        },
    )
    return make_request(
        model,
        system,
        f"Generate the files for part {batch.index + 1} of {batch_count}: {batch.description}.",
        max_tokens=max_tokens,
        temperature=temperature,
    )


class CodeAccumulator:
    """Merges batch outputs, keeping the first file emitted for each path."""

    def __init__(self) -> None:
        self.files: list[FileDefinition] = []
        self._integrations: dict[str, IntegrationCode] = {}
        self._paths: set[str] = set()

    def _claim(self, path: str) -> bool:
        if path in self._paths:
            return False
        self._paths.add(path)
        return True

    def add(self, code: GeneratedCode) -> list[str]:
        """Merge *code*; return the paths dropped as duplicates."""
        dropped: list[str] = []
        for f in code.files:
            if self._claim(f.path):
                self.files.append(f)
            else:
                dropped.append(f.path)

        for block in code.integration_code:
            merged = self._integrations.setdefault(
                block.provider, IntegrationCode(provider=block.provider)
            )
            for f in block.files:
                if self._claim(f.path):
                    merged.files.append(f)
                else:
                    dropped.append(f.path)
        return dropped

    def result(self) -> GeneratedCode:
        return GeneratedCode(
            files=list(self.files),
            integration_code=list(self._integrations.values()),
        )
