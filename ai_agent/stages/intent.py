"""Stage 1: intent analysis."""

from __future__ import annotations

from ..llm_client import LLMRequest
from ..prompts import PromptLoader
from ..schemas.models import ProjectInput
from ..templates import TemplateResolver
from . import make_request

PROMPT_NAME = "intent-analysis"


def build_request(
    project_input: ProjectInput,
    prompts: PromptLoader,
    resolver: TemplateResolver,
    model: str,
    max_tokens: int = 2048,
    temperature: float = 0.0,
) -> LLMRequest:
    """Request that classifies the description and suggests a template."""
    templates = [
        {"id": t.id, "description": t.description}
        for t in (resolver.get(i) for i in resolver.template_ids)
        if t is not None
    ]
    system = prompts.load(
        PROMPT_NAME,
        {
            "description": project_input.description,
            "project_name": project_input.project_name or "",
            "context": project_input.context or "",
            "templates": templates,
        },
    )
    return make_request(
        model,
        system,
        f"Analyze this project description: {project_input.description}",
        max_tokens=max_tokens,
        temperature=temperature,
    )
