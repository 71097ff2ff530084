"""Stage 2: architecture design.

Template selection and integration resolution run *before* the model call so
the prompt only offers integrations the template supports; the resolved
integrations then replace whatever the model emitted.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..llm_client import LLMRequest
from ..prompts import PromptLoader
from ..schemas.models import ProjectArchitecture, ProjectIntent
from ..templates import IntegrationResolution, TemplateMetadata, TemplateResolver
from . import make_request

PROMPT_NAME = "architecture-design"


@dataclass
class ArchitecturePlan:
    """Template choice and integration resolution for one run."""

    template: TemplateMetadata
    resolution: IntegrationResolution
    intent: ProjectIntent


def prepare(intent: ProjectIntent, resolver: TemplateResolver) -> ArchitecturePlan:
    """Select the template and resolve the intent's integrations against it.

    Dropped integrations are cleared (set to ``None``) on the returned intent
    so it never names a provider the template cannot wire up.

    Raises:
        TemplateNotFoundError: If the suggested template is unknown.
    """
    template = resolver.select_template(intent)
    resolution = resolver.validate_integrations(template, intent.integrations)
    dropped = {d.category for d in resolution.dropped}
    integrations = {
        category: None if category in dropped or not provider else provider.strip().lower()
        for category, provider in intent.integrations.items()
    }
    return ArchitecturePlan(
        template=template,
        resolution=resolution,
        intent=intent.model_copy(update={"integrations": integrations}),
    )


def build_request(
    plan: ArchitecturePlan,
    prompts: PromptLoader,
    model: str,
    max_tokens: int = 4096,
    temperature: float = 0.0,
) -> LLMRequest:
    system = prompts.load(
        PROMPT_NAME,
        {
            "intent": plan.intent.model_dump(mode="json", by_alias=True),
            "template": plan.template.id,
            "features": ", ".join(plan.template.features),
            "supported_integrations": plan.template.supported_integrations,
            "integrations": plan.resolution.resolved,
        },
    )
    return make_request(
        model,
        system,
        "Design the project architecture based on the intent analysis.",
        max_tokens=max_tokens,
        temperature=temperature,
    )


def finalize(architecture: ProjectArchitecture, plan: ArchitecturePlan) -> ProjectArchitecture:
    """Stamp the template id and the resolved integrations onto the architecture."""
    return architecture.model_copy(
        update={
            "template": plan.template.id,
            "integrations": dict(plan.resolution.resolved),
        }
    )
