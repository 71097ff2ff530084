"""Pydantic v2 models for the generation pipeline.

Defines the data passed between stages: the caller's input, the analysed
intent, the project architecture, the generated code and the editor context
documents.  Model replies use camelCase keys, so every model accepts both
the camelCase alias and the Python field name.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _AgentModel(BaseModel):
    """Base model: camelCase aliases, population by field name allowed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Complexity(str, Enum):
    """Estimated project complexity."""
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class ComponentType(str, Enum):
    """Role of a component in the UI."""
    UI = "ui"
    LAYOUT = "layout"
    FEATURE = "feature"
    FORM = "form"


class RouteType(str, Enum):
    """Whether a route renders a page or serves an API handler."""
    PAGE = "page"
    API = "api"


# Component ``template`` value meaning the file must be generated.
CREATE_NEW = "create-new"


# ---------------------------------------------------------------------------
# Input & Intent
# ---------------------------------------------------------------------------

class ProjectInput(_AgentModel):
    """Free-text project description supplied by the caller."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    description: str = Field(..., min_length=1, description="What the user wants built")
    project_name: Optional[str] = Field(default=None, description="Optional project name")
    context: Optional[str] = Field(default=None, description="Prior context, e.g. earlier conversation")


class ProjectIntent(_AgentModel):
    """Structured interpretation of a project description."""
    category: str = Field(..., min_length=1, description="Project category, e.g. 'productivity'")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Confidence in the analysis")
    reasoning: str = Field(default="", description="Why the template was chosen")
    suggested_template: str = Field(..., min_length=1, description="Template id")
    features: list[str] = Field(default_factory=list, description="Requested features")
    integrations: dict[str, Optional[str]] = Field(
        default_factory=dict, description="Integration category -> provider (may be null)"
    )
    complexity: Complexity = Field(default=Complexity.MODERATE)
    key_entities: list[str] = Field(default_factory=list, description="Key domain entity names")


# ---------------------------------------------------------------------------
# Architecture
# ---------------------------------------------------------------------------

class PageDefinition(_AgentModel):
    """A page of the generated application."""
    path: str = Field(..., min_length=1, description="URL path, e.g. '/dashboard'")
    name: str = Field(..., min_length=1, description="Page name, e.g. 'Dashboard'")
    description: str = Field(default="")
    components: list[str] = Field(default_factory=list, description="Names of components used")
    routes: list[str] = Field(default_factory=list, description="Paths of routes the page calls")


class ComponentDefinition(_AgentModel):
    """A UI component, either reused from the template or created new."""
    name: str = Field(..., min_length=1)
    type: ComponentType = Field(default=ComponentType.UI)
    description: str = Field(default="")
    template: str = Field(default=CREATE_NEW, description="'create-new' or a template component id")
    props: list[str] = Field(default_factory=list)

    @property
    def is_new(self) -> bool:
        return self.template == CREATE_NEW


class RouteDefinition(_AgentModel):
    """A page route or an API route handler."""
    path: str = Field(..., min_length=1)
    type: RouteType = Field(default=RouteType.API)
    method: str = Field(default="GET")
    description: str = Field(default="")
    page: Optional[str] = Field(default=None, description="Path of the page this route serves")


class ProjectArchitecture(_AgentModel):
    """Pages, components and routes of the project plus resolved integrations."""
    template: str = Field(default="", description="Template id the architecture builds on")
    pages: list[PageDefinition] = Field(..., min_length=1)
    components: list[ComponentDefinition] = Field(default_factory=list)
    routes: list[RouteDefinition] = Field(default_factory=list)
    integrations: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Generated code & context
# ---------------------------------------------------------------------------

class FileDefinition(_AgentModel):
    """A generated source file."""
    path: str = Field(..., min_length=1)
    content: str = Field(...)
    description: str = Field(default="")


class IntegrationCode(_AgentModel):
    """Extra files wiring up an integration provider."""
    provider: str = Field(..., min_length=1)
    files: list[FileDefinition] = Field(default_factory=list)


class GeneratedCode(_AgentModel):
    """Ordered list of generated files, accumulated batch by batch."""
    files: list[FileDefinition] = Field(default_factory=list)
    integration_code: list[IntegrationCode] = Field(default_factory=list)

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]


class CursorContext(_AgentModel):
    """Editor context documents: machine-readable rules and a start guide."""
    cursorrules: str = Field(..., min_length=1)
    start_prompt: str = Field(..., min_length=1)
