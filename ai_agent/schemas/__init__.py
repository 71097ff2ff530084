"""Data models and schema validation for the generation pipeline.

Usage::

    from ai_agent.schemas import SchemaValidator, ProjectArchitecture

    outcome = SchemaValidator().validate("architecture", data)
    if outcome.ok:
        arch: ProjectArchitecture = outcome.value
"""

from ai_agent.schemas.models import (
    CREATE_NEW,
    ComponentDefinition,
    ComponentType,
    Complexity,
    CursorContext,
    FileDefinition,
    GeneratedCode,
    IntegrationCode,
    PageDefinition,
    ProjectArchitecture,
    ProjectInput,
    ProjectIntent,
    RouteDefinition,
    RouteType,
)
from ai_agent.schemas.validator import SchemaValidator, ValidationOutcome

__all__ = [
    "CREATE_NEW",
    "ComponentDefinition",
    "ComponentType",
    "Complexity",
    "CursorContext",
    "FileDefinition",
    "GeneratedCode",
    "IntegrationCode",
    "PageDefinition",
    "ProjectArchitecture",
    "ProjectInput",
    "ProjectIntent",
    "RouteDefinition",
    "RouteType",
    "SchemaValidator",
    "ValidationOutcome",
]
