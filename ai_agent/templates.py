"""Template catalogue lookup and integration resolution.

The :class:`TemplateResolver` knows which project templates exist, which
integration providers each template supports and which it applies by
default.  It is consulted before the architecture stage so that the
architecture only ever names integrations the template can actually wire up.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

from .errors import ConfigurationError, TemplateNotFoundError
from .schemas.models import ProjectIntent


class TemplateMetadata(BaseModel):
    """Catalogue entry for one project template."""

    id: str = Field(..., min_length=1)
    name: str = Field(default="")
    description: str = Field(default="")
    category: str = Field(default="")
    features: list[str] = Field(default_factory=list)
    supported_integrations: dict[str, list[str]] = Field(default_factory=dict)
    default_integrations: dict[str, str] = Field(default_factory=dict)
    required_integrations: list[str] = Field(default_factory=list)

    def supports(self, category: str, provider: str) -> bool:
        """Whether *provider* is a supported choice for *category*."""
        return provider in self.supported_integrations.get(category, [])


@dataclass
class DroppedIntegration:
    """A requested integration the template cannot provide."""

    category: str
    provider: str
    reason: str


@dataclass
class IntegrationResolution:
    """Result of :meth:`TemplateResolver.validate_integrations`."""

    resolved: dict[str, str] = field(default_factory=dict)
    dropped: list[DroppedIntegration] = field(default_factory=list)
    missing_required: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Built-in catalogue
# ---------------------------------------------------------------------------

_BUILTIN_TEMPLATES: list[dict[str, Any]] = [
    {
        "id": "saas",
        "name": "SaaS Starter",
        "description": "Full-stack SaaS template with authentication, billing, and database",
        "category": "SaaS",
        "features": ["authentication", "dashboard", "billing", "settings", "landing page"],
        "supported_integrations": {
            "auth": ["supabase", "clerk"],
            "payments": ["stripe", "paddle"],
            "email": ["resend", "sendgrid"],
            "db": ["supabase", "planetscale"],
            "ai": ["openai", "anthropic"],
            "analytics": ["posthog", "plausible"],
            "storage": ["r2", "s3", "supabase"],
        },
        "default_integrations": {"auth": "supabase", "payments": "stripe", "db": "supabase"},
        "required_integrations": ["auth", "db"],
    },
    {
        "id": "ecommerce",
        "name": "E-commerce",
        "description": "Full-featured shop with product catalog, cart, and checkout",
        "category": "E-commerce",
        "features": ["product catalog", "shopping cart", "checkout", "order history"],
        "supported_integrations": {
            "auth": ["supabase", "clerk"],
            "payments": ["stripe", "paddle"],
            "email": ["resend", "sendgrid"],
            "db": ["supabase", "planetscale"],
            "analytics": ["posthog", "plausible"],
            "storage": ["r2", "s3", "supabase"],
        },
        "default_integrations": {"auth": "supabase", "payments": "stripe", "db": "supabase"},
        "required_integrations": ["auth", "payments", "db"],
    },
    {
        "id": "blog",
        "name": "Blog",
        "description": "Content-focused blog with post list, single post view, author bio, categories, and search",
        "category": "Content",
        "features": ["post list", "post detail", "categories", "search", "author bio"],
        "supported_integrations": {
            "analytics": ["posthog", "plausible"],
            "email": ["resend", "sendgrid"],
        },
        "default_integrations": {},
        "required_integrations": [],
    },
    {
        "id": "dashboard",
        "name": "Admin Dashboard",
        "description": "Modern admin dashboard starter with sidebar navigation, data tables, charts, and settings",
        "category": "Dashboard",
        "features": ["sidebar navigation", "data tables", "charts", "settings"],
        "supported_integrations": {
            "auth": ["supabase", "clerk"],
            "db": ["supabase", "planetscale"],
            "analytics": ["posthog", "plausible"],
        },
        "default_integrations": {},
        "required_integrations": [],
    },
    {
        "id": "landing-page",
        "name": "Landing Page",
        "description": "Modern marketing landing page with hero, features, testimonials, pricing, FAQ, and CTA sections",
        "category": "Marketing",
        "features": ["hero", "features", "testimonials", "pricing", "faq", "cta"],
        "supported_integrations": {
            "payments": ["stripe", "paddle"],
            "email": ["resend", "sendgrid"],
            "analytics": ["posthog", "plausible"],
        },
        "default_integrations": {},
        "required_integrations": [],
    },
    {
        "id": "api-backend",
        "name": "API Backend",
        "description": "RESTful API with authentication, rate limiting, and documentation",
        "category": "Backend",
        "features": ["rest api", "authentication", "rate limiting", "api docs"],
        "supported_integrations": {
            "auth": ["supabase", "clerk"],
            "db": ["supabase", "planetscale"],
            "email": ["resend", "sendgrid"],
        },
        "default_integrations": {"auth": "supabase", "db": "supabase"},
        "required_integrations": ["auth", "db"],
    },
    {
        "id": "seo-directory",
        "name": "SEO Directory",
        "description": "SEO-optimized directory template with static generation",
        "category": "Directory",
        "features": ["listings", "category pages", "static generation", "sitemap"],
        "supported_integrations": {"analytics": ["posthog", "plausible"]},
        "default_integrations": {},
        "required_integrations": [],
    },
]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class TemplateResolver:
    """Looks up template metadata and resolves requested integrations."""

    def __init__(self, templates: list[TemplateMetadata] | None = None) -> None:
        if templates is None:
            templates = [TemplateMetadata.model_validate(t) for t in _BUILTIN_TEMPLATES]
        self._templates: dict[str, TemplateMetadata] = {t.id: t for t in templates}

    @classmethod
    def from_file(cls, path: str | Path) -> "TemplateResolver":
        """Load a catalogue from a JSON or YAML file.

        The file holds either a list of templates or a ``{"templates": [...]}``
        mapping.

        Raises:
            ConfigurationError: If the file is missing or malformed.
        """
        file_path = Path(path)
        try:
            raw = file_path.read_text(encoding="utf-8")
            if file_path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(raw)
            else:
                data = json.loads(raw)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Cannot load template catalogue {file_path}: {exc}") from exc

        if isinstance(data, dict):
            data = data.get("templates", [])
        if not isinstance(data, list):
            raise ConfigurationError(f"Template catalogue {file_path} must contain a list")
        try:
            templates = [TemplateMetadata.model_validate(t) for t in data]
        except ValueError as exc:
            raise ConfigurationError(f"Invalid template catalogue {file_path}: {exc}") from exc
        return cls(templates)

    @property
    def template_ids(self) -> list[str]:
        return list(self._templates)

    def get(self, template_id: str) -> Optional[TemplateMetadata]:
        return self._templates.get(template_id)

    def select_template(self, intent: ProjectIntent) -> TemplateMetadata:
        """Return the metadata of the template the intent suggests.

        Raises:
            TemplateNotFoundError: If the suggested id is not in the catalogue.
        """
        template = self._templates.get(intent.suggested_template)
        if template is None:
            raise TemplateNotFoundError(intent.suggested_template, self.template_ids)
        return template

    def validate_integrations(
        self,
        template: TemplateMetadata,
        requested: dict[str, Optional[str]],
    ) -> IntegrationResolution:
        """Resolve the requested integrations against *template*.

        * Unsupported category/provider pairs are dropped and reported.
        * Categories left unset (or dropped) fall back to the template default.
        * Required categories still unset are reported in ``missing_required``.
        """
        result = IntegrationResolution()
        for category, provider in requested.items():
            if not provider:
                continue
            provider = provider.strip().lower()
            if category not in template.supported_integrations:
                result.dropped.append(
                    DroppedIntegration(
                        category, provider, f"template '{template.id}' has no {category} integrations"
                    )
                )
            elif not template.supports(category, provider):
                supported = ", ".join(template.supported_integrations[category])
                result.dropped.append(
                    DroppedIntegration(
                        category, provider, f"{provider} is not supported (choose from {supported})"
                    )
                )
            else:
                result.resolved[category] = provider

        for category, provider in template.default_integrations.items():
            result.resolved.setdefault(category, provider)

        result.missing_required = [
            c for c in template.required_integrations if c not in result.resolved
        ]
        return result
