"""Schema validation of parsed model output.

:class:`SchemaValidator` checks a parsed JSON value against one of the named
shapes (``intent``, ``architecture``, ``code``, ``context``).  Required fields
and primitive types are checked by the pydantic models; cross-field
invariants (page/component/route references, unique paths) are checked
afterwards.  Every field error carries a dotted path such as
``pages.0.components.1``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import pydantic
from pydantic import BaseModel

from ..errors import ValidationError
from .models import CursorContext, GeneratedCode, ProjectArchitecture, ProjectIntent

T = TypeVar("T", bound=BaseModel)

FieldError = dict[str, str]


@dataclass
class ValidationOutcome(Generic[T]):
    """Either a typed value (``ok=True``) or a list of field errors."""

    ok: bool
    value: T | None = None
    field_errors: list[FieldError] = field(default_factory=list)


def _dotted(loc: tuple[Any, ...]) -> str:
    return ".".join(str(part) for part in loc) or "(root)"


def _error(path: str, message: str) -> FieldError:
    return {"path": path, "message": message}


# ---------------------------------------------------------------------------
# Cross-field invariants
# ---------------------------------------------------------------------------


def _check_architecture(arch: ProjectArchitecture) -> list[FieldError]:
    errors: list[FieldError] = []
    component_names = {c.name for c in arch.components}
    route_paths = {r.path for r in arch.routes}
    page_paths = {p.path for p in arch.pages}

    seen_pages: set[str] = set()
    for i, page in enumerate(arch.pages):
        if page.path in seen_pages:
            errors.append(_error(f"pages.{i}.path", f"Duplicate page path '{page.path}'"))
        seen_pages.add(page.path)
        for j, name in enumerate(page.components):
            if name not in component_names:
                errors.append(
                    _error(f"pages.{i}.components.{j}", f"Unknown component '{name}'")
                )
        for j, path in enumerate(page.routes):
            if path not in route_paths:
                errors.append(_error(f"pages.{i}.routes.{j}", f"Unknown route '{path}'"))

    seen_components: set[str] = set()
    for i, component in enumerate(arch.components):
        if component.name in seen_components:
            errors.append(
                _error(f"components.{i}.name", f"Duplicate component name '{component.name}'")
            )
        seen_components.add(component.name)

    for i, route in enumerate(arch.routes):
        if route.page is not None and route.page not in page_paths:
            errors.append(_error(f"routes.{i}.page", f"Unknown page '{route.page}'"))

    return errors


def _check_code(code: GeneratedCode) -> list[FieldError]:
    if not code.files:
        return [_error("files", "At least one file is required")]
    errors: list[FieldError] = []
    seen: set[str] = set()
    for i, f in enumerate(code.files):
        if f.path in seen:
            errors.append(_error(f"files.{i}.path", f"Duplicate file path '{f.path}'"))
        seen.add(f.path)
    return errors


@dataclass(frozen=True)
class Shape:
    """A named validation target: a model plus optional cross-field checks."""

    model: type[BaseModel]
    check: Callable[[Any], list[FieldError]] | None = None


SHAPES: dict[str, Shape] = {
    "intent": Shape(ProjectIntent),
    "architecture": Shape(ProjectArchitecture, _check_architecture),
    "code": Shape(GeneratedCode, _check_code),
    "context": Shape(CursorContext),
}


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class SchemaValidator:
    """Validates parsed values against the named shapes."""

    def __init__(self, shapes: dict[str, Shape] | None = None) -> None:
        self.shapes = dict(SHAPES if shapes is None else shapes)

    def validate(self, shape_name: str, value: Any) -> ValidationOutcome:
        """Validate *value* against *shape_name*.

        Raises:
            KeyError: If *shape_name* is not a known shape.
        """
        shape = self.shapes[shape_name]
        try:
            model = shape.model.model_validate(value)
        except pydantic.ValidationError as exc:
            return ValidationOutcome(
                ok=False,
                field_errors=[_error(_dotted(e["loc"]), e["msg"]) for e in exc.errors()],
            )
        if shape.check is not None:
            errors = shape.check(model)
            if errors:
                return ValidationOutcome(ok=False, field_errors=errors)
        return ValidationOutcome(ok=True, value=model)

    def raise_for(self, shape_name: str, value: Any, stage: str | None = None) -> BaseModel:
        """Validate and return the typed value, or raise :class:`ValidationError`."""
        outcome = self.validate(shape_name, value)
        if not outcome.ok:
            raise ValidationError(shape_name, outcome.field_errors, stage=stage)
        return outcome.value
