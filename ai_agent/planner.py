"""Batch planning for chunked code generation.

Large architectures cannot be generated in one completion without running
into the output-token budget.  :func:`plan` partitions the architecture into
ordered batches that keep related files together:

* shared scaffolding, components used by several pages and routes called
  from several pages come first, so later batches can import them;
* each page follows with the components only it uses and the API routes
  that serve it;
* API routes no page claims come last.

Planning is pure and deterministic: the same architecture and limits always
produce the same batches in the same order.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .schemas.models import (
    ComponentDefinition,
    FileDefinition,
    PageDefinition,
    ProjectArchitecture,
    RouteDefinition,
    RouteType,
)

# Files every project needs regardless of its pages (root layout).
SCAFFOLD_FILES: tuple[str, ...] = ("layout",)

DEFAULT_MAX_FILES_PER_BATCH = 5
# Projects estimated at or below this many files are generated in one batch.
DEFAULT_SMALL_PROJECT_MAX_FILES = 6


@dataclass
class Batch:
    """A coherent slice of the architecture generated in one completion."""

    index: int
    description: str = ""
    pages: list[PageDefinition] = field(default_factory=list)
    components: list[ComponentDefinition] = field(default_factory=list)
    routes: list[RouteDefinition] = field(default_factory=list)
    scaffold: list[str] = field(default_factory=list)
    shared: bool = False

    @property
    def estimated_files(self) -> int:
        return len(self.file_keys())

    def file_keys(self) -> list[str]:
        """Stable identifiers of the files this batch is responsible for."""
        keys = [f"scaffold:{name}" for name in self.scaffold]
        keys += [_component_key(c) for c in self.components if c.is_new]
        keys += [_page_key(p) for p in self.pages]
        keys += [_route_key(r) for r in self.routes if r.type == RouteType.API]
        return keys

    def to_payload(self, architecture: ProjectArchitecture) -> dict[str, Any]:
        """Architecture subset sent to the model for this batch.

        Template components referenced by the batch's pages are included as
        context even though they produce no files.
        """
        names = {c.name for c in self.components}
        reused = [
            c
            for c in architecture.components
            if not c.is_new
            and c.name not in names
            and any(c.name in p.components for p in self.pages)
        ]
        return {
            "template": architecture.template,
            "scaffold": list(self.scaffold),
            "pages": [p.model_dump(by_alias=True) for p in self.pages],
            "components": [c.model_dump(by_alias=True, mode="json") for c in [*self.components, *reused]],
            "routes": [r.model_dump(by_alias=True, mode="json") for r in self.routes],
            "integrations": dict(architecture.integrations),
        }


def _page_key(page: PageDefinition) -> str:
    return f"page:{page.path}"


def _component_key(component: ComponentDefinition) -> str:
    return f"component:{component.name}"


def _route_key(route: RouteDefinition) -> str:
    return f"route:{route.method.upper()} {route.path}"


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------


def planned_file_keys(architecture: ProjectArchitecture) -> list[str]:
    """Every file the architecture implies, each exactly once."""
    keys = [f"scaffold:{name}" for name in SCAFFOLD_FILES]
    keys += [_component_key(c) for c in architecture.components if c.is_new]
    keys += [_page_key(p) for p in architecture.pages]
    keys += [_route_key(r) for r in architecture.routes if r.type == RouteType.API]
    return keys


def estimate_file_count(architecture: ProjectArchitecture) -> int:
    """One file per page, new component and API route, plus scaffolding."""
    return len(planned_file_keys(architecture))


# ---------------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------------


def _describe(batch: Batch) -> str:
    parts: list[str] = []
    if batch.scaffold:
        parts.append(f"{len(batch.scaffold)} scaffolding files")
    if batch.components:
        parts.append(f"{len(batch.components)} components")
    if batch.pages:
        names = ", ".join(p.name for p in batch.pages)
        parts.append(f"{len(batch.pages)} pages ({names})")
    if batch.routes:
        parts.append(f"{len(batch.routes)} API routes")
    prefix = "shared: " if batch.shared else ""
    return prefix + ", ".join(parts)


def _chunk(items: list[Any], size: int) -> Iterable[list[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _route_owners(
    architecture: ProjectArchitecture, routes: list[RouteDefinition]
) -> dict[str, list[int]]:
    """Map each API route key to the indices of the pages it serves."""
    page_index = {p.path: i for i, p in enumerate(architecture.pages)}
    owners: dict[str, list[int]] = {}
    for route in routes:
        key = _route_key(route)
        found: list[int] = []
        if route.page is not None and route.page in page_index:
            found.append(page_index[route.page])
        for i, page in enumerate(architecture.pages):
            if route.path in page.routes and i not in found:
                found.append(i)
        owners[key] = sorted(found)
    return owners


def plan(
    architecture: ProjectArchitecture,
    file_count_estimator: Callable[[ProjectArchitecture], int] = estimate_file_count,
    max_files_per_batch: int = DEFAULT_MAX_FILES_PER_BATCH,
    small_project_max_files: int = DEFAULT_SMALL_PROJECT_MAX_FILES,
) -> list[Batch]:
    """Partition *architecture* into ordered, budget-bounded batches.

    Args:
        architecture: The validated project architecture.
        file_count_estimator: Returns the estimated number of files.
        max_files_per_batch: Upper bound on files per batch when chunking.
        small_project_max_files: Estimates at or below this produce a
            single batch containing the whole architecture.

    Returns:
        Batches in generation order, numbered from 0.
    """
    if max_files_per_batch < 1:
        raise ValueError("max_files_per_batch must be >= 1")

    new_components = [c for c in architecture.components if c.is_new]
    api_routes = [r for r in architecture.routes if r.type == RouteType.API]

    if file_count_estimator(architecture) <= small_project_max_files:
        batch = Batch(
            index=0,
            pages=list(architecture.pages),
            components=new_components,
            routes=api_routes,
            scaffold=list(SCAFFOLD_FILES),
        )
        batch.description = _describe(batch)
        return [batch]

    usage: dict[str, list[int]] = {c.name: [] for c in new_components}
    for i, page in enumerate(architecture.pages):
        for name in page.components:
            if name in usage and i not in usage[name]:
                usage[name].append(i)
    route_owners = _route_owners(architecture, api_routes)

    # Items are (kind, obj) pairs; kind is one of scaffold/component/page/route.
    shared_items: list[tuple[str, Any]] = [("scaffold", name) for name in SCAFFOLD_FILES]
    shared_items += [("component", c) for c in new_components if len(usage[c.name]) != 1]
    shared_items += [("route", r) for r in api_routes if len(route_owners[_route_key(r)]) > 1]

    groups: list[tuple[bool, list[tuple[str, Any]]]] = [(True, shared_items)]
    for i, page in enumerate(architecture.pages):
        items: list[tuple[str, Any]] = [
            ("component", c) for c in new_components if usage[c.name] == [i]
        ]
        items.append(("page", page))
        items += [("route", r) for r in api_routes if route_owners[_route_key(r)] == [i]]
        groups.append((False, items))
    groups.append(
        (False, [("route", r) for r in api_routes if not route_owners[_route_key(r)]])
    )

    batches: list[Batch] = []
    for shared, items in groups:
        for chunk in _chunk(items, max_files_per_batch):
            batch = Batch(index=len(batches), shared=shared)
            for kind, obj in chunk:
                if kind == "scaffold":
                    batch.scaffold.append(obj)
                elif kind == "component":
                    batch.components.append(obj)
                elif kind == "page":
                    batch.pages.append(obj)
                else:
                    batch.routes.append(obj)
            batch.description = _describe(batch)
            batches.append(batch)
    return batches


# ---------------------------------------------------------------------------
# Cross-batch context
# ---------------------------------------------------------------------------


def summarize_previous(files: list[FileDefinition]) -> str:
    """One line per already-generated file: its path and a short description.

    File contents are deliberately left out to keep later prompts small.
    """
    lines: list[str] = []
    for f in files:
        description = f.description
        if not description:
            parts = f.path.split("/")
            description = "/".join(parts[-2:])
        lines.append(f"- {f.path}: {description}")
    return "\n".join(lines)
