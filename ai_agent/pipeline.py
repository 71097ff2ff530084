"""Pipeline orchestrator.

Sequences the four generation stages for one project description:

1. **intent**        -- classify the description, suggest a template
2. **architecture**  -- resolve integrations, design pages/components/routes
3. **code**          -- generate source files, batch by batch
4. **context**       -- write the editor context documents

Every stage runs the same loop: call the gateway, repair the reply into
JSON, validate it against the stage's shape.  A reply that parses but fails
validation is re-issued once; a second failure fails the run.

Usage::

    result = await generate_project("a todo app with login")
    for f in result.code.files:
        print(f.path)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from . import repair
from .config import Config
from .errors import PipelineError, RepairFailure, ValidationError
from .ledger import TokenLedger, TokenSummary
from .llm_client import LLMClient, LLMRequest
from .planner import plan as plan_batches
from .prompts import PromptLoader
from .retry import VALIDATION_POLICY, RetryStrategy
from .schemas.models import (
    CursorContext,
    GeneratedCode,
    ProjectArchitecture,
    ProjectInput,
    ProjectIntent,
)
from .schemas.validator import SchemaValidator
from .stages import architecture as architecture_stage
from .stages import code as code_stage
from .stages import context as context_stage
from .stages import intent as intent_stage
from .templates import TemplateResolver
from .utils import (
    STAGE_TITLES,
    console,
    format_duration,
    print_error,
    print_info,
    print_stage_header,
    print_success,
    print_warning,
    truncate,
)


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


class PipelineState(str, Enum):
    """Lifecycle of one pipeline run."""

    IDLE = "idle"
    ANALYZING_INTENT = "analyzing_intent"
    DESIGNING_ARCHITECTURE = "designing_architecture"
    GENERATING_CODE = "generating_code"
    BUILDING_CONTEXT = "building_context"
    DONE = "done"
    FAILED = "failed"


_NEXT_STATE: dict[PipelineState, PipelineState] = {
    PipelineState.IDLE: PipelineState.ANALYZING_INTENT,
    PipelineState.ANALYZING_INTENT: PipelineState.DESIGNING_ARCHITECTURE,
    PipelineState.DESIGNING_ARCHITECTURE: PipelineState.GENERATING_CODE,
    PipelineState.GENERATING_CODE: PipelineState.BUILDING_CONTEXT,
    PipelineState.BUILDING_CONTEXT: PipelineState.DONE,
}


@dataclass
class ProgressEvent:
    """Progress notification delivered to ``on_progress``.

    ``type`` is ``start``, ``chunk`` (streamed text), ``batch`` (a code batch
    is about to be generated) or ``complete``.
    """

    type: str
    stage: str
    chunk: Optional[str] = None
    accumulated: Optional[str] = None
    batch: Optional[int] = None
    batch_count: Optional[int] = None


ProgressCallback = Callable[[ProgressEvent], Any]


@dataclass
class PipelineRunContext:
    """Everything scoped to a single run.  Never shared between runs."""

    config: Config
    ledger: TokenLedger
    gateway: LLMClient
    models: dict[str, str]
    stream: bool = False
    on_progress: Optional[ProgressCallback] = None
    verbose: bool = False
    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = field(default_factory=list)
    repairs: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def transition(self, state: PipelineState) -> None:
        """Move to *state*.  ``FAILED`` is reachable from anywhere but ``DONE``."""
        allowed = state == PipelineState.FAILED and self.state != PipelineState.DONE
        if not allowed and _NEXT_STATE.get(self.state) != state:
            raise RuntimeError(f"Invalid pipeline transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def emit(self, type: str, stage: str, **details: Any) -> Any:
        """Deliver a progress event; returns the callback's result."""
        if self.on_progress is None:
            return None
        return self.on_progress(ProgressEvent(type=type, stage=stage, **details))

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        if self.verbose:
            print_warning(f"  {message}")


# ---------------------------------------------------------------------------
# Results and errors
# ---------------------------------------------------------------------------


class PipelineRunError(PipelineError):
    """A run failed.  Wraps the stage error and carries the partial usage."""

    def __init__(
        self,
        error: PipelineError,
        usage: TokenSummary,
        history: list[PipelineState] | None = None,
    ) -> None:
        super().__init__(
            error.code,
            error.message,
            retryable=error.retryable,
            stage=error.stage,
            context=dict(error.context),
        )
        self.error = error
        self.usage = usage
        self.history = list(history or [])
        self.attempts = error.attempts

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["usage"] = self.usage.to_dict()
        data["history"] = [s.value for s in self.history]
        return data


@dataclass
class GenerateProjectResult:
    """Output of a successful run."""

    intent: ProjectIntent
    architecture: ProjectArchitecture
    code: GeneratedCode
    context: CursorContext
    usage: TokenSummary
    repairs: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


class GenerateProjectOptions(BaseModel):
    """Options for :func:`generate_project`."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    api_key: Optional[str] = Field(default=None, repr=False)
    model_tier: Optional[str] = Field(default=None, description="fast, balanced or quality")
    stream: bool = Field(default=False)
    log_token_usage: bool = Field(default=True, description="Print progress and the usage table")
    on_progress: Optional[ProgressCallback] = Field(default=None, exclude=True)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class PipelineOrchestrator:
    """Runs the intent -> architecture -> code -> context pipeline.

    The orchestrator holds only shared, read-only collaborators (config,
    HTTP client, template catalogue, prompts).  Per-run state lives in a
    :class:`PipelineRunContext` created by :meth:`new_run`.

    Args:
        config: Pipeline configuration; defaults to :meth:`Config.from_env`.
        http_client: Optional ``httpx.AsyncClient`` shared by every run.
        resolver: Template catalogue; defaults to ``config.templates_file``
            or the built-in catalogue.
        prompts: Prompt loader; defaults to ``config.prompts_dir`` or the
            bundled prompts.
        validator: Schema validator.
        sleep: Backoff sleep function (injectable for tests).
        verbose: Print stage headers, repairs, warnings and the usage table.
    """

    def __init__(
        self,
        config: Config | None = None,
        http_client: httpx.AsyncClient | None = None,
        resolver: TemplateResolver | None = None,
        prompts: PromptLoader | None = None,
        validator: SchemaValidator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        verbose: bool = False,
    ) -> None:
        self.config = config or Config.from_env()
        self.http_client = http_client
        if resolver is None:
            if self.config.templates_file:
                resolver = TemplateResolver.from_file(self.config.templates_file)
            else:
                resolver = TemplateResolver()
        self.resolver = resolver
        self.prompts = prompts or PromptLoader(self.config.prompts_dir)
        self.validator = validator or SchemaValidator()
        self.verbose = verbose
        self._sleep = sleep

    def new_run(
        self,
        model_tier: str | None = None,
        stream: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> PipelineRunContext:
        """Create the per-run context: a fresh ledger and gateway.

        Raises:
            ConfigurationError: If the model tier is unknown.
        """
        models = self.config.models_for(model_tier)
        ledger = TokenLedger(self.config.pricing)
        gateway = LLMClient(
            self.config.provider,
            ledger=ledger,
            retry_policy=self.config.retry.policy(),
            streaming_retry_policy=self.config.retry.policy(streaming=True),
            http_client=self.http_client,
            sleep=self._sleep,
            verbose=self.verbose,
        )
        return PipelineRunContext(
            config=self.config,
            ledger=ledger,
            gateway=gateway,
            models=models,
            stream=stream,
            on_progress=on_progress,
            verbose=self.verbose,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        project_input: ProjectInput,
        model_tier: str | None = None,
        stream: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> GenerateProjectResult:
        """Run every stage for *project_input*.

        Raises:
            ConfigurationError: If the model tier is unknown (before any call).
            PipelineRunError: If any stage fails.
        """
        run = self.new_run(model_tier, stream=stream, on_progress=on_progress)
        started = time.monotonic()

        try:
            intent = await self.analyze_intent(run, project_input)
            architecture, intent = await self.design_architecture(run, intent)
            code = await self.generate_code(run, architecture, project_input)
            context = await self.build_context(run, project_input, intent, architecture, code)
        except PipelineError as exc:
            raise self._fail(run, exc, started) from exc
        except Exception as exc:  # noqa: BLE001
            error = PipelineError(
                "internal_error",
                f"Unexpected error: {exc}",
                stage=_STAGE_FOR_STATE.get(run.state),
                context={"error": repr(exc)},
            )
            raise self._fail(run, error, started) from exc

        run.transition(PipelineState.DONE)
        usage = run.ledger.summary()
        if self.verbose:
            print_success(f"Project generated in {format_duration(time.monotonic() - started)}")
            console.print(run.ledger.as_table())
        return GenerateProjectResult(
            intent=intent,
            architecture=architecture,
            code=code,
            context=context,
            usage=usage,
            repairs=dict(run.repairs),
            warnings=list(run.warnings),
        )

    def _fail(self, run: PipelineRunContext, error: PipelineError, started: float) -> PipelineRunError:
        if error.stage is None:
            error.stage = _STAGE_FOR_STATE.get(run.state)
        run.transition(PipelineState.FAILED)
        if self.verbose:
            elapsed = format_duration(time.monotonic() - started)
            print_error(
                f"Pipeline FAILED in stage '{error.stage}' after {elapsed}: {truncate(error.message)}"
            )
            console.print(run.ledger.as_table(title="Token Usage (partial)"))
        return PipelineRunError(error, run.ledger.summary(), run.history)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def analyze_intent(self, run: PipelineRunContext, project_input: ProjectInput) -> ProjectIntent:
        run.transition(PipelineState.ANALYZING_INTENT)
        started = self._begin(run, "intent")
        request = intent_stage.build_request(
            project_input,
            self.prompts,
            self.resolver,
            run.models["intent"],
            max_tokens=self.config.max_tokens.intent,
            temperature=self.config.temperature,
        )
        intent = await self._run_stage(run, "intent", request, "intent")
        self._complete(run, "intent", started)
        return intent

    async def design_architecture(
        self, run: PipelineRunContext, intent: ProjectIntent
    ) -> tuple[ProjectArchitecture, ProjectIntent]:
        """Design the architecture; also returns the intent with dropped integrations cleared."""
        run.transition(PipelineState.DESIGNING_ARCHITECTURE)
        started = self._begin(run, "architecture")

        plan = architecture_stage.prepare(intent, self.resolver)
        for dropped in plan.resolution.dropped:
            run.warn(f"Dropped integration {dropped.category}={dropped.provider}: {dropped.reason}")
        if plan.resolution.missing_required:
            run.warn(
                f"Template '{plan.template.id}' requires integrations with no provider: "
                f"{', '.join(plan.resolution.missing_required)}"
            )

        request = architecture_stage.build_request(
            plan,
            self.prompts,
            run.models["architecture"],
            max_tokens=self.config.max_tokens.architecture,
            temperature=self.config.temperature,
        )
        architecture = await self._run_stage(run, "architecture", request, "architecture")
        architecture = architecture_stage.finalize(architecture, plan)
        self._complete(run, "architecture", started)
        return architecture, plan.intent

    async def generate_code(
        self,
        run: PipelineRunContext,
        architecture: ProjectArchitecture,
        project_input: ProjectInput,
    ) -> GeneratedCode:
        run.transition(PipelineState.GENERATING_CODE)
        started = self._begin(run, "code")

        batches = plan_batches(
            architecture,
            max_files_per_batch=self.config.batch.max_files_per_batch,
            small_project_max_files=self.config.batch.small_project_max_files,
        )
        if self.verbose:
            print_info(f"  {len(batches)} batch(es) planned")

        accumulator = code_stage.CodeAccumulator()
        for batch in batches:
            run.emit("batch", "code", batch=batch.index, batch_count=len(batches))
            if self.verbose and len(batches) > 1:
                print_info(f"  Batch {batch.index + 1}/{len(batches)}: {batch.description}")
            request = code_stage.build_request(
                batch,
                len(batches),
                architecture,
                project_input,
                list(accumulator.files),
                self.prompts,
                run.models["code"],
                max_tokens=self.config.max_tokens.code,
                temperature=self.config.temperature,
            )
            code = await self._run_stage(run, "code", request, "code")
            for path in accumulator.add(code):
                run.warn(f"Batch {batch.index + 1} re-emitted {path}; keeping the earlier file")

        result = accumulator.result()
        self._complete(run, "code", started)
        return result

    async def build_context(
        self,
        run: PipelineRunContext,
        project_input: ProjectInput,
        intent: ProjectIntent,
        architecture: ProjectArchitecture,
        code: GeneratedCode,
    ) -> CursorContext:
        run.transition(PipelineState.BUILDING_CONTEXT)
        started = self._begin(run, "context")
        request = context_stage.build_request(
            project_input,
            intent,
            architecture,
            code,
            self.prompts,
            run.models["context"],
            max_tokens=self.config.max_tokens.context,
            temperature=self.config.temperature,
        )
        context = await self._run_stage(
            run, "context", request, "context", parser=context_stage.parse_context_response
        )
        self._complete(run, "context", started)
        return context

    # ------------------------------------------------------------------
    # Shared stage loop
    # ------------------------------------------------------------------

    async def _run_stage(
        self,
        run: PipelineRunContext,
        stage: str,
        request: LLMRequest,
        shape: str,
        parser: Callable[[str], Any] | None = None,
    ) -> Any:
        """Call, repair, validate.  Re-issues the same request once on a schema failure."""
        if run.stream:
            request = request.model_copy(
                update={
                    "stream": True,
                    "on_stream": lambda chunk, text: run.emit(
                        "chunk", stage, chunk=chunk, accumulated=text
                    ),
                }
            )

        async def attempt() -> Any:
            response = await run.gateway.complete(request, stage=stage)
            if parser is not None:
                data = parser(response.text)
            else:
                data = self._parse_json(run, stage, response.text)
            return self.validator.raise_for(shape, data, stage=stage)

        def on_retry(attempt_no: int, exc: PipelineError, delay: float) -> None:
            if isinstance(exc, ValidationError):
                run.warn(
                    f"{stage}: invalid output ({len(exc.field_errors)} field errors); "
                    "re-issuing request"
                )

        strategy = RetryStrategy(VALIDATION_POLICY, retry_on=(ValidationError,), sleep=self._sleep)
        with run.ledger.stage_scope(stage):
            return await strategy.run(attempt, on_retry=on_retry)

    def _parse_json(self, run: PipelineRunContext, stage: str, text: str) -> Any:
        result = repair.parse(text)
        if not result.success:
            raise RepairFailure(result.error or "unknown error", text, stage=stage)
        if result.repaired:
            run.repairs.setdefault(stage, []).extend(result.repairs)
            if self.verbose:
                print_info(f"  {stage}: JSON repaired ({', '.join(result.repairs)})")
        return result.data

    def _begin(self, run: PipelineRunContext, stage: str) -> float:
        run.emit("start", stage)
        if self.verbose:
            print_stage_header(stage)
        return time.monotonic()

    def _complete(self, run: PipelineRunContext, stage: str, started: float) -> None:
        run.emit("complete", stage)
        if self.verbose:
            totals = run.ledger.stage_totals(stage)
            print_success(
                f"{STAGE_TITLES[stage]} completed in {format_duration(time.monotonic() - started)} "
                f"({totals.calls} call(s), {totals.total_tokens} tokens)"
            )


_STAGE_FOR_STATE: dict[PipelineState, str] = {
    PipelineState.ANALYZING_INTENT: "intent",
    PipelineState.DESIGNING_ARCHITECTURE: "architecture",
    PipelineState.GENERATING_CODE: "code",
    PipelineState.BUILDING_CONTEXT: "context",
}


# ---------------------------------------------------------------------------
# Convenience API
# ---------------------------------------------------------------------------


async def generate_project(
    project_input: ProjectInput | str,
    options: GenerateProjectOptions | None = None,
    client: httpx.AsyncClient | None = None,
    config: Config | None = None,
) -> GenerateProjectResult:
    """Generate a complete project from a description.

    Args:
        project_input: The project input, or just the description text.
        options: API key, model tier, streaming and progress options.
        client: Optional shared ``httpx.AsyncClient``.
        config: Base configuration; defaults to :meth:`Config.from_env`.

    Raises:
        ConfigurationError: If the model tier is unknown.
        PipelineRunError: If any stage fails (including a missing API key).
    """
    options = options or GenerateProjectOptions()
    if isinstance(project_input, str):
        project_input = ProjectInput(description=project_input)

    config = config or Config.from_env()
    if options.api_key:
        config = config.model_copy(
            update={"provider": config.provider.model_copy(update={"api_key": options.api_key})}
        )

    orchestrator = PipelineOrchestrator(
        config, http_client=client, verbose=options.log_token_usage
    )
    return await orchestrator.run(
        project_input,
        model_tier=options.model_tier,
        stream=options.stream,
        on_progress=options.on_progress,
    )
