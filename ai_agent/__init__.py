"""AI project-generation pipeline.

Turns a free-text project description into a structured intent, a project
architecture, generated source files and editor context documents by
sequencing LLM calls through a retrying, streaming, usage-tracking gateway.

Usage::

    from ai_agent import generate_project, GenerateProjectOptions

    result = await generate_project(
        "a todo app with login",
        GenerateProjectOptions(model_tier="fast"),
    )
"""

from ai_agent.config import Config
from ai_agent.errors import (
    ConfigurationError,
    PipelineError,
    ProviderError,
    RepairFailure,
    StreamCancelled,
    TemplateNotFoundError,
    ValidationError,
    classify_provider_error,
)
from ai_agent.ledger import TokenLedger, TokenSummary, TokenUsageRecord
from ai_agent.llm_client import STOP_STREAM, LLMClient, LLMRequest, LLMResponse, Message
from ai_agent.pipeline import (
    GenerateProjectOptions,
    GenerateProjectResult,
    PipelineOrchestrator,
    PipelineRunContext,
    PipelineRunError,
    PipelineState,
    ProgressEvent,
    generate_project,
)
from ai_agent.planner import Batch, plan, summarize_previous
from ai_agent.prompts import PromptLoader
from ai_agent.repair import RepairResult
from ai_agent.retry import RetryPolicy, RetryStrategy
from ai_agent.schemas import (
    CursorContext,
    GeneratedCode,
    ProjectArchitecture,
    ProjectInput,
    ProjectIntent,
    SchemaValidator,
)
from ai_agent.templates import TemplateMetadata, TemplateResolver

__version__ = "0.1.0"

__all__ = [
    "Batch",
    "Config",
    "ConfigurationError",
    "CursorContext",
    "GenerateProjectOptions",
    "GenerateProjectResult",
    "GeneratedCode",
    "LLMClient",
    "LLMRequest",
    "LLMResponse",
    "Message",
    "PipelineError",
    "PipelineOrchestrator",
    "PipelineRunContext",
    "PipelineRunError",
    "PipelineState",
    "ProgressEvent",
    "ProjectArchitecture",
    "ProjectInput",
    "ProjectIntent",
    "PromptLoader",
    "ProviderError",
    "RepairFailure",
    "RepairResult",
    "RetryPolicy",
    "RetryStrategy",
    "STOP_STREAM",
    "SchemaValidator",
    "StreamCancelled",
    "TemplateMetadata",
    "TemplateNotFoundError",
    "TemplateResolver",
    "TokenLedger",
    "TokenSummary",
    "TokenUsageRecord",
    "ValidationError",
    "classify_provider_error",
    "generate_project",
    "plan",
    "summarize_previous",
]
