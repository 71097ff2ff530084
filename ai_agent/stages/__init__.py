"""Per-stage request builders and post-processing.

Each module turns the output of the previous stage into an
:class:`~ai_agent.llm_client.LLMRequest` and, where needed, shapes the
model's reply before validation.  The orchestrator in
:mod:`ai_agent.pipeline` owns sequencing, retries and state.
"""

from ai_agent.llm_client import LLMRequest, Message


def make_request(
    model: str,
    system: str,
    instruction: str,
    max_tokens: int,
    temperature: float = 0.0,
) -> LLMRequest:
    """Build a single-turn request: rendered prompt as system, short user instruction."""
    return LLMRequest(
        model=model,
        system=system,
        messages=[Message(role="user", content=instruction)],
        max_tokens=max_tokens,
        temperature=temperature,
    )


__all__ = ["make_request"]
