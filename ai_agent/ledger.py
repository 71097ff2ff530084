"""Run-scoped token usage ledger.

A :class:`TokenLedger` is created for every pipeline run and records one
:class:`TokenUsageRecord` per successful LLM completion, in the order the
calls finished.  Summaries aggregate totals per stage and per model and
estimate the spend using a per-model price table.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from rich.table import Table

# USD per one million tokens: (input, output).
DEFAULT_PRICING: dict[str, tuple[float, float]] = {
    "claude-3-haiku-20240307": (0.25, 1.25),
    "claude-3-5-haiku-20241022": (0.80, 4.00),
    "claude-sonnet-4-20250514": (3.00, 15.00),
}

# Price used for models missing from the table.
FALLBACK_PRICE: tuple[float, float] = (3.00, 15.00)


@dataclass(frozen=True)
class TokenUsageRecord:
    """Usage of a single completed LLM call."""

    stage: str
    input_tokens: int
    output_tokens: int
    model: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cached: bool = False
    duration_ms: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class UsageTotals:
    """Aggregated token counts and estimated cost."""

    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    duration_ms: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, record: TokenUsageRecord, cost: float) -> None:
        self.calls += 1
        self.input_tokens += record.input_tokens
        self.output_tokens += record.output_tokens
        self.cost_usd += cost
        self.duration_ms += record.duration_ms


@dataclass
class TokenSummary:
    """Snapshot of a ledger: grand totals plus per-stage and per-model breakdowns."""

    total: UsageTotals
    by_stage: dict[str, UsageTotals]
    by_model: dict[str, UsageTotals]
    records: list[TokenUsageRecord]

    def to_dict(self) -> dict:
        """Return a JSON-serialisable representation."""
        return {
            "total": {**asdict(self.total), "total_tokens": self.total.total_tokens},
            "by_stage": {k: asdict(v) for k, v in self.by_stage.items()},
            "by_model": {k: asdict(v) for k, v in self.by_model.items()},
            "records": [
                {**asdict(r), "timestamp": r.timestamp.isoformat()} for r in self.records
            ],
        }


class TokenLedger:
    """Append-only record of token usage for one pipeline run.

    The ledger is never shared between runs.  Records are kept in append
    order, which is the order in which calls completed.
    """

    def __init__(self, pricing: dict[str, tuple[float, float]] | None = None) -> None:
        self.pricing = dict(DEFAULT_PRICING if pricing is None else pricing)
        self._records: list[TokenUsageRecord] = []
        self.current_stage: str | None = None

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, record: TokenUsageRecord) -> None:
        """Append a usage record."""
        self._records.append(record)

    def reset(self) -> None:
        """Discard every record (done at the start of a run)."""
        self._records.clear()
        self.current_stage = None

    @contextmanager
    def stage_scope(self, stage: str) -> Iterator["TokenLedger"]:
        """Tag the ledger with the stage currently executing."""
        previous = self.current_stage
        self.current_stage = stage
        try:
            yield self
        finally:
            self.current_stage = previous

    @property
    def records(self) -> list[TokenUsageRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Cost & summaries
    # ------------------------------------------------------------------

    def cost_of(self, record: TokenUsageRecord) -> float:
        """Estimated USD cost of one record. Cache-served records cost nothing."""
        if record.cached:
            return 0.0
        input_price, output_price = self.pricing.get(record.model, FALLBACK_PRICE)
        return (
            record.input_tokens * input_price + record.output_tokens * output_price
        ) / 1_000_000

    def summary(self) -> TokenSummary:
        """Aggregate all records recorded so far."""
        total = UsageTotals()
        by_stage: dict[str, UsageTotals] = {}
        by_model: dict[str, UsageTotals] = {}
        for record in self._records:
            cost = self.cost_of(record)
            total.add(record, cost)
            by_stage.setdefault(record.stage, UsageTotals()).add(record, cost)
            by_model.setdefault(record.model, UsageTotals()).add(record, cost)
        return TokenSummary(
            total=total, by_stage=by_stage, by_model=by_model, records=self.records
        )

    def stage_totals(self, stage: str) -> UsageTotals:
        """Totals for a single stage (empty totals if it never ran)."""
        return self.summary().by_stage.get(stage, UsageTotals())

    def export_metrics(self) -> str:
        """Render the summary as a plain-text report."""
        summary = self.summary()
        lines = ["Token usage summary", "-------------------"]
        for stage, totals in summary.by_stage.items():
            lines.append(
                f"{stage:<14} calls={totals.calls:<3} in={totals.input_tokens:<7} "
                f"out={totals.output_tokens:<7} cost=${totals.cost_usd:.4f}"
            )
        lines.append(
            f"{'TOTAL':<14} calls={summary.total.calls:<3} in={summary.total.input_tokens:<7} "
            f"out={summary.total.output_tokens:<7} cost=${summary.total.cost_usd:.4f}"
        )
        return "\n".join(lines)

    def as_table(self, title: str = "Token Usage") -> Table:
        """Render the per-stage summary as a Rich table."""
        summary = self.summary()
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Stage", style="dim", no_wrap=True)
        table.add_column("Calls", justify="right")
        table.add_column("Input", justify="right")
        table.add_column("Output", justify="right")
        table.add_column("Cost (USD)", justify="right")
        for stage, totals in summary.by_stage.items():
            table.add_row(
                stage,
                str(totals.calls),
                str(totals.input_tokens),
                str(totals.output_tokens),
                f"{totals.cost_usd:.4f}",
            )
        table.add_row(
            "[bold]total[/bold]",
            str(summary.total.calls),
            str(summary.total.input_tokens),
            str(summary.total.output_tokens),
            f"{summary.total.cost_usd:.4f}",
        )
        return table
