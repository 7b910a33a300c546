"""Token and cost tracking across judge calls."""

from __future__ import annotations

from consensus_judge.contracts import JudgeResult, TokenUsage


class UsageTracker:
    """Tracks cumulative token usage; ``budget=0`` means unlimited."""

    def __init__(self, budget: int = 0) -> None:
        self.budget = budget
        self._usage: list[TokenUsage] = []

    def record(self, usage: TokenUsage) -> None:
        self._usage.append(usage)

    def record_results(self, results: list[JudgeResult] | tuple[JudgeResult, ...]) -> None:
        for result in results:
            if result.usage:
                self.record(result.usage)

    @property
    def total_tokens(self) -> int:
        return sum(u["input_tokens"] + u["output_tokens"] for u in self._usage)

    @property
    def total_cost(self) -> float:
        return sum(u["cost_usd"] for u in self._usage)

    @property
    def remaining(self) -> int | None:
        if not self.budget:
            return None
        return max(0, self.budget - self.total_tokens)

    def has_budget(self, estimated_tokens: int = 0) -> bool:
        """Check if there's enough budget for the next operation."""
        if not self.budget:
            return True
        return self.total_tokens + estimated_tokens <= self.budget

    def usage_by_provider(self) -> dict[str, dict[str, int | float]]:
        """Summarize usage per provider."""
        by_provider: dict[str, dict] = {}
        for u in self._usage:
            provider = u["provider"]
            if provider not in by_provider:
                by_provider[provider] = {"calls": 0, "input_tokens": 0, "output_tokens": 0, "cost_usd": 0.0}
            by_provider[provider]["calls"] += 1
            by_provider[provider]["input_tokens"] += u["input_tokens"]
            by_provider[provider]["output_tokens"] += u["output_tokens"]
            by_provider[provider]["cost_usd"] += u["cost_usd"]
        return by_provider

    def summary(self) -> str:
        """Human-readable usage summary."""
        total = self.total_tokens
        if not self.budget:
            return f"Tokens: {total:,} | Cost: ${self.total_cost:.4f}"
        pct = total / self.budget * 100
        return (
            f"Tokens: {total:,}/{self.budget:,} ({pct:.1f}%) | "
            f"Cost: ${self.total_cost:.4f} | "
            f"Remaining: {self.remaining:,}"
        )
