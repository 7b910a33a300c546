"""ProviderRegistry: immutable set of configured judges and the selection policy."""

from __future__ import annotations

import sys
from typing import Any, Mapping

import consensus_judge.providers.anthropic_judge  # noqa: F401
import consensus_judge.providers.gemini_judge  # noqa: F401
import consensus_judge.providers.openai_judge  # noqa: F401
from consensus_judge.config import EvaluationModeConfig, JudgeConfig
from consensus_judge.contracts import TelemetrySink
from consensus_judge.errors import ConfigurationError
from consensus_judge.providers import provider_class
from consensus_judge.providers.base import JudgeProvider


class ProviderRegistry:
    """Enabled judges ordered by (priority, name). Never mutated after construction."""

    def __init__(
        self,
        providers: list[JudgeProvider],
        mode: EvaluationModeConfig | None = None,
    ) -> None:
        self._providers = tuple(sorted(providers, key=lambda p: (p.config.priority, p.name)))
        self._mode = mode or EvaluationModeConfig()

    @classmethod
    def build(
        cls,
        config: JudgeConfig,
        credentials: Mapping[str, str],
        *,
        telemetry: TelemetrySink | None = None,
    ) -> ProviderRegistry:
        """Validate the snapshot and construct one client per enabled provider.

        ``credentials`` maps provider kind (or provider name) to an API key.
        Raises ConfigurationError listing every problem found.
        """
        errors = config.validate()
        classes: dict[str, type[JudgeProvider]] = {}
        for p in config.enabled_providers():
            try:
                classes[p.name] = provider_class(p.kind)
            except KeyError as e:
                errors.append(f"{p.name}: {e.args[0]}")
            if not (credentials.get(p.name) or credentials.get(p.kind)):
                errors.append(f"{p.name}: no API key for provider kind '{p.kind}'")
        if errors:
            raise ConfigurationError(errors)

        providers = [
            classes[p.name](
                p,
                api_key=credentials.get(p.name) or credentials[p.kind],
                telemetry=telemetry,
            )
            for p in config.enabled_providers()
        ]
        return cls(providers, config.mode)

    @property
    def mode(self) -> EvaluationModeConfig:
        return self._mode

    def active_providers(self) -> list[JudgeProvider]:
        return list(self._providers)

    def names(self) -> list[str]:
        return [p.name for p in self._providers]

    def is_multi_judge_available(self) -> bool:
        return self._mode.multi_judge and len(self._providers) >= self._mode.min_providers

    def select_for_evaluation(self, names: tuple[str, ...] | list[str] | None = None) -> list[JudgeProvider]:
        """Pick the judges for one request.

        Multi-judge with enough candidates: the first ``min_providers``.
        Otherwise one provider when ``fallback_to_single`` (or multi-judge
        is off), else ConfigurationError.
        """
        candidates = self.active_providers()
        if names:
            unknown = sorted(set(names) - {p.name for p in candidates})
            if unknown:
                raise ConfigurationError(
                    f"Unknown or disabled provider(s): {', '.join(unknown)}. "
                    f"Available: {', '.join(self.names()) or '(none)'}"
                )
            candidates = [p for p in candidates if p.name in names]
        if not candidates:
            raise ConfigurationError("No providers available for evaluation")

        mode = self._mode
        if not mode.multi_judge:
            return candidates[:1]
        if len(candidates) >= mode.min_providers:
            return candidates[: mode.min_providers]
        if mode.fallback_to_single:
            print(
                f"WARNING: multi-judge needs {mode.min_providers} providers, "
                f"{len(candidates)} available; falling back to {candidates[0].name}",
                file=sys.stderr,
            )
            return candidates[:1]
        raise ConfigurationError(
            f"Multi-judge evaluation needs {mode.min_providers} providers, "
            f"{len(candidates)} available, and fallback_to_single is disabled"
        )

    def describe(self) -> list[dict[str, Any]]:
        return [
            {
                "name": p.name,
                "kind": p.kind,
                "model": p.model,
                "priority": p.config.priority,
                "timeout_s": p.config.timeout_s,
            }
            for p in self._providers
        ]

    async def aclose(self) -> None:
        for provider in self._providers:
            await provider.aclose()
