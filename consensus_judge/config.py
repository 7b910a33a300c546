"""Settings loaded from environment variables, plus judge configuration snapshots."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from consensus_judge.errors import ConfigurationError


def _load_env() -> None:
    """Load .env from project root if it exists."""
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)


_load_env()


@dataclass(frozen=True)
class Settings:
    # API Keys
    anthropic_api_key: str = field(default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", ""))
    openai_api_key: str = field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", ""))
    google_api_key: str = field(default_factory=lambda: os.environ.get("GOOGLE_AI_API_KEY", ""))

    # Judge configuration file (YAML or JSON)
    judge_config_path: str = field(
        default_factory=lambda: os.environ.get("JUDGE_CONFIG", "config/judges.yaml")
    )

    # Run event log
    run_log_dir: str = field(default_factory=lambda: os.environ.get("RUN_LOG_DIR", "runs/"))
    event_log_enabled: bool = field(
        default_factory=lambda: os.environ.get("EVENT_LOG_ENABLED", "true").lower() == "true"
    )

    # Batch evaluation
    batch_parallelism: int = field(
        default_factory=lambda: int(os.environ.get("BATCH_PARALLELISM", "3"))
    )

    def credentials(self) -> dict[str, str]:
        """Map provider kind -> API key, for every key that is set."""
        keys = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "gemini": self.google_api_key,
        }
        return {kind: key for kind, key in keys.items() if key}

    def validate(self) -> list[str]:
        """Return list of validation errors. Empty list means valid."""
        errors = []
        if not self.credentials():
            errors.append(
                "At least one of ANTHROPIC_API_KEY, OPENAI_API_KEY, GOOGLE_AI_API_KEY is required"
            )
        if self.batch_parallelism < 1:
            errors.append(f"BATCH_PARALLELISM must be >= 1, got {self.batch_parallelism}")
        return errors

    def warnings(self) -> list[str]:
        """Return list of non-fatal configuration warnings."""
        warns: list[str] = []
        if len(self.credentials()) == 1:
            warns.append(
                "Only one provider API key is set. Multi-judge evaluation is unavailable; "
                "results will be single-provider."
            )
        if self.batch_parallelism > 10:
            warns.append(
                f"BATCH_PARALLELISM={self.batch_parallelism} is aggressive. "
                "Vendor rate limits usually favour <= 5."
            )
        return warns


def get_settings() -> Settings:
    """Create Settings from current environment."""
    return Settings()


# --- Judge configuration snapshot ---


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_s: float = 1.0
    backoff_multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay before the attempt after `attempt` (1-based)."""
        return self.initial_delay_s * self.backoff_multiplier ** (attempt - 1)


@dataclass(frozen=True)
class CostRates:
    input_per_1k: float = 0.0
    output_per_1k: float = 0.0

    def estimate(self, input_tokens: int, output_tokens: int) -> float:
        return input_tokens / 1000 * self.input_per_1k + output_tokens / 1000 * self.output_per_1k


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    kind: str
    model: str
    enabled: bool = True
    temperature: float = 0.1
    max_tokens: int = 4000
    timeout_s: float = 30.0
    priority: int = 100
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cost: CostRates = field(default_factory=CostRates)
    endpoint: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def validate(self, request_timeout_s: float) -> list[str]:
        errors = []
        if not self.model:
            errors.append(f"{self.name}: model is required")
        if not 0.0 <= self.temperature <= 2.0:
            errors.append(f"{self.name}: temperature must be in [0, 2], got {self.temperature}")
        if self.max_tokens <= 0:
            errors.append(f"{self.name}: max_tokens must be > 0, got {self.max_tokens}")
        if self.timeout_s <= 0:
            errors.append(f"{self.name}: timeout_s must be > 0, got {self.timeout_s}")
        elif self.timeout_s >= request_timeout_s:
            errors.append(
                f"{self.name}: timeout_s ({self.timeout_s}) must be shorter than "
                f"the request timeout ({request_timeout_s})"
            )
        if self.retry.max_attempts < 1:
            errors.append(f"{self.name}: retry.max_attempts must be >= 1")
        if self.retry.initial_delay_s < 0 or self.retry.backoff_multiplier < 1:
            errors.append(f"{self.name}: retry delays must be >= 0 with multiplier >= 1")
        return errors


@dataclass(frozen=True)
class EvaluationModeConfig:
    multi_judge: bool = True
    min_providers: int = 2
    fallback_to_single: bool = True


@dataclass(frozen=True)
class ConsistencyThresholds:
    target: float = 0.8
    minimum: float = 0.6


@dataclass(frozen=True)
class ConfidenceThresholds:
    target: float = 0.8
    minimum: float = 0.6
    consistency_weight: float = 0.4
    outlier_weight: float = 0.3
    sample_size_weight: float = 0.3
    optimal_sample_size: int = 5


@dataclass(frozen=True)
class OutlierThresholds:
    multiplier: float = 1.5
    min_samples: int = 3


@dataclass(frozen=True)
class PerformanceThresholds:
    request_timeout_s: float = 120.0


@dataclass(frozen=True)
class Thresholds:
    consistency: ConsistencyThresholds = field(default_factory=ConsistencyThresholds)
    confidence: ConfidenceThresholds = field(default_factory=ConfidenceThresholds)
    outlier: OutlierThresholds = field(default_factory=OutlierThresholds)
    performance: PerformanceThresholds = field(default_factory=PerformanceThresholds)


def _build(cls, data: dict | None, **overrides):
    """Construct a config dataclass from a mapping, rejecting unknown keys."""
    data = dict(data or {})
    data.update(overrides)
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"{cls.__name__}: unknown key(s) {', '.join(unknown)}")
    return cls(**data)


@dataclass(frozen=True)
class JudgeConfig:
    """Immutable snapshot of providers, evaluation mode and thresholds."""

    providers: tuple[ProviderConfig, ...] = ()
    mode: EvaluationModeConfig = field(default_factory=EvaluationModeConfig)
    thresholds: Thresholds = field(default_factory=Thresholds)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> JudgeConfig:
        """Build a snapshot from a parsed YAML/JSON document.

        ``providers`` is a mapping of provider name to settings; ``kind``
        defaults to the name.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Judge config must be a mapping")

        providers = []
        for name, raw in (data.get("providers") or {}).items():
            raw = dict(raw or {})
            retry = _build(RetryPolicy, raw.pop("retry", None))
            cost = _build(CostRates, raw.pop("cost", None))
            raw.setdefault("kind", name)
            providers.append(_build(ProviderConfig, raw, name=name, retry=retry, cost=cost))

        raw_thresholds = dict(data.get("thresholds") or {})
        thresholds = Thresholds(
            consistency=_build(ConsistencyThresholds, raw_thresholds.pop("consistency", None)),
            confidence=_build(ConfidenceThresholds, raw_thresholds.pop("confidence", None)),
            outlier=_build(OutlierThresholds, raw_thresholds.pop("outlier", None)),
            performance=_build(PerformanceThresholds, raw_thresholds.pop("performance", None)),
        )
        if raw_thresholds:
            raise ConfigurationError(f"thresholds: unknown key(s) {', '.join(sorted(raw_thresholds))}")

        return cls(
            providers=tuple(providers),
            mode=_build(EvaluationModeConfig, data.get("evaluation_mode")),
            thresholds=thresholds,
        )

    def enabled_providers(self) -> list[ProviderConfig]:
        return sorted((p for p in self.providers if p.enabled), key=lambda p: (p.priority, p.name))

    def validate(self) -> list[str]:
        """Return list of validation errors. Empty list means valid."""
        errors = []
        request_timeout = self.thresholds.performance.request_timeout_s
        if request_timeout <= 0:
            errors.append(f"performance.request_timeout_s must be > 0, got {request_timeout}")
        if not self.enabled_providers():
            errors.append("No enabled providers configured")
        names = [p.name for p in self.providers]
        if len(names) != len(set(names)):
            errors.append("Provider names must be unique")
        for provider in self.enabled_providers():
            errors.extend(provider.validate(request_timeout))

        if self.mode.min_providers < 1:
            errors.append(f"evaluation_mode.min_providers must be >= 1, got {self.mode.min_providers}")

        conf = self.thresholds.confidence
        weight_sum = conf.consistency_weight + conf.outlier_weight + conf.sample_size_weight
        if abs(weight_sum - 1.0) > 0.01:
            errors.append(f"confidence weights must sum to 1.0, got {weight_sum:.3f}")
        if conf.optimal_sample_size < 1:
            errors.append("confidence.optimal_sample_size must be >= 1")
        for label, t in (("consistency", self.thresholds.consistency), ("confidence", conf)):
            if not 0.0 <= t.minimum <= t.target <= 1.0:
                errors.append(f"{label}: require 0 <= minimum <= target <= 1")

        outlier = self.thresholds.outlier
        if outlier.multiplier <= 0:
            errors.append(f"outlier.multiplier must be > 0, got {outlier.multiplier}")
        if outlier.min_samples < 3:
            errors.append(f"outlier.min_samples must be >= 3, got {outlier.min_samples}")
        return errors


def load_judge_config(path: str | Path) -> JudgeConfig:
    """Read a judge config file (YAML, or JSON which YAML parses too)."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Cannot read judge config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Malformed judge config {path}: {e}") from e
    return JudgeConfig.from_mapping(data or {})
