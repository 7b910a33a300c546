"""Single source of truth for all types, enums, and protocols."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, NotRequired, Protocol, TypedDict, runtime_checkable

TOTAL_SCORE = "total_score"

# --- Enums ---


class Speaker(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    AUTOMATED = "automated"  # bots, canned system notices


class Reliability(str, Enum):
    HIGH = "high"  # confidence >= 0.8 and consistency >= 0.8
    MEDIUM = "medium"  # both >= 0.6
    LOW = "low"


class ReportStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    SINGLE_PROVIDER = "SINGLE_PROVIDER"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class ErrorKind(str, Enum):
    HTTP = "http"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    PARSE = "parse"
    VALIDATION = "validation"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class EvaluationMode(str, Enum):
    MULTI = "multi"
    SINGLE = "single"


# --- Rubric & request (immutable values) ---


@dataclass(frozen=True)
class ScoreScale:
    min: float = 1.0
    max: float = 5.0

    @property
    def half_range(self) -> float:
        return (self.max - self.min) / 2.0

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True)
class Subcriterion:
    name: str
    weight: float
    description: str = ""


@dataclass(frozen=True)
class Category:
    name: str
    weight: float
    subcriteria: tuple[Subcriterion, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class Rubric:
    version: str
    categories: tuple[Category, ...]
    scale: ScoreScale = field(default_factory=ScoreScale)

    @property
    def dimensions(self) -> list[str]:
        """Score dimensions: every category subtotal plus the weighted total."""
        return [c.name for c in self.categories] + [TOTAL_SCORE]

    def category(self, name: str) -> Category:
        for c in self.categories:
            if c.name == name:
                return c
        raise KeyError(name)


@dataclass(frozen=True)
class Message:
    speaker: Speaker
    text: str
    timestamp: str = ""  # ISO 8601 when known


@dataclass(frozen=True)
class EvaluationOptions:
    timeout_s: float | None = None  # request deadline override
    providers: tuple[str, ...] | None = None  # restrict to these provider names
    advanced_analysis: bool = True
    historical_scores: tuple[float, ...] = ()  # past total scores, for temporal stability


@dataclass(frozen=True)
class EvaluationRequest:
    transcript_id: str
    messages: tuple[Message, ...]
    rubric: Rubric
    options: EvaluationOptions = field(default_factory=EvaluationOptions)
    agent_id: str = ""
    channel: str = ""


# --- Judge output ---


class Evidence(TypedDict):
    positive: list[str]
    negative: list[str]
    quotes: list[str]


class TokenUsage(TypedDict):
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    timestamp: str


class JudgeError(TypedDict):
    kind: str  # ErrorKind value
    message: str
    status_code: int | None
    retryable: bool
    attempts: int


class ValidatedJudgment(TypedDict):
    """A provider's parsed output after central schema validation."""

    scores: dict[str, float]  # dimension -> value, includes total_score
    subcriterion_scores: dict[str, dict[str, float]]  # category -> sub -> value
    evidence: Evidence
    improvements: list[str]
    warnings: list[str]


def empty_evidence() -> Evidence:
    return Evidence(positive=[], negative=[], quotes=[])


@dataclass(frozen=True)
class JudgeResult:
    """One provider's terminal outcome for a single request."""

    provider: str
    model: str
    success: bool
    scores: dict[str, float] = field(default_factory=dict)
    subcriterion_scores: dict[str, dict[str, float]] = field(default_factory=dict)
    evidence: Evidence = field(default_factory=empty_evidence)
    improvements: tuple[str, ...] = ()
    latency_s: float = 0.0
    attempts: int = 0
    usage: TokenUsage | None = None
    error: JudgeError | None = None
    warnings: tuple[str, ...] = ()

    @property
    def tokens(self) -> int:
        if not self.usage:
            return 0
        return self.usage["input_tokens"] + self.usage["output_tokens"]

    @property
    def cost_usd(self) -> float:
        return self.usage["cost_usd"] if self.usage else 0.0


# --- Statistical reports ---


class OutlierReport(TypedDict):
    values: list[float]
    q1: float
    q3: float
    iqr: float
    lower_bound: float
    upper_bound: float
    outliers: list[float]
    outlier_indices: list[int]  # positions in the original (unsorted) sample
    inliers: list[float]
    outlier_ratio: float  # 0-1
    sufficient: bool  # False when below min_samples; nothing flagged


class MultiSeriesOutlierReport(TypedDict):
    series: dict[str, OutlierReport]
    consistent_outliers: list[int]  # indices flagged in >= half the series
    total_series: int
    series_with_outliers: int
    average_outlier_ratio: float


class DistributionProfile(TypedDict):
    mean: float
    median: float
    std_dev: float
    skewness: float
    kurtosis: float  # excess kurtosis
    approximately_normal: bool


class AdaptiveOutlierReport(TypedDict):
    base: OutlierReport
    adapted: OutlierReport
    adapted_multiplier: float
    distribution: NotRequired[DistributionProfile]
    recommendation: str


class DimensionConsistency(TypedDict):
    values: list[float]
    mean: float
    std_dev: float  # population std-dev
    coefficient_of_variation: float
    min: float
    max: float
    range: float
    consistency: float  # 0-1
    assessment: str  # "EXCELLENT" | "GOOD" | "ACCEPTABLE" | "POOR"


class ConsistencyReport(TypedDict):
    consistency: float  # 0-1, weighted across dimensions
    is_consistent: bool
    status: str  # ReportStatus value
    target: float
    minimum: float
    dimensions: dict[str, DimensionConsistency]
    agreement: AgreementReport  # pairwise, on total_score
    recommendations: list[str]


class AgreementReport(TypedDict):
    dimension: str
    pairs: int
    exact_agreement: float  # share of pairs with identical scores
    within_tolerance: float  # share of pairs within tolerance
    max_gap: float


class ConfidenceComponents(TypedDict):
    consistency: float
    outlier: float
    sample_size: float
    additional: NotRequired[float]


class SecondarySignals(TypedDict, total=False):
    response_time_s: float
    token_usage: float
    error_rate: float  # 0-1
    historical_performance: float  # 0-1


class ConfidenceReport(TypedDict):
    confidence: float  # 0-1
    reliability: str  # Reliability value
    components: ConfidenceComponents
    status: str  # ReportStatus value
    assessment: str
    recommendations: list[str]


class UncertaintyReport(TypedDict):
    n: int
    mean: float
    std_dev: float  # sample std-dev
    standard_error: float
    confidence_interval: tuple[float, float]  # 95%
    prediction_interval: tuple[float, float]  # 95%


class AdvancedAnalysis(TypedDict):
    temporal_stability: float  # 0-1; 0.5 without history
    cross_validation: float  # 0-1, leave-one-out; 0.5 below three judges
    uncertainty: UncertaintyReport  # over judge totals
    adaptive_outliers: AdaptiveOutlierReport  # over judge totals
    quality_score: float  # 0-1


class ResultMetadata(TypedDict):
    timestamp: str  # ISO 8601
    rubric_version: str
    processing_time_s: float
    mode: str  # EvaluationMode value
    providers_used: list[str]
    total_tokens: int
    total_cost_usd: float


@dataclass(frozen=True)
class ConsolidatedResult:
    transcript_id: str
    scores: dict[str, float]
    subcriterion_scores: dict[str, dict[str, float]]
    outliers: dict[str, OutlierReport]
    consistent_outliers: tuple[str, ...]  # provider names, diagnostics only
    consistency: ConsistencyReport
    confidence: ConfidenceReport
    judge_results: tuple[JudgeResult, ...]
    failed_providers: tuple[str, ...]
    evidence: Evidence
    improvements: tuple[str, ...]
    metadata: ResultMetadata
    analysis: AdvancedAnalysis | None = None

    @property
    def total_score(self) -> float:
        return self.scores[TOTAL_SCORE]

    @property
    def reliability(self) -> str:
        return self.confidence["reliability"]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# --- Telemetry ---


class TelemetryEvent(TypedDict):
    event: str  # "provider.backoff" | "provider.failed" | "consolidation.completed" | ...
    ts: str  # ISO 8601
    transcript_id: str
    provider: str
    data: dict[str, Any]


# --- Protocols ---


@runtime_checkable
class TelemetrySink(Protocol):
    def emit(self, event: TelemetryEvent) -> None: ...

