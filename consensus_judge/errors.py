"""Error taxonomy.

Fatal errors (configuration, request shape, total failure) propagate to the
caller. ProviderCallError and its subclasses never leave a provider: they are
folded into a failed JudgeResult.
"""

from __future__ import annotations

from consensus_judge.contracts import ErrorKind


class ConsensusJudgeError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ConsensusJudgeError):
    """Invalid or incomplete configuration. Never retried."""

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class RequestValidationError(ConsensusJudgeError):
    """An EvaluationRequest rejected before dispatch."""

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class ProviderCallError(ConsensusJudgeError):
    """A single failed call to a judge provider."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        self.provider = provider
        self.kind = kind
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class ResponseValidationError(ProviderCallError):
    """A response that arrived but is not usable (bad JSON, wrong shape, out of range)."""

    def __init__(self, provider: str, message: str, *, kind: ErrorKind = ErrorKind.VALIDATION):
        super().__init__(provider, message, kind=kind, retryable=False)


class ProviderExhaustedError(ProviderCallError):
    """Terminal provider failure, wrapping the last attempt's error."""

    def __init__(self, last_error: ProviderCallError, attempts: int) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            last_error.provider,
            f"{last_error.provider} failed after {attempts} attempt(s): {last_error}",
            kind=last_error.kind,
            status_code=last_error.status_code,
            retryable=last_error.retryable,
        )


class AllProvidersFailedError(ConsensusJudgeError):
    """Every selected provider failed; no result can be consolidated."""

    def __init__(self, failures: list[tuple[str, str]]) -> None:
        self.failures = list(failures)
        detail = "; ".join(f"{name}: {reason}" for name, reason in self.failures) or "none selected"
        super().__init__(f"All {len(self.failures)} provider(s) failed: {detail}")
