"""Error taxonomy for kinder.

Every failure the core raises is a KinderError subclass so the CLI can
print one line and exit non-zero without a traceback.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class KinderError(Exception):
    """Base error class for kinder errors."""

    message: str = "kinder error"
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass(eq=False)
class ConfigurationError(KinderError):
    """Bad file paths, malformed CIDR, unreadable config or missing CA material."""

    message: str = "Invalid configuration"


@dataclass(eq=False)
class CertificateError(ConfigurationError):
    """Trust material could not be generated or parsed."""

    message: str = "Certificate generation failed"


@dataclass(eq=False)
class ValidationError(KinderError):
    """A value destined for a generated manifest was rejected."""

    message: str = "Validation failed"


@dataclass(eq=False)
class TransientInfrastructureError(KinderError):
    """Daemon unreachable, pull/create/start failure, push failure or timeout."""

    message: str = "Infrastructure operation failed"
    step: str | None = None


@dataclass(frozen=True)
class StepFailure:
    """A single failed step recorded during best-effort teardown."""

    step: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.step}: {self.error}"


@dataclass(eq=False)
class PartialFailure(KinderError):
    """Some teardown steps failed; every step was still attempted."""

    message: str = ""
    failures: list[StepFailure] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.message:
            joined = "; ".join(str(f) for f in self.failures)
            self.message = f"{len(self.failures)} step(s) failed: {joined}"

    @property
    def steps(self) -> list[str]:
        """Names of the failed steps, in execution order."""
        return [f.step for f in self.failures]


@dataclass(eq=False)
class StartAborted(KinderError):
    """The start sequence stopped at a step; no later step was run."""

    message: str = ""
    step: str = ""
    cause: Exception | None = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"{self.step} failed: {self.cause}"
