"""Error taxonomy for the quiz generation pipeline.

Every failure raised by quizguard derives from QuizGuardError, so hosts can
catch one base class and still branch on the concrete type:

  - ConfigurationError: missing/invalid credentials or model selection
  - InputValidationError: caller passed an unsupported difficulty or count
  - TransportError: network failure or non-2xx provider status
  - SchemaError: provider response does not match its wire shape
  - ContentSafetyError: dangerous pattern in generated text
  - FormatError: aggregated, line-numbered quiz grammar violations
  - RateLimitError: QuotaExceeded / CooldownActive / ConcurrencyLimitExceeded
  - ServiceUnavailable: circuit breaker is open
  - ReplayWindowExceeded: signed request is older than the replay window
"""

from __future__ import annotations

_REDACTED = "[REDACTED]"


def redact_secret(text: str, *secrets: str) -> str:
    """Replace every occurrence of the given secrets in text."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, _REDACTED)
    return text


class QuizGuardError(Exception):
    """Base class for all quizguard errors.

    ``stage`` is an optional label (e.g. "Response validation failed") set by
    the layer that re-raises the error; it is prefixed to the message.
    """

    def __init__(self, message: str, *, stage: str = ""):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def __str__(self) -> str:
        if self.stage:
            return f"{self.stage}: {self.message}"
        return self.message


class ConfigurationError(QuizGuardError):
    """Provider credentials or model selection are missing or invalid."""


class InputValidationError(QuizGuardError):
    """The caller supplied an unsupported difficulty or question count."""


class TransportError(QuizGuardError):
    """Network failure or non-2xx status from the provider."""

    def __init__(self, message: str, *, status_code: int = 0, stage: str = ""):
        super().__init__(message, stage=stage)
        self.status_code = status_code


class SchemaError(QuizGuardError):
    """Provider response does not match the expected field shape."""

    def __init__(self, message: str, *, field: str = "", stage: str = ""):
        super().__init__(message, stage=stage)
        self.field = field


class ContentSafetyError(QuizGuardError):
    """A dangerous pattern was detected in generated text."""


class FormatError(QuizGuardError):
    """Generated markdown violates the quiz grammar.

    ``violations`` holds every line-numbered problem, not just the first.
    """

    def __init__(self, violations: list[str], *, stage: str = ""):
        message = "Quiz validation failed:\n" + "\n".join(violations)
        super().__init__(message, stage=stage)
        self.violations = list(violations)


class RateLimitError(QuizGuardError):
    """Base class for per-session rate limiter rejections."""


class QuotaExceeded(RateLimitError):
    """Fixed-window quota exhausted for the session."""

    def __init__(self, message: str, *, resource: str = "", reset_in_seconds: float = 0.0):
        super().__init__(message)
        self.resource = resource
        self.reset_in_seconds = reset_in_seconds


class CooldownActive(RateLimitError):
    """A generation was requested before the session cooldown elapsed."""

    def __init__(self, message: str, *, remaining_seconds: float = 0.0):
        super().__init__(message)
        self.remaining_seconds = remaining_seconds


class ConcurrencyLimitExceeded(RateLimitError):
    """The session already has the maximum number of in-flight requests."""


class ServiceUnavailable(QuizGuardError):
    """Circuit breaker is open for the service."""

    def __init__(self, message: str, *, service: str = "", retry_after: float = 0.0):
        super().__init__(message)
        self.service = service
        self.retry_after = retry_after


class ReplayWindowExceeded(QuizGuardError):
    """A signed request's timestamp is outside the replay window."""
