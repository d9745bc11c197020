"""Core types and DTOs for the quiz generation gateway."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum

from quizguard.core.config import Settings, settings


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ServiceName(str, Enum):
    """Supported AI backends (also the circuit breaker keys)."""

    OPENAI = "openai"
    GOOGLE = "google"
    GWDG = "gwdg"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    MIXED = "mixed"


class QuestionType(str, Enum):
    """Single answer, several answers, or a mix of both."""

    SINGLE = "single"
    MULTIPLE = "multiple"
    MIXED = "mixed"


MIN_QUESTION_COUNT = 1
MAX_QUESTION_COUNT = 10


# Known models → provider service
MODEL_REGISTRY: dict[str, ServiceName] = {
    "meta-llama/Llama-3.3-70B-Instruct": ServiceName.GWDG,
    "Qwen/Qwen3-235B-A22B-Thinking-2507": ServiceName.GWDG,
    "mistralai/Mistral-Large-Instruct-2501": ServiceName.GWDG,
    "gemini-2.5-flash": ServiceName.GOOGLE,
    "gpt-5-nano": ServiceName.OPENAI,
    "gpt-5-mini": ServiceName.OPENAI,
    "gpt-5.2": ServiceName.OPENAI,
    "o4-mini": ServiceName.OPENAI,
}


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass
class QuizRequest:
    """One generation request as submitted by the editing surface.

    ``prompt`` and ``context`` are expected to be sanitized by the caller.
    """

    prompt: str
    difficulty: Difficulty | str = Difficulty.MIXED
    question_count: int = 5
    model: str = ""
    question_type: QuestionType | str = QuestionType.MIXED
    context: str = ""


@dataclass
class SignedRequestMetadata:
    """Per-call signing metadata, sent as X-Request-* headers."""

    service: str
    timestamp: int
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    signature: str = ""


# ---------------------------------------------------------------------------
# Parsed quiz
# ---------------------------------------------------------------------------


@dataclass
class QuizOption:
    text: str
    checked: bool = False


@dataclass
class QuizQuestion:
    text: str
    options: list[QuizOption] = field(default_factory=list)
    line_number: int = 0  # 1-based line of the question text

    @property
    def correct_count(self) -> int:
        return sum(1 for o in self.options if o.checked)

    @property
    def is_multiple_choice(self) -> bool:
        return self.correct_count > 1


ParsedQuiz = list[QuizQuestion]


@dataclass
class QuizValidationResult:
    """Outcome of a quiz format check: parsed questions plus every violation found."""

    questions: ParsedQuiz = field(default_factory=list)
    violations: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------


@dataclass
class BreakerConfig:
    failure_threshold: int = 5  # Consecutive failures to open circuit
    recovery_timeout: float = 60.0  # Seconds before trying half-open

    @classmethod
    def from_settings(cls, s: Settings = settings) -> BreakerConfig:
        return cls(failure_threshold=s.breaker_failure_threshold, recovery_timeout=s.breaker_recovery_timeout)


@dataclass
class RateLimitConfig:
    api_calls_limit: int = 20
    file_processing_limit: int = 20
    window_seconds: float = 3600.0  # Fixed window for both quotas
    generation_cooldown: float = 10.0
    max_concurrent: int = 3

    @classmethod
    def from_settings(cls, s: Settings = settings) -> RateLimitConfig:
        return cls(
            api_calls_limit=s.api_calls_per_hour,
            file_processing_limit=s.file_processing_per_hour,
            window_seconds=s.rate_window_seconds,
            generation_cooldown=s.generation_cooldown_seconds,
            max_concurrent=s.max_concurrent_requests,
        )
