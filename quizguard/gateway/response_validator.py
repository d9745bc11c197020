"""Response Validator: schema extraction, content safety and quiz grammar.

Provider responses come in three wire shapes (see WireFormat); each has a
pure extractor returning the generated text or raising SchemaError that
names the offending field. Extracted text then goes through:

  1. validate_content_safety(): reject injection-like patterns
  2. strip_code_fences(): drop ``` / ```markdown wrappers
  3. validate_markdown_quiz_format(): enforce the quiz grammar

Quiz grammar (one block per question, blocks separated by blank lines):

    What is 2 + 2?
    - [ ] 3
    - [x] 4
    - [ ] 5
    - [ ] 22
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from enum import Enum
from typing import Any

from quizguard.core.config import settings
from quizguard.core.exceptions import ContentSafetyError, FormatError, SchemaError
from quizguard.gateway.types import ParsedQuiz, QuizOption, QuizQuestion, QuizValidationResult

logger = logging.getLogger(__name__)

OPTIONS_PER_QUESTION = 4


class WireFormat(str, Enum):
    """Response shapes understood by extract_text()."""

    RESPONSES_OUTPUT = "responses_output"  # OpenAI Responses API
    GEMINI_CANDIDATES = "gemini_candidates"  # Google generateContent
    CHAT_CHOICES = "chat_choices"  # OpenAI-compatible chat completions


# ---------------------------------------------------------------------------
# Schema extraction
# ---------------------------------------------------------------------------


def _require_list(container: Any, key: str, label: str) -> list:
    value = container.get(key) if isinstance(container, dict) else None
    if not isinstance(value, list):
        raise SchemaError(f'Invalid {label} response: missing or invalid "{key}" field', field=key)
    if not value:
        raise SchemaError(f'Invalid {label} response: empty "{key}" array', field=key)
    return value


def _require_dict(container: Any, key: str, label: str) -> dict:
    value = container.get(key) if isinstance(container, dict) else None
    if not isinstance(value, dict):
        raise SchemaError(f'Invalid {label} response: missing or invalid "{key}" field', field=key)
    return value


def _require_text(container: Any, key: str, label: str) -> str:
    value = container.get(key) if isinstance(container, dict) else None
    if not isinstance(value, str):
        raise SchemaError(f'Invalid {label} response: missing or invalid "{key}" field', field=key)
    if not value.strip():
        raise SchemaError(f"Invalid {label} response: empty content", field=key)
    return value


def extract_responses_output(raw: dict) -> str:
    """OpenAI Responses API: concatenate output_text parts of message items."""
    output = _require_list(raw, "output", "OpenAI")

    text = ""
    for item in output:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        content = item.get("content")
        if not isinstance(content, list):
            continue
        for part in content:
            if isinstance(part, dict) and part.get("type") == "output_text" and isinstance(part.get("text"), str):
                text += part["text"]

    if not text.strip():
        raise SchemaError("Invalid OpenAI response: empty content", field="output")
    return text


def extract_gemini_candidates(raw: dict) -> str:
    """Google generateContent: candidates[0].content.parts[0].text."""
    candidates = raw.get("candidates") if isinstance(raw, dict) else None
    if not candidates:
        feedback = raw.get("promptFeedback") if isinstance(raw, dict) else None
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if block_reason:
            raise SchemaError(
                f"Invalid Google AI response: prompt blocked by provider ({block_reason})",
                field="promptFeedback.blockReason",
            )
    candidates = _require_list(raw, "candidates", "Google AI")

    candidate = candidates[0]
    if isinstance(candidate, dict) and candidate.get("finishReason") == "SAFETY" and not candidate.get("content"):
        raise SchemaError(
            "Invalid Google AI response: candidate blocked by provider safety filter (SAFETY)",
            field="candidates[0].finishReason",
        )

    content = _require_dict(candidate, "content", "Google AI")
    parts = _require_list(content, "parts", "Google AI")
    return _require_text(parts[0], "text", "Google AI")


def extract_chat_choices(raw: dict) -> str:
    """Chat completions: choices[0].message.content."""
    choices = _require_list(raw, "choices", "GWDG")
    message = _require_dict(choices[0], "message", "GWDG")
    return _require_text(message, "content", "GWDG")


_EXTRACTORS: dict[WireFormat, Callable[[dict], str]] = {
    WireFormat.RESPONSES_OUTPUT: extract_responses_output,
    WireFormat.GEMINI_CANDIDATES: extract_gemini_candidates,
    WireFormat.CHAT_CHOICES: extract_chat_choices,
}


def extract_text(wire_format: WireFormat, raw: Any) -> str:
    """Pull the generated text out of a decoded provider response."""
    if not isinstance(raw, dict):
        raise SchemaError("Invalid response: top-level JSON value is not an object")
    return _EXTRACTORS[WireFormat(wire_format)](raw)


# ---------------------------------------------------------------------------
# Content safety
# ---------------------------------------------------------------------------

_SAFETY_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"<script\b[^>]*>", re.IGNORECASE), "script tag detected in API response"),
    (re.compile(r"<\?php", re.IGNORECASE), "PHP code detected in API response"),
    (re.compile(r";\s*(DROP|DELETE|UPDATE|INSERT)\s+", re.IGNORECASE), "SQL-like pattern detected in API response"),
    (re.compile(r"!\[.*?\]\(javascript:", re.IGNORECASE), "javascript protocol in markdown image"),
]


def validate_content_safety(text: str, max_chars: int | None = None) -> None:
    """Raise ContentSafetyError if the text contains a dangerous pattern or is too long."""
    for pattern, reason in _SAFETY_RULES:
        if pattern.search(text):
            logger.warning("Content safety violation: %s", reason)
            raise ContentSafetyError(f"Security violation: {reason}")

    limit = max_chars if max_chars is not None else settings.max_response_chars
    if len(text) > limit:
        raise ContentSafetyError("Security violation: response content exceeds maximum length")


_FENCE_OPEN = re.compile(r"^```(?:markdown)?\s*", re.MULTILINE)
_FENCE_CLOSE = re.compile(r"```\s*$", re.MULTILINE)


def strip_code_fences(text: str) -> str:
    text = _FENCE_OPEN.sub("", text)
    text = _FENCE_CLOSE.sub("", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Quiz grammar
# ---------------------------------------------------------------------------

_OPTION_LINE = re.compile(r"^-\s*\[([ xX])\]\s*(.+)$")


def check_markdown_quiz_format(markdown: str) -> QuizValidationResult:
    """Parse a markdown quiz, collecting every violation instead of stopping at the first."""
    result = QuizValidationResult()
    current: QuizQuestion | None = None

    def close_block() -> None:
        nonlocal current
        if current is not None:
            result.questions.append(current)
            current = None

    for line_number, line in enumerate(markdown.strip().split("\n"), start=1):
        line = line.strip()

        if not line:
            # A blank line between a question and its options does not end the block
            if current is not None and len(current.options) >= OPTIONS_PER_QUESTION:
                close_block()
            continue

        match = _OPTION_LINE.match(line)
        if match:
            if current is None:
                result.violations.append(f"Line {line_number}: Option found without question")
                continue
            current.options.append(QuizOption(text=match.group(2).strip(), checked=match.group(1).lower() == "x"))
            continue

        if not line.endswith("?"):
            result.violations.append(f"Line {line_number}: Question must end with '?'")
        close_block()
        current = QuizQuestion(text=line, line_number=line_number)

    close_block()

    if not result.questions:
        result.violations.append("Quiz contains no questions")

    for index, question in enumerate(result.questions, start=1):
        if len(question.options) != OPTIONS_PER_QUESTION:
            result.violations.append(
                f"Question {index}: Must have exactly {OPTIONS_PER_QUESTION} options (found {len(question.options)})"
            )
        if question.correct_count < 1:
            result.violations.append(f"Question {index}: Must have at least 1 correct answer (found 0)")

    return result


def validate_markdown_quiz_format(markdown: str) -> ParsedQuiz:
    """Return the parsed quiz, or raise FormatError listing every violation."""
    result = check_markdown_quiz_format(markdown)
    if not result.ok:
        raise FormatError(result.violations)
    return result.questions
