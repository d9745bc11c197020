"""Prompt assembly for quiz generation.

Final prompt layout:

    <system prompt with [QUESTION_COUNT] / [DIFFICULTY] substituted>
    <LaTeX instructions>

    <user prompt>
    [QUESTION TYPE: ...]

    [Additional Context:]
    <context>

The system prompt comes from the config store ("system_prompt") when an
administrator has set one, otherwise FALLBACK_SYSTEM_PROMPT. DEFAULT_SYSTEM_PROMPT
is the template administrators start from; create_gateway() stores it when
no system prompt is configured yet. Older templates
used {{question_count}} / {question_count} style placeholders; those are
normalised before substitution.
"""

from __future__ import annotations

import logging

from quizguard.core.exceptions import InputValidationError
from quizguard.gateway.types import MAX_QUESTION_COUNT, MIN_QUESTION_COUNT, Difficulty, QuestionType

logger = logging.getLogger(__name__)

QUESTION_COUNT_PLACEHOLDER = "[QUESTION_COUNT]"
DIFFICULTY_PLACEHOLDER = "[DIFFICULTY]"

FALLBACK_SYSTEM_PROMPT = "Generate exactly [QUESTION_COUNT] quiz questions with difficulty level: [DIFFICULTY]"

DEFAULT_SYSTEM_PROMPT = (
    "You are a quiz generation expert. Generate EXACTLY [QUESTION_COUNT] quiz questions in strict markdown format.\n\n"
    "CRITICAL RULES:\n"
    "1. Generate EXACTLY [QUESTION_COUNT] questions - NO MORE, NO LESS\n"
    "2. Each question MUST have EXACTLY 4 answer options\n"
    "3. For SINGLE-CHOICE questions: EXACTLY ONE answer marked with [x], all others with [ ]\n"
    "4. For MULTIPLE-CHOICE questions: TWO or MORE answers marked with [x], the rest with [ ]\n\n"
    "FORMAT - Single-choice example:\n"
    "What is the capital of France?\n"
    "- [x] Paris\n"
    "- [ ] London\n"
    "- [ ] Berlin\n"
    "- [ ] Madrid\n\n"
    "FORMAT - Multiple-choice example:\n"
    "Which are programming languages?\n"
    "- [x] Python\n"
    "- [x] Java\n"
    "- [ ] HTML\n"
    "- [ ] Photoshop\n\n"
    "QUALITY GUIDELINES:\n"
    "- Make wrong answers plausible but clearly incorrect\n"
    '- Avoid "all of the above" or "none of the above" options\n'
    "- Keep questions clear and unambiguous\n"
    "- Ensure correct answers are factually accurate\n"
    "- Match difficulty level to [DIFFICULTY]\n"
    "- Base questions on provided context if available\n\n"
    "DIFFICULTY LEVELS:\n"
    "- Easy: Basic recall and comprehension\n"
    "- Medium: Application and analysis\n"
    "- Hard: Complex reasoning and synthesis\n"
    "- Mixed: Variety of difficulty levels\n\n"
    "OUTPUT FORMAT:\n"
    "Return ONLY the quiz questions in markdown format.\n"
    "Do NOT include explanations, comments, or additional text.\n"
    "Separate each question block with a blank line.\n"
    "Generate EXACTLY [QUESTION_COUNT] questions as requested."
)

LATEX_INSTRUCTIONS = (
    "\n\nFor math/formulas, use LaTeX in dollar signs (e.g. "
    r"$\frac{a}{b}$, $\sqrt{x}$, $\alpha$"
    "). Use LaTeX commands instead of Unicode symbols for math.\n"
)

_LEGACY_PLACEHOLDERS = (
    ("{{question_count}}", QUESTION_COUNT_PLACEHOLDER),
    ("{{difficulty}}", DIFFICULTY_PLACEHOLDER),
    ("{question_count}", QUESTION_COUNT_PLACEHOLDER),
    ("{difficulty}", DIFFICULTY_PLACEHOLDER),
)

QUESTION_TYPE_INSTRUCTIONS = {
    QuestionType.SINGLE: (
        "\n\n[QUESTION TYPE: Single-choice only. "
        "Each question must have EXACTLY ONE correct answer marked with [x].]"
    ),
    QuestionType.MULTIPLE: (
        "\n\n[QUESTION TYPE: Multiple-choice only. "
        "Each question must have TWO or MORE correct answers marked with [x].]"
    ),
    QuestionType.MIXED: (
        "\n\n[QUESTION TYPE: Mix of single-choice and multiple-choice. "
        "Aim for ~60% single-choice (one [x]) and ~40% multiple-choice (two or more [x]).]"
    ),
}


def normalize_placeholders(template: str) -> str:
    """Rewrite legacy {{x}} / {x} placeholders to the [X] form."""
    # Double-brace forms first so "{{difficulty}}" does not leave stray braces
    for legacy, placeholder in _LEGACY_PLACEHOLDERS:
        template = template.replace(legacy, placeholder)
    return template


def validate_difficulty(difficulty: str) -> Difficulty:
    try:
        return Difficulty(difficulty)
    except ValueError:
        allowed = ", ".join(d.value for d in Difficulty)
        raise InputValidationError(f"Invalid difficulty '{difficulty}' (allowed: {allowed})") from None


def validate_question_count(count: int) -> int:
    if isinstance(count, bool) or not isinstance(count, int) or not MIN_QUESTION_COUNT <= count <= MAX_QUESTION_COUNT:
        raise InputValidationError(
            f"Question count must be between {MIN_QUESTION_COUNT} and {MAX_QUESTION_COUNT} (got {count!r})"
        )
    return count


def build_prompt(system_prompt: str | None, user_prompt: str, difficulty: str, question_count: int) -> str:
    """Combine the system template, LaTeX instructions and user prompt."""
    template = system_prompt or FALLBACK_SYSTEM_PROMPT
    template = normalize_placeholders(template)

    difficulty_value = difficulty.value if isinstance(difficulty, Difficulty) else str(difficulty)
    template = template.replace(DIFFICULTY_PLACEHOLDER, difficulty_value)
    template = template.replace(QUESTION_COUNT_PLACEHOLDER, str(question_count))

    return template + LATEX_INSTRUCTIONS + "\n\n" + user_prompt


def with_question_type(user_prompt: str, question_type: QuestionType | str) -> str:
    """Append the question-type instruction; unknown types fall back to mixed."""
    try:
        kind = QuestionType(question_type)
    except ValueError:
        logger.debug("Unknown question type %r, using mixed", question_type)
        kind = QuestionType.MIXED
    return user_prompt + QUESTION_TYPE_INSTRUCTIONS[kind]


def with_context(user_prompt: str, context: str) -> str:
    if not context:
        return user_prompt
    return user_prompt + "\n\n[Additional Context:]\n" + context
