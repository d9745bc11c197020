"""Tests for response extraction, content safety and quiz grammar."""

from __future__ import annotations

import pytest

from conftest import VALID_QUIZ, chat_body, gemini_body, openai_body
from quizguard.core.exceptions import ContentSafetyError, FormatError, SchemaError
from quizguard.gateway.response_validator import (
    WireFormat,
    check_markdown_quiz_format,
    extract_text,
    strip_code_fences,
    validate_content_safety,
    validate_markdown_quiz_format,
)


# ==========================================================================
# Schema extraction
# ==========================================================================


class TestResponsesOutput:
    def test_extracts_message_text(self):
        assert extract_text(WireFormat.RESPONSES_OUTPUT, openai_body("Hello?")) == "Hello?"

    def test_concatenates_output_text_parts(self):
        raw = {
            "output": [
                {"type": "message", "content": [{"type": "output_text", "text": "A"}]},
                {"type": "message", "content": [{"type": "refusal", "refusal": "no"}, {"type": "output_text", "text": "B"}]},
            ]
        }
        assert extract_text(WireFormat.RESPONSES_OUTPUT, raw) == "AB"

    def test_missing_output(self):
        with pytest.raises(SchemaError) as exc_info:
            extract_text(WireFormat.RESPONSES_OUTPUT, {"id": "resp_1"})
        assert exc_info.value.field == "output"

    def test_empty_output_array(self):
        with pytest.raises(SchemaError, match="empty"):
            extract_text(WireFormat.RESPONSES_OUTPUT, {"output": []})

    def test_only_reasoning_items(self):
        with pytest.raises(SchemaError, match="empty content"):
            extract_text(WireFormat.RESPONSES_OUTPUT, {"output": [{"type": "reasoning", "summary": []}]})

    def test_whitespace_text_rejected(self):
        with pytest.raises(SchemaError):
            extract_text(WireFormat.RESPONSES_OUTPUT, openai_body("   \n"))


class TestGeminiCandidates:
    def test_extracts_first_part(self):
        assert extract_text(WireFormat.GEMINI_CANDIDATES, gemini_body("Quiz?")) == "Quiz?"

    def test_missing_candidates(self):
        with pytest.raises(SchemaError) as exc_info:
            extract_text(WireFormat.GEMINI_CANDIDATES, {})
        assert exc_info.value.field == "candidates"

    def test_prompt_block_reported(self):
        raw = {"promptFeedback": {"blockReason": "SAFETY"}}
        with pytest.raises(SchemaError, match="SAFETY"):
            extract_text(WireFormat.GEMINI_CANDIDATES, raw)

    def test_safety_finish_without_content(self):
        raw = {"candidates": [{"finishReason": "SAFETY", "safetyRatings": []}]}
        with pytest.raises(SchemaError, match="safety"):
            extract_text(WireFormat.GEMINI_CANDIDATES, raw)

    def test_parts_empty(self):
        with pytest.raises(SchemaError) as exc_info:
            extract_text(WireFormat.GEMINI_CANDIDATES, {"candidates": [{"content": {"parts": []}}]})
        assert exc_info.value.field == "parts"

    def test_text_wrong_type(self):
        with pytest.raises(SchemaError) as exc_info:
            extract_text(WireFormat.GEMINI_CANDIDATES, {"candidates": [{"content": {"parts": [{"text": 42}]}}]})
        assert exc_info.value.field == "text"


class TestChatChoices:
    def test_extracts_message_content(self):
        assert extract_text(WireFormat.CHAT_CHOICES, chat_body("Quiz?")) == "Quiz?"

    def test_missing_message(self):
        with pytest.raises(SchemaError) as exc_info:
            extract_text(WireFormat.CHAT_CHOICES, {"choices": [{"finish_reason": "stop"}]})
        assert exc_info.value.field == "message"

    def test_null_content(self):
        with pytest.raises(SchemaError) as exc_info:
            extract_text(WireFormat.CHAT_CHOICES, {"choices": [{"message": {"content": None}}]})
        assert exc_info.value.field == "content"

    def test_non_object_body(self):
        with pytest.raises(SchemaError):
            extract_text(WireFormat.CHAT_CHOICES, ["not", "a", "dict"])


# ==========================================================================
# Content safety
# ==========================================================================


class TestContentSafety:
    @pytest.mark.parametrize(
        "text",
        [
            "Question?\n<script>alert(1)</script>",
            "<SCRIPT src='x'>",
            "<?php echo 1; ?>",
            "x; DROP TABLE users",
            "a ;delete from t",
            "![img](javascript:alert(1))",
        ],
    )
    def test_dangerous_patterns_rejected(self, text):
        with pytest.raises(ContentSafetyError, match="Security violation"):
            validate_content_safety(text)

    def test_oversized_rejected(self):
        with pytest.raises(ContentSafetyError, match="maximum length"):
            validate_content_safety("a" * 100_001)

    def test_at_limit_accepted(self):
        validate_content_safety("a" * 100_000)

    @pytest.mark.parametrize(
        "text",
        [
            VALID_QUIZ,
            "Which SQL statement removes a table?\n- [x] DROP TABLE",
            "What does <scripting> mean?",
            "![diagram](https://example.org/a.png)",
        ],
    )
    def test_benign_text_accepted(self, text):
        validate_content_safety(text)


class TestStripCodeFences:
    def test_markdown_fence(self):
        assert strip_code_fences("```markdown\nQ?\n- [x] A\n```") == "Q?\n- [x] A"

    def test_plain_fence(self):
        assert strip_code_fences("```\nQ?\n```\n") == "Q?"

    def test_no_fence_unchanged(self):
        assert strip_code_fences(VALID_QUIZ) == VALID_QUIZ


# ==========================================================================
# Quiz grammar
# ==========================================================================


class TestQuizFormat:
    def test_valid_quiz(self):
        questions = validate_markdown_quiz_format(VALID_QUIZ)
        assert len(questions) == 2
        assert questions[0].text == "What is 2 + 2?"
        assert [o.text for o in questions[0].options] == ["3", "4", "5", "22"]
        assert questions[0].correct_count == 1
        assert questions[0].is_multiple_choice is False
        assert questions[1].is_multiple_choice is True
        assert questions[1].line_number == 7

    def test_uppercase_x_accepted(self):
        quiz = "Q?\n- [X] a\n- [ ] b\n- [ ] c\n- [ ] d"
        assert validate_markdown_quiz_format(quiz)[0].options[0].checked is True

    def test_question_without_question_mark(self):
        quiz = "Name the capital of France\n- [x] Paris\n- [ ] Rome\n- [ ] Oslo\n- [ ] Bern"
        result = check_markdown_quiz_format(quiz)
        assert result.violations == ["Line 1: Question must end with '?'"]

    def test_three_options(self):
        quiz = "Q?\n- [x] a\n- [ ] b\n- [ ] c"
        result = check_markdown_quiz_format(quiz)
        assert "Question 1: Must have exactly 4 options (found 3)" in result.violations

    def test_five_options(self):
        quiz = "Q?\n- [x] a\n- [ ] b\n- [ ] c\n- [ ] d\n- [ ] e"
        result = check_markdown_quiz_format(quiz)
        assert result.violations == ["Question 1: Must have exactly 4 options (found 5)"]

    def test_no_correct_answer(self):
        quiz = "Q?\n- [ ] a\n- [ ] b\n- [ ] c\n- [ ] d"
        result = check_markdown_quiz_format(quiz)
        assert result.violations == ["Question 1: Must have at least 1 correct answer (found 0)"]

    def test_option_before_question(self):
        quiz = "- [x] orphan\n\nQ?\n- [x] a\n- [ ] b\n- [ ] c\n- [ ] d"
        result = check_markdown_quiz_format(quiz)
        assert result.violations == ["Line 1: Option found without question"]

    def test_option_after_blank_line_is_orphan(self):
        quiz = "Q?\n- [x] a\n- [ ] b\n- [ ] c\n- [ ] d\n\n- [ ] e"
        result = check_markdown_quiz_format(quiz)
        assert result.violations == ["Line 7: Option found without question"]

    def test_blank_line_between_question_and_options(self):
        quiz = "What is 2 + 2?\n\n- [ ] 3\n- [x] 4\n- [ ] 5\n- [ ] 22"
        result = check_markdown_quiz_format(quiz)
        assert result.ok
        assert len(result.questions) == 1
        assert [o.text for o in result.questions[0].options] == ["3", "4", "5", "22"]

    def test_blank_line_inside_short_block(self):
        quiz = "Q?\n- [x] a\n- [ ] b\n\n- [ ] c\n- [ ] d"
        assert validate_markdown_quiz_format(quiz)[0].correct_count == 1

    def test_empty_quiz(self):
        result = check_markdown_quiz_format("")
        assert not result.ok
        assert result.violations == ["Quiz contains no questions"]

    def test_collects_every_violation(self):
        quiz = (
            "First question\n- [ ] a\n- [ ] b\n- [ ] c\n- [ ] d\n"
            "\n"
            "Second?\n- [x] a\n- [ ] b"
        )
        result = check_markdown_quiz_format(quiz)
        assert result.violations == [
            "Line 1: Question must end with '?'",
            "Question 1: Must have at least 1 correct answer (found 0)",
            "Question 2: Must have exactly 4 options (found 2)",
        ]
        assert len(result.questions) == 2

    def test_question_line_closes_previous_block(self):
        quiz = "Q1?\n- [x] a\n- [ ] b\n- [ ] c\n- [ ] d\nQ2?\n- [x] a\n- [ ] b\n- [ ] c\n- [ ] d"
        assert len(validate_markdown_quiz_format(quiz)) == 2

    def test_leading_and_trailing_whitespace(self):
        assert len(validate_markdown_quiz_format("\n\n  " + VALID_QUIZ + "\n\n")) == 2

    def test_raising_wrapper_lists_all_violations(self):
        quiz = "Bad\n- [ ] a"
        with pytest.raises(FormatError) as exc_info:
            validate_markdown_quiz_format(quiz)
        err = exc_info.value
        assert str(err).startswith("Quiz validation failed:\n")
        assert "Line 1: Question must end with '?'" in err.violations
        assert "Question 1: Must have exactly 4 options (found 1)" in err.violations
        assert "Question 1: Must have at least 1 correct answer (found 0)" in err.violations
