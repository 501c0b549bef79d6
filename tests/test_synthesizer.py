"""Tests for synthesizer.py — AI response validation."""

from __future__ import annotations

import json

import pytest

from conftest import FakeLLM, make_questions
from errors import GenerationError
from synthesizer import QuestionSynthesizer, parse_questions, strip_fences


class TestStripFences:
    def test_json_fence(self):
        assert strip_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'

    def test_bare_fence(self):
        assert strip_fences("```\n[]\n```") == "[]"

    def test_no_fence(self):
        assert strip_fences("  [1, 2]  ") == "[1, 2]"

    def test_partial_fence_left_alone(self):
        raw = 'Sure! ```json\n[]\n```'
        assert strip_fences(raw) == raw


class TestParseQuestions:
    def test_valid_mcq(self):
        questions = parse_questions(json.dumps(make_questions(3)), 3)
        assert len(questions) == 3
        assert questions[0].question_text == "What does organelle 1 do?"
        assert questions[0].options == ("A1", "B1", "C1", "D1")
        assert questions[0].expected_answer == "A"

    def test_fenced_response_accepted(self):
        raw = "```json\n" + json.dumps(make_questions(2)) + "\n```"
        assert len(parse_questions(raw, 2)) == 2

    def test_valid_short_answer(self):
        raw = json.dumps(make_questions(2, "short-answer"))
        questions = parse_questions(raw, 2, "short-answer")
        assert all(q.options is None for q in questions)

    @pytest.mark.parametrize("raw", [
        "",
        "Here you go: []",
        "[not json",
        "[]",
        '{"question": "x", "answer": "y"}',
    ])
    def test_rejects_malformed(self, raw):
        with pytest.raises(GenerationError):
            parse_questions(raw, 1)

    def test_rejects_wrong_count(self):
        with pytest.raises(GenerationError, match="expected 5 items, got 4"):
            parse_questions(json.dumps(make_questions(4)), 5)

    def test_rejects_three_options(self):
        items = make_questions(1)
        items[0]["options"] = ["A", "B", "C"]
        with pytest.raises(GenerationError, match="exactly 4 options"):
            parse_questions(json.dumps(items), 1)

    def test_rejects_blank_option(self):
        items = make_questions(1)
        items[0]["options"][2] = "  "
        with pytest.raises(GenerationError):
            parse_questions(json.dumps(items), 1)

    @pytest.mark.parametrize("answer", ["c", "C2"])
    def test_accepts_letter_or_option_text(self, answer):
        items = make_questions(2)
        items[1]["answer"] = answer
        assert parse_questions(json.dumps(items), 2)[1].expected_answer == answer

    @pytest.mark.parametrize("answer", ["E", "Mitochondria", "A1"])
    def test_rejects_answer_matching_no_option(self, answer):
        items = make_questions(2)
        items[1]["answer"] = answer
        with pytest.raises(GenerationError, match="item 2 answer matches no option"):
            parse_questions(json.dumps(items), 2)

    def test_rejects_missing_answer(self):
        items = make_questions(1)
        del items[0]["answer"]
        with pytest.raises(GenerationError, match="no answer"):
            parse_questions(json.dumps(items), 1)

    def test_rejects_empty_question(self):
        items = make_questions(1)
        items[0]["question"] = ""
        with pytest.raises(GenerationError, match="no question"):
            parse_questions(json.dumps(items), 1)

    def test_short_answer_rejects_options(self):
        with pytest.raises(GenerationError):
            parse_questions(json.dumps(make_questions(1)), 1, "short-answer")

    def test_rejects_non_object_item(self):
        with pytest.raises(GenerationError, match="not an object"):
            parse_questions('["just a string"]', 1)


class TestQuestionSynthesizer:
    def test_synthesize(self):
        llm = FakeLLM()
        questions = QuestionSynthesizer(llm).synthesize("prompt text", 5)
        assert len(questions) == 5
        prompt, system = llm.calls[0]
        assert prompt == "prompt text"
        assert "exactly 5 MCQ questions" in system

    def test_provider_error_becomes_generation_error(self):
        llm = FakeLLM(ConnectionError("reset by peer"))
        with pytest.raises(GenerationError, match="AI service call failed"):
            QuestionSynthesizer(llm).synthesize("p", 5)

    def test_unsupported_type(self):
        with pytest.raises(GenerationError, match="unsupported question type"):
            QuestionSynthesizer(FakeLLM()).synthesize("p", 5, "essay")

    def test_zero_count(self):
        with pytest.raises(GenerationError):
            QuestionSynthesizer(FakeLLM()).synthesize("p", 0)
