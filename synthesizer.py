"""Question synthesizer — asks the AI service for a test and validates it.

The scheduled path has no local fallback: anything other than a clean JSON
array of well-formed items raises GenerationError, and the pipeline leaves
the schedule due so the next run tries again.
"""

from __future__ import annotations

import json
import logging
import re

from errors import GenerationError
from material_digest import item_shape
from models import QUESTION_TYPES, Question

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an exam prep assistant. Generate exactly {count} {label} questions as a JSON array.
Each item must have this shape: {shape}
Respond with the JSON array only: no commentary, no explanation, no text before or after it."""

MCQ_OPTION_COUNT = 4
MCQ_LETTERS = ("A", "B", "C", "D")

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def strip_fences(raw: str) -> str:
    """Remove a markdown code fence wrapping the whole response, if any."""
    text = (raw or "").strip()
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


def _non_empty_str(value) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _parse_item(item, index: int, question_type: str) -> Question:
    if not isinstance(item, dict):
        raise GenerationError(f"item {index} is not an object")
    if not _non_empty_str(item.get("question")):
        raise GenerationError(f"item {index} has no question text")
    if not _non_empty_str(item.get("answer")):
        raise GenerationError(f"item {index} has no answer")

    options = item.get("options")
    if question_type == "MCQ":
        if not isinstance(options, list) or len(options) != MCQ_OPTION_COUNT:
            raise GenerationError(f"item {index} must have exactly {MCQ_OPTION_COUNT} options")
        if not all(_non_empty_str(o) for o in options):
            raise GenerationError(f"item {index} has a blank or non-text option")
        options = tuple(o.strip() for o in options)
        answer = item["answer"].strip()
        if answer.upper() not in MCQ_LETTERS and answer not in options:
            raise GenerationError(f"item {index} answer matches no option")
    elif options is not None:
        raise GenerationError(f"item {index} has options but {question_type} was requested")

    return Question(
        question_text=item["question"].strip(),
        expected_answer=item["answer"].strip(),
        options=options,
    )


def parse_questions(raw: str, question_count: int, question_type: str = "MCQ") -> list[Question]:
    """Validate a raw AI response into exactly question_count questions."""
    text = strip_fences(raw)
    if not text.startswith("["):
        raise GenerationError("response is not a bare JSON array")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationError(f"response is not valid JSON: {e}") from e

    if not isinstance(data, list) or not data:
        raise GenerationError("response is not a non-empty JSON array")
    if len(data) != question_count:
        raise GenerationError(f"expected {question_count} items, got {len(data)}")

    return [_parse_item(item, i, question_type) for i, item in enumerate(data, start=1)]


class QuestionSynthesizer:
    """Obtains a validated test from an LLMClient."""

    def __init__(self, llm):
        self.llm = llm

    def synthesize(self, prompt: str, question_count: int, question_type: str = "MCQ") -> list[Question]:
        if question_type not in QUESTION_TYPES:
            raise GenerationError(f"unsupported question type: {question_type}")
        if question_count < 1:
            raise GenerationError("question_count must be at least 1")

        system = SYSTEM_PROMPT.format(
            count=question_count,
            label=question_type,
            shape=item_shape(question_type),
        )
        try:
            raw, meta = self.llm.complete(prompt, system=system)
        except Exception as e:
            raise GenerationError(f"AI service call failed: {e}") from e

        questions = parse_questions(raw, question_count, question_type)
        logger.info(
            "Synthesized %d %s questions via %s/%s (%sms, ~%s tokens, ~$%s)",
            len(questions), question_type, meta.get("provider"), meta.get("model"),
            meta.get("latency_ms"), meta.get("total_tokens_est"), meta.get("cost_estimate_usd"),
        )
        return questions
