"""Build typed study modules from JSON content."""

from __future__ import annotations

import json
from collections.abc import Mapping
from importlib import resources
from pathlib import Path
from typing import Any

from .models import (
    Lesson,
    MalformedContent,
    MatchingContent,
    MatchingPair,
    Module,
    MultipleChoiceContent,
    OrderingContent,
    QuestionContent,
    QuestionSetContent,
    Step,
    StepContent,
    StepType,
    TextEntryContent,
    TheoryContent,
    TrueFalseContent,
)

CONTENT_PACKAGE = "studyengine.content.modules"

MULTIPLE_CHOICE_KINDS = {"multiple_choice", "multipleChoice"}
TEXT_ENTRY_KINDS = {"fill_in_blank", "fillBlank", "fill-in-the-blank", "text_entry", "mixed"}
TRUE_FALSE_KINDS = {"true_false", "trueFalse"}


def content_from_dict(raw: object) -> StepContent:
    """Build step content from its raw JSON object."""
    if not isinstance(raw, Mapping):
        return TheoryContent()
    questions = raw.get("questions")
    if isinstance(questions, list):
        return QuestionSetContent(questions=tuple(question_from_dict(item) for item in questions))
    return question_from_dict(raw)


def question_from_dict(raw: object) -> QuestionContent:
    """Build one question variant keyed by its ``type`` discriminator."""
    if not isinstance(raw, Mapping):
        return MalformedContent(kind="", reason="question is not an object")
    kind = str(raw.get("type", "")).strip()
    question = str(raw.get("question", ""))
    explanation = str(raw.get("explanation", ""))

    if kind in MULTIPLE_CHOICE_KINDS:
        correct = _answer_text(raw.get("correctAnswer"))
        if correct is None:
            return MalformedContent(kind=kind, reason="missing correctAnswer")
        options = tuple(str(option) for option in raw.get("options", []) or [])
        return MultipleChoiceContent(
            question=question, options=options, correct_answer=correct, explanation=explanation
        )

    if kind in TEXT_ENTRY_KINDS:
        correct = _answer_text(raw.get("correctAnswer"))
        acceptable = tuple(str(item) for item in raw.get("acceptableAnswers", []) or [] if str(item).strip())
        if correct is None:
            if not acceptable:
                return MalformedContent(kind=kind, reason="missing correctAnswer")
            correct = acceptable[0]
        return TextEntryContent(
            question=question, correct_answer=correct, acceptable_answers=acceptable, explanation=explanation
        )

    if kind in TRUE_FALSE_KINDS:
        correct = _answer_text(raw.get("correctAnswer"))
        if correct is None:
            return MalformedContent(kind=kind, reason="missing correctAnswer")
        return TrueFalseContent(question=question, correct_answer=correct, explanation=explanation)

    if kind == "matching":
        pairs = _pairs_from_raw(raw.get("pairs"))
        if not pairs:
            return MalformedContent(kind=kind, reason="missing pairs")
        return MatchingContent(pairs=pairs, question=question, explanation=explanation)

    if kind == "ordering":
        correct_order = raw.get("correctOrder")
        if not isinstance(correct_order, list) or not correct_order:
            return MalformedContent(kind=kind, reason="missing correctOrder")
        order = tuple(str(item) for item in correct_order)
        items = tuple(str(item) for item in raw.get("items", []) or []) or order
        return OrderingContent(items=items, correct_order=order, question=question, explanation=explanation)

    return TheoryContent(
        text=str(raw.get("text", raw.get("explanation", ""))),
        examples=tuple(str(item) for item in raw.get("examples", []) or []),
        key_points=tuple(str(item) for item in raw.get("keyPoints", []) or []),
    )


def _answer_text(value: object) -> str | None:
    """Return the textual correct answer, or None when absent."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip()
    return text or None


def _pairs_from_raw(raw: object) -> tuple[MatchingPair, ...]:
    """Accept pairs as a list of {left, right} objects or a left -> right object."""
    if isinstance(raw, Mapping):
        return tuple(MatchingPair(left=str(left), right=str(right)) for left, right in raw.items())
    if not isinstance(raw, list):
        return ()
    pairs: list[MatchingPair] = []
    for item in raw:
        if not isinstance(item, Mapping) or "left" not in item or "right" not in item:
            return ()
        pairs.append(MatchingPair(left=str(item["left"]), right=str(item["right"])))
    return tuple(pairs)


def _step_from_dict(lesson_id: str, raw: dict[str, Any]) -> Step:
    """Build a step from raw JSON content."""
    step_number = int(raw["stepNumber"])
    passing_score = raw.get("passingScore")
    raw_type = str(raw.get("type", StepType.THEORY.value)).strip().upper()
    try:
        step_type = StepType(raw_type)
    except ValueError as exc:
        raise ValueError(f"Step {step_number} of lesson '{lesson_id}' has unknown type '{raw_type}'.") from exc
    return Step(
        id=str(raw.get("id", f"{lesson_id}-step-{step_number}")),
        step_number=step_number,
        type=step_type,
        title=str(raw.get("title", "")),
        content=content_from_dict(raw.get("content")),
        passing_score=80 if passing_score is None else int(passing_score),
    )


def _lesson_from_dict(module_id: str, raw: dict[str, Any]) -> Lesson:
    """Build a lesson from raw JSON content."""
    lesson_number = int(raw["lessonNumber"])
    lesson_id = str(raw.get("id", f"{module_id}-lesson-{lesson_number}"))
    steps = [_step_from_dict(lesson_id, item) for item in raw.get("steps", [])]
    steps.sort(key=lambda item: item.step_number)
    _validate_contiguous([step.step_number for step in steps], f"steps of lesson '{lesson_id}'")
    xp_reward = raw.get("xpReward")
    return Lesson(
        id=lesson_id,
        lesson_number=lesson_number,
        title=str(raw.get("title", "")),
        steps=tuple(steps),
        min_score=int(raw.get("minScore") or 0),
        max_attempts=int(raw.get("maxAttempts") or 0),
        xp_reward=int(xp_reward) if xp_reward else None,
    )


def module_from_dict(raw: Mapping[str, Any]) -> Module:
    """Build a module from raw JSON content."""
    module_id = str(raw["id"])
    lessons = [_lesson_from_dict(module_id, lesson) for lesson in raw.get("lessons", [])]
    lessons.sort(key=lambda item: item.lesson_number)
    _validate_contiguous([lesson.lesson_number for lesson in lessons], f"lessons of module '{module_id}'")
    max_lives = max(0, int(raw.get("maxLives", 3)))
    return Module(
        id=module_id,
        title=str(raw["title"]),
        lessons=tuple(lessons),
        description=str(raw.get("description", "")),
        subject=str(raw.get("subject", "")),
        topic=str(raw.get("topic", "")),
        grade_level=int(raw.get("gradeLevel") or 0),
        passing_score=int(raw.get("passingScore", 70)),
        lives_enabled=bool(raw.get("livesEnabled", True)),
        max_lives=max_lives,
        xp_reward=int(raw.get("xpReward") or 0),
    )


def _validate_contiguous(numbers: list[int], label: str) -> None:
    """Require sorted numbering 1..n without gaps or duplicates."""
    expected = list(range(1, len(numbers) + 1))
    if numbers != expected:
        raise ValueError(f"Numbering of {label} must be contiguous from 1, got {numbers}.")


def load_modules() -> dict[str, Module]:
    """Load bundled modules."""
    modules: dict[str, Module] = {}
    for entry in resources.files(CONTENT_PACKAGE).iterdir():
        if entry.name.endswith(".json"):
            _add_module(modules, json.loads(entry.read_text(encoding="utf-8-sig")))
    return modules


def load_modules_from_dir(path: Path) -> dict[str, Module]:
    """Load modules from a directory of JSON files."""
    modules: dict[str, Module] = {}
    for file_path in sorted(path.glob("*.json")):
        _add_module(modules, json.loads(file_path.read_text(encoding="utf-8-sig")))
    return modules


def _add_module(modules: dict[str, Module], raw: dict[str, Any]) -> None:
    module = module_from_dict(raw)
    if module.id in modules:
        raise ValueError(f"Duplicate module id: {module.id}")
    modules[module.id] = module
