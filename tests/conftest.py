from __future__ import annotations

import json
import shutil
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from uuid import uuid4

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from studyengine.content_loader import module_from_dict  # noqa: E402
from studyengine.models import Module  # noqa: E402


def _tmp_path_fixture() -> Iterator[Path]:
    """Provide per-test temporary directory path inside the workspace.

    Overrides pytest's builtin ``tmp_path`` so temporary databases and module
    files live under ``.tmp_pytest/`` in the project directory.
    """
    base = ROOT / ".tmp_pytest"
    base.mkdir(parents=True, exist_ok=True)
    path = base / str(uuid4())
    path.mkdir(parents=True, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        try:
            next(base.iterdir())
        except StopIteration:
            base.rmdir()
        except FileNotFoundError:
            pass


tmp_path = pytest.fixture(name="tmp_path")(_tmp_path_fixture)


def theory_step(number: int, text: str = "Read this.") -> dict[str, Any]:
    return {"stepNumber": number, "type": "THEORY", "title": f"Theory {number}", "content": {"text": text}}


def choice_step(number: int, correct: str = "4", options: list[str] | None = None) -> dict[str, Any]:
    return {
        "stepNumber": number,
        "type": "PRACTICE_EASY",
        "title": f"Choice {number}",
        "content": {
            "type": "multiple_choice",
            "question": "What is 2 + 2?",
            "options": options or ["3", "4", "5"],
            "correctAnswer": correct,
        },
    }


def question_set_step(number: int, size: int = 3, passing_score: int = 70) -> dict[str, Any]:
    return {
        "stepNumber": number,
        "type": "PRACTICE_MEDIUM",
        "title": f"Set {number}",
        "passingScore": passing_score,
        "content": {
            "questions": [
                {"type": "true_false", "question": f"Statement {idx}", "correctAnswer": True} for idx in range(size)
            ]
        },
    }


def module_dict(
    lessons: list[list[dict[str, Any]]],
    *,
    module_id: str = "sample",
    lives_enabled: bool = True,
    max_lives: int = 3,
) -> dict[str, Any]:
    return {
        "id": module_id,
        "title": module_id.title(),
        "description": "Sample module",
        "livesEnabled": lives_enabled,
        "maxLives": max_lives,
        "lessons": [
            {"id": f"{module_id}-l{idx}", "lessonNumber": idx, "title": f"Lesson {idx}", "steps": steps}
            for idx, steps in enumerate(lessons, start=1)
        ],
    }


@pytest.fixture
def build_module() -> Callable[..., Module]:
    def _build(lessons: list[list[dict[str, Any]]], **kwargs: Any) -> Module:
        return module_from_dict(module_dict(lessons, **kwargs))

    return _build


@pytest.fixture
def two_lesson_module(build_module: Callable[..., Module]) -> Module:
    return build_module([[theory_step(1), choice_step(2)], [choice_step(1), question_set_step(2)]])


@pytest.fixture
def modules_dir(tmp_path: Path) -> Path:
    target = tmp_path / "modules"
    target.mkdir()
    raw = module_dict([[theory_step(1), choice_step(2)], [choice_step(1)]], module_id="arith")
    (target / "arith.json").write_text(json.dumps(raw), encoding="utf-8")
    return target
