"""Lesson lock states and navigation for a module."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from .models import Module, Progress
from .policy import BADGE_FLOWERS


class ModuleStatus(str, Enum):
    """Coarse module status for dashboards."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class LessonState:
    """Navigation state of one lesson."""

    lesson_id: str
    lesson_number: int
    title: str
    locked: bool
    active: bool
    completed: bool


def resolve(module: Module, progress: Progress) -> list[LessonState]:
    """Return lesson states: lessons before the current one are completed, later ones locked."""
    current_index = progress.current_lesson - 1
    return [
        LessonState(
            lesson_id=lesson.id,
            lesson_number=lesson.lesson_number,
            title=lesson.title,
            locked=index > current_index,
            active=index == current_index,
            completed=index < current_index,
        )
        for index, lesson in enumerate(module.lessons)
    ]


def select_lesson(module: Module, progress: Progress, lesson_number: int) -> Progress:
    """Move to an open lesson; selecting a locked or unknown lesson changes nothing."""
    states = {state.lesson_number: state for state in resolve(module, progress)}
    state = states.get(lesson_number)
    if state is None or state.locked:
        return progress
    if state.active and progress.current_step == 1:
        return progress
    return replace(progress, current_lesson=lesson_number, current_step=1)


def overall_percent(module: Module, progress: Progress) -> int:
    """Share of module steps before the current position, as a whole percentage."""
    if BADGE_FLOWERS in progress.badges:
        return 100
    total_steps = sum(len(lesson.steps) for lesson in module.lessons)
    if total_steps == 0:
        return 0
    lesson_index = min(max(progress.current_lesson - 1, 0), len(module.lessons))
    done = sum(len(lesson.steps) for lesson in module.lessons[:lesson_index])
    done += max(0, progress.current_step - 1)
    return int(100 * min(done, total_steps) / total_steps)


def module_status(module: Module, progress: Progress | None) -> ModuleStatus:
    """Classify progress as not started, in progress or completed."""
    if progress is None:
        return ModuleStatus.NOT_STARTED
    if BADGE_FLOWERS in progress.badges:
        return ModuleStatus.COMPLETED
    if overall_percent(module, progress) == 0 and progress.total_xp == 0:
        return ModuleStatus.NOT_STARTED
    return ModuleStatus.IN_PROGRESS
