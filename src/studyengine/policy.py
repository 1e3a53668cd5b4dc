"""Advancement rules: lives, XP, badges and position after each graded answer."""

from __future__ import annotations

from dataclasses import dataclass, replace

from .evaluator import step_passed
from .models import Action, Evaluation, Lesson, Module, Progress, Step, StepAttempt

STEP_XP = 10
DEFAULT_LESSON_XP = 50
FIRST_FIVE_MILESTONE = 5
BADGE_FIRST_FIVE = "FIRST_FIVE"
BADGE_FLOWERS = "FLOWERS"


@dataclass(frozen=True)
class Transition:
    """Result of applying one evaluation to a progress snapshot."""

    progress: Progress
    attempt: StepAttempt
    action: Action
    events: tuple[Action, ...]
    xp_awarded: int = 0
    badges_unlocked: tuple[str, ...] = ()


def clamp_progress(module: Module, progress: Progress) -> Progress:
    """Pull a stale or out-of-range position back onto the last valid lesson/step."""
    lesson_count = max(1, len(module.lessons))
    current_lesson = min(max(progress.current_lesson, 1), lesson_count)
    step_count = 1
    if module.lessons:
        step_count = max(1, len(module.lessons[current_lesson - 1].steps))
    current_step = min(max(progress.current_step, 1), step_count)
    lives = min(max(progress.lives_remaining, 0), module.max_lives)
    if (current_lesson, current_step, lives) == (
        progress.current_lesson,
        progress.current_step,
        progress.lives_remaining,
    ):
        return progress
    return replace(progress, current_lesson=current_lesson, current_step=current_step, lives_remaining=lives)


def current_lesson(module: Module, progress: Progress) -> Lesson | None:
    """Return the lesson the (clamped) progress points at."""
    if not module.lessons:
        return None
    return module.lessons[clamp_progress(module, progress).current_lesson - 1]


def current_step(module: Module, progress: Progress) -> Step | None:
    """Return the step the (clamped) progress points at."""
    lesson = current_lesson(module, progress)
    if lesson is None or not lesson.steps:
        return None
    return lesson.steps[clamp_progress(module, progress).current_step - 1]


def restart_lesson(module: Module, progress: Progress) -> Progress:
    """Send the student back to the first step of the current lesson with full lives."""
    clamped = clamp_progress(module, progress)
    return replace(clamped, current_step=1, lives_remaining=module.max_lives)


def module_finished(module: Module, progress: Progress) -> bool:
    """True once the module is completed and the position is still on its final step."""
    if not module.lessons or BADGE_FLOWERS not in progress.badges:
        return False
    last = module.lessons[-1]
    return progress.current_lesson == len(module.lessons) and progress.current_step == max(1, len(last.steps))


def on_step_result(
    module: Module,
    progress: Progress,
    result: Evaluation | bool,
    attempt: StepAttempt | None = None,
) -> Transition:
    """Apply one graded answer for the current step and return the new state.

    ``attempt`` carries the running per-question results of a multi-question
    step; it is reset whenever the student leaves or restarts that step.
    A finished module (or one without lessons) is returned unchanged with an
    empty ``events`` tuple.
    """
    correct = result.correct if isinstance(result, Evaluation) else bool(result)
    attempt = attempt or StepAttempt()
    progress = clamp_progress(module, progress)
    if not module.lessons or module_finished(module, progress):
        return Transition(progress=progress, attempt=StepAttempt(), action=Action.MODULE_COMPLETE, events=())
    step = current_step(module, progress)
    if step is None:
        return _pass_step(module, progress)

    is_question_set = step.is_question_set
    if is_question_set and step.question_count == 0:
        return _pass_step(module, progress)

    if not correct and module.lives_enabled and module.max_lives > 0:
        lives = max(0, progress.lives_remaining - 1)
        if lives == 0:
            restarted = replace(progress, current_step=1, lives_remaining=module.max_lives)
            action = Action.LIVES_EXHAUSTED_RESTART_LESSON
            return Transition(progress=restarted, attempt=StepAttempt(), action=action, events=(action,))
        progress = replace(progress, lives_remaining=lives)

    if not is_question_set:
        if correct:
            return _pass_step(module, progress)
        action = Action.RETRY_QUESTION
        return Transition(progress=progress, attempt=attempt, action=action, events=(action,))

    results = (*attempt.results, correct)
    if attempt.question_index < step.question_count - 1:
        action = Action.NEXT_QUESTION
        next_attempt = StepAttempt(question_index=attempt.question_index + 1, results=results)
        return Transition(progress=progress, attempt=next_attempt, action=action, events=(action,))

    if step_passed(step, results):
        return _pass_step(module, progress)
    action = Action.STEP_FAILED_RESTART
    return Transition(progress=progress, attempt=StepAttempt(), action=action, events=(action,))


def _pass_step(module: Module, progress: Progress) -> Transition:
    """Award step XP and move to the next step, or complete the lesson."""
    lesson = current_lesson(module, progress)
    progress = replace(progress, total_xp=progress.total_xp + STEP_XP)
    if lesson is not None and progress.current_step >= len(lesson.steps):
        return _complete_lesson(module, lesson, progress)
    if lesson is not None:
        progress = replace(progress, current_step=progress.current_step + 1)
    action = Action.STEP_PASSED_ADVANCE
    return Transition(
        progress=progress,
        attempt=StepAttempt(),
        action=action,
        events=(action,),
        xp_awarded=STEP_XP,
    )


def _complete_lesson(module: Module, lesson: Lesson, progress: Progress) -> Transition:
    """Award lesson XP and badges, then open the next lesson or finish the module."""
    lesson_xp = lesson.xp_reward or DEFAULT_LESSON_XP
    progress = replace(progress, total_xp=progress.total_xp + lesson_xp, streak=progress.streak + 1)
    progress = progress.with_lesson_completed(lesson.id)

    unlocked: list[str] = []
    if len(progress.completed_lessons) == FIRST_FIVE_MILESTONE and BADGE_FIRST_FIVE not in progress.badges:
        progress = progress.with_badge(BADGE_FIRST_FIVE)
        unlocked.append(BADGE_FIRST_FIVE)

    if progress.current_lesson < len(module.lessons):
        progress = replace(
            progress,
            current_lesson=progress.current_lesson + 1,
            current_step=1,
            lives_remaining=module.max_lives,
        )
        action = Action.LESSON_COMPLETE
    else:
        if BADGE_FLOWERS not in progress.badges:
            progress = progress.with_badge(BADGE_FLOWERS)
            unlocked.append(BADGE_FLOWERS)
        action = Action.MODULE_COMPLETE

    return Transition(
        progress=progress,
        attempt=StepAttempt(),
        action=action,
        events=(Action.STEP_PASSED_ADVANCE, action),
        xp_awarded=STEP_XP + lesson_xp,
        badges_unlocked=tuple(unlocked),
    )
