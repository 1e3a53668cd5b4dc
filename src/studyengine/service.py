"""Application service and study sessions: the callers of the progression engine."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from .content_loader import load_modules, load_modules_from_dir
from .evaluator import evaluate_step
from .models import (
    Action,
    Evaluation,
    Lesson,
    MalformedContent,
    Module,
    Progress,
    QuestionContent,
    QuestionSetContent,
    Step,
    StepAttempt,
)
from .navigator import LessonState, ModuleStatus, module_status, overall_percent, resolve, select_lesson
from .policy import (
    Transition,
    clamp_progress,
    current_lesson,
    current_step,
    module_finished,
    on_step_result,
    restart_lesson,
)
from .progress import LocalProgressBackend, ProgressBackend, ProgressStore, ProgressStoreError, Student
from .remote import RemoteStudyClient

logger = logging.getLogger(__name__)


class SessionBusyError(RuntimeError):
    """Raised when an answer is submitted while the previous one is still being applied."""


@dataclass(frozen=True)
class StepOutcome:
    """What happened after one submission."""

    evaluation: Evaluation
    transition: Transition
    saved: bool

    @property
    def action(self) -> Action:
        return self.transition.action


@dataclass(frozen=True)
class ModuleOverview:
    """Module listing row for one student."""

    module: Module
    status: ModuleStatus
    percent: int
    total_xp: int


class StudySession:
    """One student working through one module.

    Owns the mutable progress reference. Submissions are applied one at a
    time and each resulting snapshot is persisted before the next is accepted.
    """

    def __init__(self, module: Module, backend: ProgressBackend, progress: Progress) -> None:
        self.module = module
        self._backend = backend
        self._progress = progress
        self._attempt = StepAttempt()
        self._lock = threading.Lock()

    @classmethod
    def open(cls, module: Module, backend: ProgressBackend) -> StudySession:
        """Resume saved progress, or start the module with default progress."""
        saved = backend.load_progress(module.id)
        if saved is None:
            session = cls(module, backend, Progress.initial(module))
            session._persist(include_current_step_completed=False, module_completed=False)
            return session
        progress = clamp_progress(module, saved)
        if progress != saved:
            logger.warning(
                "Saved progress for module %s pointed at lesson %d step %d; clamped to lesson %d step %d",
                module.id,
                saved.current_lesson,
                saved.current_step,
                progress.current_lesson,
                progress.current_step,
            )
        return cls(module, backend, progress)

    @property
    def progress(self) -> Progress:
        return self._progress

    @property
    def attempt(self) -> StepAttempt:
        return self._attempt

    @property
    def lesson(self) -> Lesson | None:
        return current_lesson(self.module, self._progress)

    @property
    def step(self) -> Step | None:
        return current_step(self.module, self._progress)

    @property
    def question(self) -> QuestionContent | None:
        """Content of the question currently asked, for single and multi-question steps."""
        step = self.step
        if step is None:
            return None
        if isinstance(step.content, QuestionSetContent):
            if not step.is_question_set or not step.content.questions:
                return None
            index = min(self._attempt.question_index, len(step.content.questions) - 1)
            return step.content.questions[index]
        return step.content

    @property
    def finished(self) -> bool:
        return module_status(self.module, self._progress) is ModuleStatus.COMPLETED

    @property
    def can_continue(self) -> bool:
        """False while a completed module still sits on its final step."""
        return bool(self.module.lessons) and not module_finished(self.module, self._progress)

    def lesson_states(self) -> list[LessonState]:
        return resolve(self.module, self._progress)

    def percent_complete(self) -> int:
        return overall_percent(self.module, self._progress)

    def submit(self, answer: object) -> StepOutcome:
        """Grade an answer for the current step and advance.

        Theory steps and ungraded content accept any answer, including None.
        """
        if not self._lock.acquire(blocking=False):
            raise SessionBusyError("A previous answer is still being processed.")
        try:
            step = self.step
            if step is None:
                evaluation = Evaluation(correct=True, reason="lesson has no steps")
            else:
                evaluation = evaluate_step(step, answer, self._attempt.question_index)
                if isinstance(self.question, MalformedContent):
                    logger.warning(
                        "Auto-passing malformed content in module %s, step %s: %s",
                        self.module.id,
                        step.id,
                        evaluation.reason,
                    )
            transition = on_step_result(self.module, self._progress, evaluation, self._attempt)
            saved = self._commit(transition)
            return StepOutcome(evaluation=evaluation, transition=transition, saved=saved)
        finally:
            self._lock.release()

    def select_lesson(self, lesson_number: int) -> bool:
        """Jump to an open lesson. Returns False for locked or unknown lessons."""
        with self._lock:
            moved = select_lesson(self.module, self._progress, lesson_number)
            if moved == self._progress:
                return any(
                    state.lesson_number == lesson_number and not state.locked for state in self.lesson_states()
                )
            self._progress = moved
            self._attempt = StepAttempt()
            self._persist(include_current_step_completed=False, module_completed=False)
            return True

    def restart_lesson(self) -> None:
        """Start the current lesson again from its first step with full lives."""
        with self._lock:
            self._progress = restart_lesson(self.module, self._progress)
            self._attempt = StepAttempt()
            self._persist(include_current_step_completed=False, module_completed=False)

    def _commit(self, transition: Transition) -> bool:
        changed = transition.progress != self._progress
        self._progress = transition.progress
        self._attempt = transition.attempt
        if transition.action is Action.LIVES_EXHAUSTED_RESTART_LESSON:
            logger.info("Lives exhausted in module %s; lesson %d restarted", self.module.id, self._progress.current_lesson)
        elif Action.MODULE_COMPLETE in transition.events:
            logger.info("Module %s completed with %d XP", self.module.id, self._progress.total_xp)
        if not changed:
            return True
        return self._persist(
            include_current_step_completed=Action.STEP_PASSED_ADVANCE in transition.events,
            module_completed=transition.action is Action.MODULE_COMPLETE,
        )

    def _persist(self, *, include_current_step_completed: bool, module_completed: bool) -> bool:
        try:
            self._backend.save_progress(
                self.module.id,
                self._progress,
                include_current_step_completed=include_current_step_completed,
                module_completed=module_completed,
            )
        except ProgressStoreError as exc:
            logger.error("Progress for module %s not saved: %s", self.module.id, exc)
            return False
        return True


class StudyService:
    """Coordinates students, bundled modules and local progress."""

    def __init__(self, db_path: Path | str, modules_dir: Path | None = None) -> None:
        """Initialize service with database path and optional content directory."""
        self.modules = load_modules_from_dir(modules_dir) if modules_dir is not None else load_modules()
        self.progress = ProgressStore(db_path)

    def list_students(self) -> list[Student]:
        """Return all students."""
        return self.progress.list_students()

    def create_student(self, name: str) -> Student:
        """Create student by name."""
        return self.progress.create_student(name.strip())

    def delete_student(self, student_id: int) -> bool:
        """Delete one student by id."""
        return self.progress.delete_student(student_id)

    def get_module(self, module_id: str) -> Module | None:
        """Get module by id."""
        return self.modules.get(module_id)

    def list_module_overviews(self, student_id: int) -> list[ModuleOverview]:
        """Return modules sorted by title with the student's status."""
        completed_ids = self.progress.completed_module_ids(student_id)
        overviews: list[ModuleOverview] = []
        for module in sorted(self.modules.values(), key=lambda item: (item.title, item.id)):
            saved = self.progress.load_progress(student_id, module.id)
            progress = clamp_progress(module, saved) if saved is not None else None
            status = module_status(module, progress)
            if module.id in completed_ids:
                status = ModuleStatus.COMPLETED
            overviews.append(
                ModuleOverview(
                    module=module,
                    status=status,
                    percent=overall_percent(module, progress) if progress is not None else 0,
                    total_xp=progress.total_xp if progress is not None else 0,
                )
            )
        return overviews

    def start_session(self, student_id: int, module_id: str) -> StudySession:
        """Open a study session on a bundled module for a local student."""
        if self.progress.get_student(student_id) is None:
            raise KeyError(f"Unknown student id: {student_id}")
        module = self.modules[module_id]
        return StudySession.open(module, LocalProgressBackend(self.progress, student_id))

    def close(self) -> None:
        """Close resources."""
        self.progress.close()


def open_remote_session(client: RemoteStudyClient, module_id: str) -> StudySession:
    """Fetch a module and the student's saved progress from the service."""
    module = client.fetch_module(module_id)
    return StudySession.open(module, client)
