"""Core domain models for gamified study modules."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union


class StepType(str, Enum):
    """Declared kind of a lesson step."""

    THEORY = "THEORY"
    PRACTICE_EASY = "PRACTICE_EASY"
    PRACTICE_MEDIUM = "PRACTICE_MEDIUM"
    PRACTICE_HARD = "PRACTICE_HARD"
    QUIZ = "QUIZ"
    REVIEW = "REVIEW"
    CHALLENGE = "CHALLENGE"


class Action(str, Enum):
    """Outcome tag returned by the advancement policy."""

    RETRY_QUESTION = "RETRY_QUESTION"
    NEXT_QUESTION = "NEXT_QUESTION"
    STEP_PASSED_ADVANCE = "STEP_PASSED_ADVANCE"
    STEP_FAILED_RESTART = "STEP_FAILED_RESTART"
    LESSON_COMPLETE = "LESSON_COMPLETE"
    MODULE_COMPLETE = "MODULE_COMPLETE"
    LIVES_EXHAUSTED_RESTART_LESSON = "LIVES_EXHAUSTED_RESTART_LESSON"


@dataclass(frozen=True)
class TheoryContent:
    """Ungraded reading material."""

    text: str = ""
    examples: tuple[str, ...] = ()
    key_points: tuple[str, ...] = ()


@dataclass(frozen=True)
class MultipleChoiceContent:
    """Pick one option."""

    question: str
    options: tuple[str, ...]
    correct_answer: str
    explanation: str = ""


@dataclass(frozen=True)
class TextEntryContent:
    """Free text answer (fill-in-blank, text entry, mixed)."""

    question: str
    correct_answer: str
    acceptable_answers: tuple[str, ...] = ()
    explanation: str = ""


@dataclass(frozen=True)
class TrueFalseContent:
    """True/false statement."""

    question: str
    correct_answer: str
    explanation: str = ""


@dataclass(frozen=True)
class MatchingPair:
    """One left/right pair of a matching activity."""

    left: str
    right: str


@dataclass(frozen=True)
class MatchingContent:
    """Match every left item with its right item."""

    pairs: tuple[MatchingPair, ...]
    question: str = ""
    explanation: str = ""


@dataclass(frozen=True)
class OrderingContent:
    """Put items in the correct order."""

    items: tuple[str, ...]
    correct_order: tuple[str, ...]
    question: str = ""
    explanation: str = ""


@dataclass(frozen=True)
class MalformedContent:
    """Content whose discriminator is known but whose required fields are missing."""

    kind: str
    reason: str


QuestionContent = Union[
    TheoryContent,
    MultipleChoiceContent,
    TextEntryContent,
    TrueFalseContent,
    MatchingContent,
    OrderingContent,
    MalformedContent,
]


@dataclass(frozen=True)
class QuestionSetContent:
    """Practice or quiz step made of several questions."""

    questions: tuple[QuestionContent, ...]


StepContent = Union[QuestionContent, QuestionSetContent]


@dataclass(frozen=True)
class Step:
    """Smallest gradable unit of a lesson."""

    id: str
    step_number: int
    type: StepType
    title: str
    content: StepContent
    passing_score: int = 80

    @property
    def is_question_set(self) -> bool:
        """Graded step walked one question at a time; theory is always a single read."""
        return isinstance(self.content, QuestionSetContent) and self.type is not StepType.THEORY

    @property
    def question_count(self) -> int:
        """Number of graded questions; single-content steps count as one."""
        if self.is_question_set:
            return len(self.content.questions)
        return 1


@dataclass(frozen=True)
class Lesson:
    """Ordered sequence of steps inside a module."""

    id: str
    lesson_number: int
    title: str
    steps: tuple[Step, ...]
    min_score: int = 0
    max_attempts: int = 0
    xp_reward: int | None = None


@dataclass(frozen=True)
class Module:
    """Published study module."""

    id: str
    title: str
    lessons: tuple[Lesson, ...]
    description: str = ""
    subject: str = ""
    topic: str = ""
    grade_level: int = 0
    passing_score: int = 70
    lives_enabled: bool = True
    max_lives: int = 3
    xp_reward: int = 0

    @property
    def total_lessons(self) -> int:
        return len(self.lessons)


@dataclass(frozen=True)
class Progress:
    """Per-student, per-module progress snapshot.

    Positions are 1-based. ``completed_lessons`` and ``badges`` keep insertion
    order and never lose entries.
    """

    current_lesson: int = 1
    current_step: int = 1
    total_xp: int = 0
    lives_remaining: int = 0
    streak: int = 0
    completed_lessons: tuple[str, ...] = ()
    badges: tuple[str, ...] = ()

    @classmethod
    def initial(cls, module: Module) -> Progress:
        """Progress for a first start of ``module``."""
        return cls(lives_remaining=module.max_lives)

    def with_lesson_completed(self, lesson_id: str) -> Progress:
        if lesson_id in self.completed_lessons:
            return self
        return replace(self, completed_lessons=(*self.completed_lessons, lesson_id))

    def with_badge(self, badge: str) -> Progress:
        if badge in self.badges:
            return self
        return replace(self, badges=(*self.badges, badge))

    def to_payload(self, *, zero_based: bool = False) -> dict[str, Any]:
        """Serialize to the camelCase wire snapshot.

        With ``zero_based`` the lesson and step positions are written counting
        from 0, as the assignment service stores them.
        """
        offset = 1 if zero_based else 0
        return {
            "currentLesson": self.current_lesson - offset,
            "currentStep": self.current_step - offset,
            "totalXP": self.total_xp,
            "livesRemaining": self.lives_remaining,
            "streak": self.streak,
            "completedLessons": list(self.completed_lessons),
            "badges": list(self.badges),
        }

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any], *, zero_based: bool = False) -> Progress:
        """Build progress from a wire snapshot, tolerating missing keys.

        Positions are always 1-based once loaded; ``zero_based`` shifts a
        snapshot whose lesson and step count from 0.
        """
        offset = 1 if zero_based else 0
        return cls(
            current_lesson=_as_int(raw.get("currentLesson"), 1 - offset) + offset,
            current_step=_as_int(raw.get("currentStep"), 1 - offset) + offset,
            total_xp=max(0, _as_int(raw.get("totalXP", raw.get("totalXp")), 0)),
            lives_remaining=max(0, _as_int(raw.get("livesRemaining", raw.get("lives")), 0)),
            streak=max(0, _as_int(raw.get("streak"), 0)),
            completed_lessons=_unique_strings(raw.get("completedLessons")),
            badges=_unique_strings(raw.get("badges")),
        )


@dataclass(frozen=True)
class StepAttempt:
    """Transient state of a multi-question step in progress."""

    question_index: int = 0
    results: tuple[bool, ...] = ()

    @property
    def correct_count(self) -> int:
        return sum(1 for item in self.results if item)


@dataclass(frozen=True)
class Evaluation:
    """Result of grading one submission."""

    correct: bool
    pair_results: dict[str, bool] = field(default_factory=dict)
    reason: str | None = None


def _as_int(value: object, default: int) -> int:
    if isinstance(value, bool) or value is None:
        return default
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return default


def _unique_strings(value: object) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    seen: list[str] = []
    for item in value:
        text = str(item)
        if text not in seen:
            seen.append(text)
    return tuple(seen)
