"""Answer grading for every step content variant."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence

from .models import (
    Evaluation,
    MalformedContent,
    MatchingContent,
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

FUZZY_MATCH_THRESHOLD = 0.7
SIGNIFICANT_TOKEN_MIN_LENGTH = 3

_PUNCTUATION = re.compile(r"[.,!?;:'\"]")
_WHITESPACE = re.compile(r"\s+")
_TRUE_FALSE_SHORTHAND = {"t": "true", "f": "false"}


def normalize_text(text: str) -> str:
    """Trim, lowercase, drop punctuation and collapse whitespace runs."""
    lowered = _PUNCTUATION.sub("", text.strip().lower())
    return _WHITESPACE.sub(" ", lowered).strip()


def evaluate_step(step: Step, answer: object, question_index: int = 0) -> Evaluation:
    """Grade ``answer`` against the step, or one question of a question set."""
    if step.type is StepType.THEORY:
        return Evaluation(correct=True)
    content = step.content
    if isinstance(content, QuestionSetContent):
        if not content.questions:
            return Evaluation(correct=True, reason="step has no questions")
        index = min(max(question_index, 0), len(content.questions) - 1)
        return evaluate(content.questions[index], answer)
    return evaluate(content, answer)


def evaluate(content: StepContent, answer: object) -> Evaluation:
    """Grade one submission against a single question's content."""
    if isinstance(content, MultipleChoiceContent):
        if not isinstance(answer, str):
            return _wrong_shape("a selected option")
        return Evaluation(correct=_multiple_choice_matches(answer, content.correct_answer))
    if isinstance(content, TextEntryContent):
        if not isinstance(answer, str):
            return _wrong_shape("text")
        return Evaluation(correct=_text_matches(answer, content))
    if isinstance(content, TrueFalseContent):
        return _evaluate_true_false(content, answer)
    if isinstance(content, MatchingContent):
        return _evaluate_matching(content, answer)
    if isinstance(content, OrderingContent):
        if isinstance(answer, (str, bytes)) or not isinstance(answer, Sequence):
            return _wrong_shape("an ordered list of items")
        return Evaluation(correct=[str(item) for item in answer] == list(content.correct_order))
    if isinstance(content, MalformedContent):
        return Evaluation(correct=True, reason=f"malformed {content.kind or 'question'} content: {content.reason}")
    if isinstance(content, QuestionSetContent):
        if not content.questions:
            return Evaluation(correct=True, reason="step has no questions")
        return evaluate(content.questions[0], answer)
    return Evaluation(correct=True)


def step_passed(step: Step, results: Sequence[bool]) -> bool:
    """Return whether a question set's results reach the step passing score."""
    total = step.question_count
    if total == 0:
        return True
    correct = sum(1 for item in results if item)
    return (correct / total) * 100 >= step.passing_score


def is_graded(content: QuestionContent | QuestionSetContent) -> bool:
    """Return whether a submission is needed for this content."""
    return not isinstance(content, (TheoryContent, MalformedContent))


def _wrong_shape(expected: str) -> Evaluation:
    return Evaluation(correct=False, reason=f"expected {expected}")


def _multiple_choice_matches(answer: str, correct_answer: str) -> bool:
    """Accept the raw option text as well as the lettered ``B) text`` form."""
    submitted = answer.strip()
    correct = correct_answer.strip()
    if not submitted:
        return False
    return (
        submitted == correct
        or submitted.startswith(correct + ")")
        or submitted.startswith(correct + ".")
        or submitted == correct.split(")", 1)[0].strip()
    )


def _text_matches(answer: str, content: TextEntryContent) -> bool:
    submitted = normalize_text(answer)
    if not submitted:
        return False
    expected = [normalize_text(content.correct_answer)]
    expected.extend(normalize_text(item) for item in content.acceptable_answers)
    if submitted in expected:
        return True
    return token_overlap(submitted, expected[0]) >= FUZZY_MATCH_THRESHOLD


def token_overlap(submitted: str, correct: str) -> float:
    """Fraction of the correct answer's significant tokens present in the submission.

    Both arguments are expected to be normalized already. Tokens shorter than
    three characters are ignored and each distinct token counts once.
    """
    correct_tokens = _significant_tokens(correct)
    if not correct_tokens:
        return 0.0
    submitted_tokens = _significant_tokens(submitted)
    return len(correct_tokens & submitted_tokens) / len(correct_tokens)


def _significant_tokens(text: str) -> set[str]:
    return {token for token in text.split(" ") if len(token) >= SIGNIFICANT_TOKEN_MIN_LENGTH}


def _evaluate_true_false(content: TrueFalseContent, answer: object) -> Evaluation:
    if isinstance(answer, bool):
        answer = "true" if answer else "false"
    if not isinstance(answer, str):
        return _wrong_shape("true or false")
    submitted = normalize_text(answer)
    submitted = _TRUE_FALSE_SHORTHAND.get(submitted, submitted)
    return Evaluation(correct=bool(submitted) and submitted == normalize_text(content.correct_answer))


def _evaluate_matching(content: MatchingContent, answer: object) -> Evaluation:
    if not isinstance(answer, Mapping):
        return _wrong_shape("a mapping of left items to right items")
    submitted = {str(left): str(right) for left, right in answer.items()}
    pair_results = {pair.left: submitted.get(pair.left) == pair.right for pair in content.pairs}
    return Evaluation(correct=all(pair_results.values()), pair_results=pair_results)
