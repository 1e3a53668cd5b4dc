"""CLI entrypoint for gamified study modules."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from pathlib import Path

from .evaluator import is_graded
from .models import (
    Action,
    MalformedContent,
    MatchingContent,
    MultipleChoiceContent,
    OrderingContent,
    QuestionContent,
    TextEntryContent,
    TheoryContent,
    TrueFalseContent,
)
from .progress import ProgressStoreError
from .remote import RemoteStudyClient
from .service import StepOutcome, StudyService, StudySession, open_remote_session
from .settings import Settings, load_settings

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
BACK_COMMANDS = {":back", ":b", "back"}
MENU_QUIT_COMMANDS = {"q"}
FLOW_EXIT_COMMANDS = {":quit", ":exit", ":q"}
MENU_BACK_COMMANDS = {"b"}
LOG_FORMAT = "%(levelname)-5s [%(name)s] %(message)s"
LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _service(db_path: Path | None = None, modules_dir: Path | None = None) -> StudyService:
    """Create app service with local database path."""
    return StudyService(db_path=db_path or load_settings().db_path, modules_dir=modules_dir)


def _remote_client(settings: Settings) -> RemoteStudyClient:
    """Create REST client for the assignment service."""
    return RemoteStudyClient.from_settings(settings)


def _configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="studyengine", description="Lesson-by-lesson study modules")
    parser.add_argument("command", nargs="?", default="play", choices=["play"])
    parser.add_argument("--modules-dir", type=Path, default=None, help="Load modules from JSON files in DIR")
    parser.add_argument("--db", type=Path, default=None, help="Local progress database path")
    parser.add_argument("--remote", metavar="MODULE_ID", default=None, help="Study a module from the service")
    args = parser.parse_args(argv)

    settings = load_settings()
    _configure_logging(settings.log_level)
    if args.remote:
        return remote_shell(args.remote, settings=settings)
    return play_shell(db_path=args.db, modules_dir=args.modules_dir)


def play_shell(
    input_fn: InputFn = input,
    print_fn: PrintFn = print,
    *,
    db_path: Path | None = None,
    modules_dir: Path | None = None,
) -> int:
    """Run persistent menu-driven shell."""
    service = _service(db_path, modules_dir)
    try:
        selected = _select_student(service, input_fn, print_fn)
        if selected is None:
            return 0
        student_id, student_name = selected
        try:
            while True:
                print_fn("\n=== Study ===")
                print_fn(f"Student: {student_name}")
                print_fn("1) Study a module")
                print_fn("2) Status")
                print_fn("b) Back")
                print_fn("q) Quit")
                choice = input_fn("Choose: ").strip().lower()

                if choice == "1":
                    _study_module_flow(service, student_id, input_fn, print_fn)
                elif choice == "2":
                    _status_flow(service, student_id, print_fn)
                elif choice in MENU_BACK_COMMANDS:
                    switched = _select_student(service, input_fn, print_fn)
                    if switched is None:
                        return 0
                    student_id, student_name = switched
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
        except QuitApp:
            return 0
    finally:
        service.close()


def remote_shell(
    module_id: str,
    input_fn: InputFn = input,
    print_fn: PrintFn = print,
    *,
    settings: Settings | None = None,
) -> int:
    """Study one module fetched from the service, saving progress back to it."""
    client = _remote_client(settings or load_settings())
    try:
        try:
            session = open_remote_session(client, module_id)
        except ProgressStoreError as exc:
            print_fn(f"Could not load module '{module_id}': {exc}")
            return 1
        try:
            _lesson_map_flow(session, input_fn, print_fn)
        except QuitApp:
            pass
        return 0
    finally:
        client.close()


def _select_student(service: StudyService, input_fn: InputFn, print_fn: PrintFn) -> tuple[int, str] | None:
    """Select existing student or create new one."""
    while True:
        students = service.list_students()
        print_fn("\n=== Students ===")
        if students:
            for idx, student in enumerate(students, start=1):
                print_fn(f"{idx}) {student.name}")
        else:
            print_fn("No students yet.")
        print_fn("n) New student")
        print_fn("d) Delete student")
        print_fn("q) Quit")

        choice = input_fn("Select student: ").strip().lower()
        if choice in MENU_QUIT_COMMANDS:
            return None
        if choice == "n":
            name = input_fn("New student name: ").strip()
            if not name:
                print_fn("Student name is required.")
                continue
            try:
                created = service.create_student(name)
            except Exception:
                print_fn("Could not create student (name may already exist).")
                continue
            return (created.id, created.name)
        if choice == "d":
            _delete_student_flow(service, input_fn, print_fn)
            continue

        if choice.isdigit():
            index = int(choice) - 1
            if 0 <= index < len(students):
                selected = students[index]
                return (selected.id, selected.name)

        print_fn("Invalid student selection.")


def _delete_student_flow(service: StudyService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Delete a student after typed confirmation."""
    students = service.list_students()
    if not students:
        print_fn("No students available to delete.")
        return

    print_fn("\nDelete student")
    for idx, student in enumerate(students, start=1):
        print_fn(f"{idx}) {student.name}")
    print_fn("b) Back")
    choice = input_fn("Choose student to delete: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(students)):
        print_fn("Invalid choice.")
        return

    target = students[int(choice) - 1]
    print_fn(f"WARNING: This permanently deletes student '{target.name}' and all module progress.")
    confirm = input_fn("Type YES to confirm deletion: ").strip()
    if confirm != "YES":
        print_fn("Deletion cancelled.")
        return
    if service.delete_student(target.id):
        print_fn(f"Deleted student '{target.name}'.")
    else:
        print_fn("Student was not found.")


def _status_flow(service: StudyService, student_id: int, print_fn: PrintFn) -> None:
    """Print module progress status."""
    print_fn("\n=== Module Status ===")
    overviews = service.list_module_overviews(student_id)
    if not overviews:
        print_fn("No modules available.")
        return
    id_width = max(len("Module"), max(len(item.module.id) for item in overviews))
    status_width = max(len("Status"), max(len(item.status.value) for item in overviews))
    header = f"{'Module':<{id_width}} {'Status':<{status_width}} {'Done':>4} {'XP':>5} Title"
    print_fn(header)
    print_fn("-" * len(header))
    for item in overviews:
        print_fn(
            f"{item.module.id:<{id_width}} "
            f"{item.status.value:<{status_width}} "
            f"{item.percent:>3}% "
            f"{item.total_xp:>5} "
            f"{item.module.title}"
        )


def _study_module_flow(service: StudyService, student_id: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Pick a module and open its lesson map."""
    overviews = service.list_module_overviews(student_id)
    if not overviews:
        print_fn("No modules available.")
        return

    print_fn("\n=== Modules ===")
    for idx, item in enumerate(overviews, start=1):
        print_fn(f"{idx:>2}) {item.module.title} [{item.status.value}, {item.percent}%]")
    print_fn("b) Back")
    print_fn("q) Quit")
    choice = input_fn("Choose module: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(overviews)):
        print_fn("Invalid choice.")
        return

    session = service.start_session(student_id, overviews[int(choice) - 1].module.id)
    _lesson_map_flow(session, input_fn, print_fn)


def _lesson_map_flow(session: StudySession, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Show lesson lock states and run the chosen lesson."""
    module = session.module
    while True:
        progress = session.progress
        print_fn(f"\n=== {module.title} ===")
        if module.description:
            print_fn(module.description)
        lives = f" | Lives {progress.lives_remaining}/{module.max_lives}" if module.lives_enabled else ""
        print_fn(f"XP {progress.total_xp} | Streak {progress.streak}{lives} | {session.percent_complete()}% done")
        if progress.badges:
            print_fn(f"Badges: {', '.join(progress.badges)}")
        for state in session.lesson_states():
            marker = "x" if state.completed else (">" if state.active else "-")
            suffix = " (locked)" if state.locked else ""
            print_fn(f"[{marker}] {state.lesson_number}) {state.title}{suffix}")
        if session.can_continue:
            print_fn("Enter) Continue current lesson")
        elif module.lessons:
            print_fn("Module complete. Pick a lesson number to review it.")
        else:
            print_fn("This module has no lessons.")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose lesson: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if not choice and not session.can_continue:
            print_fn("Nothing to continue.")
            continue
        if choice:
            if not choice.isdigit():
                print_fn("Invalid choice.")
                continue
            if not session.select_lesson(int(choice)):
                print_fn(f"Lesson {choice} is locked.")
                continue
        if not _run_lesson(session, input_fn, print_fn):
            print_fn("Leaving lesson. Progress saved.")
            return


def _run_lesson(session: StudySession, input_fn: InputFn, print_fn: PrintFn) -> bool:
    """Run steps until the lesson ends. Returns False when the student leaves."""
    lesson = session.lesson
    if lesson is None:
        return True
    print_fn(f"\nLesson {lesson.lesson_number}: {lesson.title}")
    print_fn("Type :b or :q to leave the lesson.")
    while True:
        step = session.step
        question = session.question
        if step is not None:
            position = f"Step {step.step_number}/{len(lesson.steps)}"
            if step.question_count > 1:
                position += f", question {session.attempt.question_index + 1}/{step.question_count}"
            print_fn(f"\n[{position}] {step.title}")
        answer = _read_answer(question, input_fn, print_fn)
        if answer is None:
            return False
        outcome = session.submit(answer)
        _print_outcome(outcome, question, print_fn)
        if not outcome.saved:
            print_fn("Warning: progress could not be saved.")
        if outcome.action in (Action.LESSON_COMPLETE, Action.MODULE_COMPLETE):
            return True
        if outcome.action is Action.LIVES_EXHAUSTED_RESTART_LESSON:
            return True


def _read_answer(question: QuestionContent | None, input_fn: InputFn, print_fn: PrintFn) -> object | None:
    """Render one question and read the student's answer; None means leave."""
    if question is None or isinstance(question, TheoryContent):
        if question is not None:
            _print_theory(question, print_fn)
        return _prompt(input_fn, "Press Enter to continue: ")
    if isinstance(question, MalformedContent):
        print_fn("This question could not be loaded and will be skipped.")
        return _prompt(input_fn, "Press Enter to continue: ")
    if isinstance(question, MultipleChoiceContent):
        print_fn(question.question)
        for letter, option in zip(LETTERS, question.options):
            print_fn(f"  {letter}) {option}")
        raw = _prompt(input_fn, "Answer: ")
        if raw is None:
            return None
        return _option_for_letter(raw, question.options)
    if isinstance(question, TrueFalseContent):
        print_fn(question.question)
        return _prompt(input_fn, "True or false: ")
    if isinstance(question, TextEntryContent):
        print_fn(question.question)
        return _prompt(input_fn, "Answer: ")
    if isinstance(question, MatchingContent):
        return _read_matching(question, input_fn, print_fn)
    print_fn(question.question or "Put the items in the correct order.")
    for idx, item in enumerate(question.items, start=1):
        print_fn(f"  {idx}) {item}")
    raw = _prompt(input_fn, "Order (e.g. 2,1,3): ")
    if raw is None:
        return None
    return parse_order(raw, question.items)


def _read_matching(question: MatchingContent, input_fn: InputFn, print_fn: PrintFn) -> dict[str, str] | None:
    print_fn(question.question or "Match each item.")
    rights = sorted({pair.right for pair in question.pairs})
    for letter, right in zip(LETTERS, rights):
        print_fn(f"  {letter}) {right}")
    answer: dict[str, str] = {}
    for pair in question.pairs:
        raw = _prompt(input_fn, f"{pair.left} = ")
        if raw is None:
            return None
        answer[pair.left] = _option_for_letter(raw, tuple(rights))
    return answer


def _print_theory(content: TheoryContent, print_fn: PrintFn) -> None:
    if content.text:
        print_fn(content.text)
    for example in content.examples:
        print_fn(f"Example: {example}")
    if content.key_points:
        print_fn("Key points:")
        for point in content.key_points:
            print_fn(f"- {point}")


def _print_outcome(outcome: StepOutcome, question: QuestionContent | None, print_fn: PrintFn) -> None:
    graded = question is not None and is_graded(question)
    if graded:
        if outcome.evaluation.correct:
            print_fn("Correct.")
        else:
            print_fn("Not quite.")
            for left, ok in outcome.evaluation.pair_results.items():
                if not ok:
                    print_fn(f"- {left} is not matched correctly")
        explanation = getattr(question, "explanation", "")
        if explanation:
            print_fn(f"Note: {explanation}")

    action = outcome.action
    progress = outcome.transition.progress
    if action is Action.RETRY_QUESTION:
        print_fn(f"Try again. Lives left: {progress.lives_remaining}")
    elif action is Action.STEP_FAILED_RESTART:
        print_fn("Score below the passing mark. The step starts again.")
    elif action is Action.LIVES_EXHAUSTED_RESTART_LESSON:
        print_fn("Out of lives. The lesson restarts from its first step.")
    elif action is Action.STEP_PASSED_ADVANCE:
        print_fn(f"Step passed. +{outcome.transition.xp_awarded} XP")
    elif action is Action.LESSON_COMPLETE:
        print_fn(f"Lesson complete! +{outcome.transition.xp_awarded} XP (total {progress.total_xp})")
    elif action is Action.MODULE_COMPLETE:
        print_fn(f"Module complete! +{outcome.transition.xp_awarded} XP (total {progress.total_xp})")
    for badge in outcome.transition.badges_unlocked:
        print_fn(f"Badge unlocked: {badge}")


def _prompt(input_fn: InputFn, label: str) -> str | None:
    text = input_fn(label).strip()
    if text.lower() in BACK_COMMANDS or text.lower() in FLOW_EXIT_COMMANDS:
        return None
    return text


def _option_for_letter(raw: str, options: tuple[str, ...]) -> str:
    """Map a single option letter to its text; other input passes through."""
    if len(raw) == 1 and raw.upper() in LETTERS:
        index = LETTERS.index(raw.upper())
        if index < len(options):
            return options[index]
    return raw


def parse_order(raw: str, items: tuple[str, ...]) -> list[str]:
    """Parse ``2,1,3`` positions or ``a | b | c`` item texts into an ordered list."""
    separator = "|" if "|" in raw else ","
    parts = [part.strip() for part in raw.split(separator) if part.strip()]
    if parts and all(part.isdigit() and 1 <= int(part) <= len(items) for part in parts):
        return [items[int(part) - 1] for part in parts]
    return parts


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
