from pathlib import Path
from typing import Any

import httpx
from conftest import choice_step, module_dict

import studyengine.main as main
from studyengine.models import MatchingContent, MatchingPair, OrderingContent
from studyengine.remote import RemoteStudyClient
from studyengine.service import StudyService


def _real_service(tmp_path: Path, modules_dir: Path) -> StudyService:
    return StudyService(db_path=tmp_path / "progress.db", modules_dir=modules_dir)


def test_run_enters_play_shell(monkeypatch: Any) -> None:
    called: dict[str, Any] = {}
    monkeypatch.setattr(main, "play_shell", lambda **kwargs: called.update(kwargs) or 0)
    assert main.run(["--db", "x.db"]) == 0
    assert called["db_path"] == Path("x.db")
    assert called["modules_dir"] is None


def test_run_remote_uses_remote_shell(monkeypatch: Any) -> None:
    monkeypatch.setattr(main, "remote_shell", lambda module_id, **kwargs: 7 if module_id == "bio-101" else 1)
    assert main.run(["--remote", "bio-101"]) == 7


def test_play_shell_quit_at_student_selection(monkeypatch: Any, tmp_path: Path, modules_dir: Path) -> None:
    service = _real_service(tmp_path, modules_dir)
    closed = {"value": False}
    original_close = service.close

    def close() -> None:
        closed["value"] = True
        original_close()

    monkeypatch.setattr(service, "close", close)
    monkeypatch.setattr(main, "_service", lambda *args, **kwargs: service)
    outputs: list[str] = []
    assert main.play_shell(input_fn=lambda _: "q", print_fn=outputs.append) == 0
    assert closed["value"] is True
    assert any("No students yet." in line for line in outputs)


def test_play_shell_completes_first_lesson(monkeypatch: Any, tmp_path: Path, modules_dir: Path) -> None:
    service = _real_service(tmp_path, modules_dir)
    monkeypatch.setattr(main, "_service", lambda *args, **kwargs: service)
    inputs = iter(["n", "alice", "1", "1", "", "", "A", "B", "b", "q"])
    outputs: list[str] = []

    code = main.play_shell(input_fn=lambda _: next(inputs), print_fn=outputs.append)
    assert code == 0
    assert any("Step passed. +10 XP" in line for line in outputs)
    assert any("Not quite." in line for line in outputs)
    assert any("Try again. Lives left: 2" in line for line in outputs)
    assert any("Lesson complete! +60 XP (total 70)" in line for line in outputs)


def test_play_shell_leave_lesson_keeps_progress(monkeypatch: Any, tmp_path: Path, modules_dir: Path) -> None:
    service = _real_service(tmp_path, modules_dir)
    monkeypatch.setattr(main, "_service", lambda *args, **kwargs: service)
    inputs = iter(["n", "alice", "1", "1", "", "", ":q", "2", "q"])
    outputs: list[str] = []

    assert main.play_shell(input_fn=lambda _: next(inputs), print_fn=outputs.append) == 0
    assert any("Leaving lesson. Progress saved." in line for line in outputs)
    assert any("in_progress" in line and "33%" in line for line in outputs)


def test_play_shell_invalid_choice_then_switch_student(monkeypatch: Any, tmp_path: Path, modules_dir: Path) -> None:
    service = _real_service(tmp_path, modules_dir)
    monkeypatch.setattr(main, "_service", lambda *args, **kwargs: service)
    inputs = iter(["n", "alice", "9", "b", "n", "bob", "q"])
    outputs: list[str] = []
    assert main.play_shell(input_fn=lambda _: next(inputs), print_fn=outputs.append) == 0
    assert any("Invalid choice." in line for line in outputs)
    assert any("Student: bob" in line for line in outputs)


def test_lesson_map_reports_locked_lesson(tmp_path: Path, modules_dir: Path) -> None:
    service = _real_service(tmp_path, modules_dir)
    student = service.create_student("alice")
    session = service.start_session(student.id, "arith")
    inputs = iter(["2", "b"])
    outputs: list[str] = []
    main._lesson_map_flow(session, lambda _: next(inputs), outputs.append)
    assert any("Lesson 2 is locked." in line for line in outputs)
    assert any("[>] 1) Lesson 1" in line for line in outputs)
    assert any("2) Lesson 2 (locked)" in line for line in outputs)
    service.close()


def test_lesson_map_of_finished_module_offers_review_only(tmp_path: Path, modules_dir: Path) -> None:
    service = _real_service(tmp_path, modules_dir)
    student = service.create_student("alice")
    session = service.start_session(student.id, "arith")
    for answer in (None, "4", "4"):
        session.submit(answer)
    assert session.progress.total_xp == 130

    inputs = iter(["", "b"])
    outputs: list[str] = []
    main._lesson_map_flow(session, lambda _: next(inputs), outputs.append)
    assert "Enter) Continue current lesson" not in outputs
    assert any("Module complete. Pick a lesson number to review it." in line for line in outputs)
    assert any("Nothing to continue." in line for line in outputs)
    assert session.progress.total_xp == 130
    service.close()


def test_lesson_map_quit_raises() -> None:
    service = StudyService(db_path=":memory:")
    student = service.create_student("alice")
    session = service.start_session(student.id, "fractions-basics")
    try:
        main._lesson_map_flow(session, lambda _: "q", lambda _: None)
        raise AssertionError("Expected QuitApp.")
    except main.QuitApp:
        pass
    finally:
        service.close()


def test_delete_student_requires_confirmation(tmp_path: Path, modules_dir: Path) -> None:
    service = _real_service(tmp_path, modules_dir)
    service.create_student("alice")
    outputs: list[str] = []
    inputs = iter(["1", "no"])
    main._delete_student_flow(service, lambda _: next(inputs), outputs.append)
    assert any("Deletion cancelled." in line for line in outputs)

    inputs = iter(["1", "YES"])
    main._delete_student_flow(service, lambda _: next(inputs), outputs.append)
    assert any("Deleted student 'alice'." in line for line in outputs)
    assert service.list_students() == []
    service.close()


def test_status_flow(tmp_path: Path, modules_dir: Path) -> None:
    service = _real_service(tmp_path, modules_dir)
    student = service.create_student("alice")
    outputs: list[str] = []
    main._status_flow(service, student.id, outputs.append)
    assert any("Module Status" in line for line in outputs)
    assert any(line.startswith("arith") and "not_started" in line for line in outputs)
    service.close()


def test_read_matching_answer_maps_letters() -> None:
    content = MatchingContent(pairs=(MatchingPair("cat", "meow"), MatchingPair("dog", "woof")))
    inputs = iter(["A", "woof"])
    outputs: list[str] = []
    answer = main._read_answer(content, lambda _: next(inputs), outputs.append)
    assert answer == {"cat": "meow", "dog": "woof"}
    assert "  A) meow" in outputs


def test_read_answer_exit_returns_none() -> None:
    content = OrderingContent(items=("b", "a"), correct_order=("a", "b"))
    assert main._read_answer(content, lambda _: ":b", lambda _: None) is None


def test_parse_order() -> None:
    items = ("first", "second", "third")
    assert main.parse_order("3, 1,2", items) == ["third", "first", "second"]
    assert main.parse_order("second | first", items) == ["second", "first"]
    assert main.parse_order("4,1", items) == ["4", "1"]


def test_remote_shell_completes_module(monkeypatch: Any) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/progress"):
            return httpx.Response(404) if request.method == "GET" else httpx.Response(204)
        return httpx.Response(200, json=module_dict([[choice_step(1)]], module_id="remote"))

    client = RemoteStudyClient("http://api.test", transport=httpx.MockTransport(handler))
    monkeypatch.setattr(main, "_remote_client", lambda settings: client)
    inputs = iter(["", "B", "q"])
    outputs: list[str] = []
    assert main.remote_shell("remote", lambda _: next(inputs), outputs.append, settings=main.Settings()) == 0
    assert any("Module complete! +60 XP (total 60)" in line for line in outputs)
    assert any("Badge unlocked: FLOWERS" in line for line in outputs)


def test_remote_shell_reports_load_failure(monkeypatch: Any) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    client = RemoteStudyClient("http://api.test", transport=httpx.MockTransport(handler))
    monkeypatch.setattr(main, "_remote_client", lambda settings: client)
    outputs: list[str] = []
    assert main.remote_shell("remote", lambda _: "q", outputs.append, settings=main.Settings()) == 1
    assert any("Could not load module 'remote'" in line for line in outputs)
