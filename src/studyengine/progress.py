"""SQLite persistence for students and study-module progress snapshots."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from .models import Progress

SCHEMA_VERSION = 1

logger = logging.getLogger(__name__)


class ProgressStoreError(RuntimeError):
    """Raised when a progress snapshot cannot be loaded or saved."""


class ProgressBackend(Protocol):
    """Where a study session reads and writes its progress snapshot."""

    def load_progress(self, module_id: str) -> Progress | None: ...

    def save_progress(
        self,
        module_id: str,
        progress: Progress,
        *,
        include_current_step_completed: bool,
        module_completed: bool,
    ) -> None: ...


@dataclass(frozen=True)
class Student:
    """Student record."""

    id: int
    name: str


@dataclass(frozen=True)
class ProgressWrite:
    """One logged progress write."""

    module_id: str
    progress: Progress
    include_current_step_completed: bool
    module_completed: bool
    created_at: str


class ProgressStore:
    """Database access layer for local student progress."""

    def __init__(self, db_path: Path | str) -> None:
        """Open the database and bring the schema up to date."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )
            logger.debug("Applied progress schema migration %d", version)

    def _migrate_to_v1(self) -> None:
        """Create student, snapshot and write-log tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS students (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS module_progress (
                    student_id INTEGER NOT NULL,
                    module_id TEXT NOT NULL,
                    current_lesson INTEGER NOT NULL,
                    current_step INTEGER NOT NULL,
                    total_xp INTEGER NOT NULL,
                    lives_remaining INTEGER NOT NULL,
                    streak INTEGER NOT NULL,
                    completed_lessons TEXT NOT NULL,
                    badges TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    completed_at TEXT,
                    PRIMARY KEY (student_id, module_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS progress_writes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    student_id INTEGER NOT NULL,
                    module_id TEXT NOT NULL,
                    snapshot TEXT NOT NULL,
                    include_current_step_completed INTEGER NOT NULL,
                    module_completed INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                )
                """)

    def list_students(self) -> list[Student]:
        """Return students ordered by name."""
        rows = self._conn.execute("SELECT id, name FROM students ORDER BY name").fetchall()
        return [Student(id=int(row["id"]), name=str(row["name"])) for row in rows]

    def create_student(self, name: str) -> Student:
        """Create a new student."""
        now = datetime.now(UTC).isoformat()
        with self._conn:
            cursor = self._conn.execute("INSERT INTO students (name, created_at) VALUES (?, ?)", (name, now))
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Could not create student.")
        return Student(id=int(row_id), name=name)

    def get_student(self, student_id: int) -> Student | None:
        """Get one student by id."""
        row = self._conn.execute("SELECT id, name FROM students WHERE id = ?", (student_id,)).fetchone()
        if row is None:
            return None
        return Student(id=int(row["id"]), name=str(row["name"]))

    def delete_student(self, student_id: int) -> bool:
        """Delete a student with all progress rows."""
        with self._conn:
            self._conn.execute("DELETE FROM progress_writes WHERE student_id = ?", (student_id,))
            self._conn.execute("DELETE FROM module_progress WHERE student_id = ?", (student_id,))
            cursor = self._conn.execute("DELETE FROM students WHERE id = ?", (student_id,))
        return cursor.rowcount > 0

    def load_progress(self, student_id: int, module_id: str) -> Progress | None:
        """Return the saved snapshot for a module, if any."""
        row = self._conn.execute(
            """
            SELECT current_lesson, current_step, total_xp, lives_remaining, streak, completed_lessons, badges
            FROM module_progress
            WHERE student_id = ? AND module_id = ?
            """,
            (student_id, module_id),
        ).fetchone()
        if row is None:
            return None
        return Progress(
            current_lesson=int(row["current_lesson"]),
            current_step=int(row["current_step"]),
            total_xp=int(row["total_xp"]),
            lives_remaining=int(row["lives_remaining"]),
            streak=int(row["streak"]),
            completed_lessons=tuple(json.loads(row["completed_lessons"])),
            badges=tuple(json.loads(row["badges"])),
        )

    def save_progress(
        self,
        student_id: int,
        module_id: str,
        progress: Progress,
        *,
        include_current_step_completed: bool = False,
        module_completed: bool = False,
    ) -> None:
        """Upsert the snapshot and append it to the write log."""
        now = datetime.now(UTC).isoformat()
        completed_at = now if module_completed else None
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO module_progress (
                    student_id,
                    module_id,
                    current_lesson,
                    current_step,
                    total_xp,
                    lives_remaining,
                    streak,
                    completed_lessons,
                    badges,
                    started_at,
                    updated_at,
                    completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(student_id, module_id) DO UPDATE SET
                    current_lesson = excluded.current_lesson,
                    current_step = excluded.current_step,
                    total_xp = excluded.total_xp,
                    lives_remaining = excluded.lives_remaining,
                    streak = excluded.streak,
                    completed_lessons = excluded.completed_lessons,
                    badges = excluded.badges,
                    updated_at = excluded.updated_at,
                    completed_at = COALESCE(module_progress.completed_at, excluded.completed_at)
                """,
                (
                    student_id,
                    module_id,
                    progress.current_lesson,
                    progress.current_step,
                    progress.total_xp,
                    progress.lives_remaining,
                    progress.streak,
                    json.dumps(list(progress.completed_lessons)),
                    json.dumps(list(progress.badges)),
                    now,
                    now,
                    completed_at,
                ),
            )
            self._conn.execute(
                """
                INSERT INTO progress_writes (
                    student_id, module_id, snapshot, include_current_step_completed, module_completed, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    student_id,
                    module_id,
                    json.dumps(progress.to_payload()),
                    int(include_current_step_completed),
                    int(module_completed),
                    now,
                ),
            )

    def completed_module_ids(self, student_id: int) -> set[str]:
        """Return ids of modules the student has finished."""
        rows = self._conn.execute(
            "SELECT module_id FROM module_progress WHERE student_id = ? AND completed_at IS NOT NULL",
            (student_id,),
        ).fetchall()
        return {str(row["module_id"]) for row in rows}

    def list_progress_writes(self, student_id: int, module_id: str) -> list[ProgressWrite]:
        """Return logged writes for one module in the order they happened."""
        rows = self._conn.execute(
            """
            SELECT module_id, snapshot, include_current_step_completed, module_completed, created_at
            FROM progress_writes
            WHERE student_id = ? AND module_id = ?
            ORDER BY id ASC
            """,
            (student_id, module_id),
        ).fetchall()
        return [
            ProgressWrite(
                module_id=str(row["module_id"]),
                progress=Progress.from_payload(json.loads(row["snapshot"])),
                include_current_step_completed=bool(row["include_current_step_completed"]),
                module_completed=bool(row["module_completed"]),
                created_at=str(row["created_at"]),
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()


@dataclass
class LocalProgressBackend:
    """Progress backend bound to one student of a local store."""

    store: ProgressStore
    student_id: int

    def load_progress(self, module_id: str) -> Progress | None:
        try:
            return self.store.load_progress(self.student_id, module_id)
        except sqlite3.Error as exc:
            raise ProgressStoreError(f"Could not load progress for module '{module_id}': {exc}") from exc

    def save_progress(
        self,
        module_id: str,
        progress: Progress,
        *,
        include_current_step_completed: bool,
        module_completed: bool,
    ) -> None:
        try:
            self.store.save_progress(
                self.student_id,
                module_id,
                progress,
                include_current_step_completed=include_current_step_completed,
                module_completed=module_completed,
            )
        except sqlite3.Error as exc:
            raise ProgressStoreError(f"Could not save progress for module '{module_id}': {exc}") from exc
