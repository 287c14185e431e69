"""
Task storage backend (SQLite).

Every read and write is scoped to the owning user: a task id that belongs to
somebody else behaves exactly like an id that does not exist.
"""
import json
import logging
import sqlite3
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .schema import Task, TaskStatus, utc_now

logger = logging.getLogger(__name__)

# Columns a caller may patch through update().
UPDATABLE_COLUMNS = (
    "title", "description", "status", "priority", "due_date", "tags",
    "position", "estimated_minutes", "completed_at",
)


class StoreError(Exception):
    """Raised on connectivity or constraint failures."""
    pass


class TaskNotFound(StoreError):
    """Raised when no task matches (id, owner)."""
    pass


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _to_column(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return json.dumps(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class TaskStore:
    """SQLite-backed store for board tasks and the chat log."""

    def __init__(self, db_path: str, id_factory: Optional[Callable[[], str]] = None):
        """Initialize store and create tables if needed."""
        self.db_path = db_path
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        statuses = ", ".join(f"'{s.value}'" for s in TaskStatus)
        try:
            with _connect(self.db_path) as conn:
                conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS tasks (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        title TEXT NOT NULL CHECK (length(trim(title)) > 0),
                        description TEXT,
                        status TEXT NOT NULL DEFAULT 'todo' CHECK (status IN ({statuses})),
                        priority TEXT NOT NULL DEFAULT 'medium'
                            CHECK (priority IN ('low', 'medium', 'high')),
                        due_date TEXT,
                        tags TEXT NOT NULL DEFAULT '[]',  -- JSON list
                        position INTEGER NOT NULL DEFAULT 0,
                        estimated_minutes INTEGER,
                        completed_at TEXT,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_tasks_owner
                    ON tasks(user_id, position, created_at)
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS chat_messages (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                        content TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot initialise task store at {self.db_path}: {e}") from e

    def new_task_id(self) -> str:
        return self.id_factory()

    # ── Queries ──────────────────────────────────────────────────────────────

    def list_for_owner(self, user_id: str) -> List[Task]:
        """All tasks of one user, ordered by position then creation time."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE user_id = ? "
                    "ORDER BY position ASC, created_at ASC",
                    (user_id,)
                ).fetchall()
        except sqlite3.Error as e:
            logger.error("Error listing tasks for %s: %s", user_id, e)
            raise StoreError(f"Could not load tasks: {e}") from e
        return [Task.from_dict(dict(r)) for r in rows]

    def get(self, task_id: str, user_id: str) -> Optional[Task]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT * FROM tasks WHERE id = ? AND user_id = ?",
                    (task_id, user_id)
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Could not load task {task_id}: {e}") from e
        return Task.from_dict(dict(row)) if row else None

    # ── Mutations ────────────────────────────────────────────────────────────

    def insert(self, task: Task) -> Task:
        """Insert a new task. Returns the stored row."""
        data = task.to_dict()
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO tasks
                    (id, user_id, title, description, status, priority, due_date,
                     tags, position, estimated_minutes, completed_at,
                     created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    data["id"],
                    data["user_id"],
                    data["title"],
                    data["description"],
                    data["status"],
                    data["priority"],
                    data["due_date"],
                    json.dumps(data["tags"]),
                    data["position"],
                    data["estimated_minutes"],
                    data["completed_at"],
                    data["created_at"],
                    data["updated_at"],
                ))
                conn.commit()
        except sqlite3.Error as e:
            logger.error("Error inserting task %s: %s", task.id, e)
            raise StoreError(f"Could not create task: {e}") from e
        return task

    def update(self, task_id: str, user_id: str, fields: Dict[str, Any]) -> int:
        """Patch the given columns of one owned task. Returns affected rows."""
        bad = set(fields) - set(UPDATABLE_COLUMNS)
        if bad:
            raise StoreError(f"Cannot update column(s): {', '.join(sorted(bad))}")
        if not fields:
            return 0

        columns = list(fields)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        values = [_to_column(fields[c]) for c in columns]
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(
                    f"UPDATE tasks SET {assignments}, updated_at = ? "
                    "WHERE id = ? AND user_id = ?",
                    (*values, utc_now().isoformat(), task_id, user_id)
                )
                conn.commit()
                return cur.rowcount
        except sqlite3.Error as e:
            logger.error("Error updating task %s: %s", task_id, e)
            raise StoreError(f"Could not update task: {e}") from e

    def delete(self, task_id: str, user_id: str) -> int:
        """Delete one owned task. Returns affected rows."""
        try:
            with _connect(self.db_path) as conn:
                cur = conn.execute(
                    "DELETE FROM tasks WHERE id = ? AND user_id = ?",
                    (task_id, user_id)
                )
                conn.commit()
                return cur.rowcount
        except sqlite3.Error as e:
            logger.error("Error deleting task %s: %s", task_id, e)
            raise StoreError(f"Could not delete task: {e}") from e

    # ── Chat log ─────────────────────────────────────────────────────────────

    def append_chat_message(self, user_id: str, role: str, content: str) -> None:
        """Append to the chat log. The log is write-only from the session's view."""
        try:
            with _connect(self.db_path) as conn:
                conn.execute(
                    "INSERT INTO chat_messages (user_id, role, content, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (user_id, role, content, utc_now().isoformat())
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Could not save chat message: {e}") from e

    def chat_log(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent chat log entries, oldest first."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT role, content, created_at FROM chat_messages "
                    "WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                    (user_id, limit)
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Could not load chat log: {e}") from e
        return [dict(r) for r in reversed(rows)]
