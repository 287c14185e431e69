"""
Task board schema.

Workflow columns:
  To-do → In progress → Done

A task can be dropped into any column at any time; the only bookkeeping tied
to a move is the completion timestamp, which is set when a task enters Done
and cleared when it leaves.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any
import json


class TaskStatus(Enum):
    """The three board columns."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionType(Enum):
    """Kind of mutation the assistant performed."""
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


class TaskValidationError(ValueError):
    """Raised when task fields are missing or malformed."""
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Task:
    """A single card on the board."""

    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[str] = None          # YYYY-MM-DD
    tags: List[str] = field(default_factory=list)
    position: int = 0
    estimated_minutes: Optional[int] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_ref(self) -> Dict[str, str]:
        """The {id, title, status, priority} view embedded in prompts."""
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority.value,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "due_date": self.due_date,
            "tags": list(self.tags),
            "position": self.position,
            "estimated_minutes": self.estimated_minutes,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Deserialize from dict (API payloads or store rows)."""
        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = json.loads(tags)
        now = utc_now()
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            title=data["title"],
            description=data.get("description"),
            status=TaskStatus(data.get("status", "todo")),
            priority=TaskPriority(data.get("priority", "medium")),
            due_date=data.get("due_date"),
            tags=list(tags),
            position=int(data.get("position") or 0),
            estimated_minutes=data.get("estimated_minutes"),
            completed_at=_parse_ts(data.get("completed_at")),
            created_at=_parse_ts(data.get("created_at")) or now,
            updated_at=_parse_ts(data.get("updated_at")) or now,
        )


def _parse_ts(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def status_change_fields(
    new_status: TaskStatus,
    previous: Optional[TaskStatus] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Columns to write when a task lands in ``new_status``.

    Entering Done stamps ``completed_at``; staying in Done keeps the first
    stamp; any other column clears it.
    """
    if new_status == TaskStatus.DONE:
        if previous == TaskStatus.DONE:
            return {"status": new_status.value}
        return {"status": new_status.value, "completed_at": (now or utc_now()).isoformat()}
    return {"status": new_status.value, "completed_at": None}


# ── Field validation ─────────────────────────────────────────────────────────
# Shared by the tool-call parser and the manual task API.

TASK_FIELDS = (
    "title", "description", "priority", "status",
    "due_date", "tags", "estimated_minutes",
)


def normalize_task_fields(data: Dict[str, Any], allowed=TASK_FIELDS) -> Dict[str, Any]:
    """Validate and coerce user-supplied task fields.

    Only keys present in ``data`` are returned, so the result doubles as a
    sparse patch. Raises TaskValidationError on the first bad field.
    """
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise TaskValidationError(f"Unknown field(s): {', '.join(unknown)}")

    out: Dict[str, Any] = {}
    if "title" in data:
        title = data["title"]
        if not isinstance(title, str) or not title.strip():
            raise TaskValidationError("title must be a non-empty string")
        out["title"] = title.strip()

    if "description" in data:
        desc = data["description"]
        if desc is not None and not isinstance(desc, str):
            raise TaskValidationError("description must be a string")
        out["description"] = (desc or "").strip() or None

    if "priority" in data:
        try:
            out["priority"] = TaskPriority(data["priority"])
        except ValueError:
            raise TaskValidationError(
                f"priority must be one of {[p.value for p in TaskPriority]}, "
                f"got {data['priority']!r}"
            ) from None

    if "status" in data:
        try:
            out["status"] = TaskStatus(data["status"])
        except ValueError:
            raise TaskValidationError(
                f"status must be one of {[s.value for s in TaskStatus]}, "
                f"got {data['status']!r}"
            ) from None

    if "due_date" in data:
        due = data["due_date"]
        if due in (None, ""):
            out["due_date"] = None
        else:
            try:
                out["due_date"] = date.fromisoformat(due).isoformat()
            except (TypeError, ValueError):
                raise TaskValidationError(f"due_date must be YYYY-MM-DD, got {due!r}") from None

    if "tags" in data:
        tags = data["tags"] or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise TaskValidationError("tags must be a list of strings")
        seen: List[str] = []
        for t in (t.strip() for t in tags):
            if t and t not in seen:
                seen.append(t)
        out["tags"] = seen

    if "estimated_minutes" in data:
        minutes = data["estimated_minutes"]
        if minutes is not None:
            if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 0:
                raise TaskValidationError("estimated_minutes must be a non-negative integer")
        out["estimated_minutes"] = minutes

    return out


# ── Chat ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ActionResult:
    """Confirmation record of one assistant-driven mutation."""
    type: ActionType
    task_title: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type.value, "taskTitle": self.task_title}


@dataclass(frozen=True)
class ChatMessage:
    role: str                       # "user" | "assistant"
    content: str
    action: Optional[ActionResult] = None
    id: str = ""

    def to_wire(self) -> Dict[str, str]:
        """Shape sent to the relay: role and content only."""
        return {"role": self.role, "content": self.content}
