"""
The three board actions the assistant may call, and their argument parser.

TOOLS is sent upstream verbatim; parse_tool_call() turns whatever the model
sends back into one of CreateTask / EditTask / DeleteTask, or raises
ToolArgumentError. Keep the two in step when adding a field.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .schema import TaskPriority, TaskStatus, TaskValidationError, normalize_task_fields

_PRIORITIES = [p.value for p in TaskPriority]
_STATUSES = [s.value for s in TaskStatus]

TOOLS: List[Dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "create_task",
            "description": "Create a new task on the Kanban board.",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Task title"},
                    "description": {"type": "string", "description": "Optional task description"},
                    "priority": {"type": "string", "enum": _PRIORITIES, "description": "Task priority"},
                    "status": {"type": "string", "enum": _STATUSES,
                               "description": "Column to place the task in"},
                    "due_date": {"type": "string", "description": "Optional due date in YYYY-MM-DD format"},
                    "tags": {"type": "array", "items": {"type": "string"},
                             "description": "Optional list of tags"},
                },
                "required": ["title", "priority", "status"],
                "additionalProperties": False,
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "edit_task",
            "description": "Edit an existing task on the Kanban board. "
                           "Only include fields that need to change.",
            "parameters": {
                "type": "object",
                "properties": {
                    "task_id": {"type": "string", "description": "The ID of the task to edit"},
                    "title": {"type": "string", "description": "New title"},
                    "description": {"type": "string", "description": "New description"},
                    "priority": {"type": "string", "enum": _PRIORITIES, "description": "New priority"},
                    "status": {"type": "string", "enum": _STATUSES, "description": "New status/column"},
                    "due_date": {"type": "string", "description": "New due date in YYYY-MM-DD format"},
                    "tags": {"type": "array", "items": {"type": "string"}, "description": "New list of tags"},
                },
                "required": ["task_id"],
                "additionalProperties": False,
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "delete_task",
            "description": "Delete a task from the Kanban board.",
            "parameters": {
                "type": "object",
                "properties": {
                    "task_id": {"type": "string", "description": "The ID of the task to delete"},
                },
                "required": ["task_id"],
                "additionalProperties": False,
            },
        },
    },
]


def _schema(name: str) -> Dict[str, Any]:
    for tool in TOOLS:
        if tool["function"]["name"] == name:
            return tool["function"]["parameters"]
    raise KeyError(name)


class ToolArgumentError(TaskValidationError):
    """Raised when a tool call cannot be turned into a board action."""

    def __init__(self, message: str, tool_name: str = "", call_id: str = ""):
        super().__init__(message)
        self.tool_name = tool_name
        self.call_id = call_id


# ── Actions ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CreateTask:
    title: str
    priority: TaskPriority
    status: TaskStatus
    description: Optional[str] = None
    due_date: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    call_id: str = ""

    name = "create_task"


@dataclass(frozen=True)
class EditTask:
    task_id: str
    # Sparse patch: only keys the model actually sent.
    changes: Dict[str, Any] = field(default_factory=dict)
    call_id: str = ""

    name = "edit_task"


@dataclass(frozen=True)
class DeleteTask:
    task_id: str
    call_id: str = ""

    name = "delete_task"


ToolAction = Union[CreateTask, EditTask, DeleteTask]


def _task_id(args: Dict[str, Any]) -> str:
    task_id = args.get("task_id")
    if not isinstance(task_id, str) or not task_id.strip():
        raise TaskValidationError("task_id must be a non-empty string")
    return task_id.strip()


def parse_arguments(name: str, args: Dict[str, Any], call_id: str = "") -> ToolAction:
    """Validate decoded arguments for tool ``name`` and build its action."""
    try:
        params = _schema(name)
    except KeyError:
        raise ToolArgumentError(f"Unknown tool: {name!r}", name, call_id) from None

    if not isinstance(args, dict):
        raise ToolArgumentError(f"{name} arguments must be a JSON object", name, call_id)

    missing = [k for k in params["required"] if k not in args]
    if missing:
        raise ToolArgumentError(
            f"{name} is missing required argument(s): {', '.join(missing)}", name, call_id
        )
    unknown = sorted(set(args) - set(params["properties"]))
    if unknown:
        raise ToolArgumentError(
            f"{name} got unexpected argument(s): {', '.join(unknown)}", name, call_id
        )

    try:
        if name == "create_task":
            fields = normalize_task_fields(args)
            return CreateTask(
                title=fields["title"],
                priority=fields["priority"],
                status=fields["status"],
                description=fields.get("description"),
                due_date=fields.get("due_date"),
                tags=fields.get("tags", []),
                call_id=call_id,
            )
        if name == "edit_task":
            task_id = _task_id(args)
            changes = normalize_task_fields({k: v for k, v in args.items() if k != "task_id"})
            if not changes:
                raise TaskValidationError("edit_task needs at least one field to change")
            return EditTask(task_id=task_id, changes=changes, call_id=call_id)
        return DeleteTask(task_id=_task_id(args), call_id=call_id)
    except TaskValidationError as e:
        raise ToolArgumentError(f"{name}: {e}", name, call_id) from e


def parse_tool_call(call: Dict[str, Any]) -> ToolAction:
    """Parse one OpenAI-style tool call ({id, function: {name, arguments}})."""
    if not isinstance(call, dict):
        raise ToolArgumentError("Tool call must be an object")
    call_id = str(call.get("id") or "")
    function = call.get("function") or {}
    name = function.get("name") or ""
    raw = function.get("arguments")

    if raw is None or raw == "":
        args: Any = {}
    elif isinstance(raw, str):
        try:
            args = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(f"{name}: arguments are not valid JSON ({e.msg})",
                                    name, call_id) from e
    else:
        args = raw
    return parse_arguments(name, args, call_id)
