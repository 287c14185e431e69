"""
Tool-call executor
──────────────────
Runs the board actions the assistant requested, in the order received, on
behalf of one user.

Execution model:
    - One call at a time; a later call sees the effects of earlier ones
      (create, then edit the task just created).
    - Known deltas are applied to a working copy of the task list so positions
      and titles stay right inside the batch. The caller reconciles with the
      store once the whole batch has finished.
    - A bad call (malformed arguments, unknown id, store failure) becomes a
      failed ToolOutcome; the rest of the batch still runs.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .schema import (
    ActionResult,
    ActionType,
    Task,
    TaskStatus,
    status_change_fields,
    utc_now,
)
from .store import StoreError, TaskNotFound, TaskStore
from .tools import CreateTask, DeleteTask, EditTask, ToolAction, ToolArgumentError, parse_tool_call

logger = logging.getLogger(__name__)

# Used when the model calls tools without saying anything.
CONFIRMATIONS = {
    ActionType.CREATE: 'Done! I created the task "{title}".',
    ActionType.EDIT: 'Done! I updated the task "{title}".',
    ActionType.DELETE: 'Done! I deleted the task "{title}".',
}


def confirmation_for(action: ActionResult) -> str:
    return CONFIRMATIONS[action.type].format(title=action.task_title)


@dataclass
class ToolOutcome:
    """Result of one tool call."""
    tool_name: str
    call_id: str = ""
    action: Optional[ActionResult] = None
    task_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ExecutionReport:
    outcomes: List[ToolOutcome] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)   # working copy after the batch

    @property
    def last_action(self) -> Optional[ActionResult]:
        for outcome in reversed(self.outcomes):
            if outcome.action is not None:
                return outcome.action
        return None

    @property
    def errors(self) -> List[ToolOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def mutated(self) -> bool:
        return any(o.ok for o in self.outcomes)


# (action, task or None) -> proceed?
ConfirmCallback = Callable[[ToolAction, Optional[Task]], bool]


def _find(tasks: List[Task], task_id: str) -> Optional[Task]:
    for t in tasks:
        if t.id == task_id:
            return t
    return None


class ToolCallExecutor:
    """Applies assistant tool calls to one user's tasks."""

    def __init__(self, store: TaskStore, user_id: str, confirm: Optional[ConfirmCallback] = None):
        self.store = store
        self.user_id = user_id
        # Optional confirmation step before edit/delete. Off unless supplied.
        self.confirm = confirm
        self._handlers: Dict[type, Callable[[Any, List[Task]], ToolOutcome]] = {
            CreateTask: self._create,
            EditTask: self._edit,
            DeleteTask: self._delete,
        }

    def execute(self, tool_calls: Iterable[Dict[str, Any]], tasks: Iterable[Task]) -> ExecutionReport:
        """Run every call sequentially against ``tasks`` (not mutated)."""
        report = ExecutionReport(tasks=[replace(t, tags=list(t.tags)) for t in tasks])
        for call in tool_calls:
            name = ((call or {}).get("function") or {}).get("name", "") if isinstance(call, dict) else ""
            try:
                action = parse_tool_call(call)
            except ToolArgumentError as e:
                logger.warning(f"Rejected tool call {name or '?'}: {e}")
                report.outcomes.append(ToolOutcome(tool_name=name, call_id=e.call_id, error=str(e)))
                continue

            handler = self._handlers[type(action)]
            try:
                outcome = handler(action, report.tasks)
            except TaskNotFound as e:
                logger.warning(f"{action.name} matched no task: {e}")
                outcome = ToolOutcome(action.name, action.call_id, error=str(e))
            except StoreError as e:
                logger.error(f"{action.name} failed in store: {e}")
                outcome = ToolOutcome(action.name, action.call_id, error=str(e))
            report.outcomes.append(outcome)
        return report

    # ── Handlers ─────────────────────────────────────────────────────────────

    def _create(self, action: CreateTask, working: List[Task]) -> ToolOutcome:
        now = utc_now()
        column_length = sum(1 for t in working if t.status == action.status)
        task = Task(
            id=self.store.new_task_id(),
            user_id=self.user_id,
            title=action.title,
            description=action.description,
            status=action.status,
            priority=action.priority,
            due_date=action.due_date,
            tags=list(action.tags),
            position=column_length,
            completed_at=now if action.status == TaskStatus.DONE else None,
            created_at=now,
            updated_at=now,
        )
        self.store.insert(task)
        working.append(task)
        logger.info(f"Created task {task.id} ({task.title!r}) for {self.user_id}")
        return ToolOutcome(action.name, action.call_id,
                           action=ActionResult(ActionType.CREATE, task.title), task_id=task.id)

    def _edit(self, action: EditTask, working: List[Task]) -> ToolOutcome:
        current = self._lookup(working, action.task_id)
        if not self._confirmed(action, current):
            return ToolOutcome(action.name, action.call_id, task_id=action.task_id,
                               error="Edit cancelled")

        now = utc_now()
        patch: Dict[str, Any] = {k: v for k, v in action.changes.items() if k != "status"}
        if "status" in action.changes:
            patch.update(status_change_fields(
                action.changes["status"],
                previous=current.status if current else None,
                now=now,
            ))
        if self.store.update(action.task_id, self.user_id, patch) == 0:
            raise TaskNotFound(f"No task with id {action.task_id}")

        title = action.changes.get("title") or (current.title if current else action.task_id)
        if current is not None:
            self._apply_local(current, action.changes, patch, now)
        logger.info(f"Edited task {action.task_id}: {sorted(action.changes)}")
        return ToolOutcome(action.name, action.call_id,
                           action=ActionResult(ActionType.EDIT, title), task_id=action.task_id)

    def _delete(self, action: DeleteTask, working: List[Task]) -> ToolOutcome:
        current = self._lookup(working, action.task_id)
        if not self._confirmed(action, current):
            return ToolOutcome(action.name, action.call_id, task_id=action.task_id,
                               error="Delete cancelled")

        if self.store.delete(action.task_id, self.user_id) == 0:
            raise TaskNotFound(f"No task with id {action.task_id}")

        if current is not None:
            working.remove(current)
        title = current.title if current else action.task_id
        logger.info(f"Deleted task {action.task_id}")
        return ToolOutcome(action.name, action.call_id,
                           action=ActionResult(ActionType.DELETE, title), task_id=action.task_id)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _lookup(self, working: List[Task], task_id: str) -> Optional[Task]:
        """Task from the working copy, or from the store if the copy is stale."""
        task = _find(working, task_id)
        if task is None:
            task = self.store.get(task_id, self.user_id)
            if task is not None:
                working.append(task)
        return task

    def _confirmed(self, action: ToolAction, current: Optional[Task]) -> bool:
        if self.confirm is None:
            return True
        return bool(self.confirm(action, current))

    @staticmethod
    def _apply_local(task: Task, changes: Dict[str, Any], patch: Dict[str, Any], now: datetime) -> None:
        for key, value in changes.items():
            setattr(task, key, value)
        if "completed_at" in patch:
            task.completed_at = now if patch["completed_at"] else None
        task.updated_at = now
