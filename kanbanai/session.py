"""
Board and chat sessions for one signed-in user.

BoardSession owns the in-memory task list. Every mutation, whether made by
hand or by the assistant, ends with an explicit reconcile() so the next prompt
is built from what the store actually holds.

ChatSession runs one chat turn at a time:
    user text → board context → relay → tool calls → reconcile → reply
Failures never raise out of send(); they become Notices (the UI's toasts).
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .board import BoardContext, BoardState, aggregate
from .executor import ExecutionReport, ToolCallExecutor, confirmation_for
from .relay import GatewayError, QuotaExhausted, RateLimited
from .schema import (
    ChatMessage,
    Task,
    TaskPriority,
    TaskStatus,
    TaskValidationError,
    normalize_task_fields,
    status_change_fields,
    utc_now,
)
from .store import StoreError, TaskNotFound, TaskStore

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = (
    "Hi! I'm your KanbanAI assistant 🤖\n\n"
    "I can help you:\n"
    "- **Organize your tasks** and prioritize work\n"
    "- **Create, edit or delete tasks** for you\n"
    "- **Summarize the state of your board**\n"
    "- Answer productivity questions\n\n"
    "What can I do for you?"
)
RESET_MESSAGE = "Conversation reset. What can I do for you?"

STATUS_LABELS = {
    TaskStatus.TODO: "To do",
    TaskStatus.IN_PROGRESS: "In progress",
    TaskStatus.DONE: "Done ✓",
}


@dataclass(frozen=True)
class Notice:
    """User-visible failure or confirmation (toast equivalent)."""
    level: str          # "info" | "error"
    title: str
    description: str = ""


class TurnInProgress(Exception):
    """Raised when a message is sent while the previous turn is still running."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Board state
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class BoardSession:
    """Explicit holder of one user's task list and its derived board."""

    def __init__(self, store: TaskStore, user_id: str):
        self.store = store
        self.user_id = user_id
        self.tasks: List[Task] = []
        self.board: BoardState = aggregate([])

    def reconcile(self) -> BoardState:
        """Re-read the user's tasks from the store and re-partition them."""
        self.tasks = self.store.list_for_owner(self.user_id)
        self.board = aggregate(self.tasks)
        return self.board

    def context(self) -> BoardContext:
        return BoardContext.from_board(self.board)

    def get(self, task_id: str) -> Optional[Task]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    # ── Manual mutations (modal, drag-and-drop) ──────────────────────────────

    def create_task(self, fields: Dict[str, Any]) -> Task:
        """Modal save of a new task; appended at the end of its column."""
        data = normalize_task_fields(fields)
        if "title" not in data:
            raise TaskValidationError("title is required")
        status = data.get("status", TaskStatus.TODO)
        now = utc_now()
        task = Task(
            id=self.store.new_task_id(),
            user_id=self.user_id,
            title=data["title"],
            description=data.get("description"),
            status=status,
            priority=data.get("priority", TaskPriority.MEDIUM),
            due_date=data.get("due_date"),
            tags=data.get("tags", []),
            position=len(self.board.column(status)),
            estimated_minutes=data.get("estimated_minutes"),
            completed_at=now if status == TaskStatus.DONE else None,
            created_at=now,
            updated_at=now,
        )
        self.store.insert(task)
        self.reconcile()
        return self.get(task.id) or task

    def update_task(self, task_id: str, fields: Dict[str, Any]) -> Task:
        """Modal edit: only the given fields change."""
        changes = normalize_task_fields(fields)
        patch: Dict[str, Any] = {k: v for k, v in changes.items() if k != "status"}
        if "status" in changes:
            current = self.get(task_id)
            patch.update(status_change_fields(
                changes["status"], previous=current.status if current else None
            ))
        if patch and self.store.update(task_id, self.user_id, patch) == 0:
            raise TaskNotFound(f"No task with id {task_id}")
        self.reconcile()
        task = self.get(task_id)
        if task is None:
            raise TaskNotFound(f"No task with id {task_id}")
        return task

    def move_task(self, task_id: str, status: TaskStatus) -> Task:
        """Drag-and-drop into a column. Dropping on the same column is a no-op."""
        current = self.get(task_id)
        if current is not None and current.status == status:
            return current
        fields = status_change_fields(status, previous=current.status if current else None)
        if self.store.update(task_id, self.user_id, fields) == 0:
            raise TaskNotFound(f"No task with id {task_id}")
        self.reconcile()
        return self.get(task_id)

    def delete_task(self, task_id: str) -> None:
        if self.store.delete(task_id, self.user_id) == 0:
            raise TaskNotFound(f"No task with id {task_id}")
        self.reconcile()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Chat
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _message_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}"


class ChatSession:
    """
    One conversation with the board assistant.

    ``client`` is anything with complete(messages, context) -> completion dict
    and stream(messages, context) -> iterator of text deltas; in practice a
    ChatClient pointed at the relay endpoint.
    """

    def __init__(
        self,
        board: BoardSession,
        client,
        executor: Optional[ToolCallExecutor] = None,
        persist_log: bool = True,
    ):
        self.board = board
        self.client = client
        self.executor = executor or ToolCallExecutor(board.store, board.user_id)
        self.persist_log = persist_log
        self.messages: List[ChatMessage] = [
            ChatMessage(role="assistant", content=WELCOME_MESSAGE, id="welcome")
        ]
        self.notices: List[Notice] = []
        self.busy = False
        self.exhausted = False

    # ── Public API ───────────────────────────────────────────────────────────

    def send(
        self,
        text: str,
        stream: bool = False,
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> Optional[ChatMessage]:
        """Run one turn. Returns the assistant reply, or None if the turn failed."""
        text = (text or "").strip()
        if not text:
            return None
        if self.busy:
            raise TurnInProgress("Wait for the assistant to answer first")
        if self.exhausted:
            self._notify("error", "Credits exhausted", QuotaExhausted.default_message)
            return None

        self.busy = True
        try:
            user_msg = ChatMessage(role="user", content=text, id=_message_id("user"))
            self.messages.append(user_msg)
            self._log("user", text)
            conversation = [m.to_wire() for m in self.messages if m.id != "welcome"]
            context = self.board.context()

            if stream:
                return self._stream_turn(conversation, context, on_delta)
            return self._tool_turn(conversation, context)
        finally:
            self.busy = False

    def clear(self) -> None:
        self.messages = [ChatMessage(role="assistant", content=RESET_MESSAGE, id="welcome")]

    # ── Turns ────────────────────────────────────────────────────────────────

    def _tool_turn(self, conversation, context) -> Optional[ChatMessage]:
        try:
            completion = self.client.complete(conversation, context)
        except GatewayError as e:
            self._gateway_failed(e)
            return None

        message = _first_message(completion)
        content = (message.get("content") or "").strip()
        tool_calls = message.get("tool_calls") or []

        action = None
        if tool_calls:
            report = self.executor.execute(tool_calls, self.board.tasks)
            self._report(report)
            if report.mutated:
                self._reconcile()
            action = report.last_action
            if not content and action is not None:
                content = confirmation_for(action)

        if not content:
            if not tool_calls:
                self._notify("error", "Empty reply", "The assistant did not answer. Please try again.")
            return None
        reply = ChatMessage(role="assistant", content=content, action=action,
                            id=_message_id("assistant"))
        self.messages.append(reply)
        self._log("assistant", content)
        return reply

    def _stream_turn(self, conversation, context, on_delta) -> Optional[ChatMessage]:
        parts: List[str] = []
        try:
            for delta in self.client.stream(conversation, context):
                parts.append(delta)
                if on_delta is not None:
                    on_delta("".join(parts))
        except GatewayError as e:
            self._gateway_failed(e)
            if not parts:
                return None
        content = "".join(parts)
        if not content:
            self._notify("error", "Empty reply", "The assistant did not answer. Please try again.")
            return None
        reply = ChatMessage(role="assistant", content=content, id=_message_id("assistant"))
        self.messages.append(reply)
        self._log("assistant", content)
        return reply

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _gateway_failed(self, error: GatewayError) -> None:
        if isinstance(error, RateLimited):
            self._notify("error", "Rate limited", error.message)
        elif isinstance(error, QuotaExhausted):
            self.exhausted = True
            self._notify("error", "Credits exhausted", error.message)
        else:
            self._notify("error", "Error", error.message)

    def _report(self, report: ExecutionReport) -> None:
        for outcome in report.errors:
            self._notify("error", f"Could not run {outcome.tool_name or 'action'}",
                         outcome.error or "")

    def _reconcile(self) -> None:
        try:
            self.board.reconcile()
        except StoreError as e:
            logger.error(f"Reconcile failed for {self.board.user_id}: {e}")
            self._notify("error", "Error loading tasks", str(e))

    def _log(self, role: str, content: str) -> None:
        if not self.persist_log:
            return
        try:
            self.board.store.append_chat_message(self.board.user_id, role, content)
        except StoreError as e:
            logger.warning(f"Chat log write failed: {e}")
            self._notify("error", "Could not save message", str(e))

    def _notify(self, level: str, title: str, description: str = "") -> None:
        notice = Notice(level, title, description)
        self.notices.append(notice)
        log = logger.error if level == "error" else logger.info
        log(f"[{self.board.user_id}] {title}: {description}")


def _first_message(completion: Dict[str, Any]) -> Dict[str, Any]:
    try:
        message = completion["choices"][0]["message"]
    except (KeyError, IndexError, TypeError):
        return {}
    return message if isinstance(message, dict) else {}
