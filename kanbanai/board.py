"""
Board aggregation: columns, counts and the prompt snapshot.

Everything here is pure and cheap; callers recompute after every mutation
instead of patching aggregates in place.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Any

from .schema import Task, TaskStatus


def _order_key(task: Task):
    return (task.position, task.created_at)


@dataclass
class BoardState:
    """The three columns of one user's board."""

    todo: List[Task] = field(default_factory=list)
    in_progress: List[Task] = field(default_factory=list)
    done: List[Task] = field(default_factory=list)

    def column(self, status: TaskStatus) -> List[Task]:
        return {
            TaskStatus.TODO: self.todo,
            TaskStatus.IN_PROGRESS: self.in_progress,
            TaskStatus.DONE: self.done,
        }[status]

    @property
    def total(self) -> int:
        return len(self.todo) + len(self.in_progress) + len(self.done)

    @property
    def counts(self) -> Dict[str, int]:
        return {s.value: len(self.column(s)) for s in TaskStatus}

    @property
    def completion_rate(self) -> int:
        """Done share of all tasks as an integer percentage (0 on an empty board)."""
        if self.total == 0:
            return 0
        # half-up, not banker's rounding
        return int(100 * len(self.done) / self.total + 0.5)

    def stats(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "todo": len(self.todo),
            "in_progress": len(self.in_progress),
            "done": len(self.done),
            "completion_rate": self.completion_rate,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": {
                s.value: [t.to_dict() for t in self.column(s)] for s in TaskStatus
            },
            "stats": self.stats(),
        }


def aggregate(tasks: Iterable[Task]) -> BoardState:
    """Partition tasks by status, each column ordered by position then creation time."""
    board = BoardState()
    for task in sorted(tasks, key=_order_key):
        board.column(task.status).append(task)
    return board


@dataclass
class BoardContext:
    """Snapshot of the board embedded in each outbound prompt."""

    todo_count: int = 0
    in_progress_count: int = 0
    done_count: int = 0
    tasks: List[Dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_board(cls, board: BoardState) -> "BoardContext":
        ordered = board.todo + board.in_progress + board.done
        return cls(
            todo_count=len(board.todo),
            in_progress_count=len(board.in_progress),
            done_count=len(board.done),
            tasks=[t.to_ref() for t in ordered],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "todoCount": self.todo_count,
            "inProgressCount": self.in_progress_count,
            "doneCount": self.done_count,
            "tasks": list(self.tasks),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoardContext":
        """Lenient parse of the wire form; missing pieces default to empty."""
        data = data or {}
        tasks = []
        for t in data.get("tasks") or []:
            if not isinstance(t, dict):
                continue
            tasks.append({
                "id": str(t.get("id", "")),
                "title": str(t.get("title", "")),
                "status": str(t.get("status", "")),
                "priority": str(t.get("priority", "")),
            })
        return cls(
            todo_count=int(data.get("todoCount") or 0),
            in_progress_count=int(data.get("inProgressCount") or 0),
            done_count=int(data.get("doneCount") or 0),
            tasks=tasks,
        )
