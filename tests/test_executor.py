"""
Tests for the tool-call executor: batches, ownership, completion timestamps.
"""
import json

import pytest

from kanbanai.executor import ToolCallExecutor, confirmation_for
from kanbanai.schema import ActionResult, ActionType, Task, TaskPriority, TaskStatus
from kanbanai.tools import DeleteTask, EditTask


def call(name, call_id="call_1", **arguments):
    return {"id": call_id, "type": "function",
            "function": {"name": name, "arguments": json.dumps(arguments)}}


def seed(store, task_id, user_id="alice", status=TaskStatus.TODO, position=0, **kw):
    task = Task(id=task_id, user_id=user_id, title=kw.pop("title", f"Task {task_id}"),
                status=status, position=position, **kw)
    store.insert(task)
    return task


@pytest.fixture
def executor(store):
    return ToolCallExecutor(store, "alice")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# create_task
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_appends_to_end_of_column(store, executor):
    tasks = [seed(store, "a"), seed(store, "b", position=1),
             seed(store, "c", status=TaskStatus.DONE)]

    report = executor.execute(
        [call("create_task", title="Write report", priority="high", status="todo")], tasks
    )

    assert report.errors == []
    created = store.get("task-1", "alice")
    assert created.title == "Write report"
    assert created.priority == TaskPriority.HIGH
    assert created.position == 2
    assert created.completed_at is None
    assert report.last_action == ActionResult(ActionType.CREATE, "Write report")


def test_create_in_done_sets_completion_time(store, executor):
    executor.execute([call("create_task", title="Old work", priority="low", status="done")], [])
    assert store.get("task-1", "alice").completed_at is not None


def test_create_then_edit_in_one_batch(store, executor):
    report = executor.execute([
        call("create_task", "c1", title="Draft", priority="medium", status="todo"),
        call("edit_task", "c2", task_id="task-1", title="Final", status="in_progress"),
    ], [])

    assert [o.ok for o in report.outcomes] == [True, True]
    stored = store.get("task-1", "alice")
    assert stored.title == "Final"
    assert stored.status == TaskStatus.IN_PROGRESS
    assert [t.title for t in report.tasks] == ["Final"]
    assert report.last_action == ActionResult(ActionType.EDIT, "Final")


def test_positions_count_tasks_created_earlier_in_batch(store, executor):
    executor.execute([
        call("create_task", "c1", title="One", priority="low", status="todo"),
        call("create_task", "c2", title="Two", priority="low", status="todo"),
    ], [])
    assert store.get("task-1", "alice").position == 0
    assert store.get("task-2", "alice").position == 1


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# edit_task / delete_task
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_edit_only_touches_given_fields(store, executor):
    tasks = [seed(store, "a", description="keep", tags=["x"])]
    executor.execute([call("edit_task", task_id="a", priority="high")], tasks)

    stored = store.get("a", "alice")
    assert stored.priority == TaskPriority.HIGH
    assert stored.description == "keep"
    assert stored.tags == ["x"]
    assert stored.title == "Task a"


def test_edit_into_done_and_back(store, executor):
    tasks = [seed(store, "a")]
    executor.execute([call("edit_task", task_id="a", status="done")], tasks)
    assert store.get("a", "alice").completed_at is not None

    tasks = store.list_for_owner("alice")
    executor.execute([call("edit_task", task_id="a", status="todo")], tasks)
    assert store.get("a", "alice").completed_at is None


def test_edit_within_done_keeps_completion_time(store, executor):
    tasks = [seed(store, "a")]
    executor.execute([call("edit_task", task_id="a", status="done")], tasks)
    first = store.get("a", "alice").completed_at

    tasks = store.list_for_owner("alice")
    executor.execute([call("edit_task", task_id="a", status="done", title="Renamed")], tasks)
    assert store.get("a", "alice").completed_at == first


def test_edit_with_stale_task_list_reads_store(store, executor):
    executor.execute([call("edit_task", task_id="a", status="done")], [seed(store, "a")])
    first = store.get("a", "alice").completed_at

    report = executor.execute([call("edit_task", task_id="a", status="done", priority="high")], [])

    assert store.get("a", "alice").completed_at == first
    assert report.last_action == ActionResult(ActionType.EDIT, "Task a")
    assert [t.id for t in report.tasks] == ["a"]


def test_delete_with_stale_task_list_uses_stored_title(store, executor):
    seed(store, "a", title="Old")
    report = executor.execute([call("delete_task", task_id="a")], [])
    assert report.last_action == ActionResult(ActionType.DELETE, "Old")
    assert report.tasks == []


def test_delete(store, executor):
    tasks = [seed(store, "a", title="Old")]
    report = executor.execute([call("delete_task", task_id="a")], tasks)

    assert store.get("a", "alice") is None
    assert report.tasks == []
    assert report.last_action == ActionResult(ActionType.DELETE, "Old")
    assert len(tasks) == 1


@pytest.mark.parametrize("name,args", [
    ("edit_task", {"task_id": "bobs", "title": "hijacked"}),
    ("delete_task", {"task_id": "bobs"}),
])
def test_foreign_task_is_not_touched(store, executor, name, args):
    seed(store, "bobs", user_id="bob", title="Bob's task")

    report = executor.execute([call(name, **args)], [])

    assert not report.outcomes[0].ok
    assert not report.mutated
    assert store.get("bobs", "bob").title == "Bob's task"


def test_unknown_id_is_an_error(store, executor):
    seed(store, "a")
    report = executor.execute([call("delete_task", task_id="nope")], store.list_for_owner("alice"))
    assert "nope" in report.errors[0].error
    assert store.get("a", "alice") is not None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Batches
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_bad_call_does_not_abort_batch(store, executor):
    tasks = [seed(store, "a")]
    report = executor.execute([
        call("create_task", "c1", title="x", priority="urgent", status="todo"),
        {"id": "c2", "function": {"name": "delete_task", "arguments": "{not json"}},
        call("archive_task", "c3", task_id="a"),
        call("delete_task", "c4", task_id="a"),
    ], tasks)

    assert [o.ok for o in report.outcomes] == [False, False, False, True]
    assert [o.call_id for o in report.outcomes] == ["c1", "c2", "c3", "c4"]
    assert report.mutated
    assert store.list_for_owner("alice") == []


def test_input_list_is_not_mutated(store, executor):
    tasks = [seed(store, "a")]
    executor.execute([call("edit_task", task_id="a", title="Changed")], tasks)
    assert tasks[0].title == "Task a"


def test_empty_batch(executor):
    report = executor.execute([], [])
    assert report.outcomes == []
    assert report.last_action is None
    assert not report.mutated


def test_confirm_callback_can_cancel(store):
    seen = []

    def confirm(action, task):
        seen.append((type(action), task.id if task else None))
        return not isinstance(action, DeleteTask)

    executor = ToolCallExecutor(store, "alice", confirm=confirm)
    tasks = [seed(store, "a")]
    report = executor.execute([
        call("edit_task", "c1", task_id="a", priority="low"),
        call("delete_task", "c2", task_id="a"),
    ], tasks)

    assert seen == [(EditTask, "a"), (DeleteTask, "a")]
    assert report.outcomes[0].ok
    assert report.outcomes[1].error == "Delete cancelled"
    assert store.get("a", "alice") is not None


def test_confirmation_messages():
    assert confirmation_for(ActionResult(ActionType.CREATE, "Ship")) == 'Done! I created the task "Ship".'
    assert confirmation_for(ActionResult(ActionType.EDIT, "Ship")) == 'Done! I updated the task "Ship".'
    assert confirmation_for(ActionResult(ActionType.DELETE, "Ship")) == 'Done! I deleted the task "Ship".'


def test_action_result_wire_form():
    assert ActionResult(ActionType.EDIT, "Ship").to_dict() == {"type": "edit", "taskTitle": "Ship"}
