"""
Tests for BoardSession (manual edits, reconcile) and ChatSession (chat turns).
"""
import json

import pytest

from kanbanai.relay import QuotaExhausted, RateLimited, UpstreamError
from kanbanai.schema import ActionType, TaskPriority, TaskStatus, TaskValidationError
from kanbanai.session import (
    RESET_MESSAGE,
    WELCOME_MESSAGE,
    BoardSession,
    ChatSession,
    TurnInProgress,
)
from kanbanai.store import TaskNotFound


class FakeClient:
    """Scripted relay client: each turn pops the next reply (or raises it)."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def _next(self, messages, context):
        self.calls.append((list(messages), context))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def complete(self, messages, context):
        return self._next(messages, context)

    def stream(self, messages, context):
        reply = self._next(messages, context)
        for item in reply:
            if isinstance(item, Exception):
                raise item
            yield item


def completion(content="", tool_calls=None):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"choices": [{"message": message}]}


def tool_call(name, call_id="call_1", **arguments):
    return {"id": call_id, "type": "function",
            "function": {"name": name, "arguments": json.dumps(arguments)}}


@pytest.fixture
def board(store):
    session = BoardSession(store, "alice")
    session.reconcile()
    return session


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BoardSession
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestBoardSession:

    def test_create_defaults(self, board):
        task = board.create_task({"title": "  Plan sprint "})
        assert task.title == "Plan sprint"
        assert task.status == TaskStatus.TODO
        assert task.priority == TaskPriority.MEDIUM
        assert board.board.counts == {"todo": 1, "in_progress": 0, "done": 0}

    def test_create_requires_title(self, board):
        with pytest.raises(TaskValidationError):
            board.create_task({"priority": "high"})

    def test_create_appends_to_column(self, board):
        board.create_task({"title": "a"})
        board.create_task({"title": "b", "status": "in_progress"})
        third = board.create_task({"title": "c"})
        assert third.position == 1
        assert [t.title for t in board.board.todo] == ["a", "c"]

    def test_update_partial(self, board):
        task = board.create_task({"title": "a", "description": "keep"})
        updated = board.update_task(task.id, {"priority": "high", "tags": ["dev"]})
        assert updated.priority == TaskPriority.HIGH
        assert updated.tags == ["dev"]
        assert updated.description == "keep"

    def test_update_rejects_invalid(self, board):
        task = board.create_task({"title": "a"})
        with pytest.raises(TaskValidationError):
            board.update_task(task.id, {"status": "archived"})

    def test_move_sets_and_clears_completion(self, board):
        task = board.create_task({"title": "a"})
        moved = board.move_task(task.id, TaskStatus.DONE)
        assert moved.completed_at is not None
        assert board.board.completion_rate == 100

        back = board.move_task(task.id, TaskStatus.IN_PROGRESS)
        assert back.completed_at is None
        assert [t.id for t in board.board.in_progress] == [task.id]

    def test_move_to_same_column_is_noop(self, board):
        task = board.create_task({"title": "a", "status": "done"})
        again = board.move_task(task.id, TaskStatus.DONE)
        assert again.completed_at == task.completed_at
        assert again.updated_at == task.updated_at

    def test_mutations_on_foreign_task(self, store, board):
        other = BoardSession(store, "bob")
        bobs = other.create_task({"title": "Bob's"})
        with pytest.raises(TaskNotFound):
            board.move_task(bobs.id, TaskStatus.DONE)
        with pytest.raises(TaskNotFound):
            board.update_task(bobs.id, {"title": "mine now"})
        with pytest.raises(TaskNotFound):
            board.delete_task(bobs.id)
        assert store.get(bobs.id, "bob").title == "Bob's"

    def test_delete(self, board):
        task = board.create_task({"title": "a"})
        board.delete_task(task.id)
        assert board.tasks == []

    def test_context_reflects_store(self, store, board):
        board.create_task({"title": "Write docs", "priority": "high"})
        ctx = board.context()
        assert ctx.todo_count == 1
        assert ctx.tasks[0]["title"] == "Write docs"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ChatSession
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_starts_with_welcome(board):
    chat = ChatSession(board, FakeClient())
    assert [m.content for m in chat.messages] == [WELCOME_MESSAGE]


def test_plain_reply(board):
    client = FakeClient(completion("You have no tasks."))
    chat = ChatSession(board, client)

    reply = chat.send("What's on my board?")

    assert reply.content == "You have no tasks."
    assert reply.action is None
    assert [m.role for m in chat.messages] == ["assistant", "user", "assistant"]
    sent, _ = client.calls[0]
    assert sent == [{"role": "user", "content": "What's on my board?"}]


def test_tool_only_reply_gets_confirmation_and_reconciles(store, board):
    client = FakeClient(
        completion(tool_calls=[tool_call("create_task", title="Ship v2",
                                         priority="high", status="todo")]),
        completion("You now have one task."),
    )
    chat = ChatSession(board, client)

    reply = chat.send("Add a task to ship v2")

    assert reply.content == 'Done! I created the task "Ship v2".'
    assert reply.action.type == ActionType.CREATE
    assert [t.title for t in board.board.todo] == ["Ship v2"]

    chat.send("How many tasks?")
    _, context = client.calls[1]
    assert context.todo_count == 1
    assert context.tasks[0]["id"] == "task-1"


def test_content_wins_over_confirmation(board):
    client = FakeClient(completion("Added it!", tool_calls=[
        tool_call("create_task", title="x", priority="low", status="todo"),
    ]))
    chat = ChatSession(board, client)
    reply = chat.send("add x")
    assert reply.content == "Added it!"
    assert reply.action.task_title == "x"


def test_failed_tool_call_becomes_notice(board):
    client = FakeClient(completion(tool_calls=[tool_call("delete_task", task_id="ghost")]))
    chat = ChatSession(board, client)

    assert chat.send("delete ghost") is None
    assert chat.notices[-1].title == "Could not run delete_task"
    assert "ghost" in chat.notices[-1].description


def test_rate_limit_notice_and_no_retry(board):
    client = FakeClient(RateLimited(), completion("back again"))
    chat = ChatSession(board, client)

    assert chat.send("hello") is None
    assert len(client.calls) == 1
    assert chat.notices[-1].title == "Rate limited"
    assert [m.role for m in chat.messages] == ["assistant", "user"]
    assert not chat.exhausted

    assert chat.send("hello again").content == "back again"


def test_quota_exhausted_blocks_further_turns(board):
    client = FakeClient(QuotaExhausted())
    chat = ChatSession(board, client)

    assert chat.send("hello") is None
    assert chat.notices[-1].title == "Credits exhausted"
    assert chat.exhausted

    assert chat.send("anyone?") is None
    assert len(client.calls) == 1
    assert chat.notices[-1].title == "Credits exhausted"


def test_other_gateway_error(board):
    chat = ChatSession(board, FakeClient(UpstreamError()))
    assert chat.send("hello") is None
    assert chat.notices[-1].title == "Error"
    assert chat.notices[-1].description == "AI service error. Please try again."


def test_empty_reply_notice(board):
    chat = ChatSession(board, FakeClient({"choices": []}))
    assert chat.send("hello") is None
    assert chat.notices[-1].title == "Empty reply"


def test_empty_stream_notice(board):
    chat = ChatSession(board, FakeClient([]))
    assert chat.send("hello", stream=True) is None
    assert [n.title for n in chat.notices] == ["Empty reply"]
    assert [m.role for m in chat.messages] == ["assistant", "user"]


def test_blank_input_is_ignored(board):
    client = FakeClient()
    chat = ChatSession(board, client)
    assert chat.send("   ") is None
    assert client.calls == []
    assert len(chat.messages) == 1


def test_turn_in_progress(board):
    chat = ChatSession(board, FakeClient())
    chat.busy = True
    with pytest.raises(TurnInProgress):
        chat.send("hello")


def test_busy_flag_resets_after_failure(board):
    chat = ChatSession(board, FakeClient(UpstreamError()))
    chat.send("hello")
    assert not chat.busy


def test_streaming_turn(board):
    client = FakeClient(["Hel", "lo", "!"])
    chat = ChatSession(board, client)
    seen = []

    reply = chat.send("hi", stream=True, on_delta=seen.append)

    assert reply.content == "Hello!"
    assert seen == ["Hel", "Hello", "Hello!"]


def test_streaming_keeps_partial_text_on_interruption(board):
    client = FakeClient(["Partial", UpstreamError("The AI assistant stream was interrupted.")])
    chat = ChatSession(board, client)

    reply = chat.send("hi", stream=True)

    assert reply.content == "Partial"
    assert chat.notices[-1].description == "The AI assistant stream was interrupted."


def test_clear_resets_conversation(board):
    client = FakeClient(completion("one"), completion("two"))
    chat = ChatSession(board, client)
    chat.send("first")
    chat.clear()

    assert [m.content for m in chat.messages] == [RESET_MESSAGE]
    chat.send("second")
    sent, _ = client.calls[1]
    assert sent == [{"role": "user", "content": "second"}]


def test_chat_log_is_persisted(store, board):
    chat = ChatSession(board, FakeClient(completion("hi there")))
    chat.send("hello")
    assert [(m["role"], m["content"]) for m in store.chat_log("alice")] == [
        ("user", "hello"),
        ("assistant", "hi there"),
    ]


def test_chat_log_can_be_disabled(store, board):
    chat = ChatSession(board, FakeClient(completion("hi")), persist_log=False)
    chat.send("hello")
    assert store.chat_log("alice") == []
