"""
System prompt and upstream request body for the board assistant.

The task listing below is the only way the model learns task ids; there is
no fuzzy title matching anywhere downstream.
"""
from typing import Any, Dict, List

from .board import BoardContext
from .tools import TOOLS

SYSTEM_PROMPT = """You are an intelligent Kanban board assistant with the ability to take actions on the board.

Current board state:
- To-Do tasks: {todo_count}
- In Progress tasks: {in_progress_count}
- Done tasks: {done_count}

Tasks (with IDs for editing/deleting):
{task_list}

You can:
1. Answer general productivity and project management questions
2. Suggest how to organize or prioritize tasks
3. **Create new tasks** using the create_task tool
4. **Edit existing tasks** (title, description, priority, status, due date, tags) using the edit_task tool
5. **Delete tasks** using the delete_task tool
6. Summarize and analyze the board

IMPORTANT RULES:
- When the user asks you to create, edit or delete tasks, ALWAYS use the provided tools, never just describe what you would do.
- When using edit_task or delete_task, you MUST use the exact task ID from the board state above.
- If the user refers to a task by name, find its ID from the list and use it.
- After performing an action, briefly confirm what you did in a friendly way.
- Be concise, helpful, and professional. Use markdown formatting for clarity.
- Always respond in the same language the user writes in."""


def format_task_list(context: BoardContext) -> str:
    if not context.tasks:
        return "No tasks yet"
    return "\n".join(
        f'- ID: {t["id"]} | "{t["title"]}" | {t["status"]} | {t["priority"]} priority'
        for t in context.tasks
    )


def build_system_prompt(context: BoardContext) -> str:
    return SYSTEM_PROMPT.format(
        todo_count=context.todo_count,
        in_progress_count=context.in_progress_count,
        done_count=context.done_count,
        task_list=format_task_list(context),
    )


def build_chat_request(
    messages: List[Dict[str, str]],
    context: BoardContext,
    model: str,
    stream: bool = False,
) -> Dict[str, Any]:
    """Chat-completion body: system prompt first, then the conversation."""
    return {
        "model": model,
        "messages": [{"role": "system", "content": build_system_prompt(context)}, *messages],
        "tools": TOOLS,
        "stream": stream,
    }
