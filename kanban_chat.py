#!/usr/bin/env python3
"""
KanbanAI terminal chat
----------------------
Talk to the board assistant from a terminal. Tool calls run against the local
task store, then the board is reloaded before the next prompt.

Usage:
    export KANBAN_TOKEN=<bearer token from kanbanai.yaml>
    python kanban_chat.py --user alice
    python kanban_chat.py --user alice --stream     # plain answers, no actions

Commands inside the chat:
    /board   show columns and completion
    /clear   reset the conversation
    /quit
"""

import argparse
import logging
import os
import sys

from kanbanai.client import ChatClient
from kanbanai.config import Config, ConfigError
from kanbanai.session import BoardSession, ChatSession, TurnInProgress
from kanbanai.schema import TaskStatus
from kanbanai.store import StoreError, TaskStore


def render_board(board: BoardSession) -> str:
    state = board.board
    lines = [f"Total {state.total} · completed {state.completion_rate}%"]
    for status in TaskStatus:
        column = state.column(status)
        lines.append(f"\n[{status.value}] ({len(column)})")
        for t in column:
            lines.append(f"  - {t.title}  ({t.priority.value})  {t.id}")
    return "\n".join(lines)


def main(argv=None):
    parser = argparse.ArgumentParser(description="KanbanAI terminal chat")
    parser.add_argument("--user", required=True, help="User id whose board to use")
    parser.add_argument("--token", default=os.environ.get("KANBAN_TOKEN", ""),
                        help="Bearer token for the relay (default: $KANBAN_TOKEN)")
    parser.add_argument("--config", help="Path to kanbanai.yaml")
    parser.add_argument("--stream", action="store_true",
                        help="Stream answers token by token (no board actions)")
    args = parser.parse_args(argv)

    try:
        cfg = Config.load(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [kanban] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    board = BoardSession(TaskStore(cfg.db_path), args.user)
    try:
        board.reconcile()
    except StoreError as e:
        print(f"Error loading tasks: {e}", file=sys.stderr)
        return 1

    chat = ChatSession(board, ChatClient(cfg.relay_url, args.token, timeout=cfg.relay_timeout))
    print(chat.messages[0].content, end="\n\n")

    seen_notices = 0
    while True:
        try:
            text = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0

        if text in ("/quit", "/exit"):
            return 0
        if text == "/board":
            print(render_board(board), end="\n\n")
            continue
        if text == "/clear":
            chat.clear()
            print(chat.messages[0].content, end="\n\n")
            continue

        try:
            if args.stream:
                printed = 0

                def on_delta(content):
                    nonlocal printed
                    sys.stdout.write(content[printed:])
                    sys.stdout.flush()
                    printed = len(content)

                sys.stdout.write("ai> ")
                reply = chat.send(text, stream=True, on_delta=on_delta)
                print()
            else:
                reply = chat.send(text)
                if reply is not None:
                    print(f"ai> {reply.content}")
        except TurnInProgress as e:
            print(f"(busy) {e}")
            continue

        for notice in chat.notices[seen_notices:]:
            print(f"!! {notice.title}: {notice.description}")
        seen_notices = len(chat.notices)
        if reply is not None and reply.action is not None:
            s = board.board.stats()
            print(f"   board: {s['todo']} to do · {s['in_progress']} in progress · {s['done']} done")
        print()


if __name__ == "__main__":
    sys.exit(main())
