#!/usr/bin/env python3
"""
KanbanAI Server
---------------
JSON API for the task board plus the kanban-chat relay that forwards chat
turns to the LLM gateway.

Usage:
    export KANBAN_GATEWAY_API_KEY=...
    python kanban_server.py --port 3000

    # or, once installed:
    kanban-server --config kanbanai.yaml

API (all but /health need "Authorization: Bearer <token>"):
    GET    /api/tasks                 → { tasks, count }
    GET    /api/board                 → { columns, stats, context }
    POST   /api/tasks                 → create (modal save)
    PUT    /api/tasks/<id>            → partial edit (modal save)
    POST   /api/tasks/<id>/move       → { status }  (drag and drop)
    DELETE /api/tasks/<id>
    GET    /api/chat/history          → persisted chat log
    POST   /functions/v1/kanban-chat  → { messages, boardContext, stream? }
    GET    /health
"""

import argparse
import hmac
import logging
import os
import sys
from functools import wraps
from typing import Optional

from flask import Flask, Response, g, jsonify, request, stream_with_context

from kanbanai.config import Config, ConfigError
from kanbanai.relay import GatewayError, GatewayRelay, parse_relay_payload
from kanbanai.schema import TaskStatus, TaskValidationError
from kanbanai.session import STATUS_LABELS, BoardSession
from kanbanai.store import StoreError, TaskNotFound, TaskStore

app = Flask(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
}


# ── Config ───────────────────────────────────────────────────────────────────

def get_config() -> Config:
    cfg = app.config.get("KANBAN_CONFIG")
    if cfg is None:
        cfg = Config.load()
        app.config["KANBAN_CONFIG"] = cfg
    return cfg


def get_store() -> TaskStore:
    return TaskStore(get_config().db_path)


def get_relay() -> GatewayRelay:
    return GatewayRelay.from_config(get_config())


def load_board() -> BoardSession:
    board = BoardSession(get_store(), g.user_id)
    board.reconcile()
    return board


@app.after_request
def add_cors_headers(response):
    for key, value in CORS_HEADERS.items():
        response.headers.setdefault(key, value)
    return response


# ── Auth ─────────────────────────────────────────────────────────────────────

def _match_token(provided: str, tokens: dict) -> Optional[str]:
    user_id = None
    for token, owner in tokens.items():
        if hmac.compare_digest(provided, token):
            user_id = owner
    return user_id


def require_user(f):
    """Decorator: resolve the bearer token to a user id, or reject."""
    @wraps(f)
    def decorated(*args, **kwargs):
        tokens = get_config().api_tokens
        if not tokens:
            return jsonify({"error": "No API tokens configured"}), 503
        header = request.headers.get("Authorization", "")
        provided = header[len("Bearer "):].strip() if header.startswith("Bearer ") else ""
        user_id = _match_token(provided, tokens) if provided else None
        if user_id is None:
            code = 401 if not provided else 403
            return jsonify({"error": "Unauthorized"}), code
        g.user_id = user_id
        return f(*args, **kwargs)
    return decorated


def _store_failure(e: StoreError, what: str):
    app.logger.error(f"{what} failed for {g.user_id}: {e}")
    return jsonify({"error": f"{what} failed"}), 500


# ── Board routes ─────────────────────────────────────────────────────────────

@app.route("/api/tasks", methods=["GET"])
@require_user
def api_list_tasks():
    try:
        board = load_board()
    except StoreError as e:
        return _store_failure(e, "Loading tasks")
    return jsonify({"tasks": [t.to_dict() for t in board.tasks], "count": len(board.tasks)})


@app.route("/api/board", methods=["GET"])
@require_user
def api_board():
    try:
        board = load_board()
    except StoreError as e:
        return _store_failure(e, "Loading tasks")
    data = board.board.to_dict()
    data["context"] = board.context().to_dict()
    return jsonify(data)


@app.route("/api/tasks", methods=["POST"])
@require_user
def api_create_task():
    data = request.get_json(force=True, silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Body must be a JSON object"}), 400
    try:
        board = load_board()
        task = board.create_task(data)
    except TaskValidationError as e:
        return jsonify({"error": str(e)}), 400
    except StoreError as e:
        return _store_failure(e, "Creating task")
    app.logger.info(f"Task {task.id} created by {g.user_id}")
    return jsonify({"task": task.to_dict()}), 201


@app.route("/api/tasks/<task_id>", methods=["PUT"])
@require_user
def api_update_task(task_id):
    data = request.get_json(force=True, silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Body must be a JSON object"}), 400
    try:
        board = load_board()
        task = board.update_task(task_id, data)
    except TaskValidationError as e:
        return jsonify({"error": str(e)}), 400
    except TaskNotFound:
        return jsonify({"error": "Task not found"}), 404
    except StoreError as e:
        return _store_failure(e, "Updating task")
    return jsonify({"task": task.to_dict()})


@app.route("/api/tasks/<task_id>/move", methods=["POST"])
@require_user
def api_move_task(task_id):
    data = request.get_json(force=True, silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Body must be a JSON object"}), 400
    try:
        status = TaskStatus(str(data.get("status", "")).strip().lower())
    except ValueError:
        return jsonify({"error": f"Invalid status: {data.get('status')!r}"}), 400
    try:
        board = load_board()
        task = board.move_task(task_id, status)
    except TaskNotFound:
        return jsonify({"error": "Task not found"}), 404
    except StoreError as e:
        return _store_failure(e, "Moving task")
    return jsonify({"task": task.to_dict(), "message": f"Task moved to {STATUS_LABELS[status]}"})


@app.route("/api/tasks/<task_id>", methods=["DELETE"])
@require_user
def api_delete_task(task_id):
    try:
        board = load_board()
        board.delete_task(task_id)
    except TaskNotFound:
        return jsonify({"error": "Task not found"}), 404
    except StoreError as e:
        return _store_failure(e, "Deleting task")
    return jsonify({"deleted": task_id})


@app.route("/api/chat/history", methods=["GET"])
@require_user
def api_chat_history():
    limit = request.args.get("limit", default=100, type=int)
    try:
        messages = get_store().chat_log(g.user_id, limit=max(1, min(limit, 500)))
    except StoreError as e:
        return _store_failure(e, "Loading chat history")
    return jsonify({"messages": messages})


# ── Chat relay ───────────────────────────────────────────────────────────────

@app.route("/functions/v1/kanban-chat", methods=["POST"])
@require_user
def kanban_chat():
    body = request.get_json(force=True, silent=True)
    try:
        messages, context, stream = parse_relay_payload(body)
        relay = get_relay()
        if stream:
            chunks = relay.stream(messages, context)
            return Response(stream_with_context(chunks), mimetype="text/event-stream",
                            headers={"Cache-Control": "no-cache"})
        return jsonify(relay.complete(messages, context))
    except GatewayError as e:
        return jsonify({"error": e.message}), e.status
    except ConfigError as e:
        app.logger.error(f"Chat function error: {e}")
        return jsonify({"error": str(e)}), 500


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": get_config().db_path})


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="KanbanAI Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--config", help="Path to kanbanai.yaml (overrides KANBAN_CONFIG)")
    parser.add_argument("--db", help="Path to the SQLite DB (overrides KANBAN_DB)")
    args = parser.parse_args(argv)

    if args.db:
        os.environ["KANBAN_DB"] = args.db
    try:
        cfg = Config.load(args.config)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1
    app.config["KANBAN_CONFIG"] = cfg

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [kanban] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not cfg.gateway_api_key:
        logging.warning(f"{cfg.gateway_api_key_env} is not set; chat requests will fail")

    print(f"""
╔═══════════════════════════════════════╗
║  KanbanAI Server                      ║
╠═══════════════════════════════════════╣
║  URL:   http://{args.host}:{args.port:<19}║
║  DB:    {cfg.db_path:<30}║
║  Users: {len(set(cfg.api_tokens.values())):<30}║
╚═══════════════════════════════════════╝
""")

    app.run(host=args.host, port=args.port, debug=False, threaded=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
