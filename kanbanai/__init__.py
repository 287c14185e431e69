# KanbanAI: task board with a tool-calling chat assistant
#
# Components:
#   schema.py    - Data model (Task, TaskStatus, TaskPriority, ChatMessage, ActionResult)
#   store.py     - SQLite persistence, scoped per owner
#   board.py     - Column aggregation and the prompt's board snapshot
#   tools.py     - The three callable actions and their argument parser
#   prompt.py    - System prompt and upstream request body
#   relay.py     - Stateless proxy to the LLM gateway
#   streaming.py - Server-sent-event decoder
#   client.py    - HTTP client for the relay endpoint
#   executor.py  - Runs tool calls against the store
#   session.py   - Board/chat sessions and reconciliation
#   config.py    - YAML + env configuration

__version__ = "0.3.0"
