"""
LLM gateway relay.

Forwards one chat turn plus the board snapshot and tool definitions to the
upstream chat-completion endpoint. Holds no state between calls: every
request is fully described by its payload.

Upstream status mapping (never retried here):
    429 -> RateLimited
    402 -> QuotaExhausted
    other non-2xx / transport failure -> UpstreamError
"""
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests

from .board import BoardContext
from .prompt import build_chat_request

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Base class for relay failures; ``status`` is the HTTP code to surface."""

    status = 500
    default_message = "AI service error. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class RateLimited(GatewayError):
    status = 429
    default_message = "Rate limit exceeded. Please try again in a moment."


class QuotaExhausted(GatewayError):
    status = 402
    default_message = "AI usage limit reached. Please add credits to continue."


class UpstreamError(GatewayError):
    status = 500


class InvalidRequest(GatewayError):
    status = 400
    default_message = "Malformed chat request."


def error_for_status(status: int, message: Optional[str] = None) -> GatewayError:
    if status == 429:
        return RateLimited(message)
    if status == 402:
        return QuotaExhausted(message)
    return UpstreamError(message)


# ── Inbound payload ──────────────────────────────────────────────────────────

def parse_relay_payload(body: Any) -> Tuple[List[Dict[str, str]], BoardContext, bool]:
    """Validate ``{messages, boardContext, stream?}`` from the client."""
    if not isinstance(body, dict):
        raise InvalidRequest("Request body must be a JSON object")

    messages = body.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequest("messages must be a non-empty list")
    clean = []
    for i, m in enumerate(messages):
        if not isinstance(m, dict):
            raise InvalidRequest(f"messages[{i}] must be an object")
        role, content = m.get("role"), m.get("content")
        if role not in ("user", "assistant"):
            raise InvalidRequest(f"messages[{i}].role must be 'user' or 'assistant'")
        if not isinstance(content, str):
            raise InvalidRequest(f"messages[{i}].content must be a string")
        clean.append({"role": role, "content": content})

    context = body.get("boardContext") or {}
    if not isinstance(context, dict):
        raise InvalidRequest("boardContext must be an object")
    try:
        board_context = BoardContext.from_dict(context)
    except (TypeError, ValueError) as e:
        raise InvalidRequest(f"boardContext is malformed: {e}") from e

    return clean, board_context, bool(body.get("stream", False))


# ── Relay ────────────────────────────────────────────────────────────────────

class GatewayRelay:
    """Stateless proxy to the upstream chat-completion service."""

    def __init__(
        self,
        url: str,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "GatewayRelay":
        return cls(
            url=config.gateway_url,
            api_key=config.require_gateway_api_key(),
            model=config.gateway_model,
            timeout=config.gateway_timeout,
        )

    def _post(self, body: Dict[str, Any], stream: bool) -> requests.Response:
        try:
            resp = self.session.post(
                self.url,
                json=body,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                stream=stream,
            )
        except requests.RequestException as e:
            logger.error("AI gateway unreachable: %s", e)
            raise UpstreamError() from e

        if not resp.ok:
            if resp.status_code not in (402, 429):
                logger.error("AI gateway error: %s %s", resp.status_code, resp.text[:500])
            else:
                logger.warning("AI gateway refused request: %s", resp.status_code)
            resp.close()
            raise error_for_status(resp.status_code)
        return resp

    def complete(self, messages: List[Dict[str, str]], context: BoardContext) -> Dict[str, Any]:
        """Non-streaming turn: returns the chat-completion JSON as-is."""
        body = build_chat_request(messages, context, self.model, stream=False)
        resp = self._post(body, stream=False)
        try:
            return resp.json()
        except ValueError as e:
            logger.error("AI gateway returned non-JSON body: %s", resp.text[:200])
            raise UpstreamError() from e

    def stream(self, messages: List[Dict[str, str]], context: BoardContext) -> Iterator[bytes]:
        """Streaming turn: yields raw SSE bytes exactly as upstream sends them.

        Status errors are raised before the first chunk, so callers can still
        answer with a plain error response.
        """
        body = build_chat_request(messages, context, self.model, stream=True)
        resp = self._post(body, stream=True)
        return self._relay_chunks(resp)

    @staticmethod
    def _relay_chunks(resp: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in resp.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            logger.error("AI gateway stream interrupted: %s", e)
            raise UpstreamError() from e
        finally:
            resp.close()
