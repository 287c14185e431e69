"""
HTTP client for the kanban-chat relay endpoint.

Maps relay status codes back onto the relay's exception classes so the chat
session handles a local GatewayRelay and a remote one identically.
"""
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests

from .board import BoardContext
from .relay import UpstreamError, error_for_status
from .streaming import SSEDecoder

logger = logging.getLogger(__name__)


class ChatClient:
    """Talks to POST /functions/v1/kanban-chat on behalf of one user."""

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 90.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post(self, body: Dict[str, Any], stream: bool) -> requests.Response:
        try:
            resp = self.session.post(
                self.url,
                json=body,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
                stream=stream,
            )
        except requests.RequestException as e:
            logger.error("Relay unreachable: %s", e)
            raise UpstreamError("Could not connect to the AI assistant.") from e

        if not resp.ok:
            try:
                payload = resp.json()
            except ValueError:
                payload = {}
            message = payload.get("error") if isinstance(payload, dict) else None
            resp.close()
            raise error_for_status(resp.status_code, message)
        return resp

    def complete(self, messages: List[Dict[str, str]], context: BoardContext) -> Dict[str, Any]:
        resp = self._post({"messages": messages, "boardContext": context.to_dict()}, stream=False)
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError("The AI assistant sent an unreadable reply.") from e

    def stream(self, messages: List[Dict[str, str]], context: BoardContext) -> Iterator[str]:
        """Yield assistant text deltas as they arrive."""
        resp = self._post(
            {"messages": messages, "boardContext": context.to_dict(), "stream": True},
            stream=True,
        )
        decoder = SSEDecoder()
        try:
            for chunk in resp.iter_content(chunk_size=None):
                for delta in decoder.feed(chunk):
                    yield delta
                if decoder.done:
                    break
            for delta in decoder.close():
                yield delta
        except requests.RequestException as e:
            logger.error("Relay stream interrupted: %s", e)
            raise UpstreamError("The AI assistant stream was interrupted.") from e
        finally:
            resp.close()
