"""HTTP client for the chat bridge sidecar.

The bridge buffers incoming chat messages and exposes chat metadata:

- ``GET  /api/status``                       connection state
- ``GET  /api/messages/buffer``              drain buffered messages
- ``GET  /api/messages/{jid}?limit=N``       recent messages of one chat
- ``GET  /api/chats``                        known chats with names
- ``POST /api/chats/fetch-names-for-jids``   directory lookup for group names

Every call raises :class:`BridgeUnavailableError` on failure.  A refused
connection means the bridge is simply not running, which is expected and only
logged at DEBUG.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict

from chatlore.config import settings
from chatlore.errors import BridgeUnavailableError

logger = logging.getLogger(__name__)


class ChatNameResult(BaseModel):
    """One directory lookup result."""

    model_config = ConfigDict(extra="ignore")

    jid: str
    name: str | None = None
    success: bool = False

    @property
    def resolved(self) -> bool:
        return self.success and bool(self.name)


class BridgeClient:
    """Thin async wrapper over the bridge's REST API.

    Args:
        base_url: Bridge root URL (default from settings).
        timeout: Per-request timeout in seconds (default from settings).
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self.base_url = (base_url or settings.bridge_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.bridge_timeout_seconds

    # -- Status ----------------------------------------------------------------

    async def status(self) -> dict[str, Any]:
        """Connection status, QR availability and buffer size."""
        return await self._request("GET", "/api/status")

    # -- Messages --------------------------------------------------------------

    async def get_buffered_messages(self) -> list[dict[str, Any]]:
        """Drain the bridge's message buffer.

        The bridge clears its buffer on read, so each message is handed over
        once; idempotent storage makes a re-delivered message harmless.
        """
        body = await self._request("GET", "/api/messages/buffer")
        return list(body.get("messages") or [])

    async def get_messages(self, chat_jid: str, limit: int = 50) -> list[dict[str, Any]]:
        """Recent messages of one chat."""
        body = await self._request(
            "GET", f"/api/messages/{quote(chat_jid, safe='')}", params={"limit": limit}
        )
        return list(body.get("messages") or [])

    # -- Chats -----------------------------------------------------------------

    async def get_chats(self) -> list[dict[str, Any]]:
        """Chats the bridge knows about, as ``{jid, name, type}`` maps."""
        body = await self._request("GET", "/api/chats")
        return list(body.get("chats") or [])

    async def fetch_names_for_jids(self, jids: list[str]) -> list[ChatNameResult]:
        """Ask the bridge to resolve display names for *jids*."""
        if not jids:
            return []
        body = await self._request(
            "POST", "/api/chats/fetch-names-for-jids", json={"jids": jids}
        )
        results = []
        for item in body.get("results") or []:
            if isinstance(item, dict) and item.get("jid"):
                results.append(ChatNameResult.model_validate(item))
        return results

    # -- HTTP ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(method, url, params=params, json=json)
        except httpx.ConnectError as exc:
            logger.debug("Chat bridge not running (connection refused): %s", url)
            msg = f"Chat bridge unreachable at {self.base_url}"
            raise BridgeUnavailableError(msg, connection_refused=True) from exc
        except httpx.HTTPError as exc:
            logger.error("Chat bridge request failed: %s %s: %s", method, path, exc)
            msg = f"Chat bridge request failed: {exc}"
            raise BridgeUnavailableError(msg) from exc

        if resp.status_code != 200:
            logger.warning("Chat bridge returned %d: %s", resp.status_code, resp.text[:200])
            msg = f"Chat bridge returned HTTP {resp.status_code}"
            raise BridgeUnavailableError(msg)

        try:
            body = resp.json()
        except ValueError as exc:
            msg = "Chat bridge returned invalid JSON"
            raise BridgeUnavailableError(msg) from exc
        return body if isinstance(body, dict) else {}
