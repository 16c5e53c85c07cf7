"""
Telegram Gateway - Bot API over aiohttp

Implements BaseGateway against the Telegram Bot API. Forum topics play
the role of threads inside the workspace supergroup.

Network errors, non-JSON bodies and API errors are all reported as
failed GatewayResults; nothing is retried here.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from gateway.base_client import BaseGateway, OutboundMedia
from gateway.error_types import GatewayResult

log = logging.getLogger(__name__)

MEDIA_METHODS = {
    "photo": "sendPhoto",
    "video": "sendVideo",
    "document": "sendDocument",
}


class TelegramGateway(BaseGateway):
    """
    Telegram Bot API client.

    Example:
        gateway = TelegramGateway(token="123:abc")
        result = await gateway.forward(workspace_id, user_id, 17, thread_id=5)
        if not result.ok:
            log.warning("forward failed: %s", result.to_detailed_string())
        await gateway.close()
    """

    gateway_name = "Telegram"

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize the Telegram gateway.

        Args:
            token: Bot token
            api_base: Bot API base URL (for self-hosted API servers)
            timeout: Total timeout per call in seconds
            session: Optional shared aiohttp session (not closed by this gateway)
        """
        super().__init__()
        self._token = token
        self._api_base = api_base.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def call(self, method: str, payload: Dict[str, Any]) -> GatewayResult:
        """
        Invoke a Bot API method.

        Args:
            method: API method name, e.g. "forwardMessage"
            payload: JSON body; None values are dropped

        Returns:
            GatewayResult
        """
        body = {key: value for key, value in payload.items() if value is not None}
        url = f"{self._api_base}/bot{self._token}/{method}"
        try:
            async with self._get_session().post(url, json=body) as response:
                try:
                    data = await response.json(content_type=None)
                except (aiohttp.ContentTypeError, json.JSONDecodeError, ValueError):
                    return GatewayResult.failure("invalid json from telegram", response.status)
        except asyncio.TimeoutError:
            log.warning("Telegram %s timed out", method)
            return GatewayResult.failure(f"{method} timed out")
        except aiohttp.ClientError as e:
            log.warning("Telegram %s network error: %s", method, e)
            return GatewayResult.failure(f"network error: {e}")

        result = GatewayResult.from_response(data)
        if not result.ok:
            log.debug("Telegram %s failed: %s", method, result.to_detailed_string())
        return result

    async def send_single(
        self,
        kind: str,
        destination: int,
        media_or_text: str,
        thread_id: Optional[int] = None,
        caption: Optional[str] = None
    ) -> GatewayResult:
        if kind == "text":
            return await self.call("sendMessage", {
                "chat_id": destination,
                "text": media_or_text,
                "message_thread_id": thread_id,
            })

        method = MEDIA_METHODS.get(kind)
        if method is None:
            return GatewayResult.failure(f"unsupported media kind: {kind}")
        return await self.call(method, {
            "chat_id": destination,
            kind: media_or_text,
            "caption": caption or None,
            "message_thread_id": thread_id,
        })

    async def forward(
        self,
        destination: int,
        source: int,
        message_id: int,
        thread_id: Optional[int] = None
    ) -> GatewayResult:
        return await self.call("forwardMessage", {
            "chat_id": destination,
            "from_chat_id": source,
            "message_id": message_id,
            "message_thread_id": thread_id,
        })

    async def copy(
        self,
        destination: int,
        source: int,
        message_id: int,
        thread_id: Optional[int] = None
    ) -> GatewayResult:
        return await self.call("copyMessage", {
            "chat_id": destination,
            "from_chat_id": source,
            "message_id": message_id,
            "message_thread_id": thread_id,
        })

    async def forward_batch(
        self,
        destination: int,
        source: int,
        message_ids: Sequence[int],
        thread_id: Optional[int] = None
    ) -> GatewayResult:
        # forwardMessages requires strictly increasing identifiers
        return await self.call("forwardMessages", {
            "chat_id": destination,
            "from_chat_id": source,
            "message_ids": sorted(message_ids),
            "message_thread_id": thread_id,
        })

    async def send_media_group(
        self,
        destination: int,
        items: List[OutboundMedia],
        thread_id: Optional[int] = None
    ) -> GatewayResult:
        media = []
        for item in items:
            entry = {"type": item.kind, "media": item.media_ref}
            if item.caption:
                entry["caption"] = item.caption
            media.append(entry)
        return await self.call("sendMediaGroup", {
            "chat_id": destination,
            "media": media,
            "message_thread_id": thread_id,
        })

    async def create_thread(self, workspace: int, title: str) -> GatewayResult:
        result = await self.call("createForumTopic", {"chat_id": workspace, "name": title})
        if not result.ok:
            return result
        topic = result.result if isinstance(result.result, dict) else {}
        thread_id = topic.get("message_thread_id")
        if thread_id is None:
            return GatewayResult.failure("createForumTopic returned no message_thread_id")
        return GatewayResult.success(thread_id)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
