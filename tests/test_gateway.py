"""Tests for gateway results, error classification and the Telegram client."""

import asyncio

import pytest
from aiohttp import test_utils, web

from gateway.base_client import BaseGateway, OutboundMedia
from gateway.error_types import (
    DeliveryFailed,
    GatewayResult,
    ThreadMissing,
    is_thread_missing,
    raise_for_result,
)
from gateway.telegram_client import TelegramGateway


class TestGatewayResult:
    def test_from_success_response(self):
        result = GatewayResult.from_response({"ok": True, "result": {"message_id": 5}})
        assert result.ok
        assert result.result == {"message_id": 5}
        assert result.to_detailed_string() == "OK"

    def test_from_error_response(self):
        result = GatewayResult.from_response(
            {"ok": False, "error_code": 400, "description": "Bad Request: chat not found"}
        )
        assert not result.ok
        assert result.error_code == 400
        assert result.to_detailed_string() == "400: Bad Request: chat not found"

    def test_from_garbage(self):
        assert not GatewayResult.from_response("nope").ok
        assert not GatewayResult.from_response(None).ok


class TestThreadMissingClassification:
    @pytest.mark.parametrize("description", [
        "Bad Request: message thread not found",
        "Bad Request: MESSAGE_THREAD_NOT_FOUND",
        "Bad Request: TOPIC_NOT_FOUND",
    ])
    def test_thread_missing(self, description):
        assert is_thread_missing(GatewayResult.failure(description, 400))

    def test_other_failures(self):
        assert not is_thread_missing(GatewayResult.failure("Forbidden: bot was blocked by the user", 403))
        assert not is_thread_missing(GatewayResult.failure("Bad Request: TOPIC_CLOSED", 400))
        assert not is_thread_missing(GatewayResult.success())
        assert not is_thread_missing(None)

    def test_raise_for_result(self):
        ok = GatewayResult.success(1)
        assert raise_for_result("forwardMessage", ok) is ok

        with pytest.raises(ThreadMissing):
            raise_for_result("forwardMessage", GatewayResult.failure("message thread not found"))
        with pytest.raises(DeliveryFailed):
            raise_for_result("forwardMessage", GatewayResult.failure("Too Many Requests", 429))


def test_gateway_requires_name():
    class Nameless(BaseGateway):
        async def send_single(self, kind, destination, media_or_text, thread_id=None, caption=None): ...
        async def forward(self, destination, source, message_id, thread_id=None): ...
        async def copy(self, destination, source, message_id, thread_id=None): ...
        async def forward_batch(self, destination, source, message_ids, thread_id=None): ...
        async def send_media_group(self, destination, items, thread_id=None): ...
        async def create_thread(self, workspace, title): ...

    with pytest.raises(NotImplementedError):
        Nameless()


class FakeBotApi:
    """Minimal Bot API server recording every call."""

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.app = web.Application()
        self.app.router.add_post("/bot{token}/{method}", self.handle)

    async def handle(self, request):
        method = request.match_info["method"]
        self.calls.append((request.match_info["token"], method, await request.json()))
        response = self.responses.get(method, {"ok": True, "result": {"message_id": 1}})
        if response == "slow":
            await asyncio.sleep(0.5)
            return web.json_response({"ok": True})
        if isinstance(response, str):
            return web.Response(text=response)
        return web.json_response(response)


@pytest.fixture
def bot_api():
    return FakeBotApi()


class TestTelegramGateway:
    @pytest.mark.asyncio
    async def test_forward_payload(self, bot_api):
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("123:abc", api_base=str(server.make_url("/")))
            result = await gateway.forward(-100, 42, 7, thread_id=5)
            await gateway.close()

        assert result.ok
        assert bot_api.calls == [("123:abc", "forwardMessage", {
            "chat_id": -100, "from_chat_id": 42, "message_id": 7, "message_thread_id": 5
        })]

    @pytest.mark.asyncio
    async def test_none_fields_are_dropped(self, bot_api):
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("t", api_base=str(server.make_url("/")))
            await gateway.copy(42, -100, 7)
            await gateway.send_single("text", 42, "hello")
            await gateway.close()

        assert bot_api.calls[0][2] == {"chat_id": 42, "from_chat_id": -100, "message_id": 7}
        assert bot_api.calls[1][1:] == ("sendMessage", {"chat_id": 42, "text": "hello"})

    @pytest.mark.asyncio
    async def test_media_methods(self, bot_api):
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("t", api_base=str(server.make_url("/")))
            await gateway.send_single("photo", 42, "file-1", caption="hi")
            unsupported = await gateway.send_single("sticker", 42, "file-2")
            await gateway.close()

        assert bot_api.calls[0][1:] == ("sendPhoto", {"chat_id": 42, "photo": "file-1", "caption": "hi"})
        assert not unsupported.ok
        assert len(bot_api.calls) == 1

    @pytest.mark.asyncio
    async def test_forward_batch_sorts_ids(self, bot_api):
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("t", api_base=str(server.make_url("/")))
            await gateway.forward_batch(-100, 42, [9, 3, 5], thread_id=8)
            await gateway.close()

        assert bot_api.calls[0][1] == "forwardMessages"
        assert bot_api.calls[0][2]["message_ids"] == [3, 5, 9]

    @pytest.mark.asyncio
    async def test_media_group_payload(self, bot_api):
        items = [OutboundMedia("photo", "a", "first"), OutboundMedia("video", "b")]
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("t", api_base=str(server.make_url("/")))
            await gateway.send_media_group(42, items)
            await gateway.close()

        assert bot_api.calls[0][2]["media"] == [
            {"type": "photo", "media": "a", "caption": "first"},
            {"type": "video", "media": "b"},
        ]

    @pytest.mark.asyncio
    async def test_create_thread_returns_thread_id(self, bot_api):
        bot_api.responses["createForumTopic"] = {
            "ok": True, "result": {"message_thread_id": 77, "name": "Ada"}
        }
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("t", api_base=str(server.make_url("/")))
            result = await gateway.create_thread(-100, "Ada")
            await gateway.close()

        assert result.ok
        assert result.result == 77
        assert bot_api.calls[0][2] == {"chat_id": -100, "name": "Ada"}

    @pytest.mark.asyncio
    async def test_api_error_is_a_failed_result(self, bot_api):
        bot_api.responses["forwardMessage"] = {
            "ok": False, "error_code": 400, "description": "Bad Request: message thread not found"
        }
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("t", api_base=str(server.make_url("/")))
            result = await gateway.forward(-100, 42, 7, thread_id=5)
            await gateway.close()

        assert is_thread_missing(result)

    @pytest.mark.asyncio
    async def test_non_json_body_is_a_failed_result(self, bot_api):
        bot_api.responses["copyMessage"] = "<html>bad gateway</html>"
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("t", api_base=str(server.make_url("/")))
            result = await gateway.copy(42, -100, 7)
            await gateway.close()

        assert not result.ok

    @pytest.mark.asyncio
    async def test_timeout_is_a_failed_result(self, bot_api):
        bot_api.responses["copyMessage"] = "slow"
        async with test_utils.TestServer(bot_api.app) as server:
            gateway = TelegramGateway("t", api_base=str(server.make_url("/")), timeout=0.1)
            result = await gateway.copy(42, -100, 7)
            await gateway.close()

        assert not result.ok
        assert "timed out" in result.description
