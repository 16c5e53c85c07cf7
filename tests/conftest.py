"""
Test Configuration and Fixtures

Shared fakes for the relay: a recording messaging gateway, a controllable
clock, and fast timing so watchdog tests finish in milliseconds.
"""

from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from gateway.base_client import BaseGateway
from gateway.error_types import GatewayResult
from messaging.aggregator import MediaAggregator
from messaging.router import RelayRouter
from messaging.threads import ThreadDirectory
from messaging.timing import TimingConfig, TimingController
from storage.memory import MemoryKVStore

WORKSPACE = -100500
BOT_ID = 999


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway(BaseGateway):
    """Gateway that records every call and succeeds unless told otherwise."""

    gateway_name = "Fake"

    def __init__(self, first_thread_id: int = 100):
        super().__init__()
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._failures: Dict[str, List[GatewayResult]] = {}
        self._next_thread = first_thread_id
        self.closed = False

    def fail(self, method: str, description: str = "Bad Request", error_code: int = 400, times: int = 1) -> None:
        """Queue failures for the next `times` calls of a method."""
        self._failures.setdefault(method, []).extend(
            [GatewayResult.failure(description, error_code)] * times
        )

    def fail_thread_missing(self, method: str, times: int = 1) -> None:
        self.fail(method, "Bad Request: message thread not found", 400, times)

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def _respond(self, method: str, result: Any = None, **kwargs) -> GatewayResult:
        self.calls.append((method, kwargs))
        queued = self._failures.get(method)
        if queued:
            return queued.pop(0)
        return GatewayResult.success(result)

    async def send_single(self, kind, destination, media_or_text, thread_id=None, caption=None):
        return self._respond(
            "send_single", {"message_id": 1},
            kind=kind, destination=destination, media_or_text=media_or_text,
            thread_id=thread_id, caption=caption
        )

    async def forward(self, destination, source, message_id, thread_id=None):
        return self._respond(
            "forward", {"message_id": 1},
            destination=destination, source=source, message_id=message_id, thread_id=thread_id
        )

    async def copy(self, destination, source, message_id, thread_id=None):
        return self._respond(
            "copy", {"message_id": 1},
            destination=destination, source=source, message_id=message_id, thread_id=thread_id
        )

    async def forward_batch(self, destination, source, message_ids, thread_id=None):
        return self._respond(
            "forward_batch", [],
            destination=destination, source=source, message_ids=list(message_ids), thread_id=thread_id
        )

    async def send_media_group(self, destination, items, thread_id=None):
        return self._respond(
            "send_media_group", [],
            destination=destination, items=list(items), thread_id=thread_id
        )

    async def create_thread(self, workspace, title):
        result = self._respond("create_thread", self._next_thread, workspace=workspace, title=title)
        if result.ok:
            self._next_thread += 1
        return result

    async def close(self):
        self.closed = True


def make_update(
    chat_id: int,
    message_id: int,
    chat_type: str = "private",
    sender: Optional[Dict[str, Any]] = None,
    **fields
) -> Dict[str, Any]:
    """Build a minimal Telegram update."""
    message = {
        "message_id": message_id,
        "chat": {"id": chat_id, "type": chat_type},
        "from": sender or {"id": chat_id, "is_bot": False, "first_name": "Ada"},
    }
    message.update(fields)
    return {"update_id": message_id, "message": message}


def photo(file_id: str) -> List[Dict[str, Any]]:
    """Photo sizes, smallest first."""
    return [{"file_id": f"{file_id}-small"}, {"file_id": file_id}]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryKVStore(clock=clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def timing_config():
    return TimingConfig(quiet_period=0.05, max_group_size=10, buffer_ttl=60, watchdog_grace=1.0)


@pytest_asyncio.fixture
async def timing(timing_config):
    controller = TimingController(timing_config)
    yield controller
    await controller.drain(timeout=1.0)


@pytest.fixture
def aggregator(store, gateway, timing, clock):
    return MediaAggregator(store, gateway, timing, clock=clock)


@pytest.fixture
def directory(store, gateway):
    return ThreadDirectory(store, gateway, WORKSPACE)


@pytest.fixture
def router(directory, aggregator, gateway):
    return RelayRouter(
        directory=directory,
        aggregator=aggregator,
        gateway=gateway,
        workspace_chat_id=WORKSPACE,
        bot_id=BOT_ID
    )
