"""
Relay Router - Main Orchestrator

Ties the relay components together:
Telegram update → Intake → Router → ThreadDirectory → Gateway / MediaAggregator

Every update is acknowledged by the caller no matter what happens here;
failures are logged for operators and never reach the end-user beyond
the two explicit notices (verification required, conversation closed).
"""

import logging
from typing import Any, Dict, Optional

from gateway.base_client import BaseGateway
from gateway.error_types import GatewayResult, RelayError, ThreadMissing, raise_for_result
from messaging.aggregator import MediaAggregator
from messaging.buffer import USER_TO_WORKSPACE, WORKSPACE_TO_USER, Destination
from messaging.intake import InboundEvent, MessageIntake
from messaging.threads import ThreadDirectory, ThreadRecord
from messaging.timing import TimingConfig, TimingController
from messaging.verification import KVVerificationGate, NullGate, VerificationGate
from storage.base import KeyValueStore

log = logging.getLogger(__name__)

CLOSED_NOTICE = (
    "This conversation has been closed by the staff. "
    "Please contact an administrator or wait for it to be reopened."
)


class RelayRouter:
    """
    Classifies one inbound update and routes it.

    Branches, checked in order, exactly one fires:
    1. Private `/start` → acknowledged only
    2. Private, unverified → verification requested
    3. Private, thread closed → closed notice
    4. Private → forwarded into the user's thread (albums buffered)
    5. Workspace topic closed/reopened → record updated
    6. Workspace thread message from a human → delivered to the owning user
    """

    def __init__(
        self,
        directory: ThreadDirectory,
        aggregator: MediaAggregator,
        gateway: BaseGateway,
        workspace_chat_id: int,
        gate: Optional[VerificationGate] = None,
        bot_id: Optional[int] = None,
        intake: Optional[MessageIntake] = None
    ):
        """
        Initialize the router.

        Args:
            directory: User ↔ thread mapping
            aggregator: Album buffering
            gateway: Messaging gateway
            workspace_chat_id: Staff workspace chat
            gate: Verification gate (NullGate when omitted)
            bot_id: The relay bot's own user ID
            intake: Update normalizer
        """
        self.directory = directory
        self.aggregator = aggregator
        self.gateway = gateway
        self.workspace_chat_id = workspace_chat_id
        self.gate = gate or NullGate()
        self.bot_id = bot_id
        self.intake = intake or MessageIntake()

    async def handle_update(self, update: Dict[str, Any]) -> None:
        """
        Process one Telegram update. Never raises.

        Args:
            update: Decoded update body
        """
        try:
            await self.aggregator.sweep()
        except Exception as e:
            log.error("Media group sweep failed: %s", e)

        try:
            event = self.intake.process(update)
        except Exception:
            update_id = update.get("update_id") if isinstance(update, dict) else None
            log.exception("Dropping unparseable update %s", update_id)
            return
        if event is None:
            return

        try:
            await self.route(event)
        except RelayError as e:
            log.error("Relay failed for message %s in chat %s: %s", event.message_id, event.chat_id, e)
        except Exception:
            log.exception("Unexpected error handling message %s in chat %s", event.message_id, event.chat_id)

    async def route(self, event: InboundEvent) -> None:
        """
        Dispatch a normalized event.

        Raises:
            RelayError: On unrecoverable relay failures
        """
        if event.is_private:
            await self._handle_private(event)
            return

        if self.workspace_chat_id is not None and event.chat_id == self.workspace_chat_id:
            await self._handle_workspace(event)

    # user -> workspace

    async def _handle_private(self, event: InboundEvent) -> None:
        user_id = event.chat_id

        if event.is_start_command:
            return

        if not await self.gate.is_verified(user_id):
            log.info("User %s is not verified, requesting verification", user_id)
            await self.gate.request_verification(user_id)
            return

        record = await self.directory.get(user_id)
        if record is not None and record.closed:
            result = await self.gateway.send_single("text", user_id, CLOSED_NOTICE)
            if not result.ok:
                log.warning("Could not send closed notice to %s: %s", user_id, result.to_detailed_string())
            return

        if record is None:
            record = await self.directory.resolve_or_create(user_id, event.sender)

        if event.media_group_id:
            await self.aggregator.append(
                USER_TO_WORKSPACE,
                event.media_group_id,
                event.to_media_item(),
                Destination(self.workspace_chat_id, record.thread_id)
            )
            return

        await self._forward_with_recovery(event, record)

    async def _forward_with_recovery(self, event: InboundEvent, record: ThreadRecord) -> None:
        try:
            await self._forward_to_thread(event, record.thread_id)
        except ThreadMissing as e:
            log.warning("Thread %s of user %s is gone (%s), recreating", record.thread_id, record.user_id, e)
            record = await self.directory.recreate_after_loss(record.user_id, event.sender)
            await self._forward_to_thread(event, record.thread_id)

    async def _forward_to_thread(self, event: InboundEvent, thread_id: int) -> GatewayResult:
        result = await self.gateway.forward(
            self.workspace_chat_id, event.chat_id, event.message_id, thread_id
        )
        return raise_for_result("forwardMessage", result)

    # workspace -> user

    async def _handle_workspace(self, event: InboundEvent) -> None:
        if event.thread_id is None:
            return

        if event.topic_closed:
            await self.directory.set_closed(event.thread_id, True)
            return
        if event.topic_reopened:
            await self.directory.set_closed(event.thread_id, False)
            return

        if self._is_bot(event):
            return

        user_id = await self.directory.find_user_by_thread(event.thread_id)
        if user_id is None:
            log.debug("Thread %s has no owner, dropping message %s", event.thread_id, event.message_id)
            return

        if event.media_group_id:
            await self.aggregator.append(
                WORKSPACE_TO_USER,
                event.media_group_id,
                event.to_media_item(),
                Destination(user_id)
            )
            return

        await self._copy_to_user(event, user_id)

    def _is_bot(self, event: InboundEvent) -> bool:
        if event.sender is None:
            return False
        if self.bot_id is not None and event.sender.user_id == self.bot_id:
            return True
        return event.sender.is_bot

    async def _copy_to_user(self, event: InboundEvent, user_id: int) -> GatewayResult:
        result = await self.gateway.copy(user_id, self.workspace_chat_id, event.message_id)
        if result.ok:
            return result

        log.debug("copyMessage to %s failed (%s), forwarding instead", user_id, result.to_detailed_string())
        result = await self.gateway.forward(user_id, self.workspace_chat_id, event.message_id)
        log.info("forwardMessage fallback to %s: %s", user_id, result.to_detailed_string())
        return raise_for_result("forwardMessage", result)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Let pending album flushes finish, then release resources."""
        await self.aggregator.timing.drain(timeout)
        await self.gateway.close()


def build_router(settings, store: KeyValueStore, gateway: BaseGateway) -> RelayRouter:
    """
    Assemble a router and its collaborators from settings.

    Args:
        settings: RelaySettings
        store: Key-value backend
        gateway: Messaging gateway

    Returns:
        RelayRouter
    """
    timing = TimingController(TimingConfig.from_settings(settings))
    aggregator = MediaAggregator(store, gateway, timing)
    directory = ThreadDirectory(store, gateway, settings.workspace_chat_id)

    gate: VerificationGate = NullGate()
    if settings.verification_enabled:
        gate = KVVerificationGate(
            store, gateway,
            public_base=settings.public_base,
            token_ttl=settings.verification_ttl
        )

    return RelayRouter(
        directory=directory,
        aggregator=aggregator,
        gateway=gateway,
        workspace_chat_id=settings.workspace_chat_id,
        gate=gate,
        bot_id=settings.bot_id
    )

