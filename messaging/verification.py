"""
Verification Gate - Human Verification Hook

The relay only asks two questions of the verification system: is this
user verified, and please challenge this user. Issuing and validating
the actual challenge happens on an external page, which calls
`KVVerificationGate.confirm` once the user passed.

Classes:
    - VerificationGate: Abstract gate
    - NullGate: Gate that treats everyone as verified
    - KVVerificationGate: Gate backed by the key-value store
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from gateway.base_client import BaseGateway
from storage.base import KeyValueStore

log = logging.getLogger(__name__)

VERIFIED_PREFIX = "verified:"
PENDING_PREFIX = "verify:"

CHALLENGE_TEXT = (
    "⚠️ Before your first message can reach us, please complete a quick human check:\n"
    "🔗 {link}\n"
    "\n"
    "Come back here once the page says verification succeeded. "
    "Until then every message will ask for verification again."
)
CONFIRMED_TEXT = "✅ Verification complete, you can continue the conversation here."


class VerificationGate(ABC):
    """Interface to the external verification capability."""

    @abstractmethod
    async def is_verified(self, user_id: int) -> bool:
        pass

    @abstractmethod
    async def request_verification(self, user_id: int) -> None:
        pass


class NullGate(VerificationGate):
    """Gate used when verification is disabled."""

    async def is_verified(self, user_id: int) -> bool:
        return True

    async def request_verification(self, user_id: int) -> None:
        return None


class KVVerificationGate(VerificationGate):
    """
    Verification state kept in the key-value store.

    Storage layout:
        verified:{user_id} -> "1"
        verify:{token}     -> {"uid": user_id}   (expires after token_ttl)

    Example:
        gate = KVVerificationGate(store, gateway, public_base="https://relay.example.com")
        if not await gate.is_verified(user_id):
            await gate.request_verification(user_id)
    """

    def __init__(
        self,
        store: KeyValueStore,
        gateway: BaseGateway,
        public_base: str = "",
        token_ttl: int = 900
    ):
        """
        Initialize the gate.

        Args:
            store: Key-value backend
            gateway: Messaging gateway used to send the challenge link
            public_base: Base URL of the challenge page; no link is sent when empty
            token_ttl: Seconds a challenge token stays valid
        """
        self._store = store
        self._gateway = gateway
        self._public_base = public_base.rstrip("/")
        self._token_ttl = token_ttl

    async def is_verified(self, user_id: int) -> bool:
        return bool(await self._store.get(f"{VERIFIED_PREFIX}{user_id}"))

    async def request_verification(self, user_id: int) -> None:
        """Issue a challenge token and send the user the link to the challenge page."""
        token = str(uuid.uuid4())
        await self._store.put(f"{PENDING_PREFIX}{token}", {"uid": user_id}, ttl=self._token_ttl)

        if not self._public_base:
            log.warning("Verification requested for user %s but no public_base is configured", user_id)
            return

        link = f"{self._public_base}/verify?token={token}"
        result = await self._gateway.send_single("text", user_id, CHALLENGE_TEXT.format(link=link))
        if not result.ok:
            log.warning("Could not send verification link to %s: %s", user_id, result.to_detailed_string())

    async def confirm(self, token: str) -> Optional[int]:
        """
        Mark the user behind a challenge token as verified.

        Args:
            token: Token from the challenge link

        Returns:
            The verified user ID, or None if the token is unknown or expired
        """
        record = await self._store.get(f"{PENDING_PREFIX}{token}")
        if not isinstance(record, dict) or not record.get("uid"):
            return None

        user_id = int(record["uid"])
        await self._store.put(f"{VERIFIED_PREFIX}{user_id}", "1")
        await self._store.delete(f"{PENDING_PREFIX}{token}")
        log.info("User %s verified", user_id)

        result = await self._gateway.send_single("text", user_id, CONFIRMED_TEXT)
        if not result.ok:
            log.debug("Could not notify %s about verification: %s", user_id, result.to_detailed_string())
        return user_id
