"""
Base Messaging Gateway

This module provides an abstract base class for messaging gateways.
It defines the calls the relay needs from the remote messaging surface.
Every call returns a GatewayResult instead of raising, so callers can
inspect the machine-readable failure reason and pick a fallback.

Classes:
    - OutboundMedia: One entry of a grouped media send
    - BaseGateway: Abstract base class for messaging gateways
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from gateway.error_types import GatewayResult


@dataclass
class OutboundMedia:
    """A media reference to include in a grouped send."""
    kind: str  # "photo", "video" or "document"
    media_ref: str
    caption: Optional[str] = None


class BaseGateway(ABC):
    """
    Abstract base class for messaging gateways.

    To add a new gateway:
    1. Create a new class that inherits from BaseGateway
    2. Set the gateway_name class attribute
    3. Implement the abstract methods

    Example:
        >>> class LoggingGateway(BaseGateway):
        ...     gateway_name = "Logging"
        ...
        ...     async def forward(self, destination, source, message_id, thread_id=None):
        ...         log.info("forward %s -> %s", message_id, destination)
        ...         return GatewayResult.success()
    """

    gateway_name: str = None

    def __init__(self):
        """Initialize the base gateway."""
        if self.gateway_name is None:
            raise NotImplementedError(
                f"{self.__class__.__name__} must set gateway_name class attribute"
            )

    @abstractmethod
    async def send_single(
        self,
        kind: str,
        destination: int,
        media_or_text: str,
        thread_id: Optional[int] = None,
        caption: Optional[str] = None
    ) -> GatewayResult:
        """
        Send one text or media message.

        Args:
            kind: "text", "photo", "video" or "document"
            destination: Target chat ID
            media_or_text: Message text, or media reference for media kinds
            thread_id: Optional thread inside the destination chat
            caption: Optional caption for media kinds

        Returns:
            GatewayResult
        """
        pass

    @abstractmethod
    async def forward(
        self,
        destination: int,
        source: int,
        message_id: int,
        thread_id: Optional[int] = None
    ) -> GatewayResult:
        """
        Forward a message, keeping its original author attribution.

        Args:
            destination: Target chat ID
            source: Chat the message lives in
            message_id: Message to forward
            thread_id: Optional thread inside the destination chat

        Returns:
            GatewayResult
        """
        pass

    @abstractmethod
    async def copy(
        self,
        destination: int,
        source: int,
        message_id: int,
        thread_id: Optional[int] = None
    ) -> GatewayResult:
        """
        Copy a message without the forward header.

        Args:
            destination: Target chat ID
            source: Chat the message lives in
            message_id: Message to copy
            thread_id: Optional thread inside the destination chat

        Returns:
            GatewayResult
        """
        pass

    @abstractmethod
    async def forward_batch(
        self,
        destination: int,
        source: int,
        message_ids: Sequence[int],
        thread_id: Optional[int] = None
    ) -> GatewayResult:
        """
        Forward several messages from one chat in a single call.

        Args:
            destination: Target chat ID
            source: Chat the messages live in
            message_ids: Messages to forward, in order
            thread_id: Optional thread inside the destination chat

        Returns:
            GatewayResult
        """
        pass

    @abstractmethod
    async def send_media_group(
        self,
        destination: int,
        items: List[OutboundMedia],
        thread_id: Optional[int] = None
    ) -> GatewayResult:
        """
        Send several media items as one album.

        Args:
            destination: Target chat ID
            items: Album entries, in order
            thread_id: Optional thread inside the destination chat

        Returns:
            GatewayResult
        """
        pass

    @abstractmethod
    async def create_thread(self, workspace: int, title: str) -> GatewayResult:
        """
        Allocate a new thread in the workspace.

        Args:
            workspace: Workspace chat ID
            title: Thread title

        Returns:
            GatewayResult whose `result` is the new thread ID on success
        """
        pass

    async def close(self) -> None:
        """Release network resources. Default implementation does nothing."""
        return None
