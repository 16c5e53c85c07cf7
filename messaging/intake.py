"""
Message Intake - Update Normalization

Turns a raw Telegram update into a flat InboundEvent the router can
classify without digging through nested payloads.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from messaging.buffer import MediaItem

log = logging.getLogger(__name__)


@dataclass
class SenderProfile:
    """Who sent the message."""
    user_id: int
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    is_bot: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SenderProfile':
        """Create from a Bot API User object."""
        return cls(
            user_id=int(data["id"]),
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            username=data.get("username") or "",
            is_bot=bool(data.get("is_bot", False))
        )


@dataclass
class InboundEvent:
    """Normalized inbound message."""
    chat_id: int
    chat_type: str
    message_id: int
    sender: Optional[SenderProfile] = None
    thread_id: Optional[int] = None
    media_group_id: Optional[str] = None
    text: str = ""
    caption: str = ""
    media_kind: Optional[str] = None  # photo, video, document, or another content type
    media_ref: str = ""
    topic_closed: bool = False
    topic_reopened: bool = False

    @property
    def is_private(self) -> bool:
        return self.chat_type == "private"

    @property
    def is_start_command(self) -> bool:
        return self.text.strip().lower().startswith("/start")

    def to_media_item(self) -> MediaItem:
        """Media item for album buffering (kind may be unsupported)."""
        return MediaItem(
            kind=self.media_kind or "other",
            media_ref=self.media_ref,
            caption=self.caption,
            source_chat=self.chat_id,
            source_message_id=self.message_id
        )


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


# Content keys checked after photo/video/document, only used to name the kind
OTHER_CONTENT_KINDS = ("animation", "audio", "voice", "video_note", "sticker")


class MessageIntake:
    """
    Validates and normalizes incoming updates.

    Example:
        intake = MessageIntake()
        event = intake.process(update)
        if event:
            # Update carries a message, route it
            pass
    """

    def _extract_media(self, message: Dict[str, Any]) -> tuple[Optional[str], str]:
        """
        Find the media carried by a message.

        Returns:
            Tuple of (kind, file_id); kind is None for pure text
        """
        photos = message.get("photo")
        # Sizes are ordered smallest to largest
        if isinstance(photos, list) and photos and isinstance(photos[-1], dict):
            return "photo", str(photos[-1].get("file_id") or "")
        for kind in ("video", "document") + OTHER_CONTENT_KINDS:
            content = message.get(kind)
            if isinstance(content, dict):
                return kind, str(content.get("file_id") or "")
        return None, ""

    def process(self, update: Dict[str, Any]) -> Optional[InboundEvent]:
        """
        Normalize an update.

        Args:
            update: Decoded Telegram update

        Returns:
            InboundEvent, or None if the update carries no usable message
        """
        if not isinstance(update, dict):
            return None
        message = update.get("message")
        if not isinstance(message, dict):
            return None

        chat = message.get("chat") or {}
        try:
            chat_id = int(chat["id"])
            message_id = int(message["message_id"])
        except (KeyError, TypeError, ValueError):
            log.debug("Dropping update %s without chat or message id", update.get("update_id"))
            return None

        sender = None
        if isinstance(message.get("from"), dict):
            try:
                sender = SenderProfile.from_dict(message["from"])
            except (KeyError, TypeError, ValueError):
                sender = None

        kind, file_id = self._extract_media(message)
        thread_id = _optional_int(message.get("message_thread_id"))
        if thread_id is None and message.get("message_thread_id") is not None:
            log.debug("Ignoring malformed thread id in update %s", update.get("update_id"))
        group_id = message.get("media_group_id")

        return InboundEvent(
            chat_id=chat_id,
            chat_type=_text(chat.get("type")),
            message_id=message_id,
            sender=sender,
            thread_id=thread_id,
            media_group_id=str(group_id) if group_id is not None else None,
            text=_text(message.get("text")),
            caption=_text(message.get("caption")),
            media_kind=kind,
            media_ref=file_id,
            topic_closed="forum_topic_closed" in message,
            topic_reopened="forum_topic_reopened" in message
        )
