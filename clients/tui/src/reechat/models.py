"""Plain data records shared by the session actors."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any

HISTORY_PAGE_SIZE = 50
GROUP_WINDOW_SECONDS = 60


class Page(enum.Enum):
    AUTH = "auth"
    CHAT = "chat"
    EXIT = "exit"


class Pane(enum.Enum):
    CHANNELS = "channels"
    MESSAGES = "messages"
    INPUT = "input"


def _new_client_id() -> str:
    return uuid.uuid4().hex


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    return str(value)


def _optional_int(payload: dict[str, Any], key: str) -> int | None:
    value = payload.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Channel:
    id: str
    name: str
    icon: str = ""

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Channel":
        if not isinstance(payload, dict) or "id" not in payload:
            raise ValueError("channel payload requires an id")
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name") or payload["id"]),
            icon=str(payload.get("icon") or ""),
        )


@dataclass
class Message:
    channel_id: str
    user: str
    icon: str
    content: str
    timestamp: int
    message_type: str = "text"
    file_name: str | None = None
    file_extension: str | None = None
    file_icon: str | None = None
    file_size: int | None = None
    file_id: str | None = None
    download_url: str | None = None
    download_progress: int | None = None
    is_image: bool = False
    image_preview: str | None = None
    client_id: str = field(default_factory=_new_client_id, compare=False)

    @property
    def has_attachment(self) -> bool:
        return self.file_id is not None or self.is_image

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Message":
        """Build a message from a server JSON object.

        ``channel_id``, ``user``, ``content`` and ``timestamp`` are required; the
        rest is optional and tolerated when missing or null.
        """

        if not isinstance(payload, dict):
            raise ValueError("message payload must be an object")
        missing = [key for key in ("channel_id", "user", "content", "timestamp") if key not in payload]
        if missing:
            raise ValueError(f"message payload missing {', '.join(missing)}")
        timestamp = _optional_int(payload, "timestamp")
        if timestamp is None:
            raise ValueError("message timestamp must be an integer")
        file_size = _optional_int(payload, "file_size")
        if file_size is None and payload.get("file_size_mb") is not None:
            try:
                file_size = int(float(payload["file_size_mb"]) * 1024 * 1024)
            except (TypeError, ValueError):
                file_size = None
        return cls(
            channel_id=str(payload["channel_id"]),
            user=str(payload["user"]),
            icon=str(payload.get("icon") or ""),
            content=str(payload["content"]),
            timestamp=timestamp,
            message_type=str(payload.get("message_type") or "text"),
            file_name=_optional_str(payload, "file_name"),
            file_extension=_optional_str(payload, "file_extension"),
            file_icon=_optional_str(payload, "file_icon"),
            file_size=file_size,
            file_id=_optional_str(payload, "file_id"),
            download_url=_optional_str(payload, "download_url"),
            download_progress=_optional_int(payload, "download_progress"),
            is_image=bool(payload.get("is_image", False)),
            image_preview=_optional_str(payload, "image_preview"),
        )

    def matches(self, other: "Message") -> bool:
        """Identity rule used when a server update replaces a stored message.

        File ids decide when both sides carry one, otherwise timestamps, then
        file names.
        """

        if self.file_id is not None and other.file_id is not None:
            return self.file_id == other.file_id
        if self.timestamp == other.timestamp:
            return True
        if self.file_name is not None and other.file_name is not None:
            return self.file_name == other.file_name
        return False


def can_group(previous: Message, current: Message) -> bool:
    """Return True when ``current`` continues the author block of ``previous``."""

    if previous.user != current.user:
        return False
    if previous.has_attachment or current.has_attachment:
        return False
    return abs(current.timestamp - previous.timestamp) < GROUP_WINDOW_SECONDS


@dataclass
class ChannelHistoryState:
    next_offset: int = 0
    has_more: bool = True
    loading: bool = False


@dataclass
class PendingTransfer:
    id: str
    kind: str
    ref: str
    progress: int = 0
