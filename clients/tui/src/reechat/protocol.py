"""Wire commands and inbound frame classification for the chat stream."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from reechat.models import Channel, Message

HOME_CHANNEL = "home"


# Outbound commands.


@dataclass(frozen=True)
class SendChannelMessage:
    channel_id: str
    content: str


@dataclass(frozen=True)
class UploadFile:
    channel_id: str
    path: Path


@dataclass(frozen=True)
class DownloadFile:
    file_id: str
    file_name: str


@dataclass(frozen=True)
class Pong:
    payload: bytes = b""


@dataclass(frozen=True)
class ShowLocalImage:
    path: Path


Command = SendChannelMessage | UploadFile | DownloadFile | Pong | ShowLocalImage
FILE_COMMANDS = (UploadFile, DownloadFile, ShowLocalImage)


def encode_command(command: SendChannelMessage) -> str:
    return json.dumps({"channel_id": command.channel_id, "content": command.content})


def history_request(channel_id: str, offset: int) -> SendChannelMessage:
    return SendChannelMessage(channel_id, f"/get_history {channel_id} {offset}")


def active_users_request() -> SendChannelMessage:
    return SendChannelMessage(HOME_CHANNEL, "/get_active_users")


def propose_channel(name: str, icon: str) -> SendChannelMessage:
    return SendChannelMessage(HOME_CHANNEL, f"/propose_channel {name} {icon}")


# Inbound events.


@dataclass(frozen=True)
class ChatBroadcast:
    message: Message


@dataclass(frozen=True)
class ChannelListSnapshot:
    channels: list[Channel]


@dataclass(frozen=True)
class ChannelUpsert:
    channel: Channel


@dataclass(frozen=True)
class ChannelDeleted:
    channel_id: str


@dataclass(frozen=True)
class HistoryPage:
    channel_id: str
    messages: list[Message]
    offset: int = 0
    has_more: bool = True


@dataclass(frozen=True)
class ActiveUsers:
    users: list[str]


@dataclass(frozen=True)
class ServerNotice:
    title: str
    message: str
    kind: str | None = None


@dataclass(frozen=True)
class ServerError:
    message: str


@dataclass(frozen=True)
class FileDownloadReady:
    file_id: str
    file_name: str


@dataclass(frozen=True)
class Ping:
    payload: bytes = b""


@dataclass(frozen=True)
class Closed:
    reason: str = ""


@dataclass(frozen=True)
class UnknownFrame:
    raw: str
    reason: str = field(default="unrecognised frame", compare=False)


ServerEvent = (
    ChatBroadcast
    | ChannelListSnapshot
    | ChannelUpsert
    | ChannelDeleted
    | HistoryPage
    | ActiveUsers
    | ServerNotice
    | ServerError
    | FileDownloadReady
    | Ping
    | Closed
    | UnknownFrame
)


def _user_names(raw: Any) -> list[str]:
    users: list[str] = []
    for entry in raw or []:
        if isinstance(entry, dict):
            name = entry.get("username") or entry.get("user") or entry.get("name")
            if name:
                users.append(str(name))
        elif entry is not None:
            users.append(str(entry))
    return users


def _classify_envelope(tag: str, body: Any) -> ServerEvent:
    if tag == "Broadcast":
        return ChatBroadcast(Message.from_payload(body))
    if tag == "ChannelList":
        return ChannelListSnapshot([Channel.from_payload(item) for item in body.get("channels", [])])
    if tag == "ChannelUpdate":
        return ChannelUpsert(Channel.from_payload(body.get("channel", body)))
    if tag == "ChannelDelete":
        channel_id = body.get("id", body.get("channel_id")) if isinstance(body, dict) else body
        if channel_id is None:
            raise ValueError("channel delete without id")
        return ChannelDeleted(str(channel_id))
    if tag == "History":
        history = body.get("history", body)
        return HistoryPage(
            channel_id=str(history["channel_id"]),
            messages=[Message.from_payload(item) for item in history.get("messages", [])],
            offset=int(history.get("offset", 0)),
            has_more=bool(history.get("has_more", True)),
        )
    if tag == "UserList":
        return ActiveUsers(_user_names(body.get("users")))
    if tag == "Notification":
        return ServerNotice(
            title=str(body.get("title", "Notification")),
            message=str(body.get("message", "")),
            kind=body.get("notification_type"),
        )
    if tag == "Error":
        message = body.get("message", "") if isinstance(body, dict) else body
        return ServerError(str(message))
    if tag == "FileDownloadReady":
        return FileDownloadReady(str(body["file_id"]), str(body.get("file_name") or body["file_id"]))
    raise ValueError(f"unknown envelope {tag!r}")


def classify_frame(text: str) -> ServerEvent:
    """Turn one text frame into a typed event.

    Malformed or unrecognised frames become :class:`UnknownFrame`; this never
    raises.
    """

    try:
        if text.startswith("/channel_update "):
            payload = json.loads(text[len("/channel_update ") :])
            return ChannelUpsert(Channel.from_payload(payload))
        if text.startswith("/channel_delete "):
            channel_id = text[len("/channel_delete ") :].strip()
            if not channel_id:
                return UnknownFrame(text, "channel delete without id")
            return ChannelDeleted(channel_id)
        payload = json.loads(text)
        if not isinstance(payload, dict):
            return UnknownFrame(text, "frame is not an object")
        if len(payload) == 1:
            tag, body = next(iter(payload.items()))
            if tag[:1].isupper():
                if body is None:
                    body = {}
                return _classify_envelope(tag, body)
        return ChatBroadcast(Message.from_payload(payload))
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        return UnknownFrame(text, str(exc))
