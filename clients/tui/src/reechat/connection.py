"""Websocket connection, command queues and the reader/writer actors."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

import aiohttp

from reechat.models import Message, Page
from reechat.notifications import NotificationKind
from reechat.protocol import (
    FILE_COMMANDS,
    ActiveUsers,
    ChannelDeleted,
    ChannelListSnapshot,
    ChannelUpsert,
    ChatBroadcast,
    Closed,
    Command,
    DownloadFile,
    FileDownloadReady,
    HistoryPage,
    Ping,
    Pong,
    SendChannelMessage,
    ServerError,
    ServerEvent,
    ServerNotice,
    UnknownFrame,
    classify_frame,
    encode_command,
    history_request,
)
from reechat.redact import redact_text
from reechat.state import ClientState, SharedState

logger = logging.getLogger(__name__)


class ChatConnectionError(Exception):
    pass


class CommandQueueClosed(Exception):
    pass


class CommandBus:
    """Thread-safe entry point for commands bound for the session loop.

    Wire commands and file commands land on separate asyncio queues; order is
    preserved per queue. Commands sent before :meth:`bind` are held back and
    delivered once the loop is known.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._backlog: list[Command] = []
        self._closed = False
        self.wire: "asyncio.Queue[Command | None]" = asyncio.Queue()
        self.files: "asyncio.Queue[Command | None]" = asyncio.Queue()

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop
            backlog, self._backlog = self._backlog, []
            for command in backlog:
                loop.call_soon_threadsafe(self._route(command).put_nowait, command)

    def _route(self, command: Command) -> "asyncio.Queue[Command | None]":
        if isinstance(command, FILE_COMMANDS):
            return self.files
        return self.wire

    def send(self, command: Command) -> None:
        with self._lock:
            if self._closed:
                raise CommandQueueClosed("The session is no longer accepting commands")
            if self._loop is None:
                self._backlog.append(command)
                return
            try:
                self._loop.call_soon_threadsafe(self._route(command).put_nowait, command)
            except RuntimeError as exc:
                self._closed = True
                raise CommandQueueClosed("The session loop has stopped") from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            loop = self._loop
            if loop is None or loop.is_closed():
                return
            loop.call_soon_threadsafe(self._put_sentinels)

    def _put_sentinels(self) -> None:
        self.wire.put_nowait(None)
        self.files.put_nowait(None)


class Outbound:
    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws

    async def send(self, command: Command) -> None:
        if isinstance(command, Pong):
            await self._ws.pong(command.payload)
            return
        if not isinstance(command, SendChannelMessage):
            raise TypeError(f"{type(command).__name__} is not a wire command")
        await self._ws.send_str(encode_command(command))

    async def close(self) -> None:
        await self._ws.close()


class Inbound:
    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws

    async def events(self) -> AsyncIterator[ServerEvent]:
        """Yield classified events until the stream ends with :class:`Closed`."""

        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                logger.debug("frame: %s", redact_text(msg.data[:500]))
                yield classify_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.BINARY:
                yield UnknownFrame(repr(msg.data[:64]), "binary frame")
            elif msg.type == aiohttp.WSMsgType.PING:
                yield Ping(msg.data or b"")
            elif msg.type == aiohttp.WSMsgType.PONG:
                continue
            elif msg.type == aiohttp.WSMsgType.ERROR:
                yield Closed(str(self._ws.exception() or "stream error"))
                return
            else:
                yield Closed(str(msg.extra or ""))
                return


async def connect(
    session: aiohttp.ClientSession,
    url: str,
    credential: str,
) -> tuple[Outbound, Inbound]:
    """Open the stream and send the credential as the first frame."""

    try:
        ws = await session.ws_connect(url, autoping=False)
    except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
        raise ChatConnectionError(f"Could not connect to {url}: {exc}") from exc
    try:
        await ws.send_str(credential)
    except (aiohttp.ClientError, ConnectionError) as exc:
        await ws.close()
        raise ChatConnectionError(f"Could not authenticate stream: {exc}") from exc
    logger.info("connected to %s", url)
    return Outbound(ws), Inbound(ws)


async def run_writer(outbound: Outbound, commands: "asyncio.Queue[Command | None]") -> None:
    while True:
        command = await commands.get()
        if command is None:
            return
        try:
            await outbound.send(command)
        except (aiohttp.ClientError, ConnectionError) as exc:
            logger.error("failed to send %s: %s", type(command).__name__, exc)
            # The reader shares this stream; closing it ends the session.
            await outbound.close()
            return


@dataclass
class Followups:
    commands: list[Command] = field(default_factory=list)
    images: list[Message] = field(default_factory=list)


def apply_server_event(state: ClientState, event: ServerEvent) -> Followups:
    """Fold one inbound event into ``state``; the caller holds the lock.

    Anything that needs I/O is returned as a follow-up instead of done here.
    """

    followups = Followups()
    if isinstance(event, ChatBroadcast):
        message = event.message
        state.add_message(message)
        if message.is_image and not message.image_preview:
            followups.images.append(message)
    elif isinstance(event, ChannelListSnapshot):
        state.set_channels(event.channels)
        if state.current_channel is None and state.channels:
            first = state.channels[0]
            state.set_current_channel(first)
            offset = state.begin_history_request(first.id)
            if offset is not None:
                followups.commands.append(history_request(first.id, offset))
    elif isinstance(event, ChannelUpsert):
        state.add_or_update_channel(event.channel)
    elif isinstance(event, ChannelDeleted):
        state.remove_channel(event.channel_id)
    elif isinstance(event, HistoryPage):
        state.prepend_history(event.channel_id, event.messages)
        if not event.has_more:
            state.history_state(event.channel_id).has_more = False
        followups.images.extend(m for m in event.messages if m.is_image and not m.image_preview)
    elif isinstance(event, ActiveUsers):
        state.active_users = list(event.users)
    elif isinstance(event, ServerNotice):
        state.notify(event.title, event.message, NotificationKind.parse(event.kind))
    elif isinstance(event, ServerError):
        state.notify("Server Error", event.message, NotificationKind.ERROR)
    elif isinstance(event, FileDownloadReady):
        state.notify("Download Ready", f"Fetching '{event.file_name}'", NotificationKind.INFO)
        followups.commands.append(DownloadFile(event.file_id, event.file_name))
    elif isinstance(event, Ping):
        followups.commands.append(Pong(event.payload))
    elif isinstance(event, (UnknownFrame, Closed)):
        pass
    else:
        raise TypeError(f"unhandled event {event!r}")
    return followups


async def run_reader(
    inbound: Inbound,
    shared: SharedState,
    commands: CommandBus,
    spawn_image: Callable[[Message], None],
) -> str:
    """Apply inbound events until the stream closes; returns the close reason."""

    async for event in inbound.events():
        if isinstance(event, Closed):
            return event.reason
        if isinstance(event, UnknownFrame):
            logger.warning("dropping frame (%s): %s", event.reason, redact_text(event.raw[:200]))
            continue
        with shared.locked() as state:
            followups = apply_server_event(state, event)
        for command in followups.commands:
            try:
                commands.send(command)
            except CommandQueueClosed:
                logger.info("command bus closed, stopping reader")
                return "session closed"
        for message in followups.images:
            spawn_image(message)
    return ""


def handle_connection_lost(shared: SharedState, reason: str) -> None:
    detail = f"Disconnected from server: {reason}" if reason else "Disconnected from server"
    logger.warning("connection lost: %s", reason or "stream ended")
    with shared.locked() as state:
        state.notify("Connection Lost", detail, NotificationKind.ERROR)
        state.next_page = Page.AUTH
