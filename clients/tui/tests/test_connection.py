import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import aiohttp
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from reechat.config import Settings
from reechat.connection import (
    ChatConnectionError,
    CommandBus,
    CommandQueueClosed,
    apply_server_event,
    connect,
    handle_connection_lost,
    run_reader,
    run_writer,
)
from reechat.models import Message, Page
from reechat.notifications import NotificationKind
from reechat.protocol import ChatBroadcast, DownloadFile, Pong, SendChannelMessage
from reechat.runtime import SessionRuntime
from reechat.state import ClientState, SharedState

BROADCAST = {"channel_id": "general", "user": "alice", "icon": "", "content": "hello", "timestamp": 1700000000}


class FakeChatServer:
    """Websocket endpoint that records what the client sends."""

    def __init__(self) -> None:
        self.received: "asyncio.Queue[tuple[str, object]]" = asyncio.Queue()
        self.connected = asyncio.Event()
        self.ws: web.WebSocketResponse | None = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self._handler)
        return app

    async def _handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(autoping=False)
        await ws.prepare(request)
        self.ws = ws
        self.connected.set()
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await self.received.put(("text", msg.data))
            elif msg.type == WSMsgType.PONG:
                await self.received.put(("pong", msg.data))
        return ws

    async def next_text(self, timeout: float = 5.0) -> str:
        while True:
            kind, data = await asyncio.wait_for(self.received.get(), timeout)
            if kind == "text":
                return data


async def _wait_for(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class ConnectionActorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.fake = FakeChatServer()
        self.server = TestServer(self.fake.app())
        await self.server.start_server()
        self.session = aiohttp.ClientSession()
        self.url = str(self.server.make_url("/ws"))
        self.shared = SharedState()
        self.bus = CommandBus()
        self.bus.bind(asyncio.get_running_loop())
        self.images = []

    async def asyncTearDown(self) -> None:
        self.bus.close()
        await self.session.close()
        await self.server.close()

    async def _start_actors(self):
        outbound, inbound = await connect(self.session, self.url, "secret-token")
        writer = asyncio.create_task(run_writer(outbound, self.bus.wire))
        reader = asyncio.create_task(run_reader(inbound, self.shared, self.bus, self.images.append))
        await asyncio.wait_for(self.fake.connected.wait(), 5)
        return writer, reader

    async def test_credential_first_then_fifo_messages(self):
        writer, reader = await self._start_actors()
        for text in ("one", "two", "three"):
            self.bus.send(SendChannelMessage("general", text))

        self.assertEqual(await self.fake.next_text(), "secret-token")
        contents = [json.loads(await self.fake.next_text())["content"] for _ in range(3)]
        self.assertEqual(contents, ["one", "two", "three"])

        self.bus.close()
        await asyncio.wait_for(writer, 5)
        with self.assertRaises(CommandQueueClosed):
            self.bus.send(SendChannelMessage("general", "late"))
        await self.fake.ws.close()
        await asyncio.wait_for(reader, 5)

    async def test_channel_list_selects_first_channel_and_requests_history(self):
        writer, reader = await self._start_actors()
        await self.fake.next_text()
        frame = {"ChannelList": {"channels": [{"id": "general", "name": "General"}, {"id": "dev", "name": "Dev"}]}}
        await self.fake.ws.send_str(json.dumps(frame))

        request = json.loads(await self.fake.next_text())
        self.assertEqual(request, {"channel_id": "general", "content": "/get_history general 0"})
        with self.shared.locked() as state:
            self.assertEqual(state.current_channel.id, "general")
            self.assertEqual([c.id for c in state.channels], ["general", "dev"])

        history = {"History": {"history": {"channel_id": "general", "messages": [BROADCAST], "offset": 0, "has_more": True}}}
        await self.fake.ws.send_str(json.dumps(history))

        def _loaded() -> bool:
            with self.shared.locked() as state:
                return state.history_state("general").next_offset == 50

        await _wait_for(_loaded)
        await self.fake.ws.close()
        self.assertEqual(await asyncio.wait_for(reader, 5), "")
        writer.cancel()

    async def test_ping_is_answered_through_the_queue(self):
        writer, reader = await self._start_actors()
        await self.fake.next_text()
        await self.fake.ws.ping(b"hb")

        while True:
            kind, data = await asyncio.wait_for(self.fake.received.get(), 5)
            if kind == "pong":
                break
        self.assertEqual(data, b"hb")
        await self.fake.ws.close()
        await asyncio.wait_for(reader, 5)
        writer.cancel()

    async def test_unknown_frames_are_dropped(self):
        writer, reader = await self._start_actors()
        await self.fake.next_text()
        await self.fake.ws.send_str("definitely not json")
        image = dict(BROADCAST, file_id="img1", is_image=True, timestamp=1700000100)
        await self.fake.ws.send_str(json.dumps(BROADCAST))
        await self.fake.ws.send_str(json.dumps({"Broadcast": image}))

        def _received() -> bool:
            with self.shared.locked() as state:
                return len(state.messages.get("general", ())) == 2

        await _wait_for(_received)
        self.assertEqual([m.file_id for m in self.images], ["img1"])
        self.assertFalse(reader.done())
        await self.fake.ws.close()
        await asyncio.wait_for(reader, 5)
        writer.cancel()

    async def test_download_ready_enqueues_file_command(self):
        writer, reader = await self._start_actors()
        await self.fake.next_text()
        await self.fake.ws.send_str(json.dumps({"FileDownloadReady": {"file_id": "f9", "file_name": "a.txt"}}))
        command = await asyncio.wait_for(self.bus.files.get(), 5)
        self.assertEqual(command, DownloadFile("f9", "a.txt"))
        await self.fake.ws.close()
        await asyncio.wait_for(reader, 5)
        writer.cancel()

    async def test_send_failure_closes_the_stream(self):
        outbound, inbound = await connect(self.session, self.url, "secret-token")
        reader = asyncio.create_task(run_reader(inbound, self.shared, self.bus, self.images.append))
        await asyncio.wait_for(self.fake.connected.wait(), 5)
        await self.fake.next_text()

        writer = asyncio.create_task(run_writer(outbound, self.bus.wire))
        failing = mock.AsyncMock(side_effect=ConnectionResetError("transport gone"))
        with mock.patch.object(aiohttp.ClientWebSocketResponse, "send_str", failing):
            self.bus.send(SendChannelMessage("general", "lost"))
            await asyncio.wait_for(writer, 5)
        failing.assert_awaited_once()

        reason = await asyncio.wait_for(reader, 5)
        handle_connection_lost(self.shared, reason)
        with self.shared.locked() as state:
            self.assertIs(state.next_page, Page.AUTH)
            self.assertEqual(state.notifications.notifications[-1].title, "Connection Lost")

    async def test_connect_failure_raises(self):
        with self.assertRaises(ChatConnectionError):
            await connect(self.session, str(self.server.make_url("/missing")), "token")


class CommandBusTests(unittest.IsolatedAsyncioTestCase):
    async def test_commands_sent_before_bind_are_delivered(self):
        bus = CommandBus()
        bus.send(SendChannelMessage("general", "early"))
        bus.send(Pong(b"x"))
        bus.bind(asyncio.get_running_loop())
        self.assertEqual(await asyncio.wait_for(bus.wire.get(), 1), SendChannelMessage("general", "early"))
        self.assertEqual(await asyncio.wait_for(bus.wire.get(), 1), Pong(b"x"))

    async def test_send_from_another_thread(self):
        bus = CommandBus()
        bus.bind(asyncio.get_running_loop())
        await asyncio.to_thread(bus.send, DownloadFile("f1", "a.txt"))
        self.assertEqual(await asyncio.wait_for(bus.files.get(), 1), DownloadFile("f1", "a.txt"))


def test_connection_lost_routes_to_auth():
    shared = SharedState()
    handle_connection_lost(shared, "server restart")
    with shared.locked() as state:
        assert state.next_page is Page.AUTH
        [notification] = state.notifications.notifications
        assert notification.kind is NotificationKind.ERROR
        assert "server restart" in notification.content


class SessionRuntimeTests(unittest.IsolatedAsyncioTestCase):
    async def test_runtime_sends_commands_and_reports_disconnect(self):
        fake = FakeChatServer()
        server = TestServer(fake.app())
        await server.start_server()
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        settings = Settings(
            ws_url=str(server.make_url("/ws")),
            api_url=str(server.make_url("")),
            config_dir=Path(tmp.name),
            download_dir=Path(tmp.name) / "downloads",
            chafa="chafa",
            log_level="INFO",
        )
        shared = SharedState()
        runtime = SessionRuntime(shared, settings, "runtime-token")
        runtime.start()
        try:
            self.assertEqual(await fake.next_text(), "runtime-token")
            runtime.commands.send(SendChannelMessage("general", "from ui"))
            self.assertEqual(json.loads(await fake.next_text())["content"], "from ui")

            await fake.ws.close()
            self.assertTrue(await asyncio.to_thread(runtime.finished.wait, 5))
            with shared.locked() as state:
                self.assertIs(state.next_page, Page.AUTH)
                self.assertEqual(state.notifications.notifications[-1].title, "Connection Lost")
        finally:
            runtime.stop()
            await server.close()

    async def test_runtime_reports_connect_failure(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        server = TestServer(web.Application())
        await server.start_server()
        settings = Settings(
            ws_url=str(server.make_url("/ws")),
            api_url=str(server.make_url("")),
            config_dir=Path(tmp.name),
            download_dir=Path(tmp.name),
            chafa="chafa",
            log_level="INFO",
        )
        shared = SharedState()
        runtime = SessionRuntime(shared, settings, "token")
        runtime.start()
        try:
            self.assertTrue(await asyncio.to_thread(runtime.finished.wait, 5))
            with shared.locked() as state:
                self.assertIs(state.next_page, Page.AUTH)
                self.assertEqual(state.notifications.notifications[-1].title, "Connection Error")
            with self.assertRaises(CommandQueueClosed):
                runtime.commands.send(SendChannelMessage("general", "x"))
        finally:
            runtime.stop()
            await server.close()


def test_repeated_file_broadcasts_are_all_stored():
    state = ClientState()
    payload = dict(BROADCAST, file_id="f1", file_name="report", content="report.pdf")
    for _ in range(2):
        apply_server_event(state, ChatBroadcast(Message.from_payload(payload)))
    assert [m.file_id for m in state.messages["general"]] == ["f1", "f1"]


def test_image_broadcast_requests_a_preview():
    state = ClientState()
    image = Message.from_payload(dict(BROADCAST, file_id="img", is_image=True))
    followups = apply_server_event(state, ChatBroadcast(image))
    assert [m.file_id for m in followups.images] == ["img"]
    assert followups.images[0] is state.messages["general"][0]
