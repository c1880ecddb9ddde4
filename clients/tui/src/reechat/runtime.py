"""Background thread hosting the session's asyncio actors."""

from __future__ import annotations

import asyncio
import logging
import threading

import aiohttp

from reechat.animation import AnimationHub
from reechat.config import Settings
from reechat.connection import (
    ChatConnectionError,
    CommandBus,
    connect,
    handle_connection_lost,
    run_reader,
    run_writer,
)
from reechat.file_api import FileApi
from reechat.images import ChafaConverter
from reechat.models import Page
from reechat.notifications import NotificationKind
from reechat.state import SharedState
from reechat.transfers import TransferWorkers

logger = logging.getLogger(__name__)


class SessionRuntime:
    """One connected session: reader, writer, file and progress actors.

    ``start`` returns immediately; the UI thread talks to the session only
    through :attr:`commands` and the shared state.
    """

    def __init__(
        self,
        shared: SharedState,
        settings: Settings,
        credential: str,
        *,
        animations: AnimationHub | None = None,
        converter: ChafaConverter | None = None,
    ) -> None:
        self.shared = shared
        self.settings = settings
        self.credential = credential
        self.commands = CommandBus()
        self.animations = animations or AnimationHub()
        self.converter = converter or ChafaConverter(settings.chafa)
        self.connected = threading.Event()
        self.finished = threading.Event()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._outbound_close = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._runner, name="chat-session", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 3.0) -> None:
        self._stopping.set()
        self.commands.close()
        loop = self._loop
        if loop is not None and not loop.is_closed() and self._outbound_close is not None:
            try:
                asyncio.run_coroutine_threadsafe(self._outbound_close(), loop)
            except RuntimeError:
                logger.debug("session loop already stopped")
        if self._thread is not None:
            self._thread.join(timeout)
        self.animations.stop_all()

    def _runner(self) -> None:
        try:
            asyncio.run(self.run())
        finally:
            self.finished.set()

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.commands.bind(self._loop)
        async with aiohttp.ClientSession() as http:
            try:
                outbound, inbound = await connect(http, self.settings.ws_url, self.credential)
            except ChatConnectionError as exc:
                logger.error("%s", exc)
                self.commands.close()
                with self.shared.locked() as state:
                    state.notify("Connection Error", str(exc), NotificationKind.ERROR)
                    state.next_page = Page.AUTH
                return
            self._outbound_close = outbound.close
            self.connected.set()

            workers = TransferWorkers(
                self.shared,
                FileApi(http, self.settings.api_url),
                self.settings.download_dir,
                self.converter,
                self.animations,
            )
            actors = [
                asyncio.create_task(run_writer(outbound, self.commands.wire), name="writer"),
                asyncio.create_task(workers.run_commands(self.commands.files), name="file-commands"),
                asyncio.create_task(workers.run_progress(), name="progress"),
            ]
            try:
                reason = await run_reader(inbound, self.shared, self.commands, workers.spawn_image)
            finally:
                self.commands.close()
                await workers.shutdown()
                for actor in actors:
                    actor.cancel()
                await asyncio.gather(*actors, return_exceptions=True)
                await outbound.close()
            if not self._stopping.is_set():
                handle_connection_lost(self.shared, reason)
