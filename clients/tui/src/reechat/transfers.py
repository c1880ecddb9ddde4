"""File-command actor, transfer progress actor and image preview tasks."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from reechat.animation import AnimationHub
from reechat.file_api import FileApi, FileApiError, ProgressCallback
from reechat.images import ChafaConverter, ImageConversionError, decode_image, preview_size
from reechat.models import Message, PendingTransfer
from reechat.notifications import NotificationKind
from reechat.protocol import Command, DownloadFile, ShowLocalImage, UploadFile
from reechat.state import SharedState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferProgress:
    transfer_id: str
    file_id: str | None
    progress: int


class TransferWorkers:
    """Spawns one task per transfer; progress flows back through a queue."""

    def __init__(
        self,
        shared: SharedState,
        file_api: FileApi,
        download_dir: Path,
        converter: ChafaConverter,
        animations: AnimationHub,
    ) -> None:
        self.shared = shared
        self.file_api = file_api
        self.download_dir = download_dir
        self.converter = converter
        self.animations = animations
        self.progress: "asyncio.Queue[TransferProgress | None]" = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _reporter(self, transfer_id: str, file_id: str | None) -> ProgressCallback:
        def _report(progress: int) -> None:
            self.progress.put_nowait(TransferProgress(transfer_id, file_id, progress))

        return _report

    async def run_commands(self, commands: "asyncio.Queue[Command | None]") -> None:
        while True:
            command = await commands.get()
            if command is None:
                return
            if isinstance(command, UploadFile):
                self._spawn(self.upload(command), f"upload-{command.path.name}")
            elif isinstance(command, DownloadFile):
                self._spawn(self.download(command), f"download-{command.file_id}")
            elif isinstance(command, ShowLocalImage):
                self._spawn(self.show_local_image(command), f"show-{command.path.name}")
            else:
                logger.error("file actor received %r", command)

    async def run_progress(self) -> None:
        while True:
            update = await self.progress.get()
            if update is None:
                return
            with self.shared.locked() as state:
                state.apply_transfer_progress(update.transfer_id, update.file_id, update.progress)

    def spawn_image(self, message: Message) -> None:
        self._spawn(self.load_remote_preview(message), f"preview-{message.client_id[:8]}")

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.progress.put_nowait(None)

    async def upload(self, command: UploadFile) -> None:
        transfer_id = uuid.uuid4().hex
        with self.shared.locked() as state:
            token = state.auth_token
            state.begin_transfer(PendingTransfer(transfer_id, "upload", command.path.name))
        loading = self.shared.start_loading("Uploading", f"Uploading {command.path.name}...")
        reporter = self._reporter(transfer_id, None)

        def _report(progress: int) -> None:
            reporter(progress)
            loading.update_content(f"Uploading {command.path.name}... {progress}%")

        error: str | None = "upload was interrupted"
        try:
            await self.file_api.upload(token, command.channel_id, command.path, _report)
            error = None
        except FileApiError as exc:
            logger.warning("upload of %s failed: %s", command.path, exc)
            error = str(exc)
        finally:
            # The loading notification has no timeout and must always be replaced.
            if error is None:
                loading.replace("File Upload Success", "File uploaded successfully!", NotificationKind.SUCCESS)
            else:
                with self.shared.locked() as state:
                    state.fail_transfer(transfer_id)
                loading.replace("File Upload Error", f"Failed to upload file: {error}", NotificationKind.ERROR)

    async def download(self, command: DownloadFile) -> None:
        transfer_id = uuid.uuid4().hex
        with self.shared.locked() as state:
            token = state.auth_token
            state.begin_transfer(PendingTransfer(transfer_id, "download", command.file_name))
        error: str | None = "download was interrupted"
        try:
            await self.file_api.download(
                token,
                command.file_id,
                command.file_name,
                self.download_dir,
                self._reporter(transfer_id, command.file_id),
            )
            error = None
        except FileApiError as exc:
            logger.warning("download of %s failed: %s", command.file_id, exc)
            error = str(exc)
        finally:
            if error is None:
                self.shared.notify(
                    "File Download Success",
                    f"File '{command.file_name}' downloaded successfully!",
                    NotificationKind.SUCCESS,
                )
            else:
                with self.shared.locked() as state:
                    state.fail_transfer(transfer_id)
                    state.notify("File Download Error", f"Failed to download file: {error}", NotificationKind.ERROR)

    async def load_remote_preview(self, message: Message) -> None:
        with self.shared.locked() as state:
            token = state.auth_token
        try:
            if message.file_id is None:
                raise ImageConversionError("image message has no file id")
            data = await self.file_api.fetch_bytes(token, message.file_id)
            await self._render_preview(message, data)
        except (FileApiError, ImageConversionError) as exc:
            logger.warning("preview for %s failed: %s", message.file_id, exc)
            with self.shared.locked() as state:
                state.fail_image(message.channel_id, message.client_id, str(exc))

    async def show_local_image(self, command: ShowLocalImage) -> None:
        try:
            data = await asyncio.to_thread(command.path.read_bytes)
        except OSError as exc:
            self.shared.notify("Image Error", f"Cannot read {command.path}: {exc.strerror or exc}", NotificationKind.ERROR)
            return
        with self.shared.locked() as state:
            channel = state.current_channel
            if channel is None:
                state.notify("Image Error", "Select a channel first.", NotificationKind.ERROR)
                return
            message = Message(
                channel_id=channel.id,
                user=state.username or "you",
                icon=state.user_icon or "",
                content=command.path.name,
                timestamp=int(time.time()),
                message_type="image",
                is_image=True,
            )
            state.add_message(message)
        try:
            await self._render_preview(message, data)
        except ImageConversionError as exc:
            logger.warning("local preview for %s failed: %s", command.path, exc)
            with self.shared.locked() as state:
                state.fail_image(message.channel_id, message.client_id, str(exc))

    async def _render_preview(self, message: Message, data: bytes) -> None:
        decoded = await asyncio.to_thread(decode_image, data)
        with self.shared.locked() as state:
            chat_width = state.render_cache.width
        size = preview_size(decoded.width, decoded.height, chat_width, animated=decoded.is_animated)
        if not decoded.is_animated:
            preview = await self.converter.convert(data, size)
            with self.shared.locked() as state:
                state.set_image_preview(message.channel_id, message.client_id, preview)
            return
        frames = []
        for frame_bytes, delay in decoded.frames:
            frames.append((await self.converter.convert(frame_bytes, size), delay))
        with self.shared.locked() as state:
            stored = state.set_image_preview(message.channel_id, message.client_id, frames[0][0])
        if stored:
            self.animations.start(message.channel_id, message.client_id, frames)
