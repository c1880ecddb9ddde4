"""Client-side session state and the lock that guards it."""

from __future__ import annotations

import contextlib
import dataclasses
import threading
from collections import deque
from typing import Callable, Iterator

from reechat.models import (
    HISTORY_PAGE_SIZE,
    Channel,
    ChannelHistoryState,
    Message,
    Page,
    Pane,
    PendingTransfer,
    can_group,
)
from reechat.notifications import DEFAULT_TIMEOUT_S, LoadingNotification, NotificationKind, NotificationManager
from reechat.popups import NO_POPUP, DownloadProgressPopup, NoPopup, Popup
from reechat.rendering import Line, RenderCache, visible_window


class ClientState:
    """Everything the session actors share.

    Methods assume the caller holds the :class:`SharedState` lock; none of them
    block or perform I/O.
    """

    def __init__(self, *, width: int = 80, clock: Callable[[], float] | None = None) -> None:
        self.auth_token: str | None = None
        self.username: str | None = None
        self.user_icon: str | None = None
        self.channels: list[Channel] = []
        self.current_channel: Channel | None = None
        self.messages: dict[str, deque[Message]] = {}
        self.history: dict[str, ChannelHistoryState] = {}
        self.render_cache = RenderCache(width)
        self.notifications = NotificationManager(clock) if clock else NotificationManager()
        self.popup: Popup = NO_POPUP
        self.focused_pane = Pane.INPUT
        self.scroll_offset = 0
        self.last_view_height = 0
        self.total_lines = 0
        self.active_users: list[str] = []
        self.transfers: dict[str, PendingTransfer] = {}
        self.next_page: Page | None = None

    # Channels.

    def _ensure_buckets(self, channel_id: str) -> None:
        self.messages.setdefault(channel_id, deque())
        self.history.setdefault(channel_id, ChannelHistoryState())
        self.render_cache.ensure_channel(channel_id)

    def set_channels(self, channels: list[Channel]) -> None:
        self.channels = list(channels)
        for channel in self.channels:
            self._ensure_buckets(channel.id)
        if self.current_channel is not None:
            refreshed = self.find_channel(self.current_channel.id)
            if refreshed is None:
                self.current_channel = None
            else:
                self.current_channel = refreshed

    def find_channel(self, channel_id: str) -> Channel | None:
        for channel in self.channels:
            if channel.id == channel_id:
                return channel
        return None

    def add_or_update_channel(self, channel: Channel) -> None:
        existing = self.find_channel(channel.id)
        if existing is None:
            self.channels.append(channel)
            self._ensure_buckets(channel.id)
            return
        existing.name = channel.name
        existing.icon = channel.icon

    def remove_channel(self, channel_id: str) -> None:
        self.channels = [c for c in self.channels if c.id != channel_id]
        self.messages.pop(channel_id, None)
        self.history.pop(channel_id, None)
        self.render_cache.drop_channel(channel_id)
        if self.current_channel is not None and self.current_channel.id == channel_id:
            self.current_channel = None
            self.scroll_offset = 0

    def set_current_channel(self, channel: Channel) -> None:
        self._ensure_buckets(channel.id)
        self.current_channel = channel
        self.scroll_offset = 0
        self.render_cache.mark_all_dirty(channel.id, (m.client_id for m in self.messages[channel.id]))

    def current_messages(self) -> deque[Message]:
        if self.current_channel is None:
            return deque()
        return self.messages.get(self.current_channel.id, deque())

    # Messages.

    def add_message(self, message: Message) -> None:
        """Append a live message and mark what must be re-rendered."""

        channel_id = message.channel_id
        self._ensure_buckets(channel_id)
        bucket = self.messages[channel_id]
        if bucket and can_group(bucket[-1], message):
            self.render_cache.mark_dirty(channel_id, bucket[-1].client_id)
        bucket.append(message)
        self.render_cache.discard(channel_id, message.client_id)
        self.render_cache.mark_dirty(channel_id, message.client_id)
        self.scroll_offset = 0

    def prepend_history(self, channel_id: str, page: list[Message]) -> None:
        """Insert one page of older messages ahead of everything stored.

        An empty page means the server has nothing older; ``has_more`` stays
        False from then on.
        """

        self._ensure_buckets(channel_id)
        cursor = self.history[channel_id]
        cursor.loading = False
        if not page:
            cursor.has_more = False
            return
        bucket = self.messages[channel_id]
        ordered = sorted(page, key=lambda m: m.timestamp)
        for message in reversed(ordered):
            bucket.appendleft(message)
            self.render_cache.discard(channel_id, message.client_id)
        cursor.next_offset += HISTORY_PAGE_SIZE
        self.render_cache.mark_all_dirty(channel_id, (m.client_id for m in bucket))

    def update_message(self, updated: Message) -> None:
        """Replace the first stored message that matches ``updated``.

        The replacement keeps the stored message's cache key so its entry is
        rebuilt in place. An update with no match is dropped.
        """

        channel_id = updated.channel_id
        bucket = self.messages.get(channel_id)
        if bucket is None:
            return
        for index, existing in enumerate(bucket):
            if existing.matches(updated):
                bucket[index] = dataclasses.replace(updated, client_id=existing.client_id)
                self._mark_with_neighbours(channel_id, index)
                return
        self.render_cache.mark_dirty(channel_id, updated.client_id)

    def _mark_with_neighbours(self, channel_id: str, index: int) -> None:
        # Grouping with either neighbour may have changed.
        bucket = self.messages[channel_id]
        for position in (index - 1, index, index + 1):
            if 0 <= position < len(bucket):
                self.render_cache.mark_dirty(channel_id, bucket[position].client_id)

    def find_message(self, channel_id: str, client_id: str) -> Message | None:
        for message in self.messages.get(channel_id, ()):
            if message.client_id == client_id:
                return message
        return None

    def find_file_message(self, file_id: str, channel_id: str | None = None) -> Message | None:
        buckets = [self.messages.get(channel_id, deque())] if channel_id else list(self.messages.values())
        for bucket in buckets:
            for message in bucket:
                if message.file_id == file_id:
                    return message
        return None

    def set_image_preview(self, channel_id: str, client_id: str, text: str) -> bool:
        message = self.find_message(channel_id, client_id)
        if message is None:
            return False
        message.image_preview = text
        self.render_cache.mark_dirty(channel_id, client_id)
        return True

    def fail_image(self, channel_id: str, client_id: str, error: str) -> None:
        bucket = self.messages.get(channel_id, ())
        for index, message in enumerate(bucket):
            if message.client_id == client_id:
                message.is_image = False
                message.image_preview = None
                message.content = f"[Error loading image: {error}]"
                self._mark_with_neighbours(channel_id, index)
                return

    # History cursor.

    def history_state(self, channel_id: str) -> ChannelHistoryState:
        self._ensure_buckets(channel_id)
        return self.history[channel_id]

    def begin_history_request(self, channel_id: str) -> int | None:
        """Return the offset to request, or None when nothing should be sent."""

        cursor = self.history_state(channel_id)
        if not cursor.has_more or cursor.loading:
            return None
        cursor.loading = True
        return cursor.next_offset

    # Viewport.

    def visible_lines(self, width: int, height: int) -> tuple[Line, ...]:
        self.render_cache.set_width(width)
        self.last_view_height = height
        if self.current_channel is None:
            self.total_lines = 0
            return ()
        lines = self.render_cache.channel_lines(self.current_channel.id, list(self.current_messages()))
        self.total_lines = len(lines)
        start, end, self.scroll_offset = visible_window(len(lines), height, self.scroll_offset)
        return lines[start:end]

    def max_scroll(self) -> int:
        return max(0, self.total_lines - self.last_view_height)

    def scroll_up(self, amount: int = 1) -> None:
        self.scroll_offset = min(self.scroll_offset + amount, self.max_scroll())

    def scroll_down(self, amount: int = 1) -> None:
        self.scroll_offset = max(0, self.scroll_offset - amount)

    def page_up(self) -> None:
        self.scroll_up(max(1, self.last_view_height))

    def page_down(self) -> None:
        self.scroll_down(max(1, self.last_view_height))

    def at_top(self) -> bool:
        return self.scroll_offset >= self.max_scroll()

    # Notifications.

    def notify(
        self,
        title: str,
        content: str,
        kind: NotificationKind,
        timeout: float | None = DEFAULT_TIMEOUT_S,
    ) -> int:
        return self.notifications.add(title, content, kind, timeout)

    # Transfers.

    def begin_transfer(self, transfer: PendingTransfer) -> None:
        self.transfers[transfer.id] = transfer

    def apply_transfer_progress(self, transfer_id: str, file_id: str | None, progress: int) -> None:
        progress = max(0, min(100, progress))
        transfer = self.transfers.get(transfer_id)
        if transfer is not None:
            transfer.progress = progress
        if file_id:
            for channel_id, bucket in self.messages.items():
                for message in bucket:
                    if message.file_id == file_id:
                        message.download_progress = progress
                        self.render_cache.mark_dirty(channel_id, message.client_id)
        if progress >= 100:
            self.transfers.pop(transfer_id, None)
            self._hide_progress_popup(transfer_id)
            return
        # Late updates for finished or failed transfers must not reopen the popup.
        if transfer is None:
            return
        if isinstance(self.popup, (NoPopup, DownloadProgressPopup)):
            self.popup = DownloadProgressPopup(transfer_id=transfer_id, label=transfer.ref, progress=progress)

    def fail_transfer(self, transfer_id: str) -> None:
        self.transfers.pop(transfer_id, None)
        self._hide_progress_popup(transfer_id)

    def _hide_progress_popup(self, transfer_id: str) -> None:
        if isinstance(self.popup, DownloadProgressPopup) and self.popup.transfer_id == transfer_id:
            self.popup = NO_POPUP

    # Session.

    def set_user_auth(self, token: str, username: str, icon: str | None) -> None:
        self.auth_token = token
        self.username = username
        self.user_icon = icon

    def clear_user_auth(self) -> None:
        self.auth_token = None
        self.username = None
        self.user_icon = None


class SharedState:
    """Owner of the single lock around :class:`ClientState`."""

    def __init__(self, state: ClientState | None = None) -> None:
        self._state = state if state is not None else ClientState()
        self._lock = threading.Lock()

    @contextlib.contextmanager
    def locked(self) -> Iterator[ClientState]:
        with self._lock:
            yield self._state

    def start_loading(self, title: str, content: str) -> LoadingNotification:
        with self.locked() as state:
            notification_id = state.notifications.add(title, content, NotificationKind.LOADING, None)
        return LoadingNotification(self, notification_id)

    def notify(
        self,
        title: str,
        content: str,
        kind: NotificationKind,
        timeout: float | None = DEFAULT_TIMEOUT_S,
    ) -> int:
        with self.locked() as state:
            return state.notify(title, content, kind, timeout)
