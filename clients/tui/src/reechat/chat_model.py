"""Key handling for the chat page, kept free of curses so it can be tested."""

from __future__ import annotations

import logging
from pathlib import Path

from reechat.connection import CommandBus, CommandQueueClosed
from reechat.message_parsing import (
    complete_fragment,
    current_fragment,
    emoji_candidates,
    mention_candidates,
    parse_input_command,
    replace_shortcodes_with_emojis,
    should_show_emoji_popup,
    should_show_mention_popup,
)
from reechat.models import Message, Pane
from reechat.notifications import NotificationKind
from reechat.popups import (
    NO_POPUP,
    SETTINGS_ENTRIES,
    CHANNEL_ICONS,
    CreateChannelPopup,
    DeconnectionPopup,
    DownloadProgressPopup,
    DownloadsPopup,
    EmojisPopup,
    FileManagerPopup,
    HelpPopup,
    MentionsPopup,
    NoPopup,
    Popup,
    QuitPopup,
    SettingsPopup,
    list_directory,
)
from reechat.protocol import (
    Command,
    DownloadFile,
    SendChannelMessage,
    ShowLocalImage,
    UploadFile,
    active_users_request,
    history_request,
    propose_channel,
)
from reechat.state import ClientState, SharedState

logger = logging.getLogger(__name__)

ACTION_QUIT = "quit"
ACTION_LOGOUT = "logout"
PANE_ORDER = (Pane.CHANNELS, Pane.MESSAGES, Pane.INPUT)


def mention_options(state: ClientState, popup: MentionsPopup) -> list[str]:
    return mention_candidates(popup.query, state.active_users)


def emoji_options(popup: EmojisPopup) -> list[tuple[str, str]]:
    return emoji_candidates(popup.query)


def download_options(state: ClientState) -> list[Message]:
    return [m for m in state.current_messages() if m.file_id is not None]


def file_label(message: Message) -> str:
    name = message.file_name or message.file_id or "file"
    if message.file_extension and not name.endswith(f".{message.file_extension}"):
        name = f"{name}.{message.file_extension}"
    return name


def _move(selected: int, delta: int, count: int) -> int:
    if count <= 0:
        return 0
    return max(0, min(count - 1, selected + delta))


class ChatModel:
    """Compose line plus the key dispatch for the chat page.

    Every key is handled under one acquisition of the state lock; commands are
    handed to the bus only after the lock is released.
    """

    def __init__(self, shared: SharedState, commands: CommandBus, *, browse_dir: Path | None = None) -> None:
        self.shared = shared
        self.commands = commands
        self.input_text = ""
        self.browse_dir = browse_dir or Path.cwd()
        self._outgoing: list[Command] = []
        self._pending_listing: Path | None = None

    def handle_key(self, key: str, char: str | None = None) -> str | None:
        """Handle a normalized key; returns ``"quit"``, ``"logout"`` or None."""

        with self.shared.locked() as state:
            action = self._dispatch(state, key, char)
        outgoing, self._outgoing = self._outgoing, []
        self._deliver(outgoing)
        if self._pending_listing is not None:
            self._load_listing(self._pending_listing)
        return action

    def _deliver(self, outgoing: list[Command]) -> None:
        for command in outgoing:
            try:
                self.commands.send(command)
            except CommandQueueClosed as exc:
                logger.warning("dropping %s: %s", type(command).__name__, exc)
                self.shared.notify("Message Send Error", f"Failed to send: {exc}", NotificationKind.ERROR)
                return

    def _load_listing(self, directory: Path) -> None:
        self._pending_listing = None
        directories, files = list_directory(directory)
        with self.shared.locked() as state:
            popup = state.popup
            if isinstance(popup, FileManagerPopup) and popup.directory == directory:
                popup.set_entries(directories, files)

    def _open_directory(self, state: ClientState, directory: Path) -> None:
        state.popup = FileManagerPopup(directory=directory)
        self._pending_listing = directory

    # Dispatch.

    def _dispatch(self, state: ClientState, key: str, char: str | None) -> str | None:
        popup = state.popup
        if isinstance(popup, NoPopup):
            return self._handle_chat(state, key, char)
        if isinstance(popup, DownloadProgressPopup):
            if key == "ESC":
                state.popup = NO_POPUP
                return None
            return self._handle_chat(state, key, char)
        if isinstance(popup, QuitPopup):
            if key == "ENTER" or (key == "CHAR" and char in ("y", "Y")):
                return ACTION_QUIT
            if key == "ESC" or (key == "CHAR" and char in ("n", "N")):
                state.popup = NO_POPUP
            return None
        if isinstance(popup, DeconnectionPopup):
            if key == "ENTER" or (key == "CHAR" and char in ("y", "Y")):
                state.popup = NO_POPUP
                state.clear_user_auth()
                return ACTION_LOGOUT
            if key == "ESC" or (key == "CHAR" and char in ("n", "N")):
                state.popup = NO_POPUP
            return None
        if isinstance(popup, HelpPopup):
            if key in ("ESC", "ENTER", "F1"):
                state.popup = NO_POPUP
            return None
        if isinstance(popup, SettingsPopup):
            return self._handle_settings(state, popup, key)
        if isinstance(popup, CreateChannelPopup):
            return self._handle_create_channel(state, popup, key, char)
        if isinstance(popup, MentionsPopup):
            return self._handle_mentions(state, popup, key, char)
        if isinstance(popup, EmojisPopup):
            return self._handle_emojis(state, popup, key, char)
        if isinstance(popup, FileManagerPopup):
            return self._handle_file_manager(state, popup, key)
        if isinstance(popup, DownloadsPopup):
            return self._handle_downloads(state, popup, key)
        raise TypeError(f"unhandled popup {popup!r}")

    def _handle_chat(self, state: ClientState, key: str, char: str | None) -> str | None:
        if key == "CTRL_Q":
            state.popup = QuitPopup()
        elif key == "ESC":
            if self.input_text:
                self.input_text = ""
            else:
                state.popup = QuitPopup()
        elif key == "CTRL_S":
            state.popup = SettingsPopup()
        elif key == "CTRL_N":
            state.popup = CreateChannelPopup()
        elif key == "CTRL_U":
            self._open_directory(state, self.browse_dir)
        elif key == "CTRL_D":
            state.popup = DownloadsPopup()
        elif key == "F1":
            state.popup = HelpPopup()
        elif key == "TAB":
            index = PANE_ORDER.index(state.focused_pane)
            state.focused_pane = PANE_ORDER[(index + 1) % len(PANE_ORDER)]
        elif key == "SHIFT_TAB":
            index = PANE_ORDER.index(state.focused_pane)
            state.focused_pane = PANE_ORDER[(index - 1) % len(PANE_ORDER)]
        elif key == "PAGE_UP":
            state.page_up()
            self._maybe_request_history(state)
        elif key == "PAGE_DOWN":
            state.page_down()
        elif key in ("UP", "DOWN"):
            delta = -1 if key == "UP" else 1
            if state.focused_pane is Pane.CHANNELS:
                self._select_channel(state, delta)
            elif delta < 0:
                state.scroll_up(1)
                self._maybe_request_history(state)
            else:
                state.scroll_down(1)
        elif key == "ENTER":
            if state.focused_pane is Pane.CHANNELS:
                state.focused_pane = Pane.INPUT
            else:
                self._submit(state)
        elif key == "BACKSPACE":
            self.input_text = self.input_text[:-1]
            self._refresh_completion(state)
        elif key == "DELETE":
            self.input_text = ""
        elif key == "CHAR" and char:
            state.focused_pane = Pane.INPUT
            self.input_text += char
            self._refresh_completion(state)
        return None

    def _select_channel(self, state: ClientState, delta: int) -> None:
        if not state.channels:
            return
        index = -1
        if state.current_channel is not None:
            for position, channel in enumerate(state.channels):
                if channel.id == state.current_channel.id:
                    index = position
                    break
        index = _move(index, delta, len(state.channels)) if index >= 0 else 0
        channel = state.channels[index]
        if state.current_channel is not None and state.current_channel.id == channel.id:
            return
        state.set_current_channel(channel)
        if not state.messages.get(channel.id):
            self._request_history(state, channel.id)

    def _maybe_request_history(self, state: ClientState) -> None:
        if state.current_channel is not None and state.at_top():
            self._request_history(state, state.current_channel.id)

    def _request_history(self, state: ClientState, channel_id: str) -> None:
        offset = state.begin_history_request(channel_id)
        if offset is not None:
            self._outgoing.append(history_request(channel_id, offset))

    def _refresh_completion(self, state: ClientState) -> None:
        if should_show_mention_popup(self.input_text):
            query = current_fragment(self.input_text)
            if not isinstance(state.popup, MentionsPopup):
                self._outgoing.append(active_users_request())
                state.popup = MentionsPopup(query=query)
            else:
                state.popup.query = query
                state.popup.selected = 0
        elif should_show_emoji_popup(self.input_text):
            query = current_fragment(self.input_text)
            if isinstance(state.popup, EmojisPopup):
                state.popup.query = query
                state.popup.selected = 0
            else:
                state.popup = EmojisPopup(query=query)
        elif isinstance(state.popup, (MentionsPopup, EmojisPopup)):
            state.popup = NO_POPUP

    def _submit(self, state: ClientState) -> None:
        text = self.input_text.strip()
        if not text:
            return
        channel = state.current_channel
        command = parse_input_command(text)
        if command is not None:
            if not command.argument:
                state.notify("Missing Argument", f"Usage: /{command.name} <argument>", NotificationKind.WARNING)
                return
            if command.name == "show":
                self._outgoing.append(ShowLocalImage(Path(command.argument).expanduser()))
                self.input_text = ""
                return
            if channel is None:
                state.notify("No Channel", "Select a channel first.", NotificationKind.ERROR)
                return
            if command.name == "upload":
                self._outgoing.append(UploadFile(channel.id, Path(command.argument).expanduser()))
            else:
                message = state.find_file_message(command.argument, channel.id)
                if message is None:
                    state.notify(
                        "File Not Found",
                        f"File with ID '{command.argument}' not found in this channel.",
                        NotificationKind.ERROR,
                    )
                    return
                self._outgoing.append(DownloadFile(command.argument, file_label(message)))
            self.input_text = ""
            return
        if channel is None:
            state.notify("Message Send Error", "Select a channel first.", NotificationKind.ERROR)
            return
        self._outgoing.append(SendChannelMessage(channel.id, replace_shortcodes_with_emojis(text)))
        self.input_text = ""

    # Popups.

    def _handle_settings(self, state: ClientState, popup: SettingsPopup, key: str) -> str | None:
        if key in ("UP", "DOWN"):
            popup.selected = _move(popup.selected, -1 if key == "UP" else 1, len(SETTINGS_ENTRIES))
        elif key == "ENTER":
            entry = SETTINGS_ENTRIES[popup.selected]
            if entry == "Help":
                state.popup = HelpPopup()
            elif entry == "Downloads":
                state.popup = DownloadsPopup()
            else:
                state.popup = DeconnectionPopup()
        elif key == "ESC":
            state.popup = NO_POPUP
        return None

    def _handle_create_channel(
        self, state: ClientState, popup: CreateChannelPopup, key: str, char: str | None
    ) -> str | None:
        if key == "ESC":
            state.popup = NO_POPUP
        elif key in ("TAB", "SHIFT_TAB", "UP", "DOWN"):
            popup.field = 1 - popup.field
        elif key in ("LEFT", "RIGHT") or (popup.field == 1 and key == "CHAR"):
            step = -1 if key == "LEFT" else 1
            popup.icon_index = (popup.icon_index + step) % len(CHANNEL_ICONS)
        elif key == "BACKSPACE" and popup.field == 0:
            popup.name = popup.name[:-1]
        elif key == "CHAR" and char and popup.field == 0:
            popup.name += char
        elif key == "ENTER":
            name = popup.name.strip()
            if not name:
                state.notify("Create Channel", "Channel name cannot be empty.", NotificationKind.WARNING)
                return None
            self._outgoing.append(propose_channel(name, popup.icon))
            state.notify("Channel Proposed", f"Asked the server to create '{name}'.", NotificationKind.INFO)
            state.popup = NO_POPUP
        return None

    def _handle_mentions(
        self, state: ClientState, popup: MentionsPopup, key: str, char: str | None
    ) -> str | None:
        options = mention_options(state, popup)
        if key in ("UP", "DOWN"):
            popup.selected = _move(popup.selected, -1 if key == "UP" else 1, len(options))
        elif key in ("ENTER", "TAB") and options:
            self.input_text = complete_fragment(self.input_text, f"@{options[popup.selected]}")
            state.popup = NO_POPUP
        elif key == "ESC":
            state.popup = NO_POPUP
        else:
            return self._handle_chat(state, key, char)
        return None

    def _handle_emojis(
        self, state: ClientState, popup: EmojisPopup, key: str, char: str | None
    ) -> str | None:
        options = emoji_options(popup)
        if key in ("UP", "DOWN"):
            popup.selected = _move(popup.selected, -1 if key == "UP" else 1, len(options))
        elif key in ("ENTER", "TAB") and options:
            self.input_text = complete_fragment(self.input_text, options[popup.selected][1])
            state.popup = NO_POPUP
        elif key == "ESC":
            state.popup = NO_POPUP
        else:
            return self._handle_chat(state, key, char)
        return None

    def _handle_file_manager(self, state: ClientState, popup: FileManagerPopup, key: str) -> str | None:
        if key in ("UP", "DOWN"):
            popup.selected = _move(popup.selected, -1 if key == "UP" else 1, len(popup.entries))
        elif key == "BACKSPACE":
            self._open_directory(state, popup.directory.parent)
        elif key == "ENTER" and popup.entries:
            entry = popup.entries[popup.selected]
            if popup.is_directory(popup.selected):
                self._open_directory(state, entry)
                return None
            if state.current_channel is None:
                state.notify("No Channel", "Select a channel first.", NotificationKind.ERROR)
                return None
            self.browse_dir = popup.directory
            self._outgoing.append(UploadFile(state.current_channel.id, entry))
            state.popup = NO_POPUP
        elif key == "ESC":
            state.popup = NO_POPUP
        return None

    def _handle_downloads(self, state: ClientState, popup: DownloadsPopup, key: str) -> str | None:
        options = download_options(state)
        if key in ("UP", "DOWN"):
            popup.selected = _move(popup.selected, -1 if key == "UP" else 1, len(options))
        elif key == "ENTER" and options:
            message = options[min(popup.selected, len(options) - 1)]
            self._outgoing.append(DownloadFile(message.file_id, file_label(message)))
            state.popup = NO_POPUP
        elif key == "ESC":
            state.popup = NO_POPUP
        return None


def popup_lines(state: ClientState, popup: Popup) -> list[tuple[str, bool]]:
    """Body rows for ``popup`` as ``(text, highlighted)`` pairs."""

    if isinstance(popup, NoPopup):
        return []
    if isinstance(popup, QuitPopup):
        return [("Quit reechat? (y/n)", False)]
    if isinstance(popup, DeconnectionPopup):
        return [("Log out and forget the saved token? (y/n)", False)]
    if isinstance(popup, HelpPopup):
        return [
            ("Tab / Shift-Tab  move focus", False),
            ("Up / Down        switch channel or scroll", False),
            ("PgUp / PgDn      scroll, loads older history", False),
            ("Ctrl-N           propose a channel", False),
            ("Ctrl-U           upload a file", False),
            ("Ctrl-D           downloads", False),
            ("Ctrl-S           settings", False),
            ("Ctrl-Q           quit", False),
            ("/upload <path>   /download <id>   /show <path>", False),
        ]
    if isinstance(popup, SettingsPopup):
        return [(entry, index == popup.selected) for index, entry in enumerate(SETTINGS_ENTRIES)]
    if isinstance(popup, CreateChannelPopup):
        return [
            (f"Name: {popup.name}", popup.field == 0),
            (f"Icon: < {popup.icon} >", popup.field == 1),
        ]
    if isinstance(popup, MentionsPopup):
        options = mention_options(state, popup)
        if not options:
            return [("No matching users", False)]
        return [(f"@{name}", index == popup.selected) for index, name in enumerate(options)]
    if isinstance(popup, EmojisPopup):
        options = emoji_options(popup)
        if not options:
            return [("No matching emoji", False)]
        return [(f"{char} {code}", index == popup.selected) for index, (code, char) in enumerate(options)]
    if isinstance(popup, FileManagerPopup):
        if not popup.entries:
            return [("(empty)", False)]
        return [
            (f"{entry.name}/" if popup.is_directory(index) else entry.name, index == popup.selected)
            for index, entry in enumerate(popup.entries)
        ]
    if isinstance(popup, DownloadsPopup):
        options = download_options(state)
        if not options:
            return [("No files in this channel", False)]
        return [(file_label(m), index == popup.selected) for index, m in enumerate(options)]
    if isinstance(popup, DownloadProgressPopup):
        width = 30
        filled = width * popup.progress // 100
        return [(popup.label, False), ("█" * filled + "░" * (width - filled) + f" {popup.progress}%", False)]
    raise TypeError(f"unhandled popup {popup!r}")
