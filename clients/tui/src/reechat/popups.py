"""Popup variants shown over the chat page.

Each popup is its own dataclass carrying only the data it needs; ``Popup`` is
the union the chat page stores and dispatches on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

SETTINGS_ENTRIES = ("Help", "Downloads", "Log out")
CHANNEL_ICONS = ("#", "💬", "🎮", "🎵", "📚", "💻", "🎨")


@dataclass(frozen=True)
class NoPopup:
    pass


@dataclass(frozen=True)
class QuitPopup:
    pass


@dataclass(frozen=True)
class DeconnectionPopup:
    pass


@dataclass(frozen=True)
class HelpPopup:
    pass


@dataclass
class SettingsPopup:
    selected: int = 0


@dataclass
class CreateChannelPopup:
    name: str = ""
    icon_index: int = 0
    field: int = 0

    @property
    def icon(self) -> str:
        return CHANNEL_ICONS[self.icon_index % len(CHANNEL_ICONS)]


@dataclass
class MentionsPopup:
    query: str = ""
    selected: int = 0


@dataclass
class EmojisPopup:
    query: str = ""
    selected: int = 0


@dataclass
class FileManagerPopup:
    directory: Path
    entries: list[Path] = field(default_factory=list)
    selected: int = 0
    # Number of leading entries that are directories.
    directories: int = 0

    def set_entries(self, directories: list[Path], files: list[Path]) -> None:
        self.entries = directories + files
        self.directories = len(directories)
        self.selected = min(self.selected, max(0, len(self.entries) - 1))

    def is_directory(self, index: int) -> bool:
        return index < self.directories


def list_directory(directory: Path) -> tuple[list[Path], list[Path]]:
    """Return visible ``(directories, files)`` of ``directory``, sorted by name."""

    directories: list[Path] = []
    files: list[Path] = []
    try:
        children = sorted(directory.iterdir(), key=lambda p: p.name.lower())
    except OSError:
        return directories, files
    for child in children:
        if child.name.startswith("."):
            continue
        (directories if child.is_dir() else files).append(child)
    return directories, files


@dataclass
class DownloadsPopup:
    selected: int = 0


@dataclass
class DownloadProgressPopup:
    transfer_id: str
    label: str
    progress: int = 0


Popup = (
    NoPopup
    | QuitPopup
    | DeconnectionPopup
    | HelpPopup
    | SettingsPopup
    | CreateChannelPopup
    | MentionsPopup
    | EmojisPopup
    | FileManagerPopup
    | DownloadsPopup
    | DownloadProgressPopup
)

NO_POPUP = NoPopup()


def popup_title(popup: Popup) -> str:
    if isinstance(popup, NoPopup):
        return ""
    if isinstance(popup, QuitPopup):
        return "Quit"
    if isinstance(popup, DeconnectionPopup):
        return "Log out"
    if isinstance(popup, HelpPopup):
        return "Help"
    if isinstance(popup, SettingsPopup):
        return "Settings"
    if isinstance(popup, CreateChannelPopup):
        return "Create channel"
    if isinstance(popup, MentionsPopup):
        return "Mention"
    if isinstance(popup, EmojisPopup):
        return "Emoji"
    if isinstance(popup, FileManagerPopup):
        return f"Upload from {popup.directory}"
    if isinstance(popup, DownloadsPopup):
        return "Downloads"
    if isinstance(popup, DownloadProgressPopup):
        return "Transfer"
    raise TypeError(f"unhandled popup {popup!r}")
