"""Message formatting and the per-message render cache."""

from __future__ import annotations

import re
import time
from typing import Iterable, NamedTuple, Sequence

from wcwidth import wcwidth

from reechat.message_parsing import MENTION_RE, SHORTCODE_RE
from reechat.models import Message, can_group

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_HIGHLIGHT_RE = re.compile(f"{MENTION_RE.pattern}|{SHORTCODE_RE.pattern}")


class Span(NamedTuple):
    text: str
    style: str = "text"


Line = tuple[Span, ...]


def char_width(char: str) -> int:
    return max(0, wcwidth(char))


def display_width(text: str) -> int:
    return sum(char_width(char) for char in text)


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def truncate(text: str, width: int) -> str:
    used = 0
    out: list[str] = []
    for char in text:
        w = char_width(char)
        if used + w > width:
            break
        out.append(char)
        used += w
    return "".join(out)


def pad(text: str, width: int) -> str:
    clipped = truncate(text, width)
    return clipped + " " * max(0, width - display_width(clipped))


def wrap_text(text: str, width: int) -> list[str]:
    """Word-wrap ``text`` on display width; overlong words are hard-broken."""

    width = max(1, width)
    lines: list[str] = []
    for paragraph in text.split("\n"):
        current = ""
        current_w = 0
        for word in paragraph.split(" "):
            word_w = display_width(word)
            sep = 1 if current else 0
            if current_w + sep + word_w <= width:
                current = f"{current} {word}" if current else word
                current_w += sep + word_w
                continue
            if current:
                lines.append(current)
                current, current_w = "", 0
            while display_width(word) > width:
                head = truncate(word, width) or word[0]
                lines.append(head)
                word = word[len(head) :]
            current, current_w = word, display_width(word)
        lines.append(current)
    return lines or [""]


def highlight(text: str) -> list[Span]:
    spans: list[Span] = []
    cursor = 0
    for match in _HIGHLIGHT_RE.finditer(text):
        if match.start() > cursor:
            spans.append(Span(text[cursor : match.start()]))
        token = match.group(0)
        spans.append(Span(token, "mention" if token.startswith("@") else "emoji"))
        cursor = match.end()
    if cursor < len(text):
        spans.append(Span(text[cursor:]))
    return spans


def _format_time(timestamp: int) -> str:
    return time.strftime("%H:%M", time.localtime(timestamp))


def _boxed(spans: Iterable[Span], inner: int) -> Line:
    content = list(spans)
    used = sum(display_width(span.text) for span in content)
    filler = Span(" " * max(0, inner - used))
    return (Span("│ ", "border"), *content, filler, Span(" │", "border"))


def _file_lines(message: Message, inner: int) -> list[Line]:
    name = message.file_name or "file"
    if message.file_extension:
        name = f"{name}.{message.file_extension}"
    size = ""
    if message.file_size is not None:
        size = f"  {message.file_size / (1024 * 1024):.2f} MB"
    icon = message.file_icon or "📄"
    lines = [_boxed([Span(truncate(f"{icon} {name}{size}", inner), "file")], inner)]
    progress = message.download_progress
    if progress is not None and progress < 100:
        bar_w = max(1, inner - 6)
        filled = bar_w * max(0, progress) // 100
        bar = "█" * filled + "░" * (bar_w - filled)
        lines.append(_boxed([Span(f"{bar} {progress:3d}%", "file")], inner))
    if message.file_id:
        hint = f"Download with: /download {message.file_id}"
        lines.append(_boxed([Span(truncate(hint, inner), "dim")], inner))
    return lines


def _image_lines(message: Message, inner: int) -> list[Line]:
    if not message.image_preview:
        return [_boxed([Span("[loading preview]", "dim")], inner)]
    return [
        _boxed([Span(truncate(strip_ansi(row), inner), "image")], inner)
        for row in message.image_preview.splitlines()
    ]


def format_message(message: Message, width: int, first_in_group: bool, last_in_group: bool) -> tuple[Line, ...]:
    """Lay out one message as bordered lines ``width`` cells wide."""

    width = max(8, width)
    inner = width - 4
    lines: list[Line] = []
    if first_in_group:
        author = truncate(f" {message.icon} {message.user} ".replace("  ", " "), max(1, inner - 8))
        stamp = f" {_format_time(message.timestamp)} "
        rule = "─" * max(0, width - 3 - display_width(author) - display_width(stamp))
        lines.append(
            (
                Span("╭─", "border"),
                Span(author, "user"),
                Span(rule, "border"),
                Span(stamp, "timestamp"),
                Span("╮", "border"),
            )
        )
    else:
        lines.append((Span("├" + "┄" * (width - 2) + "┤", "border"),))
    if message.is_image:
        lines.extend(_image_lines(message, inner))
    if message.file_id is not None or message.file_name is not None:
        if not message.is_image:
            lines.extend(_file_lines(message, inner))
    elif message.content and not message.is_image:
        for row in wrap_text(message.content, inner):
            lines.append(_boxed(highlight(row), inner))
    if last_in_group:
        lines.append((Span("╰" + "─" * (width - 2) + "╯", "border"),))
    return tuple(lines)


def visible_window(total: int, height: int, offset: int) -> tuple[int, int, int]:
    """Return ``(start, end, offset)`` of the visible slice of ``total`` lines.

    ``offset`` counts lines scrolled up from the bottom and is clamped to
    ``[0, max(0, total - height)]``.
    """

    height = max(0, height)
    max_offset = max(0, total - height)
    offset = max(0, min(offset, max_offset))
    end = total - offset
    start = max(0, end - height)
    return start, end, offset


class RenderCache:
    """Per-message rendered lines, recomputed only for dirty or missing keys."""

    def __init__(self, width: int = 80) -> None:
        self.width = width
        self.recomputed = 0
        self._entries: dict[str, dict[str, tuple[Line, ...]]] = {}
        self._dirty: dict[str, set[str]] = {}
        self._lines: dict[str, tuple[Line, ...]] = {}
        self._order: dict[str, tuple[str, ...]] = {}

    def ensure_channel(self, channel_id: str) -> None:
        self._entries.setdefault(channel_id, {})
        self._dirty.setdefault(channel_id, set())

    def drop_channel(self, channel_id: str) -> None:
        self._entries.pop(channel_id, None)
        self._dirty.pop(channel_id, None)
        self._lines.pop(channel_id, None)
        self._order.pop(channel_id, None)

    def mark_dirty(self, channel_id: str, key: str) -> None:
        self._dirty.setdefault(channel_id, set()).add(key)

    def mark_all_dirty(self, channel_id: str, keys: Iterable[str]) -> None:
        self._dirty.setdefault(channel_id, set()).update(keys)

    def discard(self, channel_id: str, key: str) -> None:
        self._entries.get(channel_id, {}).pop(key, None)

    def is_dirty(self, channel_id: str, key: str) -> bool:
        return key in self._dirty.get(channel_id, ())

    def has_entry(self, channel_id: str, key: str) -> bool:
        return key in self._entries.get(channel_id, {})

    def set_width(self, width: int) -> bool:
        if width == self.width:
            return False
        self.width = width
        self.invalidate_all()
        return True

    def invalidate_all(self) -> None:
        for entries in self._entries.values():
            entries.clear()
        self._lines.clear()
        self._order.clear()

    def channel_lines(self, channel_id: str, messages: Sequence[Message]) -> tuple[Line, ...]:
        """Compose the channel transcript, reusing clean cached entries."""

        entries = self._entries.setdefault(channel_id, {})
        dirty = self._dirty.setdefault(channel_id, set())
        order = tuple(message.client_id for message in messages)
        cached: tuple[Line, ...] | None = self._lines.get(channel_id)
        if cached is not None and not dirty and self._order.get(channel_id) == order:
            return cached

        composed: list[Line] = []
        count = len(messages)
        for index, message in enumerate(messages):
            key = message.client_id
            entry = entries.get(key)
            if entry is None or key in dirty:
                first = index == 0 or not can_group(messages[index - 1], message)
                last = index == count - 1 or not can_group(message, messages[index + 1])
                entry = format_message(message, self.width, first, last)
                entries[key] = entry
                self.recomputed += 1
            composed.extend(entry)
        dirty.clear()
        live = set(order)
        for stale in [key for key in entries if key not in live]:
            del entries[stale]
        result = tuple(composed)
        self._lines[channel_id] = result
        self._order[channel_id] = order
        return result
