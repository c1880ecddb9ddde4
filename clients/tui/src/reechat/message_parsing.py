"""Helpers for the compose line: shortcodes, mention/emoji triggers, commands."""

from __future__ import annotations

import re
from dataclasses import dataclass

import emoji

MENTION_RE = re.compile(r"@[a-zA-Z0-9_]+")
SHORTCODE_RE = re.compile(r":[a-zA-Z0-9_+\-]+:")
_MENTION_FRAGMENT_RE = re.compile(r"@[a-zA-Z0-9_]*")
_EMOJI_FRAGMENT_RE = re.compile(r":[a-zA-Z0-9_+\-]*")

INPUT_COMMANDS = ("upload", "download", "show")

_shortcode_index: list[tuple[str, str]] | None = None


@dataclass(frozen=True)
class InputCommand:
    name: str
    argument: str


def replace_shortcodes_with_emojis(text: str) -> str:
    return emoji.emojize(text, language="alias")


def _last_word(text: str) -> str | None:
    if not text or text[-1].isspace():
        return None
    return text.split()[-1]


def should_show_emoji_popup(text: str) -> bool:
    word = _last_word(text)
    return word is not None and _EMOJI_FRAGMENT_RE.fullmatch(word) is not None


def should_show_mention_popup(text: str) -> bool:
    word = _last_word(text)
    return word is not None and _MENTION_FRAGMENT_RE.fullmatch(word) is not None


def current_fragment(text: str) -> str:
    """Return the partial name typed after the trailing ``@`` or ``:``."""

    word = _last_word(text)
    if not word:
        return ""
    return word[1:]


def complete_fragment(text: str, replacement: str) -> str:
    word = _last_word(text)
    if word is None:
        return text + replacement + " "
    return text[: len(text) - len(word)] + replacement + " "


def _build_shortcode_index() -> list[tuple[str, str]]:
    entries = {}
    for char, data in emoji.EMOJI_DATA.items():
        names = list(data.get("alias", []))
        if data.get("en"):
            names.append(data["en"])
        for name in names:
            entries.setdefault(name, char)
    return sorted(entries.items())


def emoji_candidates(query: str, limit: int = 8) -> list[tuple[str, str]]:
    global _shortcode_index
    if _shortcode_index is None:
        _shortcode_index = _build_shortcode_index()
    needle = f":{query.lower()}"
    prefixed = [entry for entry in _shortcode_index if entry[0].lower().startswith(needle)]
    return prefixed[:limit]


def mention_candidates(query: str, users: list[str], limit: int = 8) -> list[str]:
    lowered = query.lower()
    return [user for user in users if user.lower().startswith(lowered)][:limit]


def parse_input_command(text: str) -> InputCommand | None:
    """Recognise the local ``/upload``, ``/download`` and ``/show`` commands."""

    stripped = text.strip()
    if not stripped.startswith("/"):
        return None
    name, _, argument = stripped[1:].partition(" ")
    if name not in INPUT_COMMANDS:
        return None
    return InputCommand(name, argument.strip())
