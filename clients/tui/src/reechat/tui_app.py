"""Curses front end: authentication page and chat page."""

from __future__ import annotations

import asyncio
import curses
import logging
import queue
import threading
from dataclasses import dataclass, field

import aiohttp

from reechat import auth_api
from reechat.animation import AnimationHub
from reechat.auth_api import AuthError, AuthResult
from reechat.auth_form import MODE_REGISTER, AuthForm
from reechat.chat_model import ACTION_LOGOUT, ACTION_QUIT, ChatModel, popup_lines
from reechat.config import ClientConfig, Settings, configure_logging, load_config, load_settings, save_config
from reechat.models import Page, Pane
from reechat.notifications import SPINNER_FRAMES, NotificationKind
from reechat.popups import NoPopup, popup_title
from reechat.rendering import Line, display_width, pad, truncate
from reechat.runtime import SessionRuntime
from reechat.state import ClientState, SharedState

logger = logging.getLogger(__name__)

INPUT_POLL_MS = 50
CHANNEL_PANE_PERCENT = 20
NOTIFICATION_WIDTH = 40
AUTH_TIMEOUT_S = 15.0

_CTRL_KEYS = {
    "\x03": "CTRL_C",
    "\x04": "CTRL_D",
    "\x0e": "CTRL_N",
    "\x11": "CTRL_Q",
    "\x12": "CTRL_R",
    "\x13": "CTRL_S",
    "\x15": "CTRL_U",
}

_STYLE_COLORS = {
    "user": (curses.COLOR_CYAN, curses.A_BOLD),
    "timestamp": (curses.COLOR_YELLOW, 0),
    "border": (curses.COLOR_BLUE, 0),
    "mention": (curses.COLOR_MAGENTA, curses.A_BOLD),
    "emoji": (curses.COLOR_YELLOW, 0),
    "file": (curses.COLOR_GREEN, 0),
    "image": (-1, 0),
    "dim": (-1, curses.A_DIM),
    "success": (curses.COLOR_GREEN, curses.A_BOLD),
    "warning": (curses.COLOR_YELLOW, curses.A_BOLD),
    "error": (curses.COLOR_RED, curses.A_BOLD),
    "info": (curses.COLOR_CYAN, curses.A_BOLD),
    "loading": (curses.COLOR_BLUE, curses.A_BOLD),
}
_style_attrs: dict[str, int] = {}


def _normalize_key(key: int | str) -> tuple[str, str | None]:
    if isinstance(key, str):
        if key in ("\n", "\r"):
            return "ENTER", None
        if key == "\t":
            return "TAB", None
        if key == "\x1b":
            return "ESC", None
        if key in ("\x7f", "\x08"):
            return "BACKSPACE", None
        if key in _CTRL_KEYS:
            return _CTRL_KEYS[key], None
        if key.isprintable():
            return "CHAR", key
        return "UNKNOWN", None
    if key == curses.KEY_BTAB:
        return "SHIFT_TAB", None
    if key == curses.KEY_UP:
        return "UP", None
    if key == curses.KEY_DOWN:
        return "DOWN", None
    if key == curses.KEY_LEFT:
        return "LEFT", None
    if key == curses.KEY_RIGHT:
        return "RIGHT", None
    if key == curses.KEY_PPAGE:
        return "PAGE_UP", None
    if key == curses.KEY_NPAGE:
        return "PAGE_DOWN", None
    if key == curses.KEY_ENTER:
        return "ENTER", None
    if key == curses.KEY_BACKSPACE:
        return "BACKSPACE", None
    # Forward-delete is not exposed as KEY_DC by every curses build.
    if key in (getattr(curses, "KEY_DC", 330), 330):
        return "DELETE", None
    if key == curses.KEY_F1:
        return "F1", None
    if key == curses.KEY_RESIZE:
        return "RESIZE", None
    return "UNKNOWN", None


def _read_key(stdscr: curses.window) -> tuple[str | None, str | None]:
    try:
        raw = stdscr.get_wch()
    except curses.error:
        return None, None
    return _normalize_key(raw)


def _init_default_colors(stdscr: curses.window) -> None:
    """Use the terminal's own palette and build one color pair per style."""

    _style_attrs.clear()
    if not curses.has_colors():
        return
    try:
        curses.start_color()
        curses.use_default_colors()
    except curses.error:
        return
    try:
        stdscr.bkgd(" ", curses.color_pair(0))
    except curses.error:
        pass
    for pair, (style, (color, extra)) in enumerate(_STYLE_COLORS.items(), start=1):
        try:
            curses.init_pair(pair, color, -1)
        except curses.error:
            continue
        _style_attrs[style] = curses.color_pair(pair) | extra


def _attr(style: str) -> int:
    return _style_attrs.get(style, curses.A_DIM if style == "dim" else 0)


def _render_text(window: curses.window, y: int, x: int, text: str, attr: int = 0) -> None:
    max_y, max_x = window.getmaxyx()
    if 0 <= y < max_y and 0 <= x < max_x - 1:
        try:
            window.addstr(y, x, truncate(text, max_x - x - 1), attr)
        except curses.error:
            # Wide glyphs can still overflow the last cell.
            pass


def _render_spans(window: curses.window, y: int, x: int, spans: Line, width: int) -> None:
    used = 0
    for span in spans:
        if used >= width:
            break
        text = truncate(span.text, width - used)
        _render_text(window, y, x + used, text, _attr(span.style))
        used += display_width(text)


def _box(window: curses.window, top: int, left: int, height: int, width: int, title: str = "", attr: int = 0) -> None:
    if height < 2 or width < 2:
        return
    _render_text(window, top, left, "╭" + "─" * (width - 2) + "╮", attr)
    for row in range(top + 1, top + height - 1):
        _render_text(window, row, left, "│" + " " * (width - 2) + "│", attr)
    _render_text(window, top + height - 1, left, "╰" + "─" * (width - 2) + "╯", attr)
    if title:
        _render_text(window, top, left + 2, f" {truncate(title, width - 6)} ", attr | curses.A_BOLD)


# Chat page.


@dataclass
class NotificationView:
    title: str
    body: list[str]
    height: int
    kind: NotificationKind
    spinner: str
    slide: float


@dataclass
class ChatView:
    channels: list[tuple[str, bool]]
    channel_title: str
    lines: tuple[Line, ...]
    focus: Pane
    username: str
    input_text: str
    scroll_offset: int
    popup_title: str
    popup_rows: list[tuple[str, bool]]
    notifications: list[NotificationView] = field(default_factory=list)


def _chat_geometry(width: int, height: int) -> tuple[int, int, int]:
    left = max(16, width * CHANNEL_PANE_PERCENT // 100)
    messages_width = max(10, width - left - 2)
    messages_height = max(1, height - 4)
    return left, messages_width, messages_height


def build_chat_view(state: ClientState, model: ChatModel, width: int, height: int) -> ChatView:
    """Snapshot everything the draw needs; the caller holds the state lock."""

    _, messages_width, messages_height = _chat_geometry(width, height)
    lines = state.visible_lines(messages_width, messages_height)
    current_id = state.current_channel.id if state.current_channel else None
    channels = [(f"{c.icon} {c.name}".strip(), c.id == current_id) for c in state.channels]
    title = ""
    if state.current_channel is not None:
        title = f"{state.current_channel.icon} {state.current_channel.name}".strip()
    box_w = _notification_width(width)
    notifications = [
        NotificationView(
            title=n.title,
            body=n.body_lines(box_w),
            height=n.height(box_w),
            kind=n.kind,
            spinner=SPINNER_FRAMES[n.spinner_frame],
            slide=state.notifications.entrance_progress(n),
        )
        for n in state.notifications.visible()
    ]
    popup = state.popup
    return ChatView(
        channels=channels,
        channel_title=title,
        lines=lines,
        focus=state.focused_pane,
        username=f"{state.user_icon or ''} {state.username or ''}".strip(),
        input_text=model.input_text,
        scroll_offset=state.scroll_offset,
        popup_title="" if isinstance(popup, NoPopup) else popup_title(popup),
        popup_rows=popup_lines(state, popup),
        notifications=notifications,
    )


def _notification_width(width: int) -> int:
    return min(NOTIFICATION_WIDTH, max(20, width // 3))


def _draw_notifications(stdscr: curses.window, view: ChatView, width: int) -> None:
    box_w = _notification_width(width)
    top = 0
    for note in reversed(view.notifications):
        box_h = note.height
        # Slide in from the right edge.
        left = width - box_w - 1 + int((1.0 - note.slide) * box_w)
        attr = _attr(note.kind.value)
        title = f"{note.spinner} {note.title}" if note.kind is NotificationKind.LOADING else note.title
        _box(stdscr, top, left, box_h, box_w, title, attr)
        for row, text in enumerate(note.body, start=1):
            _render_text(stdscr, top + row, left + 2, text)
        top += box_h


def _draw_popup(stdscr: curses.window, view: ChatView, width: int, height: int) -> None:
    rows = view.popup_rows
    box_w = min(width - 4, max(30, max((display_width(text) for text, _ in rows), default=0) + 6))
    box_h = min(height - 2, len(rows) + 2)
    top = max(0, (height - box_h) // 2)
    left = max(0, (width - box_w) // 2)
    _box(stdscr, top, left, box_h, box_w, view.popup_title, _attr("border"))
    for index, (text, selected) in enumerate(rows[: box_h - 2]):
        attr = curses.A_REVERSE if selected else 0
        _render_text(stdscr, top + 1 + index, left + 2, pad(text, box_w - 4), attr)


def draw_chat(stdscr: curses.window, view: ChatView) -> None:
    stdscr.erase()
    height, width = stdscr.getmaxyx()
    left, messages_width, messages_height = _chat_geometry(width, height)

    channel_attr = curses.A_BOLD if view.focus is Pane.CHANNELS else 0
    _render_text(stdscr, 0, 1, "Channels", channel_attr)
    for row, (label, current) in enumerate(view.channels[: max(0, height - 4)], start=1):
        marker = "›" if current else " "
        attr = curses.A_REVERSE if current and view.focus is Pane.CHANNELS else (curses.A_BOLD if current else 0)
        _render_text(stdscr, row, 0, pad(f"{marker} {label}", left - 1), attr)
    _render_text(stdscr, height - 1, 1, truncate(view.username, left - 2), _attr("user"))
    for row in range(height):
        _render_text(stdscr, row, left, "│", _attr("border"))

    x = left + 1
    title = view.channel_title or "No channel selected"
    if view.scroll_offset:
        title += f"  (↑{view.scroll_offset})"
    messages_attr = curses.A_BOLD if view.focus is Pane.MESSAGES else 0
    _render_text(stdscr, 0, x, title, messages_attr)
    top = 1 + max(0, messages_height - len(view.lines))
    for index, line in enumerate(view.lines):
        _render_spans(stdscr, top + index, x, line, messages_width)

    _render_text(stdscr, height - 3, x, "─" * (messages_width - 1), _attr("border"))
    prompt = "› "
    visible = view.input_text
    room = messages_width - len(prompt) - 2
    while display_width(visible) > room:
        visible = visible[1:]
    input_attr = curses.A_BOLD if view.focus is Pane.INPUT else 0
    _render_text(stdscr, height - 2, x, prompt + visible, input_attr)
    _render_text(stdscr, height - 1, x, "F1 help · Ctrl-S settings · Ctrl-Q quit", _attr("dim"))

    _draw_notifications(stdscr, view, width)
    if view.popup_title:
        _draw_popup(stdscr, view, width, height)
    stdscr.refresh()


def run_chat_page(stdscr: curses.window, settings: Settings, config: ClientConfig, animations: AnimationHub) -> Page:
    shared = SharedState()
    with shared.locked() as state:
        state.set_user_auth(config.token or "", config.username or "", config.user_icon)
    runtime = SessionRuntime(shared, settings, config.token or "", animations=animations)
    model = ChatModel(shared, runtime.commands, browse_dir=settings.download_dir.parent)
    runtime.start()
    try:
        while True:
            animations.drain(shared)
            height, width = stdscr.getmaxyx()
            with shared.locked() as state:
                state.notifications.update()
                if state.next_page is not None:
                    return state.next_page
                view = build_chat_view(state, model, width, height)
            draw_chat(stdscr, view)
            key, char = _read_key(stdscr)
            if key is None or key in ("UNKNOWN", "RESIZE"):
                continue
            if key == "CTRL_C":
                key = "CTRL_Q"
            action = model.handle_key(key, char)
            if action == ACTION_QUIT:
                return Page.EXIT
            if action == ACTION_LOGOUT:
                config.token = None
                save_config(config, settings.config_path)
                return Page.AUTH
    finally:
        runtime.stop()
        animations.stop_all()


# Auth page.


def _start_auth_request(
    settings: Settings,
    form: AuthForm,
    results: "queue.Queue[AuthResult | AuthError]",
    *,
    timeout: float = AUTH_TIMEOUT_S,
) -> threading.Thread:
    username, password, icon, mode = form.username, form.password, form.icon, form.mode

    async def _request() -> AuthResult:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            if mode == MODE_REGISTER:
                return await auth_api.register(session, settings.api_url, username, password, icon)
            return await auth_api.login(session, settings.api_url, username, password)

    def _runner() -> None:
        try:
            results.put(asyncio.run(_request()))
        except AuthError as exc:
            results.put(exc)

    thread = threading.Thread(target=_runner, name="auth-request", daemon=True)
    thread.start()
    return thread


def draw_auth(stdscr: curses.window, form: AuthForm) -> None:
    stdscr.erase()
    height, width = stdscr.getmaxyx()
    box_w = min(width - 2, 50)
    box_h = 10
    top = max(0, (height - box_h) // 2)
    left = max(0, (width - box_w) // 2)
    title = "Register" if form.mode == MODE_REGISTER else "Log in"
    _box(stdscr, top, left, box_h, box_w, f"reechat · {title}", _attr("border"))
    rows = [("Username", form.username), ("Password", "•" * len(form.password))]
    if form.mode == MODE_REGISTER:
        rows.append(("Icon", f"< {form.icon} >"))
    for index, (label, value) in enumerate(rows):
        attr = curses.A_REVERSE if index == form.field else 0
        _render_text(stdscr, top + 2 + index, left + 2, f"{label:<9}")
        _render_text(stdscr, top + 2 + index, left + 12, pad(value, box_w - 15), attr)
    status_style = "dim" if form.busy else "error"
    _render_text(stdscr, top + box_h - 3, left + 2, form.status, _attr(status_style))
    _render_text(stdscr, top + box_h - 2, left + 2, "Enter submit · Tab next · Ctrl-R switch mode · Esc quit", _attr("dim"))
    stdscr.refresh()


def run_auth_page(stdscr: curses.window, settings: Settings, config: ClientConfig, status: str = "") -> AuthResult | None:
    form = AuthForm(username=config.username or "", status=status)
    if form.username:
        form.field = 1
    results: "queue.Queue[AuthResult | AuthError]" = queue.Queue()
    while True:
        try:
            outcome = results.get_nowait()
        except queue.Empty:
            outcome = None
        if isinstance(outcome, AuthResult):
            return outcome
        if isinstance(outcome, AuthError):
            logger.info("authentication failed: %s", outcome)
            form.fail(str(outcome))
        draw_auth(stdscr, form)
        key, char = _read_key(stdscr)
        if key is None:
            continue
        action = form.handle_key(key, char)
        if action == "quit":
            return None
        if action == "submit":
            _start_auth_request(settings, form, results)


def main() -> int:
    settings = load_settings()
    configure_logging(settings)
    config = load_config(settings.config_path)
    animations = AnimationHub()
    logger.info("starting reechat against %s", settings.ws_url)

    def _runner(stdscr: curses.window) -> None:
        curses.raw()
        try:
            curses.curs_set(0)
        except curses.error:
            pass
        _init_default_colors(stdscr)
        stdscr.keypad(True)
        stdscr.timeout(INPUT_POLL_MS)
        page = Page.CHAT if config.token else Page.AUTH
        status = ""
        while page is not Page.EXIT:
            if page is Page.AUTH:
                result = run_auth_page(stdscr, settings, config, status)
                if result is None:
                    return
                config.token = result.token
                config.username = result.username
                config.user_icon = result.icon
                save_config(config, settings.config_path)
                page = Page.CHAT
                continue
            page = run_chat_page(stdscr, settings, config, animations)
            status = "Disconnected. Log in to reconnect." if page is Page.AUTH and config.token else ""

    curses.wrapper(_runner)
    save_config(config, settings.config_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
