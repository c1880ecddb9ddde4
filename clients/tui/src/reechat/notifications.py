"""Transient toast notifications with timeouts and loading spinners."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from reechat.rendering import wrap_text

if TYPE_CHECKING:
    from reechat.state import SharedState

SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")
DEFAULT_TIMEOUT_S = 3.0
ENTRANCE_DURATION_S = 0.3
MAX_VISIBLE = 5
MAX_BODY_LINES = 4


class NotificationKind(enum.Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    INFO = "info"
    LOADING = "loading"

    @classmethod
    def parse(cls, value: str | None, default: NotificationKind | None = None) -> NotificationKind:
        if value:
            try:
                return cls(str(value).lower())
            except ValueError:
                pass
        return default or cls.INFO


@dataclass
class SlideIn:
    started_at: float
    duration: float = ENTRANCE_DURATION_S

    def progress(self, now: float) -> float:
        if self.duration <= 0:
            return 1.0
        return max(0.0, min(1.0, (now - self.started_at) / self.duration))


@dataclass
class Notification:
    id: int
    title: str
    content: str
    kind: NotificationKind
    timeout: float | None
    created_at: float
    spinner_frame: int = 0
    entrance: SlideIn | None = None
    has_animated_entrance: bool = False

    @property
    def spinner(self) -> str:
        return SPINNER_FRAMES[self.spinner_frame]

    def body_lines(self, box_width: int) -> list[str]:
        """Wrapped content rows for a box ``box_width`` cells wide, capped."""

        return wrap_text(self.content, max(1, box_width - 4))[:MAX_BODY_LINES]

    def height(self, box_width: int) -> int:
        return 2 + len(self.body_lines(box_width))

    def is_expired(self, now: float) -> bool:
        if self.kind is NotificationKind.LOADING or self.timeout is None:
            return False
        return now - self.created_at >= self.timeout


class NotificationManager:
    """Ordered notification list; pure logic, the caller provides locking."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._next_id = 1
        self.notifications: list[Notification] = []

    def add(
        self,
        title: str,
        content: str,
        kind: NotificationKind,
        timeout: float | None = DEFAULT_TIMEOUT_S,
    ) -> int:
        now = self._clock()
        notification = Notification(
            id=self._next_id,
            title=title,
            content=content,
            kind=kind,
            timeout=timeout,
            created_at=now,
            entrance=SlideIn(started_at=now),
        )
        self._next_id += 1
        self.notifications.append(notification)
        return notification.id

    def get(self, notification_id: int) -> Notification | None:
        for notification in self.notifications:
            if notification.id == notification_id:
                return notification
        return None

    def remove(self, notification_id: int) -> None:
        self.notifications = [n for n in self.notifications if n.id != notification_id]

    def replace(
        self,
        notification_id: int,
        title: str,
        content: str,
        kind: NotificationKind,
        timeout: float | None = DEFAULT_TIMEOUT_S,
    ) -> bool:
        """Swap the payload of an existing entry while keeping its id and slot."""

        notification = self.get(notification_id)
        if notification is None:
            return False
        notification.title = title
        notification.content = content
        notification.kind = kind
        notification.timeout = timeout
        notification.created_at = self._clock()
        notification.spinner_frame = 0
        return True

    def update_content(self, notification_id: int, content: str) -> bool:
        notification = self.get(notification_id)
        if notification is None:
            return False
        notification.content = content
        return True

    def update(self) -> None:
        """Advance spinners by one frame and purge expired entries."""

        now = self._clock()
        kept: list[Notification] = []
        for notification in self.notifications:
            if notification.kind is NotificationKind.LOADING:
                notification.spinner_frame = (notification.spinner_frame + 1) % len(SPINNER_FRAMES)
            elif notification.is_expired(now):
                continue
            if notification.entrance is not None and notification.entrance.progress(now) >= 1.0:
                notification.entrance = None
                notification.has_animated_entrance = True
            kept.append(notification)
        self.notifications = kept

    def visible(self) -> list[Notification]:
        return self.notifications[-MAX_VISIBLE:]

    def entrance_progress(self, notification: Notification) -> float:
        if notification.entrance is None:
            return 1.0
        return notification.entrance.progress(self._clock())


@dataclass
class LoadingNotification:
    """Handle returned to the task that started a long-running action."""

    shared: "SharedState"
    id: int
    finished: bool = field(default=False)

    def update_content(self, content: str) -> None:
        with self.shared.locked() as state:
            state.notifications.update_content(self.id, content)

    def replace(
        self,
        title: str,
        content: str,
        kind: NotificationKind,
        timeout: float | None = DEFAULT_TIMEOUT_S,
    ) -> None:
        with self.shared.locked() as state:
            state.notifications.replace(self.id, title, content, kind, timeout)
        self.finished = True

    def remove(self) -> None:
        with self.shared.locked() as state:
            state.notifications.remove(self.id)
        self.finished = True
