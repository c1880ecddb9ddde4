"""Frame drivers for animated image previews."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Sequence

from reechat.state import SharedState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnimationFrame:
    channel_id: str
    client_id: str
    index: int
    text: str


class AnimationDriver(threading.Thread):
    """Cycles through pre-rendered frames and publishes each one.

    The frame list and current index live only in this thread; consumers see
    frames through ``outbox``.
    """

    def __init__(
        self,
        channel_id: str,
        client_id: str,
        frames: Sequence[tuple[str, float]],
        outbox: "queue.Queue[AnimationFrame]",
    ) -> None:
        if not frames:
            raise ValueError("animation needs at least one frame")
        super().__init__(name=f"gif-{client_id[:8]}", daemon=True)
        self.channel_id = channel_id
        self.client_id = client_id
        self._frames = list(frames)
        self._outbox = outbox
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        index = 0
        while not self._stop_event.is_set():
            text, delay = self._frames[index]
            self._outbox.put(AnimationFrame(self.channel_id, self.client_id, index, text))
            if self._stop_event.wait(delay):
                break
            index = (index + 1) % len(self._frames)


class AnimationHub:
    """Starts drivers and hands their frames to the UI thread."""

    def __init__(self) -> None:
        self.frames: "queue.Queue[AnimationFrame]" = queue.Queue()
        self._drivers: dict[str, AnimationDriver] = {}
        self._lock = threading.Lock()

    def start(self, channel_id: str, client_id: str, frames: Sequence[tuple[str, float]]) -> AnimationDriver:
        driver = AnimationDriver(channel_id, client_id, frames, self.frames)
        with self._lock:
            previous = self._drivers.pop(client_id, None)
            self._drivers[client_id] = driver
        if previous is not None:
            previous.stop()
        driver.start()
        logger.debug("started animation %s with %d frames", client_id, len(frames))
        return driver

    def stop_all(self) -> None:
        with self._lock:
            drivers = list(self._drivers.values())
            self._drivers.clear()
        for driver in drivers:
            driver.stop()
        for driver in drivers:
            driver.join(timeout=1.0)

    def drain(self, shared: SharedState, limit: int = 256) -> int:
        """Apply queued frames under one lock acquisition; returns how many."""

        pending: list[AnimationFrame] = []
        while len(pending) < limit:
            try:
                pending.append(self.frames.get_nowait())
            except queue.Empty:
                break
        if not pending:
            return 0
        latest: dict[str, AnimationFrame] = {}
        for frame in pending:
            latest[frame.client_id] = frame
        with shared.locked() as state:
            for frame in latest.values():
                if not state.set_image_preview(frame.channel_id, frame.client_id, frame.text):
                    self._forget(frame.client_id)
        return len(pending)

    def _forget(self, client_id: str) -> None:
        with self._lock:
            driver = self._drivers.pop(client_id, None)
        if driver is not None:
            driver.stop()
