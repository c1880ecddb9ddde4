"""Image to text conversion through the external ``chafa`` converter."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageSequence, UnidentifiedImageError

logger = logging.getLogger(__name__)

MAX_PREVIEW_HEIGHT = 50
DEFAULT_FRAME_DELAY_MS = 100


class ImageConversionError(Exception):
    pass


@dataclass(frozen=True)
class DecodedImage:
    width: int
    height: int
    is_animated: bool
    frames: list[tuple[bytes, float]]


def preview_size(width_px: int, height_px: int, chat_width: int, *, animated: bool = False) -> tuple[int, int]:
    """Fit an image into the chat column, in terminal cells.

    Animated previews are drawn at half height to keep the redraw cost down.
    """

    max_w = max(1, chat_width - 4)
    max_h = MAX_PREVIEW_HEIGHT
    if width_px <= 0 or height_px <= 0:
        return max_w, 1
    scale = min(max_w / width_px, max_h / height_px)
    cols = max(1, int(width_px * scale))
    rows = max(1, int(height_px * scale))
    if animated:
        rows = max(1, rows // 2)
    return cols, rows


def _frame_delay(frame: Image.Image) -> float:
    duration = frame.info.get("duration") or DEFAULT_FRAME_DELAY_MS
    # Near-zero delays fall back to the default.
    if duration <= 10:
        duration = DEFAULT_FRAME_DELAY_MS
    return duration / 1000.0


def decode_image(data: bytes) -> DecodedImage:
    """Read dimensions and, for animated images, each frame as PNG bytes."""

    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            animated = getattr(image, "is_animated", False) and getattr(image, "n_frames", 1) > 1
            frames: list[tuple[bytes, float]] = []
            if animated:
                for frame in ImageSequence.Iterator(image):
                    buffer = io.BytesIO()
                    frame.convert("RGBA").save(buffer, format="PNG")
                    frames.append((buffer.getvalue(), _frame_delay(frame)))
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ImageConversionError(f"Unsupported image data: {exc}") from exc
    return DecodedImage(width=width, height=height, is_animated=bool(animated), frames=frames)


class ChafaConverter:
    """Runs ``chafa`` with image bytes on stdin and returns its text output."""

    def __init__(self, executable: str = "chafa") -> None:
        self.executable = executable

    async def convert(self, data: bytes, size: tuple[int, int]) -> str:
        args = [self.executable, f"--size={size[0]}x{size[1]}", "-f", "symbols", "-"]
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ImageConversionError(f"Failed to run {self.executable}: {exc}") from exc
        stdout, stderr = await process.communicate(data)
        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            logger.warning("%s exited with %s: %s", self.executable, process.returncode, detail)
            raise ImageConversionError(f"{self.executable} failed: {detail or process.returncode}")
        return stdout.decode("utf-8", errors="replace")
