"""HTTP file endpoints used for uploads, downloads and image previews."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Callable

import aiohttp

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int], None]


class FileApiError(Exception):
    pass


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _auth_headers(token: str | None) -> dict[str, str]:
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, done * 100 // total)


class FileApi:
    def __init__(self, session: aiohttp.ClientSession, base_url: str) -> None:
        self._session = session
        self.base_url = base_url

    async def upload(
        self,
        token: str | None,
        channel_id: str,
        path: Path,
        report: ProgressCallback,
    ) -> str:
        """Upload ``path`` into ``channel_id`` and return the new file id."""

        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise FileApiError(f"Cannot read {path}: {exc.strerror or exc}") from exc
        total = len(data)

        async def _chunks() -> AsyncIterator[bytes]:
            sent = 0
            for start in range(0, total, CHUNK_SIZE):
                chunk = data[start : start + CHUNK_SIZE]
                sent += len(chunk)
                # The final 100 is reported once the server has answered.
                report(min(99, _percent(sent, total)))
                yield chunk

        form = aiohttp.FormData()
        form.add_field("file", _chunks(), filename=path.name, content_type="application/octet-stream")
        form.add_field("file_extension", path.suffix.lstrip("."))
        url = _build_url(self.base_url, f"/files/upload/{channel_id}")
        report(0)
        try:
            async with self._session.post(url, data=form, headers=_auth_headers(token)) as response:
                body = await response.text()
                if response.status >= 400:
                    raise FileApiError(f"Upload rejected with HTTP {response.status}: {body.strip()}")
        except aiohttp.ClientError as exc:
            raise FileApiError(f"Upload failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise FileApiError("Upload timed out") from exc
        file_id = body.strip()
        if not file_id:
            raise FileApiError("Upload response did not contain a file id")
        report(100)
        logger.info("uploaded %s (%d bytes) as %s", path.name, total, file_id)
        return file_id

    async def download(
        self,
        token: str | None,
        file_id: str,
        file_name: str,
        dest_dir: Path,
        report: ProgressCallback,
    ) -> Path:
        """Stream ``file_id`` into ``dest_dir`` and return the written path."""

        target = dest_dir / (Path(file_name).name or file_id)
        url = _build_url(self.base_url, f"/files/download/{file_id}")
        report(0)
        try:
            async with self._session.get(url, headers=_auth_headers(token)) as response:
                if response.status >= 400:
                    raise FileApiError(f"Download rejected with HTTP {response.status}")
                total = response.content_length or 0
                dest_dir.mkdir(parents=True, exist_ok=True)
                received = 0
                with open(target, "wb") as handle:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        handle.write(chunk)
                        received += len(chunk)
                        if total:
                            report(min(99, _percent(received, total)))
        except aiohttp.ClientError as exc:
            raise FileApiError(f"Download failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise FileApiError("Download timed out") from exc
        except OSError as exc:
            raise FileApiError(f"Cannot write {target}: {exc.strerror or exc}") from exc
        report(100)
        logger.info("downloaded %s (%d bytes) to %s", file_id, received, target)
        return target

    async def fetch_bytes(self, token: str | None, file_id: str) -> bytes:
        url = _build_url(self.base_url, f"/files/download/{file_id}")
        try:
            async with self._session.get(url, headers=_auth_headers(token)) as response:
                if response.status >= 400:
                    raise FileApiError(f"Fetch rejected with HTTP {response.status}")
                return await response.read()
        except aiohttp.ClientError as exc:
            raise FileApiError(f"Fetch failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise FileApiError("Fetch timed out") from exc
