"""Download pipeline for weight files and remote API descriptors.

A weight file is fetched into ``<library>/<author>/<model>/<file>``:

1. an existing file of the expected size (or of unknown expected size) is
   reused without any request;
2. an existing file of the wrong size is deleted;
3. a file left in the legacy flat directory is moved into the new layout;
4. otherwise the file is streamed into a ``.tmp`` sibling and renamed onto
   the final name once complete.

The temporary file survives failures and cancellation; the next download of
the same file resumes it with an HTTP ``Range`` request.  There are no
retries and no timeouts here: both are caller policy.  Starting two
downloads of the same destination at once is not supported.

Usage::

    transfer = download(file, library.directory)
    async for progress in transfer:
        print(progress.downloaded, progress.total)
    path = await transfer
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Generator, Optional, Union

import httpx

from icebreaker.errors import RemoteError
from icebreaker.hub import download_url, open_client
from icebreaker.models import File, FileAndAPI, ModelOnline

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
DEFAULT_BUFFER = 64
TEMP_SUFFIX = ".tmp"


# ---------------------------------------------------------------------------
# Progress channel
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Progress:
    """Bytes transferred so far, and the total when known."""

    downloaded: int
    total: Optional[int] = None

    @property
    def percent(self) -> Optional[float]:
        if not self.total:
            return None
        return min(100.0, 100.0 * self.downloaded / self.total)


_CLOSED = object()


class ProgressChannel:
    """Single-producer/single-consumer progress stream.

    The buffer is bounded and ``send`` never blocks: when the consumer falls
    behind, the oldest pending event is dropped.  Progress events are
    cumulative, so a dropped event loses no information.

    The queue is created lazily so it binds to the loop that uses it.
    """

    def __init__(self, maxsize: int = DEFAULT_BUFFER) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._maxsize = maxsize
        self._queue: Optional[asyncio.Queue[Any]] = None
        self._closed = False
        self._drained = False
        self.dropped = 0

    def _ensure_queue(self) -> asyncio.Queue[Any]:
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._maxsize)
        return self._queue

    def _push(self, item: Any) -> None:
        queue = self._ensure_queue()
        if queue.full():
            queue.get_nowait()
            self.dropped += 1
        queue.put_nowait(item)

    def send(self, progress: Progress) -> None:
        if self._closed:
            return
        self._push(progress)

    def close(self) -> None:
        """End the stream; the consumer stops after the pending events."""
        if self._closed:
            return
        self._closed = True
        self._push(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[Progress]:
        return self

    async def __anext__(self) -> Progress:
        if self._drained:
            raise StopAsyncIteration
        item = await self._ensure_queue().get()
        if item is _CLOSED:
            self._drained = True
            raise StopAsyncIteration
        return item


# ---------------------------------------------------------------------------
# Weight files
# ---------------------------------------------------------------------------


def temp_path_for(model_path: Path) -> Path:
    return model_path.with_suffix(TEMP_SUFFIX)


def _file_size(path: Path) -> Optional[int]:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return None


def _migrate_legacy(legacy_path: Path, model_path: Path) -> bool:
    """Move a file from the legacy flat layout into the model directory."""
    if not legacy_path.is_file():
        return False
    try:
        shutil.move(str(legacy_path), str(model_path))
    except OSError as exc:
        logger.warning("could not migrate %s: %s", legacy_path, exc)
        return False
    logger.info("migrated %s to %s", legacy_path, model_path)
    return True


def _total_from_headers(resp: httpx.Response, offset: int) -> Optional[int]:
    content_range = resp.headers.get("Content-Range", "")
    if resp.status_code == 206 and "/" in content_range:
        total = content_range.rsplit("/", 1)[1].strip()
        if total.isdigit():
            return int(total)
    length = resp.headers.get("Content-Length", "")
    if length.isdigit():
        return offset + int(length)
    return None


async def _transfer(
    url: str,
    temp_path: Path,
    expected: Optional[int],
    on_progress: Callable[[Progress], None],
    client: Optional[httpx.AsyncClient],
) -> int:
    """Stream ``url`` into ``temp_path``, resuming a partial file.

    Returns the number of bytes in ``temp_path`` afterwards.
    """
    offset = _file_size(temp_path) or 0
    if expected is not None and offset > expected:
        logger.info("discarding oversized partial download %s", temp_path)
        temp_path.unlink()
        offset = 0
    headers = {"Range": f"bytes={offset}-"} if offset else {}

    async with open_client(client, timeout=None) as http:
        try:
            async with http.stream("GET", url, headers=headers) as resp:
                if resp.status_code == 416 and offset and offset == expected:
                    logger.debug("partial download %s was already complete", temp_path)
                    return offset
                if resp.status_code >= 400:
                    raise RemoteError(
                        f"{url} answered HTTP {resp.status_code}",
                        url=url,
                        status_code=resp.status_code,
                    )

                if offset and resp.status_code == 206:
                    logger.info("resuming %s at byte %d", temp_path.name, offset)
                    mode, downloaded = "ab", offset
                else:
                    mode, downloaded = "wb", 0
                total = _total_from_headers(resp, downloaded) or expected

                on_progress(Progress(downloaded, total))
                fh = await asyncio.to_thread(open, temp_path, mode)
                try:
                    async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                        await asyncio.to_thread(fh.write, chunk)
                        downloaded += len(chunk)
                        on_progress(Progress(downloaded, total))
                finally:
                    await asyncio.to_thread(fh.close)
        except httpx.HTTPError as exc:
            raise RemoteError(f"download of {url} failed: {exc}", url=url) from exc

    return downloaded


def _ignore(_progress: Progress) -> None:
    return None


async def download_file(
    file: File,
    directory: Union[str, Path],
    *,
    legacy_directory: Optional[Union[str, Path]] = None,
    on_progress: Optional[Callable[[Progress], None]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Path:
    """Make ``file`` available below ``directory`` and return its path.

    Raises
    ------
    RemoteError
        If the transfer fails or ends short of the expected size.  The
        temporary file is kept for the next attempt.
    OSError
        On filesystem failures.
    """
    on_progress = on_progress or _ignore
    model_path = Path(directory) / file.relative_path()
    await asyncio.to_thread(model_path.parent.mkdir, parents=True, exist_ok=True)

    existing = await asyncio.to_thread(_file_size, model_path)
    if existing is not None:
        if file.size is None or file.size == existing:
            logger.debug("%s already present", model_path)
            return model_path
        logger.info(
            "removing %s: %d bytes on disk, %d expected", model_path, existing, file.size
        )
        await asyncio.to_thread(model_path.unlink)

    if legacy_directory is not None:
        legacy_path = Path(legacy_directory) / file.name
        if await asyncio.to_thread(_migrate_legacy, legacy_path, model_path):
            return model_path

    url = download_url(file)
    temp_path = temp_path_for(model_path)
    logger.info("downloading %s to %s", url, model_path)
    downloaded = await _transfer(url, temp_path, file.size, on_progress, client)

    if file.size is not None and downloaded != file.size:
        raise RemoteError(
            f"download of {file.name} ended at {downloaded} of {file.size} bytes",
            url=url,
        )
    await asyncio.to_thread(os.replace, temp_path, model_path)
    logger.info("downloaded %s (%d bytes)", model_path, downloaded)
    return model_path


# ---------------------------------------------------------------------------
# Remote API descriptors
# ---------------------------------------------------------------------------


def descriptor_path(model: ModelOnline, directory: Union[str, Path]) -> Path:
    return Path(directory) / f"{model.slash_id().sanitized()}.json"


async def install_descriptor(model: ModelOnline, directory: Union[str, Path]) -> Path:
    """Write the descriptor of an API model, keeping an existing one."""
    path = descriptor_path(model, directory)

    def _write() -> None:
        if path.exists():
            logger.debug("descriptor %s already installed", path)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(model.to_dict(), indent=2) + "\n", encoding="utf-8")
        logger.info("installed %s", path)

    await asyncio.to_thread(_write)
    return path


# ---------------------------------------------------------------------------
# Download handle
# ---------------------------------------------------------------------------


class Download:
    """A running download: async-iterable for progress, awaitable for the path.

    The underlying task starts on first iteration or await.  Progress is
    delivered to a single consumer; awaiting without iterating is fine.  A
    failure is raised by ``await``; a consumer that only iterates sees the
    stream end early and the error is not reported again.
    """

    def __init__(
        self,
        job: Callable[[Callable[[Progress], None]], Awaitable[Path]],
        buffer: int = DEFAULT_BUFFER,
    ) -> None:
        self._job = job
        self._channel = ProgressChannel(buffer)
        self._task: Optional[asyncio.Task[Path]] = None
        self._cancelled = False

    def _ensure_started(self) -> asyncio.Task[Path]:
        if self._task is None:
            if self._cancelled:
                raise asyncio.CancelledError()
            self._task = asyncio.ensure_future(self._run())
            self._task.add_done_callback(_retrieve_exception)
        return self._task

    async def _run(self) -> Path:
        try:
            return await self._job(self._channel.send)
        finally:
            self._channel.close()

    def __aiter__(self) -> AsyncIterator[Progress]:
        if not self._cancelled:
            self._ensure_started()
        return self._channel

    def __await__(self) -> Generator[Any, None, Path]:
        return self._ensure_started().__await__()

    async def result(self) -> Path:
        return await self._ensure_started()

    def cancel(self) -> bool:
        """Abort the transfer; a partial ``.tmp`` file stays for resumption.

        Cancelling before the first iteration or await prevents the job
        from ever starting; awaiting the handle then raises
        ``asyncio.CancelledError``.
        """
        self._cancelled = True
        if self._task is None:
            self._channel.close()
            return False
        return self._task.cancel()

    def done(self) -> bool:
        return self._task is not None and self._task.done()


def _retrieve_exception(task: asyncio.Task[Path]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("download failed: %s", task.exception())


def download(
    choice: Union[FileAndAPI, File, ModelOnline],
    directory: Union[str, Path],
    *,
    legacy_directory: Optional[Union[str, Path]] = None,
    client: Optional[httpx.AsyncClient] = None,
    buffer: int = DEFAULT_BUFFER,
) -> Download:
    """Start acquiring what the user chose.

    A weight file is transferred; an API model gets its descriptor written
    (no progress events).
    """
    if isinstance(choice, FileAndAPI):
        if choice.api is not None:
            choice = choice.api
        elif choice.file is not None:
            choice = choice.file
        else:
            raise ValueError("FileAndAPI is empty")

    if isinstance(choice, ModelOnline):
        model = choice

        async def _install(_send: Callable[[Progress], None]) -> Path:
            return await install_descriptor(model, directory)

        return Download(_install, buffer)

    file = choice

    async def _fetch(send: Callable[[Progress], None]) -> Path:
        return await download_file(
            file,
            directory,
            legacy_directory=legacy_directory,
            on_progress=send,
            client=client,
        )

    return Download(_fetch, buffer)
