"""On-demand packing of package directories into npm-style tarballs.

The archive is produced in a worker thread and handed to the event loop
through a bounded queue, so a large package never sits in memory as a whole:

    async for chunk in pack_directory(Path("./pkg-src")):
        await send(chunk)
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import gzip
import logging
import os
import tarfile
import threading
from pathlib import Path
from typing import AsyncIterator, Iterator

logger = logging.getLogger("npm_install_proxy.backends.packing")

# npm normalizes every entry to 1985-10-26T08:15:00Z so packs are reproducible
NPM_PACK_MTIME = 499162500

PACKAGE_PREFIX = "package"
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_MAX_PENDING = 16

EXCLUDED_DIRS = frozenset({".git", ".svn", ".hg", "CVS", "node_modules"})
EXCLUDED_FILES = frozenset({".DS_Store", ".npmrc", "npm-debug.log", "package-lock.json"})

_DONE = object()


class _PackCancelled(Exception):
    pass


class _PackFailed:
    def __init__(self, error: BaseException):
        self.error = error


def _raise(error: OSError) -> None:
    raise error


def iter_package_files(root: Path) -> Iterator[Path]:
    """Yield regular files under *root* in a stable order, skipping VCS and deps."""
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
        for filename in sorted(filenames):
            if filename in EXCLUDED_FILES:
                continue
            path = Path(dirpath) / filename
            if path.is_symlink() or not path.is_file():
                continue
            yield path


def _normalize(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.mtime = NPM_PACK_MTIME
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    info.mode = 0o755 if info.mode & 0o111 else 0o644
    return info


class _QueueWriter:
    """File-like sink that forwards fixed-size chunks to an asyncio queue."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue,
        cancelled: threading.Event,
        chunk_size: int,
    ):
        self._loop = loop
        self._queue = queue
        self._cancelled = cancelled
        self._chunk_size = chunk_size
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        self._buffer.extend(data)
        while len(self._buffer) >= self._chunk_size:
            chunk = bytes(self._buffer[: self._chunk_size])
            del self._buffer[: self._chunk_size]
            self.put(chunk)
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> None:
        if self._buffer:
            chunk = bytes(self._buffer)
            self._buffer.clear()
            self.put(chunk)

    def put(self, item: object) -> None:
        if self._cancelled.is_set():
            raise _PackCancelled()
        future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
        while True:
            try:
                future.result(timeout=0.1)
                return
            except concurrent.futures.TimeoutError:
                if self._cancelled.is_set():
                    future.cancel()
                    raise _PackCancelled()


def _write_archive(root: Path, writer: _QueueWriter) -> None:
    if not root.is_dir():
        raise FileNotFoundError(f"Package directory not found: {root}")
    with gzip.GzipFile(fileobj=writer, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w|", format=tarfile.PAX_FORMAT) as tar:
            for path in iter_package_files(root):
                arcname = f"{PACKAGE_PREFIX}/{path.relative_to(root).as_posix()}"
                tar.add(path, arcname=arcname, recursive=False, filter=_normalize)
    writer.drain()


async def pack_directory(
    root: Path,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_pending: int = DEFAULT_MAX_PENDING,
) -> AsyncIterator[bytes]:
    """Stream a gzip tarball of *root* laid out the way ``npm pack`` does.

    Raises ``OSError`` (or ``tarfile.TarError``) from the iterator if the
    directory cannot be read while packing.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
    cancelled = threading.Event()
    writer = _QueueWriter(loop, queue, cancelled, chunk_size)

    def produce() -> None:
        try:
            _write_archive(root, writer)
            writer.put(_DONE)
        except _PackCancelled:
            logger.debug("Packing %s cancelled by consumer", root)
        except Exception as e:
            try:
                writer.put(_PackFailed(e))
            except _PackCancelled:
                pass

    producer = loop.run_in_executor(None, produce)
    try:
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            if isinstance(item, _PackFailed):
                raise item.error
            yield item
        await producer
    finally:
        cancelled.set()
        while not queue.empty():
            queue.get_nowait()
