"""Concurrent draining of one child-process output stream."""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Callable

from .progress import extract_progress

__all__ = ["StreamPump"]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024


class StreamPump:
    """Drain one stream (stdout or stderr) until EOF.

    Every chunk read is decoded, handed to ``on_chunk`` unchanged and then
    scanned for a percentage which, when present, goes to ``on_progress``.
    Nothing is buffered once forwarded, so chunks may be partial lines.
    Only an incomplete multi-byte character is carried over to the next read.

    A failing read (broken pipe, process killed mid-read) ends the pump the
    same way EOF does.

    Example:
        pump = StreamPump("stdout", process.stdout, print, on_progress=bar.update)
        task = asyncio.create_task(pump.run())
    """

    def __init__(
        self,
        name: str,
        stream: asyncio.StreamReader | None,
        on_chunk: Callable[[str], None],
        on_progress: Callable[[int], None] | None = None,
        *,
        encoding: str = "utf-8",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.name = name
        self._stream = stream
        self._on_chunk = on_chunk
        self._on_progress = on_progress
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._chunk_size = chunk_size
        self.chunks_read = 0
        self.bytes_read = 0

    async def run(self) -> None:
        """Read until EOF or until the stream becomes unreadable."""
        if self._stream is None:
            return

        while True:
            try:
                data = await self._read()
            except Exception as e:
                logger.debug(f"[{self.name}] read failed, stopping pump: {e!r}")
                break

            if not data:
                break

            self.chunks_read += 1
            self.bytes_read += len(data)
            self._forward(self._decoder.decode(data))

        self._forward(self._decoder.decode(b"", final=True))
        logger.debug(
            f"[{self.name}] pump finished: chunks={self.chunks_read} bytes={self.bytes_read}"
        )

    async def _read(self) -> bytes:
        """Read the next chunk; an empty result means EOF."""
        if self._stream is None:
            return b""
        return await self._stream.read(self._chunk_size)

    def _forward(self, text: str) -> None:
        if not text:
            return

        try:
            self._on_chunk(text)
        except Exception as e:
            logger.warning(f"[{self.name}] error in chunk callback: {e}")

        if self._on_progress is None:
            return
        percent = extract_progress(text)
        if percent is not None:
            try:
                self._on_progress(percent)
            except Exception as e:
                logger.warning(f"[{self.name}] error in progress callback: {e}")
