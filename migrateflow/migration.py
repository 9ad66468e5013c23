"""A single migration step read from a source and applied to a database."""

from __future__ import annotations

import io
import threading
from datetime import datetime
from typing import BinaryIO, Optional

__all__ = ["DEFAULT_BUFFER_SIZE", "Migration"]

#: In-memory buffer size in bytes for every pre-read migration.
DEFAULT_BUFFER_SIZE = 100_000


class Migration:
    """A migration from ``version`` to ``target_version``.

    ``body`` may be ``None``, which makes this a nil migration: the version is
    applied but no statements are run. ``target_version`` may be -1, meaning
    no version remains once this migration has been applied.
    """

    def __init__(
        self,
        body: Optional[BinaryIO],
        identifier: str,
        version: int,
        target_version: int,
    ) -> None:
        now = datetime.now()
        self.identifier = identifier
        self.version = version
        self.target_version = target_version
        self.body = body
        self.buffered_body: Optional[BinaryIO] = None
        self.buffer_size = 0
        self.scheduled = now
        self.started_buffering: Optional[datetime] = None
        self.finished_buffering: Optional[datetime] = None
        self.finished_reading: Optional[datetime] = None
        self.bytes_read = 0
        self._lock = threading.Lock()
        self._buffered = False

        if body is None:
            if not identifier:
                self.identifier = "<empty>"
            self.started_buffering = now
            self.finished_buffering = now
            self.finished_reading = now
            self._buffered = True
        else:
            self.buffer_size = DEFAULT_BUFFER_SIZE

    def __str__(self) -> str:
        return f"{self.identifier} [{self.version}=>{self.target_version}]"

    def __repr__(self) -> str:
        return (
            f"Migration(identifier={self.identifier!r}, version={self.version}, "
            f"target_version={self.target_version})"
        )

    def log_string(self) -> str:
        """Describe this migration for humans, e.g. ``"3/u create_users"``."""
        direction = "d" if self.target_version < self.version else "u"
        return f"{self.version}/{direction} {self.identifier}"

    def buffer(self) -> None:
        """Read the whole body into memory and close it.

        Blocks until done. Safe to call from several threads; the body is
        read only once and later calls return after the first completes.
        """
        with self._lock:
            if self._buffered or self.body is None:
                return

            self.started_buffering = datetime.now()
            size = self.buffer_size if self.buffer_size > 0 else DEFAULT_BUFFER_SIZE

            chunks = [self._to_bytes(self.body.read(size))]
            self.finished_buffering = datetime.now()

            while True:
                chunk = self._to_bytes(self.body.read(size))
                if not chunk:
                    break
                chunks.append(chunk)

            data = b"".join(chunks)
            self.finished_reading = datetime.now()
            self.bytes_read = len(data)
            self.buffered_body = io.BytesIO(data)
            self._buffered = True

            self.body.close()

    @staticmethod
    def _to_bytes(chunk) -> bytes:
        if chunk is None:
            return b""
        if isinstance(chunk, str):
            return chunk.encode("utf-8")
        return bytes(chunk)