"""
Persisted set of forwarded message identifiers, one file per forwarding rule.

The backing file is opened once, locked exclusively for the lifetime of the
store, and fully rewritten (truncate, write, flush, fsync) on every recorded
batch. A crash mid-write can leave a short or malformed file; opening such a
file yields an empty set, which means the account's backlog is forwarded again.
"""

from __future__ import annotations
import fcntl
import json
import os
from pathlib import Path
from typing import IO, Iterable, Optional, Set

from mail_relay.errors import StoreLockedError
from mail_relay.logging import logger


class ForwardedIdStore:
    """
    Deduplication record for one account.

    Use ``ForwardedIdStore.open(path)`` rather than the constructor; the store
    owns the file handle it is given and releases it in ``close()``.
    """

    def __init__(self, handle: IO[bytes], path: Path, ids: Set[str]) -> None:
        self._handle: Optional[IO[bytes]] = handle
        self.path = path
        self._ids = ids

    @classmethod
    def open(cls, path: str | Path) -> "ForwardedIdStore":
        """
        Open (creating if needed) and lock the store file, then load its ids.

        Raises:
            StoreLockedError: If another store already holds the file
            OSError: If the file cannot be opened for read/write
        """
        path = Path(path)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
        handle = os.fdopen(fd, "r+b")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            raise StoreLockedError(path) from None
        except OSError:
            handle.close()
            raise

        try:
            content = handle.read()
        except OSError:
            handle.close()
            raise
        ids = _parse_ids(content, path)
        logger.debug(f"Loaded {len(ids)} forwarded ids from {path}")
        return cls(handle, path, ids)

    def contains(self, message_id: str) -> bool:
        return message_id in self._ids

    __contains__ = contains

    def __len__(self) -> int:
        return len(self._ids)

    def record_batch(self, message_ids: Iterable[str]) -> None:
        """
        Add ids to the set and rewrite the whole file.

        Recording ids that are already present leaves both the set and the
        file content unchanged.

        Raises:
            ValueError: If the store has been closed
            OSError: If writing the file fails
        """
        handle = self._require_open()
        self._ids.update(message_ids)

        serialized = json.dumps(sorted(self._ids))
        handle.seek(0)
        handle.truncate()
        handle.write((serialized + "\n").encode("utf-8"))
        handle.flush()
        os.fsync(handle.fileno())

    @property
    def closed(self) -> bool:
        return self._handle is None

    def close(self) -> None:
        """Flush and release the file lock and handle."""
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            handle.flush()
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
        logger.debug(f"Closed forwarded-ID store {self.path}")

    def __enter__(self) -> "ForwardedIdStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _require_open(self) -> IO[bytes]:
        if self._handle is None:
            raise ValueError(f"Forwarded-ID store is closed: {self.path}")
        return self._handle


def _parse_ids(content: bytes, path: Path) -> Set[str]:
    """Parse file content into an id set; anything unusable yields an empty set."""
    if not content.strip():
        return set()
    try:
        data = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        logger.warning(f"Forwarded-ID store {path} is not valid UTF-8 JSON, starting empty")
        return set()
    if not isinstance(data, list) or not all(isinstance(x, str) for x in data):
        logger.warning(f"Forwarded-ID store {path} is not a list of ids, starting empty")
        return set()
    return set(data)
