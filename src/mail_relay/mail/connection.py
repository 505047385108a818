"""
Connection lifecycle for one account and one direction (inbound or outbound).
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Generic, Optional, Protocol, TypeVar


class _Disconnectable(Protocol):
    async def disconnect(self, quit: bool = True) -> None: ...


H = TypeVar("H", bound=_Disconnectable)


class ConnectionManager(Generic[H]):
    """
    Owns a lazily created, connected and authenticated handle.

    The handle is never shared across accounts. Callers use ``session()`` for
    scoped access: the handle is released after a successful block and
    invalidated after a failed one, so the next use connects afresh.
    """

    def __init__(self, connect: Callable[[], Awaitable[H]], label: str, log) -> None:
        """
        Args:
            connect: Coroutine factory that connects and authenticates a new handle
            label: Direction name used in log messages ("inbound" / "outbound")
            log: Logger bound to the owning account
        """
        self._connect = connect
        self._handle: Optional[H] = None
        self.label = label
        self._log = log

    @property
    def connected(self) -> bool:
        return self._handle is not None

    async def get_or_connect(self) -> H:
        """Return the live handle, connecting and authenticating if there is none."""
        if self._handle is None:
            self._handle = await self._connect()
            self._log.debug(f"{self.label} connection established")
        return self._handle

    async def release(self) -> None:
        """Gracefully disconnect and drop the handle."""
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await handle.disconnect(quit=True)
        except Exception as e:
            self._log.warning(f"Error while disconnecting {self.label} connection: {e}")

    async def invalidate(self) -> None:
        """Drop the handle after a failure; disconnecting is best-effort."""
        handle, self._handle = self._handle, None
        if handle is None:
            return
        self._log.info(f"Reinitializing {self.label} connection")
        try:
            await handle.disconnect(quit=False)
        except Exception as e:
            self._log.debug(f"Ignoring error while discarding {self.label} connection: {e}")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[H]:
        """
        Scoped acquisition of the handle.

        Connect failures propagate with no handle kept. Any exception raised in
        the block, cancellation included, invalidates the handle and propagates.
        """
        handle = await self.get_or_connect()
        try:
            yield handle
        except BaseException:
            await self.invalidate()
            raise
        await self.release()
