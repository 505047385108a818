"""
Scheduler running one forwarding cycle per account per tick, concurrently.
"""

from __future__ import annotations
import asyncio
import time
from typing import List, Optional

from mail_relay.errors import NoActiveAccountsError
from mail_relay.forwarder import AccountForwarder
from mail_relay.logging import logger
from mail_relay.results import CycleResult, CycleState, Outcome


class ForwardingScheduler:
    """
    Drives the forwarders on a fixed delay with graceful shutdown support.

    Supports:
    - One-time startup check that permanently drops failing accounts
    - Concurrent cycles per tick, joined before the next tick starts
    - Per-account failure isolation (one cycle's error never cancels another)
    - Shutdown that interrupts the inter-tick delay immediately
    - Statistics tracking for the health endpoint
    """

    def __init__(self, forwarders: List[AccountForwarder], delay_seconds: float = 60.0) -> None:
        """
        Initialize scheduler.

        Args:
            forwarders: One forwarder per configured rule
            delay_seconds: Pause between the end of one tick and the start of the next
        """
        self.forwarders = list(forwarders)
        self.delay_seconds = delay_seconds
        self.failed_accounts: List[str] = []
        self.running = False
        self._shutdown = asyncio.Event()
        self.stats = {
            "ticks": 0,
            "successful_cycles": 0,
            "failed_cycles": 0,
            "forwarded_messages": 0,
            "last_tick_time": None,
            "last_error": None,
        }

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    async def initialize(self) -> None:
        """
        Check every account once; accounts that fail are dropped for good.

        Raises:
            NoActiveAccountsError: If no account survives
        """
        results = await asyncio.gather(
            *(forwarder.init() for forwarder in self.forwarders),
            return_exceptions=True,
        )
        active = []
        for forwarder, result in zip(self.forwarders, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.opt(exception=result).error(
                    f"Failed to initialize forwarder for email '{forwarder.account}'"
                )
                self.failed_accounts.append(forwarder.account)
            else:
                active.append(forwarder)
        self.forwarders = active

        if not self.forwarders:
            raise NoActiveAccountsError("All forwarders have failed to initialize")
        logger.info(f"{len(self.forwarders)} forwarders active, {len(self.failed_accounts)} failed")

    async def run_tick(self) -> List[CycleResult]:
        """Run one cycle for every active account and wait for all of them."""
        logger.info(f"Running {len(self.forwarders)} forwarders")
        start_time = time.time()
        outcomes = await asyncio.gather(
            *(forwarder.forward_messages() for forwarder in self.forwarders),
            return_exceptions=True,
        )

        results: List[CycleResult] = []
        for forwarder, outcome in zip(self.forwarders, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.opt(exception=outcome).error(f"Forwarder {forwarder.account} has failed")
                outcome = CycleResult(forwarder.account, CycleState.CONNECTING, Outcome.FATAL, error=str(outcome))
            results.append(outcome)

        self._record(results)
        succeeded = sum(1 for r in results if r.succeeded)
        logger.info(
            f"{succeeded} forwarders have finished successfully, "
            f"{len(results) - succeeded} with an error ({time.time() - start_time:.2f}s)"
        )
        return results

    def _record(self, results: List[CycleResult]) -> None:
        self.stats["ticks"] += 1
        self.stats["last_tick_time"] = time.time()
        self.stats["forwarded_messages"] += sum(r.forwarded for r in results)
        errors = []
        for result in results:
            if result.succeeded:
                self.stats["successful_cycles"] += 1
            else:
                self.stats["failed_cycles"] += 1
                errors.append(f"{result.account}: {result.error}")
        self.stats["last_error"] = "; ".join(errors) or None

    async def run(self) -> None:
        """
        Initialize, then tick until shutdown is requested.

        Raises:
            NoActiveAccountsError: If no account survives initialization
        """
        await self.initialize()
        self.running = True
        logger.info(f"Scheduler started with delay {self.delay_seconds}s")
        try:
            while not self.shutdown_requested:
                await self.run_tick()
                if self.shutdown_requested:
                    break
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=self.delay_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            self.running = False
            logger.info("Scheduler loop ended")

    def stop(self) -> None:
        """Request shutdown; the loop exits before its next tick."""
        if not self.shutdown_requested:
            logger.info("Stopping scheduler...")
        self._shutdown.set()

    async def close(self) -> None:
        """Release connections and stores of every forwarder."""
        for forwarder in self.forwarders:
            try:
                await forwarder.close()
            except Exception as e:
                logger.warning(f"Error closing forwarder {forwarder.account}: {e}")

    def get_health(self) -> dict:
        """
        Get health check information.

        Returns:
            Dictionary with health status and statistics
        """
        is_healthy = self.running and bool(self.forwarders)

        # Unhealthy if the last tick finished more than two delays ago
        if self.stats["last_tick_time"]:
            time_since_last_tick = time.time() - self.stats["last_tick_time"]
            if time_since_last_tick > max(self.delay_seconds * 2, 60):
                is_healthy = False

        return {
            "status": "healthy" if is_healthy else "unhealthy",
            "running": self.running,
            "shutdown_requested": self.shutdown_requested,
            "active_accounts": [f.account for f in self.forwarders],
            "failed_accounts": list(self.failed_accounts),
            "stats": self.stats.copy(),
            "delay_seconds": self.delay_seconds,
        }
