"""
Service entry point: builds the forwarders from configuration and runs the
scheduler until SIGINT/SIGTERM.
"""

from __future__ import annotations
import asyncio
import os
import signal
from functools import partial
from pathlib import Path
from typing import List

from dotenv import load_dotenv

from mail_relay.config import Config, load_config
from mail_relay.errors import ConfigError, NoActiveAccountsError
from mail_relay.forwarder import AccountForwarder
from mail_relay.health import HealthCheckServer
from mail_relay.logging import logger, setup_logging
from mail_relay.mail.pop3 import Pop3Mailbox
from mail_relay.mail.smtp import SmtpSender
from mail_relay.scheduler import ForwardingScheduler

MODES = ("run", "once", "check")


def build_forwarders(cfg: Config) -> List[AccountForwarder]:
    """Create one forwarder per configured rule, each with its own store file."""
    state_dir = Path(cfg["STATE_DIR"])
    state_dir.mkdir(parents=True, exist_ok=True)

    forwarders = []
    for rule in cfg["FORWARDING_RULES"]:
        forwarders.append(AccountForwarder(
            rule,
            connect_inbound=partial(
                Pop3Mailbox.connect, cfg["RECEIVER"], rule.source_address, rule.source_password,
                timeout=cfg["CONNECT_TIMEOUT"],
            ),
            connect_outbound=partial(
                SmtpSender.connect, cfg["SENDER"], rule.source_address, rule.source_password,
                timeout=cfg["CONNECT_TIMEOUT"],
            ),
            store_path=state_dir / rule.identifier,
        ))
    return forwarders


async def _drive(scheduler: ForwardingScheduler, mode: str) -> None:
    if mode == "run":
        await scheduler.run()
        return

    await scheduler.initialize()
    if mode == "once":
        await scheduler.run_tick()
    else:
        for account in scheduler.failed_accounts:
            logger.warning(f"Account check failed: {account}")
        for forwarder in scheduler.forwarders:
            logger.info(f"Account check passed: {forwarder.account}")


async def run_service(cfg: Config, mode: str = "run") -> int:
    """
    Run the relay in the given mode and return the process exit code.

    Modes:
        run: initialize, then forward on every tick until a shutdown signal
        once: initialize and run a single tick
        check: only run the startup connection check

    Returns:
        0 on graceful completion, 1 if no account survived initialization
    """
    if mode not in MODES:
        raise ValueError(f"Unknown mode {mode!r}, expected one of {MODES}")

    scheduler = ForwardingScheduler(build_forwarders(cfg), delay_seconds=cfg["DELAY_MS"] / 1000)

    health_server = None
    if cfg["HEALTH_CHECK_ENABLED"] and mode == "run":
        try:
            health_server = HealthCheckServer(port=cfg["HEALTH_CHECK_PORT"], health_func=scheduler.get_health)
            health_server.start()
        except OSError as e:
            logger.warning(f"Failed to start health check server: {e}")
            health_server = None

    loop = asyncio.get_event_loop()
    task = asyncio.ensure_future(_drive(scheduler, mode))

    def request_shutdown(signame: str) -> None:
        logger.info(f"Received {signame}, initiating graceful shutdown...")
        scheduler.stop()
        task.cancel()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown, sig.name)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # No signal support on this platform or outside the main thread
            pass

    try:
        await task
    except asyncio.CancelledError:
        logger.info("In-flight forwarding cancelled")
    except NoActiveAccountsError as e:
        logger.error(f"{e}. Exiting")
        return 1
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await scheduler.close()
        if health_server:
            health_server.stop()
        logger.info("Service stopped")
    return 0


def main(mode: str = "run") -> int:
    """Synchronous entry point: set up logging, load configuration and run."""
    # Logging first, so configuration errors are reported in the configured format
    load_dotenv()
    setup_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        log_file=os.getenv("LOG_FILE", "").strip() or None,
    )

    try:
        cfg = load_config()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    logger.info(f"Starting mail relay ({mode}) for {len(cfg['FORWARDING_RULES'])} rules")
    return asyncio.run(run_service(cfg, mode))
