"""
Basic usage example for Mail Relay.

Loads the configuration, runs the startup check for every account and then
a single forwarding tick, printing what happened for each account.
"""

import asyncio

from mail_relay.config import load_config
from mail_relay.errors import NoActiveAccountsError
from mail_relay.logging import logger, setup_logging
from mail_relay.scheduler import ForwardingScheduler
from mail_relay.service import build_forwarders


async def forward_once() -> None:
    cfg = load_config()
    setup_logging(log_level=cfg["LOG_LEVEL"], log_file=cfg["LOG_FILE"])

    scheduler = ForwardingScheduler(build_forwarders(cfg), delay_seconds=cfg["DELAY_MS"] / 1000)
    try:
        await scheduler.initialize()
        for result in await scheduler.run_tick():
            logger.info(
                f"{result.account}: {result.state.value}, forwarded={result.forwarded}, "
                f"withheld={len(result.failed)}"
            )
    except NoActiveAccountsError as e:
        logger.error(str(e))
    finally:
        await scheduler.close()


if __name__ == "__main__":
    asyncio.run(forward_once())
