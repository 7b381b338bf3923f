"""Emergency shutdown driven by the published status of a package release."""

from __future__ import annotations

import asyncio
import logging
import os
import random
import threading
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from apfsds.config import EmergencyConfig

logger = logging.getLogger(__name__)

Fetch = Callable[[str], Awaitable[Sequence[Mapping[str, Any]]]]

_MAX_SHUTDOWN_DELAY = 3600

_emergency = threading.Event()


def is_emergency_mode() -> bool:
    """Whether emergency mode has been triggered."""
    return _emergency.is_set()


def trigger_emergency() -> None:
    """Enter emergency mode."""
    _emergency.set()
    logger.warning("EMERGENCY MODE ACTIVATED")


def reset_emergency() -> None:
    """Leave emergency mode."""
    _emergency.clear()


async def check_crate_status(fetch: Fetch, crate_name: str) -> bool:
    """Return True if the newest published version is yanked or none exist.

    ``fetch`` is awaited with the crate name and returns its versions, newest
    first, each a mapping with a ``yanked`` flag.
    """
    versions = list(await fetch(crate_name))
    if not versions:
        return True
    return bool(versions[0]["yanked"])


async def _run_checker(config: EmergencyConfig, fetch: Fetch) -> None:
    if not config.enabled:
        logger.info("Emergency mode checker disabled")
        return
    logger.info(
        "Emergency mode checker started, checking %r every %ds",
        config.crate_name,
        config.check_interval,
    )
    while True:
        await asyncio.sleep(config.check_interval)
        try:
            yanked = await check_crate_status(fetch, config.crate_name)
        except Exception as exc:
            logger.error("Failed to check crate status: %s", exc)
            continue
        if yanked:
            trigger_emergency()
            delay = random.randrange(_MAX_SHUTDOWN_DELAY)
            logger.info("Will shutdown in %d seconds", delay)
            await asyncio.sleep(delay)
            os._exit(0)
            return


def start_checker(config: EmergencyConfig, fetch: Fetch) -> asyncio.Task[None]:
    """Start the periodic checker as a task on the running event loop."""
    return asyncio.create_task(_run_checker(config, fetch))