"""Settle delays and poll-until-ready waits used while driving the browser."""

from __future__ import annotations

import asyncio
import inspect
import logging
import sys
import time
from typing import Awaitable, Callable, Union

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

Predicate = Callable[[], Union[bool, Awaitable[bool]]]


class WaitTimeout(Exception):
    """A polled condition did not become true before its deadline."""


class Waiter:
    """Time source for the session driver.

    Both the sleep function and the clock are injectable so tests can run
    the login and extraction sequences without real delays.
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sleep = sleep
        self._clock = clock

    async def settle(self, seconds: float):
        """Wait a fixed delay after an action that has no readiness signal."""
        if seconds > 0:
            await self._sleep(seconds)

    async def until(
        self,
        predicate: Predicate,
        timeout: float,
        interval: float = 0.5,
        description: str = "condition",
    ):
        """Poll ``predicate`` until it returns True.

        The predicate may be a plain or a coroutine function. Exceptions it
        raises count as "not yet" and are logged at debug level.

        Raises:
            WaitTimeout: the predicate was still false after ``timeout`` seconds.
        """
        deadline = self._clock() + timeout

        while True:
            try:
                result = predicate()
                if inspect.isawaitable(result):
                    result = await result
                if result:
                    return
            except Exception as e:
                logger.debug(f"Waiting for {description}: {e}")

            if self._clock() >= deadline:
                raise WaitTimeout(f"{description} not reached within {timeout:g}s")
            await self._sleep(interval)
