"""Pacing between sequential Portal calls during a class sync."""
import asyncio


class Throttle:
    """Awaited by the sync service between two roster entries."""

    async def wait(self) -> None:
        raise NotImplementedError


class FixedDelayThrottle(Throttle):
    """Sleep a fixed number of seconds between calls."""

    def __init__(self, seconds: float = 0.1):
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        self.seconds = seconds

    async def wait(self) -> None:
        await asyncio.sleep(self.seconds)


class NoThrottle(Throttle):
    async def wait(self) -> None:
        return None
