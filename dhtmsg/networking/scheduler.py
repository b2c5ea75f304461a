"""
Rate-limited re-announcement of the local rendezvous key.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import DirectoryError
from .directory import DirectoryClient

logger = logging.getLogger(__name__)

DEFAULT_ANNOUNCE_INTERVAL = 45.0


@dataclass
class AnnounceSchedule:
    """Last announce time and the interval between announces."""

    interval: float
    last_announce: float

    def due(self, now: float) -> bool:
        return now - self.last_announce >= self.interval

    def record(self, now: float) -> None:
        self.last_announce = now


class AnnounceScheduler:
    """Announces a key at most once per interval.

    The timestamp is recorded after every attempt whether or not the
    directory accepted it, so a failing directory is retried on the
    interval rather than on every tick. There is no backoff.
    """

    def __init__(self, directory: DirectoryClient, key: bytes, port: Optional[int],
                 interval: float = DEFAULT_ANNOUNCE_INTERVAL,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize the scheduler.

        Args:
            directory: Directory client to announce through
            key: The local rendezvous key
            port: Port to announce, None to let the directory imply it
            interval: Minimum seconds between announces
            clock: Monotonic time source
        """
        self.directory = directory
        self.key = key
        self.port = port
        self._clock = clock
        self.schedule = AnnounceSchedule(interval=interval, last_announce=clock())
        self.attempts = 0

    def announce_now(self) -> bool:
        """Announce immediately and restart the interval."""
        stored = self._announce()
        self.schedule.record(self._clock())
        return stored

    def tick(self, now: Optional[float] = None) -> bool:
        """Announce if the interval has elapsed.

        Args:
            now: Current time; defaults to the scheduler's clock

        Returns:
            True if an announce was attempted on this tick
        """
        if now is None:
            now = self._clock()
        if not self.schedule.due(now):
            return False
        self._announce()
        self.schedule.record(now)
        return True

    def _announce(self) -> bool:
        self.attempts += 1
        port_desc = self.port if self.port is not None else "implied"
        try:
            stored = self.directory.announce(self.key, self.port)
        except DirectoryError as e:
            logger.warning(f"announce failed: {e}")
            return False
        if stored:
            logger.info(f"announced key {self.key.hex()} on port {port_desc}")
        else:
            logger.warning(f"announce of key {self.key.hex()} was not stored by any node")
        return stored
