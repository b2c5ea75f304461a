"""
Peer discovery through the rendezvous directory.

The discovery loop repeatedly looks up a target rendezvous key and greets
every address it has not seen before. When there is no target, the idle
loop keeps the local key announced so that others can find this node.
"""

import abc
import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Set

from ..errors import DirectoryError
from .directory import DirectoryClient, PeerAddress
from .greeting import GreetingHandler
from .scheduler import AnnounceScheduler

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0


@dataclass
class LoopState:
    """State owned by one run of a discovery loop.

    The seen set only grows: an address is greeted at most once per run,
    even if a different identity is later announced behind it.
    """

    seen: Set[PeerAddress] = field(default_factory=set)
    iterations: int = 0

    def mark_seen(self, addr: PeerAddress) -> bool:
        """Record an address.

        Returns:
            True if the address had not been seen before
        """
        if addr in self.seen:
            return False
        self.seen.add(addr)
        return True


class _PeriodicLoop(abc.ABC):
    """Runs ``run_once`` every ``poll_interval`` seconds until stopped."""

    thread_name = "periodic-loop"

    def __init__(self, poll_interval: float = DEFAULT_POLL_INTERVAL,
                 stop_event: Optional[threading.Event] = None):
        self.poll_interval = poll_interval
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.state = LoopState()
        self._thread: Optional[threading.Thread] = None

    @abc.abstractmethod
    def run_once(self):
        """Run a single iteration."""

    def run(self) -> None:
        """Run iterations until the stop event is set."""
        while not self.stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception(f"{self.thread_name} iteration failed")
            self.state.iterations += 1
            self.stop_event.wait(self.poll_interval)

    def start(self) -> None:
        """Run the loop on a dedicated daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self.run, name=self.thread_name, daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


class DiscoveryLoop(_PeriodicLoop):
    """Announce, look up the target key, greet new candidates, sleep."""

    thread_name = "discovery-loop"

    def __init__(self, directory: DirectoryClient, greeter: GreetingHandler,
                 scheduler: AnnounceScheduler, target_key: bytes,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 stop_event: Optional[threading.Event] = None):
        """Initialize the discovery loop.

        Args:
            directory: Directory client to look up the target in
            greeter: Sends greetings to new candidates
            scheduler: Re-announces the local key
            target_key: Rendezvous key of the peer to find
            poll_interval: Seconds between lookups
            stop_event: Shared stop signal
        """
        super().__init__(poll_interval, stop_event)
        self.directory = directory
        self.greeter = greeter
        self.scheduler = scheduler
        self.target_key = target_key

    def run(self) -> None:
        logger.info("starting lookup loop")
        super().run()
        logger.info("lookup loop stopped")

    def run_once(self) -> List[PeerAddress]:
        """Run one discovery iteration.

        Returns:
            Addresses greeted for the first time in this iteration
        """
        self.scheduler.tick()

        greeted = []
        try:
            for batch in self.directory.lookup(self.target_key):
                for candidate in batch:
                    addr = PeerAddress(*candidate)
                    if not self.state.mark_seen(addr):
                        continue
                    logger.info(f"found peer candidate {addr}, sending hello...")
                    self.greeter.send_hello(addr)
                    greeted.append(addr)
        except DirectoryError as e:
            logger.warning(f"lookup of key {self.target_key.hex()} failed: {e}")

        logger.debug(f"Lookup pass done: {len(greeted)} new, {len(self.state.seen)} seen")
        return greeted


class IdleAnnounceLoop(_PeriodicLoop):
    """Keeps the local key announced while waiting for inbound greetings."""

    thread_name = "idle-announce-loop"

    def __init__(self, scheduler: AnnounceScheduler,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 stop_event: Optional[threading.Event] = None):
        super().__init__(poll_interval, stop_event)
        self.scheduler = scheduler

    def run_once(self) -> bool:
        return self.scheduler.tick()
