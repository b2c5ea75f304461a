"""
Directory client contract.

The distributed directory is the rendezvous point: a node announces its
reachable address under its rendezvous key and looks up the addresses
announced under a peer's key. The core only ever talks to a directory
through DirectoryClient; concrete implementations must be safe to call
from several threads at once.
"""

import abc
import logging
import threading
from typing import Dict, Iterator, List, NamedTuple, Optional

from ..errors import DirectoryError

logger = logging.getLogger(__name__)


class PeerAddress(NamedTuple):
    """An IPv4 address and UDP port of a discovered peer."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def parse_address(value: str) -> PeerAddress:
    """Parse a ``host:port`` string.

    Args:
        value: The address string

    Returns:
        The parsed address

    Raises:
        ValueError: If the string is not ``host:port`` with a valid port
    """
    host, sep, port_str = value.strip().rpartition(":")
    if not sep or not host:
        raise ValueError(f"Expected host:port, got {value!r}")
    port = int(port_str)
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in {value!r}")
    return PeerAddress(host, port)


class DirectoryClient(abc.ABC):
    """Interface to the distributed directory used for rendezvous."""

    def start(self) -> None:
        """Bring the client up (bind sockets, start workers)."""

    def close(self) -> None:
        """Release the client's resources."""

    def __enter__(self) -> "DirectoryClient":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @abc.abstractmethod
    def bootstrap(self) -> None:
        """Populate routing state. May block for a bounded warm-up period."""

    @abc.abstractmethod
    def is_bootstrapped(self) -> bool:
        """Whether the client has any routing state to work with."""

    @abc.abstractmethod
    def announce(self, key: bytes, port: Optional[int] = None) -> bool:
        """Publish reachability under a key.

        Args:
            key: The rendezvous key
            port: Port to announce. If None the directory implies one
                (its own local or observed port).

        Returns:
            True if the announce was stored

        Raises:
            DirectoryError: If the announce could not be performed
        """

    @abc.abstractmethod
    def lookup(self, key: bytes) -> Iterator[List[PeerAddress]]:
        """Look up the addresses announced under a key.

        Args:
            key: The rendezvous key

        Returns:
            A lazy iterator over batches of addresses found during this pass
        """

    @abc.abstractmethod
    def local_address(self) -> PeerAddress:
        """The address the client's own socket is bound to."""

    @abc.abstractmethod
    def public_address(self) -> Optional[PeerAddress]:
        """The externally observed address, if the directory knows it."""


class MemoryRegistry:
    """Shared announce table behind one or more MemoryDirectory handles."""

    def __init__(self):
        self._records: Dict[bytes, List[PeerAddress]] = {}
        self._lock = threading.Lock()
        self.announce_count = 0
        self.lookup_count = 0

    def store(self, key: bytes, address: PeerAddress) -> None:
        with self._lock:
            self.announce_count += 1
            peers = self._records.setdefault(bytes(key), [])
            if address not in peers:
                peers.append(address)

    def fetch(self, key: bytes) -> List[PeerAddress]:
        with self._lock:
            self.lookup_count += 1
            return list(self._records.get(bytes(key), []))


class MemoryDirectory(DirectoryClient):
    """In-process directory for tests and single-host runs.

    Handles sharing a MemoryRegistry see each other's announces. Lookups
    yield the announced addresses in batches of ``batch_size``.
    """

    def __init__(self, registry: Optional[MemoryRegistry] = None, host: str = '127.0.0.1',
                 port: int = 0, public_port: Optional[int] = None, batch_size: int = 8):
        """Initialize a memory directory handle.

        Args:
            registry: Shared registry. If None, a private one is created.
            host: Host recorded in announces
            port: Local port of this handle, used when an announce implies its port
            public_port: Observed public port, None to model "unknown"
            batch_size: Maximum number of addresses per lookup batch
        """
        self.registry = registry if registry is not None else MemoryRegistry()
        self.host = host
        self.port = port
        self.public_port = public_port
        self.batch_size = max(1, batch_size)
        self.fail_announces = False
        self._bootstrapped = False
        self._closed = False

    def close(self) -> None:
        self._closed = True

    def bootstrap(self) -> None:
        self._bootstrapped = True

    def is_bootstrapped(self) -> bool:
        return self._bootstrapped

    def announce(self, key: bytes, port: Optional[int] = None) -> bool:
        if self._closed:
            raise DirectoryError("directory is closed")
        if self.fail_announces:
            raise DirectoryError("announce rejected")
        if port is None:
            port = self.public_port or self.port
        self.registry.store(key, PeerAddress(self.host, port))
        return True

    def lookup(self, key: bytes) -> Iterator[List[PeerAddress]]:
        if self._closed:
            raise DirectoryError("directory is closed")
        peers = self.registry.fetch(key)
        for i in range(0, len(peers), self.batch_size):
            yield peers[i:i + self.batch_size]

    def local_address(self) -> PeerAddress:
        return PeerAddress(self.host, self.port)

    def public_address(self) -> Optional[PeerAddress]:
        if self.public_port is None:
            return None
        return PeerAddress(self.host, self.public_port)
