"""
Directory client backed by a Kademlia DHT.

The ``kademlia`` package is asyncio based, while the rest of dhtmsg runs
on plain threads. The client owns a private event loop on a daemon thread
and submits every operation to it, so calls from any thread are
serialised through that loop.

Records are JSON lists of ``host:port`` strings stored under the
rendezvous key. Announcing merges the local address into the existing
record, so several nodes can announce the same key.
"""

import asyncio
import concurrent.futures
import json
import logging
import socket
import threading
import time
from typing import Iterator, List, Optional, Sequence, Tuple

from kademlia.network import Server

from ..errors import DirectoryError
from .directory import DirectoryClient, PeerAddress, parse_address
from .ports import get_local_ip

logger = logging.getLogger(__name__)

DEFAULT_WARMUP = 2.0
DEFAULT_REQUEST_TIMEOUT = 10.0
# Most recent announcers kept in one record.
MAX_RECORD_PEERS = 32


def decode_record(value) -> List[str]:
    """Decode a stored record into its ``host:port`` entries.

    Anything that is not a JSON list of strings decodes to an empty list.
    """
    if value is None:
        return []
    if isinstance(value, bytes):
        value = value.decode('utf-8', errors='replace')
    try:
        entries = json.loads(value)
    except (TypeError, ValueError):
        return []
    if not isinstance(entries, list):
        return []
    return [e for e in entries if isinstance(e, str)]


def merge_record(entries: List[str], entry: str, limit: int = MAX_RECORD_PEERS) -> List[str]:
    """Move ``entry`` to the end of ``entries``, keeping at most ``limit``."""
    merged = [e for e in entries if e != entry]
    merged.append(entry)
    return merged[-limit:]


class KademliaDirectory(DirectoryClient):
    """DirectoryClient over a kademlia ``Server`` node."""

    def __init__(self, port: int = 0, interface: str = '0.0.0.0',
                 bootstrap_nodes: Sequence[Tuple[str, int]] = (),
                 advertise_host: Optional[str] = None,
                 warmup: float = DEFAULT_WARMUP,
                 request_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        """Initialize the client.

        Args:
            port: UDP port for the DHT node, 0 for an ephemeral one
            interface: Interface to listen on
            bootstrap_nodes: Known (host, port) pairs to join through
            advertise_host: Host recorded in announces; detected if None
            warmup: Seconds to wait after bootstrapping
            request_timeout: Seconds before a DHT operation is abandoned
        """
        self.port = port
        self.interface = interface
        self.bootstrap_nodes = list(bootstrap_nodes)
        self.advertise_host = advertise_host or get_local_ip()
        self.warmup = warmup
        self.request_timeout = request_timeout

        self._server = Server()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._loop is not None:
                return
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(target=self._run_loop, name="kademlia-loop", daemon=True)
            self._thread.start()
        try:
            self._call(self._server.listen(self.port, interface=self.interface))
        except DirectoryError:
            self.close()
            raise
        logger.info(f"DHT socket listening on {self.local_address()}")

    def close(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop, self._thread = None, None
        if loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._shutdown(), loop)
        try:
            future.result(self.request_timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("DHT client did not shut down in time")
        loop.call_soon_threadsafe(loop.stop)
        thread.join(self.request_timeout)
        if not loop.is_running():
            loop.close()

    async def _shutdown(self) -> None:
        self._server.stop()
        pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        # the transport releases its socket on the next loop iteration
        await asyncio.sleep(0)

    def _run_loop(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def _call(self, coro, timeout: Optional[float] = None):
        """Run a coroutine on the client's loop and wait for its result.

        Raises:
            DirectoryError: If the client is not started, the operation
                times out or fails
        """
        loop = self._loop
        if loop is None:
            coro.close()
            raise DirectoryError("DHT client is not started")
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout if timeout is not None else self.request_timeout)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise DirectoryError("DHT operation timed out") from e
        except Exception as e:
            raise DirectoryError(f"DHT operation failed: {e}") from e

    def _resolve_bootstrap_nodes(self) -> List[Tuple[str, int]]:
        resolved = []
        for host, port in self.bootstrap_nodes:
            try:
                resolved.append((socket.gethostbyname(host), int(port)))
            except OSError as e:
                logger.warning(f"Skipping bootstrap node {host}:{port}: {e}")
        return resolved

    def bootstrap(self) -> None:
        nodes = self._resolve_bootstrap_nodes()
        if nodes:
            found = self._call(self._server.bootstrap(nodes))
            logger.debug(f"Bootstrap reached {len(found or [])} nodes")
        else:
            logger.warning("No bootstrap nodes configured; waiting for inbound DHT contacts")
        time.sleep(self.warmup)

    async def _neighbour_count(self) -> int:
        return len(self._server.bootstrappable_neighbors())

    def is_bootstrapped(self) -> bool:
        try:
            return self._call(self._neighbour_count()) > 0
        except DirectoryError:
            return False

    async def _announce(self, key: bytes, entry: str) -> bool:
        record = decode_record(await self._server.get(key))
        return bool(await self._server.set(key, json.dumps(merge_record(record, entry))))

    def announce(self, key: bytes, port: Optional[int] = None) -> bool:
        if port is None:
            port = self.local_address().port
        entry = str(PeerAddress(self.advertise_host, port))
        return self._call(self._announce(bytes(key), entry))

    def lookup(self, key: bytes) -> Iterator[List[PeerAddress]]:
        entries = decode_record(self._call(self._server.get(bytes(key))))
        batch = []
        for entry in entries:
            try:
                batch.append(parse_address(entry))
            except ValueError:
                logger.debug(f"Ignoring malformed record entry {entry!r}")
        if batch:
            yield batch

    def local_address(self) -> PeerAddress:
        transport = self._server.transport
        if transport is None:
            raise DirectoryError("DHT client is not listening")
        host, port = transport.get_extra_info('sockname')[:2]
        return PeerAddress(host, port)

    def public_address(self) -> Optional[PeerAddress]:
        # Kademlia nodes do not report the address peers observe for us.
        return None
