"""
Rendezvous node: wires identity, directory, greeting and discovery together.
"""

import logging
import threading
from typing import Callable, Optional

from ..config import NodeConfig
from ..errors import DirectoryError, StartupError
from ..networking.directory import DirectoryClient
from ..networking.discovery import DiscoveryLoop, IdleAnnounceLoop
from ..networking.greeting import GreetingHandler, MessageCallback
from ..networking.kademlia_directory import KademliaDirectory
from ..networking.node_identity import derive_rendezvous_key, random_hex_id
from ..networking.ports import (
    PortInfo, PortStrategy, announced_port, bind_hello_socket, resolve_ports
)
from ..networking.scheduler import AnnounceScheduler

logger = logging.getLogger(__name__)

DirectoryFactory = Callable[[int], DirectoryClient]


class RendezvousNode:
    """A node that announces itself and, optionally, greets one peer.

    ``start()`` performs the whole startup path: port resolution, hello
    socket bind, directory start and bootstrap, the first announce, then
    the receiver thread plus either the discovery loop (a peer is
    configured) or the idle announce loop. Every background thread watches
    ``stop_event``; ``stop()`` sets it and releases all resources.
    """

    def __init__(self, config: NodeConfig,
                 directory_factory: Optional[DirectoryFactory] = None,
                 on_message: Optional[MessageCallback] = None):
        """Initialize the node.

        Args:
            config: Node settings
            directory_factory: Builds a directory client bound to a port.
                Defaults to a Kademlia client using the config's bootstrap
                nodes.
            on_message: Passed to the greeting handler

        Raises:
            IdentityError: If the local or peer identity is not valid hex
        """
        self.config = config
        self.identity = config.identity if config.identity is not None else random_hex_id()
        self.key = derive_rendezvous_key(self.identity)
        self.peer_key = derive_rendezvous_key(config.peer) if config.peer is not None else None
        self.on_message = on_message
        self.stop_event = threading.Event()

        self._directory_factory = directory_factory or self._kademlia_directory
        self.directory: Optional[DirectoryClient] = None
        self.port_info: Optional[PortInfo] = None
        self.hello_port: Optional[int] = None
        self.announced_port: Optional[int] = None
        self.scheduler: Optional[AnnounceScheduler] = None
        self.greeter: Optional[GreetingHandler] = None
        self.loop = None

        logger.info(f"local ID: {self.identity}")
        logger.info(f"derived key: {self.key.hex()}")
        if self.peer_key is not None:
            logger.info(f"peer ID: {config.peer}")
            logger.info(f"peer key: {self.peer_key.hex()}")

    def _kademlia_directory(self, port: int) -> DirectoryClient:
        return KademliaDirectory(
            port=port,
            bootstrap_nodes=self.config.bootstrap_nodes,
            advertise_host=self.config.advertise_host,
            warmup=self.config.warmup,
            request_timeout=self.config.request_timeout,
        )

    def start(self) -> None:
        """Bring the node up.

        Raises:
            StartupError: If the hello socket cannot be bound or the
                directory client cannot be started. Whatever was
                acquired before the failure is released.
        """
        strategy = PortStrategy(self.config.port_strategy)
        self.port_info = resolve_ports(strategy, self._directory_factory)
        logger.info(
            f"resolved hello port {self.port_info.local_port} with public "
            f"{self.port_info.public_port} ({strategy.value} strategy)"
        )

        sock = bind_hello_socket(self.port_info.local_port, self.config.bind_host)
        self.hello_port = sock.getsockname()[1]
        logger.info(f"hello socket bound on UDP port {self.hello_port}")

        try:
            self._start_services(sock, strategy)
        except BaseException:
            if self.greeter is None:
                sock.close()
            self.stop()
            raise

    def _start_services(self, sock, strategy: PortStrategy) -> None:
        self.directory = self._directory_factory(self.config.dht_port)
        try:
            self.directory.start()
        except DirectoryError as e:
            raise StartupError("failed to start directory client") from e

        logger.info("bootstrapping the directory...")
        try:
            self.directory.bootstrap()
        except DirectoryError as e:
            logger.warning(f"bootstrap failed: {e}")
        logger.info(f"bootstrapped: {self.directory.is_bootstrapped()}")

        self.announced_port = announced_port(strategy, self.port_info, self.hello_port)
        self.scheduler = AnnounceScheduler(
            self.directory, self.key, self.announced_port, self.config.announce_interval
        )
        self.scheduler.announce_now()

        self.greeter = GreetingHandler(
            sock, self.identity, stop_event=self.stop_event, on_message=self.on_message
        )
        self.greeter.start()

        if self.peer_key is not None:
            self.loop = DiscoveryLoop(
                self.directory, self.greeter, self.scheduler, self.peer_key,
                poll_interval=self.config.poll_interval, stop_event=self.stop_event,
            )
        else:
            logger.info("no peer provided; announcing and waiting for inbound hello")
            self.loop = IdleAnnounceLoop(
                self.scheduler, poll_interval=self.config.poll_interval,
                stop_event=self.stop_event,
            )
        self.loop.start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the node is stopped or the timeout expires.

        Returns:
            True if the node has been stopped
        """
        return self.stop_event.wait(timeout)

    def stop(self) -> None:
        """Stop all loops and release the socket and directory client."""
        self.stop_event.set()
        if self.loop is not None:
            # an iteration may be mid-lookup
            self.loop.stop(timeout=self.config.poll_interval + self.config.request_timeout)
            self.loop = None
        if self.greeter is not None:
            self.greeter.close()
            self.greeter = None
        if self.directory is not None:
            self.directory.close()
            self.directory = None
        logger.info("node stopped")

    def __enter__(self) -> "RendezvousNode":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
