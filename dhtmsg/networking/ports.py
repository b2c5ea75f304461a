"""
Hello socket port resolution.

Two startup strategies decide which local port the hello socket binds and
which port is announced in the directory:

- ``probe``: briefly run a directory client on an ephemeral port, note its
  local port and any public (NAT-observed) port, release it and reuse the
  local port for the hello socket. The public port is announced when the
  directory observed one, otherwise the bound port. Many NATs keep the
  mapping the directory traffic created, so peers can reach the hello
  socket through it.
- ``ephemeral``: bind the hello socket to any free port and let the
  directory imply the announced port.
"""

import enum
import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import DirectoryError, StartupError
from .directory import DirectoryClient

logger = logging.getLogger(__name__)

# Pause after releasing the probe client so the OS frees its port.
RELEASE_PAUSE = 0.2


class PortStrategy(str, enum.Enum):
    PROBE = "probe"
    EPHEMERAL = "ephemeral"


@dataclass(frozen=True)
class PortInfo:
    """Ports resolved once at startup."""

    local_port: int
    public_port: Optional[int] = None


def get_local_ip() -> str:
    """Get the IPv4 address of the outgoing interface.

    Returns:
        The local IP address, or 127.0.0.1 if it cannot be determined
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # connect() on UDP only selects a route, nothing is sent
        s.connect(('8.8.8.8', 53))
        return s.getsockname()[0]
    except OSError as e:
        logger.warning(f"Failed to determine local IP, using loopback: {e}")
        return '127.0.0.1'
    finally:
        s.close()


def discover_public_port(directory_factory: Callable[[int], DirectoryClient],
                         release_pause: float = RELEASE_PAUSE) -> PortInfo:
    """Learn a local port (and public port, if observable) from a probe client.

    Args:
        directory_factory: Builds a directory client bound to the given port
        release_pause: Seconds to wait after closing the probe client

    Returns:
        The probe client's local port and observed public port

    Raises:
        StartupError: If the probe client cannot be started
    """
    probe = directory_factory(0)
    try:
        probe.start()
        probe.bootstrap()
        local = probe.local_address()
        public = probe.public_address()
    except DirectoryError as e:
        raise StartupError("failed to start probe directory client") from e
    finally:
        probe.close()
    time.sleep(release_pause)
    return PortInfo(local_port=local.port, public_port=public.port if public else None)


def resolve_ports(strategy: PortStrategy,
                  directory_factory: Callable[[int], DirectoryClient]) -> PortInfo:
    """Resolve the hello socket's ports for a strategy."""
    if PortStrategy(strategy) is PortStrategy.PROBE:
        return discover_public_port(directory_factory)
    return PortInfo(local_port=0)


def announced_port(strategy: PortStrategy, port_info: PortInfo, bound_port: int) -> Optional[int]:
    """Port to announce for the hello socket.

    Returns:
        The port to pass to DirectoryClient.announce; None means implied
    """
    if PortStrategy(strategy) is PortStrategy.EPHEMERAL:
        return None
    if port_info.public_port is not None:
        return port_info.public_port
    return bound_port


def bind_hello_socket(port: int, host: str = '0.0.0.0') -> socket.socket:
    """Bind the non-blocking UDP socket used for greetings.

    Raises:
        StartupError: If the socket cannot be bound
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind((host, port))
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        raise StartupError(f"failed to bind UDP socket on {host}:{port}") from e
    return sock
