"""
Greeting protocol over UDP.

A greeting is a single plaintext datagram, ``hello from <id>``; every
datagram received is answered with ``hello-ack from <id>`` to its source
address. There is no framing, session state or authentication.

The hello socket is shared between a sender, used by the discovery loop,
and a receiver thread. Each role gets its own handle to the socket.
"""

import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from .directory import PeerAddress

logger = logging.getLogger(__name__)

RECV_BUFFER_SIZE = 1500
RECEIVE_POLL_INTERVAL = 0.2
RECEIVE_ERROR_BACKOFF = 1.0

MessageCallback = Callable[[Tuple[str, int], str], None]


def hello_payload(identity: str) -> bytes:
    return f"hello from {identity}".encode('utf-8')


def ack_payload(identity: str) -> bytes:
    return f"hello-ack from {identity}".encode('utf-8')


def decode_payload(data: bytes) -> str:
    """Decode a datagram, replacing invalid UTF-8 sequences."""
    return data.decode('utf-8', errors='replace')


class GreetingHandler:
    """Sends greetings and answers incoming ones.

    The receiver polls a non-blocking socket so that it notices the stop
    event between polls; it only exits when the event is set.
    """

    def __init__(self, sock: socket.socket, identity: str,
                 poll_interval: float = RECEIVE_POLL_INTERVAL,
                 error_backoff: float = RECEIVE_ERROR_BACKOFF,
                 stop_event: Optional[threading.Event] = None,
                 on_message: Optional[MessageCallback] = None):
        """Initialize the handler.

        Args:
            sock: Bound UDP socket. The handler takes ownership of it.
            identity: Local identity hex placed in outgoing payloads
            poll_interval: Seconds to wait when no datagram is ready
            error_backoff: Seconds to wait after a receive error
            stop_event: Shared stop signal; a private one is created if None
            on_message: Called with (source address, decoded text) for
                every datagram received
        """
        self.identity = identity
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self.on_message = on_message
        self._stop_event = stop_event if stop_event is not None else threading.Event()
        self._send_sock = sock
        self._recv_sock = sock.dup()
        self._recv_sock.setblocking(False)
        self._thread: Optional[threading.Thread] = None

    @property
    def local_port(self) -> int:
        return self._send_sock.getsockname()[1]

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def send_hello(self, addr: Tuple[str, int]) -> bool:
        """Send one greeting datagram.

        Failures are logged and not retried.

        Args:
            addr: Destination address

        Returns:
            True if the datagram was handed to the OS
        """
        try:
            self._send_sock.sendto(hello_payload(self.identity), tuple(addr))
            return True
        except OSError as e:
            logger.warning(f"failed to send hello to {PeerAddress(*addr)}: {e}")
            return False

    def start(self) -> None:
        """Start the receiver thread."""
        if self.is_running:
            return
        self._thread = threading.Thread(target=self._receive_loop, name="greeting-receiver", daemon=True)
        self._thread.start()
        logger.debug(f"Greeting receiver started on UDP port {self.local_port}")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the receiver to stop and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def close(self) -> None:
        """Stop the receiver and close both socket handles."""
        self.stop(timeout=self.poll_interval + self.error_backoff + 1.0)
        self._recv_sock.close()
        self._send_sock.close()

    def _receive_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                data, addr = self._recv_sock.recvfrom(RECV_BUFFER_SIZE)
            except BlockingIOError:
                self._stop_event.wait(self.poll_interval)
                continue
            except OSError as e:
                if self._stop_event.is_set():
                    break
                logger.error(f"UDP recv error: {e}")
                self._stop_event.wait(self.error_backoff)
                continue
            self._handle_datagram(data, addr)

    def _handle_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        peer = PeerAddress(addr[0], addr[1])
        msg = decode_payload(data)
        logger.info(f"received hello from {peer}: {msg}")

        if self.on_message is not None:
            try:
                self.on_message(addr, msg)
            except Exception as e:
                logger.error(f"Error in message callback for {peer}: {e}")

        try:
            self._recv_sock.sendto(ack_payload(self.identity), addr)
        except OSError as e:
            logger.warning(f"failed to send ack to {peer}: {e}")
