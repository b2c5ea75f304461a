"""Shared fixtures for dhtmsg tests."""

import socket
import time

import pytest

from dhtmsg.networking.directory import MemoryRegistry


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def poll_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return poll_until


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return MemoryRegistry()


@pytest.fixture
def udp_socket():
    """Factory for loopback UDP sockets, closed at teardown."""
    sockets = []

    def make(timeout: float = 2.0) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind(('127.0.0.1', 0))
        sock.settimeout(timeout)
        sockets.append(sock)
        return sock

    yield make
    for sock in sockets:
        sock.close()
