"""Tests for the Kademlia directory client."""

import json
import threading

import pytest

from dhtmsg.errors import DirectoryError
from dhtmsg.networking.kademlia_directory import (
    MAX_RECORD_PEERS,
    KademliaDirectory,
    decode_record,
    merge_record,
)
from dhtmsg.networking.directory import PeerAddress
from dhtmsg.networking.node_identity import derive_rendezvous_key
from dhtmsg.networking.ports import bind_hello_socket, discover_public_port


class TestRecords:
    """Tests for decode_record and merge_record."""

    def test_decode_list(self):
        assert decode_record(json.dumps(["1.2.3.4:5", "5.6.7.8:9"])) == ["1.2.3.4:5", "5.6.7.8:9"]

    def test_decode_bytes(self):
        assert decode_record(b'["1.2.3.4:5"]') == ["1.2.3.4:5"]

    @pytest.mark.parametrize("value", [None, "", "not json", "{}", "42", 42, '["ok:1", 7]'])
    def test_decode_garbage(self, value):
        """Anything other than a list of strings yields no usable entries."""
        assert all(isinstance(e, str) for e in decode_record(value))
        assert decode_record(value) in ([], ["ok:1"])

    def test_merge_appends(self):
        assert merge_record(["a:1"], "b:2") == ["a:1", "b:2"]

    def test_merge_moves_existing_entry_last(self):
        assert merge_record(["a:1", "b:2", "c:3"], "a:1") == ["b:2", "c:3", "a:1"]

    def test_merge_bounded(self):
        entries = [f"10.0.0.{i}:1" for i in range(MAX_RECORD_PEERS)]
        merged = merge_record(entries, "10.0.1.0:1")
        assert len(merged) == MAX_RECORD_PEERS
        assert merged[-1] == "10.0.1.0:1"
        assert "10.0.0.0:1" not in merged


class TestClientGuards:
    """Calls on a client that was never started."""

    def test_announce_before_start(self):
        client = KademliaDirectory(advertise_host="127.0.0.1")
        with pytest.raises(DirectoryError):
            client.announce(b"k" * 20, 4000)

    def test_lookup_before_start(self):
        client = KademliaDirectory(advertise_host="127.0.0.1")
        with pytest.raises(DirectoryError):
            list(client.lookup(b"k" * 20))

    def test_not_bootstrapped_before_start(self):
        assert KademliaDirectory(advertise_host="127.0.0.1").is_bootstrapped() is False

    def test_no_public_address(self):
        assert KademliaDirectory(advertise_host="127.0.0.1").public_address() is None

    def test_close_without_start(self):
        KademliaDirectory(advertise_host="127.0.0.1").close()


@pytest.fixture
def dht_client():
    """Factory for loopback DHT clients, closed at teardown."""
    clients = []

    def make(**kwargs) -> KademliaDirectory:
        kwargs.setdefault("interface", '127.0.0.1')
        kwargs.setdefault("advertise_host", '127.0.0.1')
        kwargs.setdefault("warmup", 0.0)
        kwargs.setdefault("request_timeout", 5.0)
        client = KademliaDirectory(**kwargs)
        clients.append(client)
        return client

    yield make
    for client in clients:
        client.close()


class TestLifecycle:
    """Tests against real DHT nodes on loopback."""

    def test_start_reports_local_address(self, dht_client):
        client = dht_client()
        client.start()
        address = client.local_address()
        assert address.host == '127.0.0.1'
        assert address.port > 0

    def test_two_nodes_announce_and_lookup(self, dht_client):
        """B joins through A and announces; A finds B's record."""
        node_a = dht_client()
        node_a.start()
        node_b = dht_client(bootstrap_nodes=[('127.0.0.1', node_a.local_address().port)])
        node_b.start()

        node_b.bootstrap()
        assert node_b.is_bootstrapped()

        key = derive_rendezvous_key("b0b0")
        assert node_b.announce(key, 4000) is True

        found = [addr for batch in node_a.lookup(key) for addr in batch]
        assert PeerAddress('127.0.0.1', 4000) in found

    def test_implied_port_is_dht_port(self, dht_client):
        node_a = dht_client()
        node_a.start()
        node_b = dht_client(bootstrap_nodes=[('127.0.0.1', node_a.local_address().port)])
        node_b.start()
        node_b.bootstrap()

        key = derive_rendezvous_key("b0b0")
        node_b.announce(key)

        found = [addr for batch in node_a.lookup(key) for addr in batch]
        assert found == [node_b.local_address()]

    def test_close_releases_port_and_thread(self, dht_client):
        client = dht_client()
        client.start()
        port = client.local_address().port
        thread = client._thread

        client.close()

        assert not thread.is_alive()
        sock = bind_hello_socket(port, '127.0.0.1')
        sock.close()

    def test_discovered_port_can_be_rebound(self):
        """The port learnt by port discovery is free for the hello socket."""
        info = discover_public_port(
            lambda port: KademliaDirectory(port=port, advertise_host='127.0.0.1', warmup=0.0),
            release_pause=0.0,
        )
        assert info.public_port is None

        sock = bind_hello_socket(info.local_port)
        try:
            assert sock.getsockname()[1] == info.local_port
        finally:
            sock.close()

    def test_failed_start_cleans_up(self, dht_client, udp_socket, wait_for):
        """A port already in use fails start without leaking the loop thread."""
        busy = udp_socket().getsockname()[1]
        before = set(threading.enumerate())
        client = dht_client(port=busy)

        with pytest.raises(DirectoryError):
            client.start()

        assert client._thread is None
        assert wait_for(lambda: set(threading.enumerate()) <= before)
        with pytest.raises(DirectoryError):
            client.announce(b"k" * 20, 4000)
