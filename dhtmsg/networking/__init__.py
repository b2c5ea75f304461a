"""
Networking layer for rendezvous and greetings.

This package provides identity-to-key derivation, the directory client
contract and its implementations, the announce scheduler, the discovery
loops and the UDP greeting protocol.
"""

from .node_identity import RendezvousKey, derive_rendezvous_key, random_hex_id
from .directory import DirectoryClient, MemoryDirectory, MemoryRegistry, PeerAddress
from .scheduler import AnnounceScheduler, AnnounceSchedule
from .greeting import GreetingHandler
from .discovery import DiscoveryLoop, IdleAnnounceLoop, LoopState
from .ports import PortInfo, PortStrategy

__all__ = [
    'RendezvousKey', 'derive_rendezvous_key', 'random_hex_id',
    'DirectoryClient', 'MemoryDirectory', 'MemoryRegistry', 'PeerAddress',
    'AnnounceScheduler', 'AnnounceSchedule',
    'GreetingHandler',
    'DiscoveryLoop', 'IdleAnnounceLoop', 'LoopState',
    'PortInfo', 'PortStrategy',
]
