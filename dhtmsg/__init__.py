"""
dhtmsg: find a peer through a DHT and say hello over UDP.

Two nodes derive rendezvous keys from their identities, announce
themselves in a distributed directory, look each other up and exchange a
plaintext greeting datagram to prove reachability.
"""

import logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
