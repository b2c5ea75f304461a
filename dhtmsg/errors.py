"""
Exception hierarchy for dhtmsg.

Startup failures (bad identity, bind failure, directory start failure) are
fatal and surface to the entry point. Directory and socket errors raised
while the loops are running are contained by the loop that hit them.
"""


class DhtMsgError(Exception):
    """Base class for all dhtmsg errors."""


class IdentityError(DhtMsgError, ValueError):
    """An identity string could not be decoded as hex."""

    def __init__(self, identity_hex: str, reason: str = "invalid hex ID string"):
        self.identity_hex = identity_hex
        super().__init__(f"{reason}: {identity_hex!r}")


class DirectoryError(DhtMsgError):
    """A directory operation (bootstrap, announce, lookup) failed."""


class StartupError(DhtMsgError):
    """The node could not be brought up (socket bind, directory start)."""


class ConfigError(DhtMsgError, ValueError):
    """The runtime configuration is invalid."""
