"""Exceptions raised by the ring DHT."""


class DHTError(Exception):
    """Base class for every error raised by the DHT."""


class PeerStateError(DHTError):
    """An operation was called in the wrong lifecycle state (idle vs. active)."""


class NoActivePeerError(DHTError):
    """No active peer is available to bootstrap a join."""


class UnknownAddressError(DHTError):
    """An address does not match any peer of the network."""


class IdentifierCollisionError(DHTError):
    """A joining peer has the same identifier as the receiving peer."""


class UnknownPacketError(DHTError):
    """A handler received a packet variant it does not know."""
