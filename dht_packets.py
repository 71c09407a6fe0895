"""
Packets exchanged between peers of the ring.

Every packet is an immutable dataclass. Ring packets (Discovery, Welcome,
SwitchNeighbor) are always sent to a known address. Routable packets carry a
sender and a target id and travel with Peer.route. Storage packets (Put,
Replicate, Get) are sent to a neighbor and handed to the store of the
receiving peer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Side(Enum):
    LEFT = "left"
    RIGHT = "right"


# --------------------------- RING --------------------------- #

@dataclass(frozen=True)
class Discovery:
    """Join request, forwarded around the ring until it reaches its spot."""
    from_address: int
    from_id: int


@dataclass(frozen=True)
class Welcome:
    """Join reply: the two neighbors the joining peer must adopt."""
    left_address: int
    right_address: int


@dataclass(frozen=True)
class SwitchNeighbor:
    """Replace the neighbor at old_address on the given side by new_address."""
    side: Side
    new_address: int
    old_address: int

    @property
    def is_left(self):
        return self.side is Side.LEFT


# --------------------------- ROUTABLE --------------------------- #

@dataclass(frozen=True)
class Routable:
    sender_address: int
    sender_id: int
    target_id: int


@dataclass(frozen=True)
class RouteMessage(Routable):
    """Chat message between two peers."""
    payload: str


@dataclass(frozen=True)
class Undeliverable(Routable):
    """Routing failure notice, routed back to the sender of original_packet."""
    reason: str
    original_packet: Routable


@dataclass(frozen=True)
class GetResponse(Routable):
    """Answer to a Get, routed to the requester (target_id)."""
    key: Any
    value: Any


# --------------------------- STORAGE --------------------------- #

@dataclass(frozen=True)
class Put:
    key: Any
    value: Any


@dataclass(frozen=True)
class Replicate:
    key: Any
    value: Any

    @classmethod
    def from_put(cls, packet):
        return cls(packet.key, packet.value)


@dataclass(frozen=True)
class Get:
    requester_address: int
    requester_id: int
    key: Any


ROUTABLE_PACKETS = (RouteMessage, Undeliverable, GetResponse)
STORAGE_PACKETS = (Put, Replicate, Get)
