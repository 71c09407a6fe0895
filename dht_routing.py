"""
Identifier space and routing decisions of the ring.

Peer ids and key hashes share the same space, [0, 2^ID_BITS). The ring is the
sorted list of active ids with a wraparound between the greatest and the
smallest one (the seam). Routing never crosses the seam: a target greater than
the local id is searched on the right, a smaller one on the left.
"""

import hashlib
from enum import Enum

import config


class Direction(Enum):
    LOCAL = "local"
    LEFT = "left"
    RIGHT = "right"
    NOT_FOUND = "not found"


def generate_node_id(rng, id_bits=config.ID_BITS):
    """Draw a random peer id from a random.Random instance."""
    return rng.getrandbits(id_bits)


def hash_key(key, id_bits=config.ID_BITS):
    """Hash a key into the identifier space (top bits of its SHA-1)."""
    digest = hashlib.sha1(str(key).encode()).hexdigest()
    return int(digest, 16) >> (160 - id_bits)


def midpoint(a, b):
    """Middle of the interval [a, b], rounded down. Requires a <= b."""
    return a + (b - a) // 2


def in_arc(start, node_id, end):
    """True if node_id lies strictly inside the clockwise arc from start to end."""
    if start < end:
        return start < node_id < end
    return node_id > start or node_id < end


def next_direction(node_id, left_id, right_id, target_id):
    """
    Decide where a packet for target_id goes from the peer node_id.

    A neighbor is only chosen if it does not overshoot the target. When the
    target lies between the local peer and the neighbor on its side (or beyond
    the seam), the peer that should own that id is missing and NOT_FOUND is
    returned.
    """
    if target_id == node_id:
        return Direction.LOCAL
    if target_id > node_id:
        if node_id < right_id <= target_id:
            return Direction.RIGHT
        return Direction.NOT_FOUND
    if target_id <= left_id < node_id:
        return Direction.LEFT
    return Direction.NOT_FOUND


def format_id(node_id):
    return f"{node_id:016x}"
