"""
Key/value storage on top of the ring.

Keys are hashed into the identifier space of the peers. Each peer owns the
part of the space that is closer to its id than to its neighbors' ids, cut at
the midpoints; the peers at the seam of the ring also own everything beyond
the smallest and the greatest id. The owner keeps the value and replicates it
on both neighbors, so any of the three can answer a get.
"""

from collections import defaultdict

from dht_errors import PeerStateError, UnknownPacketError
from dht_logging import get_logger
from dht_packets import Get, GetResponse, Put, Replicate
from dht_routing import format_id, hash_key, midpoint


class Store:
    """
    Storage layer of one peer.

    Owned and replicated entries share the same table. Local get() calls
    return a SimPy event, triggered with the value (None when the key is
    missing) once the answer comes back.
    """

    def __init__(self, peer):
        self.peer = peer
        self.env = peer.env
        self.id_bits = peer.network.id_bits
        self.table = {}
        self.pending_gets = defaultdict(list)
        self.logger = get_logger(f"Store {format_id(peer.node_id)} (node {peer.address})", self.env)
        peer.application = self

    def __str__(self):
        return f"Store({self.peer.address})"

    def __len__(self):
        return len(self.table)

    def key_hash(self, key):
        return hash_key(key, self.id_bits)

    def handle(self, packet):
        if isinstance(packet, Put):
            self.on_put(packet)
        elif isinstance(packet, Replicate):
            self.on_replicate(packet)
        elif isinstance(packet, Get):
            self.on_get(packet)
        elif isinstance(packet, GetResponse):
            self.on_get_response(packet)
        else:
            raise UnknownPacketError(f"Event not recognized: {packet!r}")

    # --------------------------- PUT --------------------------- #

    def put(self, key, value):
        """Put a mapping in the ring, starting from this peer."""
        self.on_put(Put(key, value))

    def on_put(self, packet):
        peer = self.peer
        key_hash = self.key_hash(packet.key)

        if peer.is_alone():
            self.store(packet)
        elif key_hash >= peer.node_id:
            if peer.is_last() or key_hash < midpoint(peer.node_id, peer.right_id):
                self.store(packet)
            else:
                self.logger.debug(f"Forwarding put of `{packet.key}` to right: {peer.right}")
                peer.send_right(packet)
        else:
            if peer.is_first() or key_hash >= midpoint(peer.left_id, peer.node_id):
                self.store(packet)
            else:
                self.logger.debug(f"Forwarding put of `{packet.key}` to left: {peer.left}")
                peer.send_left(packet)

    def store(self, packet):
        """Keep the value and replicate it on both neighbors."""
        self.table[packet.key] = packet.value

        replication = Replicate.from_put(packet)
        for address in self.replica_addresses():
            self.peer.send(address, replication)

        self.logger.debug(f"Stored value for `{packet.key}` (hash: {format_id(self.key_hash(packet.key))})")

    def replica_addresses(self):
        peer = self.peer
        # left and right are the same peer in a ring of two, and ourselves in a ring of one
        return [address for address in dict.fromkeys((peer.left, peer.right)) if address != peer.address]

    def on_replicate(self, packet):
        self.table[packet.key] = packet.value
        self.logger.debug(f"Replicated storage for `{packet.key}`")

    # --------------------------- GET --------------------------- #

    def get(self, key):
        """Look a key up in the ring. Returns an event triggered with the value."""
        if self.peer.idle:
            raise PeerStateError(f"{self.peer} is idle, cannot get `{key}`")

        handle = self.env.event()
        self.pending_gets[key].append(handle)
        self.on_get(Get(self.peer.address, self.peer.node_id, key))
        return handle

    def on_get(self, packet):
        peer = self.peer
        key_hash = self.key_hash(packet.key)

        if not peer.is_alone():
            if key_hash > peer.right_id and not peer.is_last():
                self.logger.debug(f"Forwarding get of `{packet.key}` to right: {peer.right}")
                peer.send_right(packet)
                return
            if key_hash < peer.left_id and not peer.is_first():
                self.logger.debug(f"Forwarding get of `{packet.key}` to left: {peer.left}")
                peer.send_left(packet)
                return

        # we are the owner or one of its neighbors: we hold the value or a replica
        value = self.table.get(packet.key)
        if value is None:
            self.logger.debug(f"No data for `{packet.key}`")
        else:
            self.logger.debug(f"Found data for `{packet.key}`")

        peer.update_routing_cache(packet.requester_id, packet.requester_address)
        peer.route(GetResponse(peer.address, peer.node_id, packet.requester_id, packet.key, value))

    def on_get_response(self, packet):
        handles = self.pending_gets.pop(packet.key, [])
        if not handles:
            self.logger.warning(f"Got a response for `{packet.key}` but no get is pending")
        for handle in handles:
            handle.succeed(packet.value)
