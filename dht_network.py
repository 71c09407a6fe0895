"""
Network registry and delivery scheduler.

The network owns the SimPy environment and an arena of peers indexed by their
address. Peers never hold references to each other: neighbors are addresses
resolved here. Sending a packet schedules a timeout of a random latency whose
callback drops the packet in the mailbox of the target peer. SimPy processes
events with the same time in the order they were scheduled, so a run is
reproducible for a given seed.
"""

import logging
import random

import simpy

import config
from dht_errors import NoActivePeerError, UnknownAddressError
from dht_ring import Peer
from dht_routing import generate_node_id
from dht_storage import Store

logger = logging.getLogger("Network")


class Network:
    """Registry of the peers of one simulation."""

    def __init__(self, env=None, min_delay=config.MIN_DELAY, max_delay=config.MAX_DELAY,
                 seed=None, id_bits=config.ID_BITS):
        self.env = env if env is not None else simpy.Environment()
        self.min_delay, self.max_delay = config.validate_delays(min_delay, max_delay)
        self.rng = random.Random(seed)
        self.id_bits = id_bits
        self.peers = []

    def __str__(self):
        return f"Network({self.awake_count()}/{self.peer_count()} awake)"

    @property
    def now(self):
        return self.env.now

    # --------------------------- REGISTRY --------------------------- #

    def add_peer(self, node_id=None):
        """Create an idle peer with its store and start its mailbox process."""
        if node_id is None:
            node_id = generate_node_id(self.rng, self.id_bits)
        peer = Peer(self, len(self.peers), node_id)
        Store(peer)
        self.peers.append(peer)
        self.env.process(peer.run())
        logger.debug(f"Created {peer}")
        return peer

    def add_peers(self, count):
        return [self.add_peer() for _ in range(count)]

    def peer_at(self, address):
        if address is None or not 0 <= address < len(self.peers):
            raise UnknownAddressError(f"No peer at address {address}")
        return self.peers[address]

    def peer_count(self):
        return len(self.peers)

    def awake_peers(self):
        return [peer for peer in self.peers if not peer.idle]

    def awake_count(self):
        return len(self.awake_peers())

    def random_awake_address(self, exclude=None):
        """
        Address of a random active peer.

        Awake peers are assumed to advertise themselves to the whole network,
        so any of them can serve as a contact for a join.
        """
        candidates = [peer.address for peer in self.awake_peers() if peer.address != exclude]
        if not candidates:
            raise NoActivePeerError("No awake peer in the network")
        return self.rng.choice(candidates)

    # --------------------------- DELIVERY --------------------------- #

    def latency(self):
        """Delay of one message, uniform in [min_delay, max_delay)."""
        span = self.max_delay - self.min_delay
        if span <= 1:
            return self.min_delay
        return self.min_delay + self.rng.randrange(span)

    def schedule(self, delay, packet, target_address):
        """Deliver packet to the mailbox of target_address after delay."""
        target = self.peer_at(target_address)
        event = self.env.timeout(delay, value=packet)
        event.callbacks.append(lambda ev: self._deliver(target, ev.value))
        return event

    def _deliver(self, target, packet):
        if target.crashed:
            logger.warning(f"Dropping {type(packet).__name__} for crashed {target}")
            return
        target.messages.put(packet)

    def send(self, packet, target_address):
        return self.schedule(self.latency(), packet, target_address)

    def run(self, until=None):
        """Process events until the queue is empty (or until the given time)."""
        self.env.run(until=until)
