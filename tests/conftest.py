"""
Shared fixtures for the ring DHT tests.
"""

import matplotlib

matplotlib.use("Agg")

import pytest

from dht_network import Network
from simulation import build_ring

# Small identifier space so that tests can place peers and keys by hand.
SMALL_BITS = 8
RING_IDS = [10, 50, 90, 130, 170]


def make_network(ids=None, size=None, seed=0, min_delay=1, max_delay=10, id_bits=SMALL_BITS):
    network = Network(min_delay=min_delay, max_delay=max_delay, seed=seed, id_bits=id_bits)
    if ids is not None:
        for node_id in ids:
            network.add_peer(node_id)
    else:
        network.add_peers(size)
    return network


def make_ring(ids=None, size=None, **kwargs):
    """Network whose peers all joined one after the other."""
    network = make_network(ids=ids, size=size, **kwargs)
    build_ring(network)
    return network


def use_identity_hash(network):
    """Make every store hash an integer key to itself."""
    for peer in network.peers:
        peer.application.key_hash = lambda key: key
    return network


@pytest.fixture
def network():
    return make_network(size=0)


@pytest.fixture
def ring():
    """Ring of five peers with ids 10, 50, 90, 130, 170 at addresses 0 to 4."""
    return make_ring(ids=RING_IDS)


@pytest.fixture
def hashed_ring(ring):
    """Same ring, integer keys are their own hash."""
    return use_identity_hash(ring)
