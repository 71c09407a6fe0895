"""
Ring DHT Simulations
====================
Driver of the ring: the only code that decides when peers wake up, leave,
send messages or use the hash table. Also holds the scenarios run from the
command line and the helpers that inspect the final state of the ring.
"""

import logging
from functools import partial

import numpy as np

import config
from dht_logging import get_logger
from dht_network import Network
from dht_routing import format_id, hash_key, midpoint

logger = logging.getLogger("Simulation")


# --------------------------- DRIVER OPERATIONS --------------------------- #

def awake_as_initial(peer):
    peer.awake_as_initial()


def awake(peer):
    peer.awake()


def leave(peer):
    peer.leave()


def put(peer, key, value):
    peer.application.put(key, value)


def get(peer, key):
    return peer.application.get(key)


def send_message(peer, target_id, text):
    peer.send_message(target_id, text)


# --------------------------- SETUP --------------------------- #

def create_network(num_nodes=config.NETWORK_SIZE, seed=None,
                   min_delay=config.MIN_DELAY, max_delay=config.MAX_DELAY):
    network = Network(min_delay=min_delay, max_delay=max_delay, seed=seed)
    network.add_peers(num_nodes)
    return network


def initialize(network):
    """Start the ring by waking up the first peer."""
    if network.peer_count() < 2:
        raise ValueError("The size of the network must be at least 2")
    logger.info("Initializing first node")
    initial = network.peer_at(0)
    awake_as_initial(initial)
    return initial


def build_ring(network, addresses=None):
    """Wake up peers one after the other, draining the events after each join."""
    if addresses is None:
        addresses = range(network.peer_count())
    addresses = list(addresses)
    awake_as_initial(network.peer_at(addresses[0]))
    for address in addresses[1:]:
        awake(network.peer_at(address))
        network.run()
    return network


# --------------------------- INSPECTION --------------------------- #

def walk_ring(network, start=None):
    """Peers met by following right pointers from start, each one once."""
    if start is None:
        awake_peers = network.awake_peers()
        if not awake_peers:
            return []
        start = awake_peers[0]

    ring = [start]
    peer = start
    for _ in range(network.peer_count()):
        if peer.right is None:
            break
        peer = network.peer_at(peer.right)
        if peer in ring:
            break
        ring.append(peer)
    return ring


def display_ring(network, start=None):
    return " => ".join(f"{format_id(peer.node_id)} ({peer.address})" for peer in walk_ring(network, start))


def check_ring(network):
    """Return the problems found in the ring, an empty list if it is sound."""
    awake_peers = network.awake_peers()
    if not awake_peers:
        return []

    problems = []
    ring = walk_ring(network, awake_peers[0])

    if len(ring) != len(awake_peers):
        problems.append(f"Only visited {len(ring)} of {len(awake_peers)} awake nodes")
    if ring[-1].right != ring[0].address:
        problems.append(f"The ring does not close: {ring[-1]} points to {ring[-1].right}")

    for peer in ring:
        if peer.idle:
            problems.append(f"Idle {peer} is linked in the ring")
            continue
        right = network.peer_at(peer.right)
        if right.left != peer.address:
            problems.append(f"{peer} points right to {right} but {right} points left to {right.left}")

    if len(ring) > 1:
        ids = [peer.node_id for peer in ring]
        descents = sum(1 for a, b in zip(ids, ids[1:] + ids[:1]) if a > b)
        if descents != 1:
            problems.append(f"Ids are not sorted around the ring ({descents} descents)")

    return problems


def find_owner(network, key):
    """Peer whose partition holds the hash of key, computed with a global view."""
    peers = sorted(network.awake_peers(), key=lambda peer: peer.node_id)
    if not peers:
        return None
    key_hash = hash_key(key, network.id_bits)
    for i, peer in enumerate(peers):
        low = midpoint(peers[i - 1].node_id, peer.node_id) if i > 0 else 0
        high = midpoint(peer.node_id, peers[i + 1].node_id) if i < len(peers) - 1 else None
        if low <= key_hash and (high is None or key_hash < high):
            return peer
    return peers[-1]


def load_statistics(network):
    """Number of entries held per awake peer (owned and replicated)."""
    counts = np.array([len(peer.application) for peer in network.awake_peers()])
    if counts.size == 0:
        return {"peers": 0, "total": 0, "mean": 0.0, "std": 0.0, "min": 0, "max": 0}
    return {
        "peers": int(counts.size),
        "total": int(counts.sum()),
        "mean": float(counts.mean()),
        "std": float(counts.std()),
        "min": int(counts.min()),
        "max": int(counts.max()),
    }


def print_ring(network):
    print("\nFinal ring:")
    for peer in walk_ring(network):
        print(f"  {peer!r}")
    problems = check_ring(network)
    for problem in problems:
        print(f"WARNING: {problem}")
    if not problems:
        print(f"Ring is consistent ({network.awake_count()} awake nodes)")


def print_storage_summary(network):
    print("\nStorage summary:")
    for peer in walk_ring(network):
        print(f"  {peer} stores {len(peer.application)} entries")
    stats = load_statistics(network)
    print(f"\nTotal: {stats['total']} entries on {stats['peers']} nodes "
          f"(mean {stats['mean']:.2f}, std {stats['std']:.2f}, min {stats['min']}, max {stats['max']})")


def log_when_resolved(handle, key, log=logger):
    """Log the value of a get once its answer arrives."""
    handle.callbacks.append(lambda event: log.info(f"For key `{key}`, got: {event.value}"))
    return handle


# --------------------------- NODE CONTROLLER --------------------------- #

class NodeController:
    """
    Triggers the scenario: every action of the list is executed in turn, one
    per control step.
    """

    def __init__(self, network, step=config.CONTROL_STEP):
        self.network = network
        self.env = network.env
        self.step = step
        self.actions = []
        self.action_index = 0
        self.results = {}
        self.logger = get_logger("Node Controller", self.env)

    def add_default_actions(self):
        for address in range(1, self.network.peer_count()):
            self.actions.append(partial(self.wake_up_node, address))

        self.actions.append(self.display_ring)
        self.actions.append(partial(self.disconnect_node, 0))

        self.actions.append(partial(self.send_message_random, "Hello world"))
        self.actions.append(partial(self.send_message_random, "Hello universe"))
        self.actions.append(partial(self.send_message_random, "Hello cosmos"))

        self.actions.append(partial(self.put, "La clef", "La valeur"))
        self.actions.append(partial(self.get, "La clef"))
        return self

    def execute(self):
        """Run the next action. Returns False once every action has run."""
        if self.action_index == len(self.actions):
            return False
        self.logger.info(f"======================== [Action {self.action_index}] ========================")
        self.actions[self.action_index]()
        self.action_index += 1
        return True

    def run(self):
        while self.execute():
            yield self.env.timeout(self.step)

    def random_awake_peer(self):
        return self.network.peer_at(self.network.random_awake_address())

    def wake_up_node(self, address):
        peer = self.network.peer_at(address)
        self.logger.info(f"Waking up node {address}")
        awake(peer)

    def disconnect_node(self, address):
        self.logger.info(f"Killing node {address}")
        leave(self.network.peer_at(address))

    def display_ring(self):
        self.logger.info(f"Final ring: {display_ring(self.network)}")

    def send_message_random(self, message):
        sender = self.random_awake_peer()
        target = self.random_awake_peer()
        self.logger.info(f"Sending `{message}` from {sender} to {target}")
        send_message(sender, target.node_id, message)

    def put(self, key, value):
        self.logger.info(f"Inserting key/value in the dht: {key}/{value}")
        put(self.random_awake_peer(), key, value)

    def get(self, key):
        self.logger.info(f"Fetching `{key}` from the DHT")
        handle = get(self.random_awake_peer(), key)
        handle.callbacks.append(lambda event: self.results.__setitem__(key, event.value))
        log_when_resolved(handle, key, self.logger)
        return handle


def run_controller_simulation(num_nodes=config.NETWORK_SIZE, seed=None,
                              min_delay=config.MIN_DELAY, max_delay=config.MAX_DELAY,
                              step=config.CONTROL_STEP):
    """Wake the ring, kill its first node, chat and use the hash table."""
    network = create_network(num_nodes, seed, min_delay, max_delay)
    initialize(network)
    controller = NodeController(network, step).add_default_actions()
    network.env.process(controller.run())
    network.run()
    return network, controller


# --------------------------- SCENARIOS --------------------------- #

def run_ring_simulation(duration=5000, max_nodes=config.NETWORK_SIZE, seed=None,
                        min_delay=config.MIN_DELAY, max_delay=config.MAX_DELAY, node_removal=True):
    """Peers join periodically while others leave, then the ring is checked."""
    network = create_network(max_nodes, seed, min_delay, max_delay)
    env = network.env
    rng = network.rng
    initial = initialize(network)

    def node_creator():
        for peer in network.peers[1:]:
            yield env.timeout(rng.randint(50, 150))
            awake(peer)

    def node_remover():
        while True:
            yield env.timeout(rng.randint(200, 300))
            candidates = [peer for peer in network.awake_peers() if peer is not initial]
            if len(candidates) > 2:
                leave(rng.choice(candidates))

    env.process(node_creator())
    if node_removal:
        env.process(node_remover())
    network.run(until=duration)
    return network


def run_routing_simulation(duration=5000, max_nodes=config.NETWORK_SIZE, seed=None,
                           min_delay=config.MIN_DELAY, max_delay=config.MAX_DELAY):
    """Build a ring then route chat messages between random peers (and to missing ids)."""
    network = create_network(max_nodes, seed, min_delay, max_delay)
    env = network.env
    rng = network.rng
    initialize(network)

    def node_creator():
        for peer in network.peers[1:]:
            yield env.timeout(rng.randint(50, 150))
            awake(peer)

    def message_sender():
        count = 0
        yield env.timeout(100)
        while True:
            yield env.timeout(rng.randint(20, 60))
            awake_peers = network.awake_peers()
            if len(awake_peers) < 2:
                continue
            sender = rng.choice(awake_peers)
            if rng.random() < 0.2:
                target_id = rng.getrandbits(network.id_bits)
            else:
                target_id = rng.choice(awake_peers).node_id
            count += 1
            logger.info(f"{sender} sends message {count} to {format_id(target_id)}")
            send_message(sender, target_id, f"Message {count}")

    env.process(node_creator())
    env.process(message_sender())
    network.run(until=duration)
    return network


def run_storage_simulation(duration=5000, max_nodes=config.NETWORK_SIZE, seed=None,
                           min_delay=config.MIN_DELAY, max_delay=config.MAX_DELAY, node_removal=False):
    """Build a ring, then put and get keys from random peers. Returns the network and the get answers."""
    network = create_network(max_nodes, seed, min_delay, max_delay)
    env = network.env
    rng = network.rng
    initial = initialize(network)
    next_data_id = 0
    answers = {}

    def node_creator():
        for peer in network.peers[1:]:
            yield env.timeout(rng.randint(50, 150))
            awake(peer)

    def node_remover():
        yield env.timeout(max_nodes * 150)
        while True:
            yield env.timeout(rng.randint(300, 500))
            candidates = [peer for peer in network.awake_peers() if peer is not initial]
            if len(candidates) > 2:
                leave(rng.choice(candidates))

    def data_creator():
        nonlocal next_data_id
        yield env.timeout(max_nodes * 150)
        while True:
            yield env.timeout(rng.randint(20, 80))
            key = f"key-{next_data_id}"
            value = f"value-{next_data_id}"
            next_data_id += 1
            put(rng.choice(network.awake_peers()), key, value)

    def data_retriever():
        yield env.timeout(max_nodes * 150 + 200)
        while True:
            yield env.timeout(rng.randint(50, 100))
            if next_data_id == 0:
                continue
            key = f"key-{rng.randint(0, next_data_id - 1)}"
            handle = log_when_resolved(get(rng.choice(network.awake_peers()), key), key)
            handle.callbacks.append(lambda event, key=key: answers.__setitem__(key, event.value))

    env.process(node_creator())
    if node_removal:
        env.process(node_remover())
    env.process(data_creator())
    env.process(data_retriever())
    network.run(until=duration)
    return network, answers
