"""
Ring membership and routing.

A peer is idle until it is awakened. The first peer of a ring is awakened as
the initial peer and links to itself; every other peer sends a Discovery to a
random awake peer, which forwards it around the ring until it reaches the two
peers the newcomer belongs between. The peer that inserts the newcomer answers
with a Welcome and tells its former neighbor to switch to the newcomer.
Packets reaching a newcomer before its Welcome are kept and handled once it
has adopted its neighbors. A switch names the neighbor it replaces, so that
switches crossing each other on the network are applied in the right order.

Peers only know the addresses of their two neighbors. Packets addressed to a
peer id are routed by comparing ids: greater ids are on the right, smaller ids
on the left.
"""

import simpy

from dht_errors import DHTError, IdentifierCollisionError, PeerStateError, UnknownPacketError
from dht_logging import get_logger
from dht_packets import (
    ROUTABLE_PACKETS, STORAGE_PACKETS,
    Discovery, GetResponse, RouteMessage, Side, SwitchNeighbor, Undeliverable, Welcome,
)
from dht_routing import Direction, format_id, in_arc, next_direction

NODE_NOT_FOUND = "Node not found"


class Peer:
    """
    A peer of the ring.

    Attributes:
        network (Network): registry used to reach other peers.
        address (int): index of the peer in the network.
        node_id (int): position of the peer on the ring.
        idle (bool): True while the peer is not part of the ring.
        joining (bool): True between the Discovery and the Welcome.
        left, right (int): addresses of the neighbors, None while idle.
        address_cache (dict): last known address of the ids seen while routing.
        application (Store): storage layer attached to this peer.
        messages (simpy.Store): mailbox consumed by run().
    """

    def __init__(self, network, address, node_id):
        self.network = network
        self.env = network.env
        self.address = address
        self.node_id = node_id
        self.idle = True
        self.joining = False
        self.crashed = False
        self.early_packets = []
        self.deferred_switches = []
        self.left = None
        self.right = None
        self.address_cache = {}
        self.application = None
        self.inbox = []
        self.undelivered = []
        self.messages = simpy.Store(self.env)
        self.logger = get_logger(f"Peer {format_id(node_id)}", self.env)

    def __str__(self):
        return f"Peer({self.address})"

    def __repr__(self):
        state = "idle" if self.idle else f"left={self.left}, right={self.right}"
        return f"Peer(address={self.address}, id={format_id(self.node_id)}, {state})"

    # --------------------------- NEIGHBORS --------------------------- #

    @property
    def left_id(self):
        return self.network.peer_at(self.left).node_id

    @property
    def right_id(self):
        return self.network.peer_at(self.right).node_id

    def is_alone(self):
        self._check_active("inspect its neighbors")
        return self.left == self.address and self.right == self.address

    def is_first(self):
        """True if our left neighbor has a greater id (we hold the smallest id)."""
        self._check_active("inspect its neighbors")
        return self.node_id < self.left_id

    def is_last(self):
        """True if our right neighbor has a smaller id (we hold the greatest id)."""
        self._check_active("inspect its neighbors")
        return self.node_id > self.right_id

    def is_edge(self):
        return self.is_first() or self.is_last()

    def send(self, address, packet):
        self.network.send(packet, address)

    def send_left(self, packet):
        self.send(self.left, packet)

    def send_right(self, packet):
        self.send(self.right, packet)

    # --------------------------- LIFECYCLE --------------------------- #

    def awake_as_initial(self):
        """Seed a new ring made of this peer only."""
        self._check_idle("awake")
        self.left = self.address
        self.right = self.address
        self.idle = False
        self._update_logger()
        self.logger.info("Awaken as initial node")

    def awake(self):
        """Ask a random awake peer to insert us in the ring. We stay idle until welcomed."""
        self._check_idle("awake")
        contact = self.network.random_awake_address(exclude=self.address)
        self.joining = True
        self._update_logger()
        self.logger.debug(f"Starting discovery, contacting node {contact} and waiting for response")
        self.send(contact, Discovery(self.address, self.node_id))

    def leave(self):
        """Leave the ring, telling each neighbor to link to the other one."""
        self._check_active("leave")
        self.logger.info("Leaving the ring (notifying neighbors)")
        if not self.is_alone():
            self.send_left(SwitchNeighbor(Side.RIGHT, self.right, self.address))
            self.send_right(SwitchNeighbor(Side.LEFT, self.left, self.address))
        self.idle = True
        self.left = None
        self.right = None
        self.address_cache.clear()
        self.deferred_switches.clear()

    def _check_idle(self, action):
        if self.joining:
            raise PeerStateError(f"{self} is already joining, cannot {action}")
        if not self.idle:
            raise PeerStateError(f"{self} is already awake, cannot {action}")

    def _check_active(self, action):
        if self.idle:
            raise PeerStateError(f"{self} is idle, cannot {action}")

    def _update_logger(self):
        self.logger = get_logger(f"Peer {format_id(self.node_id)} (node {self.address})", self.env)

    # --------------------------- MAILBOX --------------------------- #

    def run(self):
        """Main peer process: handle packets one at a time."""
        while True:
            packet = yield self.messages.get()
            self.logger.debug(f"Received packet: {packet}")
            self.process(packet)
            if self.crashed:
                return

    def process(self, packet):
        """Handle one packet, logging protocol errors. An unknown packet stops the peer."""
        try:
            self.handle(packet)
        except UnknownPacketError as e:
            self.logger.critical(f"Stopping: {e}")
            self.crashed = True
        except DHTError as e:
            self.logger.error(f"Failed to handle {type(packet).__name__}: {e}")

    def handle(self, packet):
        if self.joining and not isinstance(packet, Welcome):
            # our new neighbors already point to us, the welcome is on its way
            self.logger.debug(f"Keeping {type(packet).__name__} until welcomed")
            self.early_packets.append(packet)
        elif isinstance(packet, Discovery):
            self.on_discovery(packet)
        elif isinstance(packet, Welcome):
            self.on_welcome(packet)
        elif isinstance(packet, SwitchNeighbor):
            self.on_switch_neighbor(packet)
        elif isinstance(packet, ROUTABLE_PACKETS):
            self.route(packet)
        elif isinstance(packet, STORAGE_PACKETS):
            self._to_application(packet)
        else:
            raise UnknownPacketError(f"Event not recognized: {packet!r}")

    def _to_application(self, packet):
        if self.application is None:
            raise UnknownPacketError(f"No application to handle {packet!r}")
        self.application.handle(packet)

    # --------------------------- JOIN --------------------------- #

    def on_discovery(self, packet):
        """A peer wants to join: insert it next to us or pass the request along."""
        self._check_active("handle a discovery")
        joiner = packet.from_address

        if packet.from_id == self.node_id:
            raise IdentifierCollisionError(f"Node {joiner} has the same id as {self}")

        if self.is_alone():
            self.send(joiner, Welcome(self.address, self.address))
            self.left = joiner
            self.right = joiner
            self.logger.debug(f"Joining {joiner} to form a ring of size 2")

        elif packet.from_id > self.node_id:
            right_id = self.right_id
            # Either the joiner is lower than our right neighbor, or we are the
            # last peer and the joiner becomes the new last one.
            if packet.from_id < right_id or self.node_id > right_id:
                self.logger.debug(f"Welcoming node {joiner} as my new right node")
                self.send(joiner, Welcome(self.address, self.right))
                self.logger.debug(f"Notifying node {self.right} of their new left node")
                self.send_right(SwitchNeighbor(Side.LEFT, joiner, self.address))
                self.right = joiner
            else:
                self.logger.debug(f"Following discovery of {joiner} to {self.right}")
                self.send_right(packet)

        else:
            left_id = self.left_id
            if packet.from_id > left_id or self.node_id < left_id:
                self.logger.debug(f"Welcoming node {joiner} as my new left node")
                self.send(joiner, Welcome(self.left, self.address))
                self.logger.debug(f"Notifying node {self.left} of their new right node")
                self.send_left(SwitchNeighbor(Side.RIGHT, joiner, self.address))
                self.left = joiner
            else:
                self.logger.debug(f"Following discovery of {joiner} to {self.left}")
                self.send_left(packet)

    def on_welcome(self, packet):
        if not self.idle:
            raise PeerStateError(f"{self} is already part of the ring, ignoring welcome")
        self.left = packet.left_address
        self.right = packet.right_address
        self.idle = False
        self.joining = False
        self.logger.info(f"Awaken and joined the ring (left={self.left}, right={self.right})")
        self.logger.debug(f"The ring has now a size of {self.network.awake_count()}")

        early_packets, self.early_packets = self.early_packets, []
        for early in early_packets:
            self.process(early)
            if self.crashed:
                break

    def on_switch_neighbor(self, packet):
        """
        Replace a neighbor, if it is still the one the sender knew.

        When the neighbor named by the switch is not ours yet, an earlier
        switch is still on its way and this one waits for it. When our
        neighbor already sits between that one and us, the link was split
        by another join meanwhile: the switch is passed to our neighbor.
        """
        self._check_active("switch neighbors")
        side = "left" if packet.is_left else "right"
        current = self.left if packet.is_left else self.right

        if current == packet.old_address:
            self.logger.debug(f"Switching {side} neighbor from {current} to {packet.new_address}")
            if packet.is_left:
                self.left = packet.new_address
            else:
                self.right = packet.new_address
            self._retry_deferred_switches()
        elif self._is_closer(packet.is_left, packet.old_address, current):
            self.logger.debug(f"Deferring switch of {side} neighbor {packet.old_address}, still at {current}")
            self.deferred_switches.append(packet)
        else:
            self.logger.debug(f"Passing switch of {side} neighbor {packet.old_address} to {current}")
            self.send(current, packet)

    def _is_closer(self, is_left, address, than):
        """True if the peer at address sits between the peer at than and us, on the given side."""
        node_id = self.network.peer_at(address).node_id
        other_id = self.network.peer_at(than).node_id
        if is_left:
            return in_arc(other_id, node_id, self.node_id)
        return in_arc(self.node_id, node_id, other_id)

    def _retry_deferred_switches(self):
        deferred, self.deferred_switches = self.deferred_switches, []
        for packet in deferred:
            self.on_switch_neighbor(packet)

    # --------------------------- ROUTING --------------------------- #

    def send_message(self, target_id, text):
        """Send a chat message to the peer holding target_id."""
        self.route(RouteMessage(self.address, self.node_id, target_id, text))

    def route(self, packet):
        """Forward a routable packet one hop closer to its target, or handle it here."""
        self._check_active("route")
        self.update_routing_cache(packet.sender_id, packet.sender_address)

        cached = self.address_cache.get(packet.target_id)
        if packet.target_id != self.node_id and cached is not None:
            self.logger.debug(f"Routing packet directly to {cached} (address was cached)")
            self.send(cached, packet)
            return

        direction = next_direction(self.node_id, self.left_id, self.right_id, packet.target_id)
        if direction is Direction.RIGHT:
            self.logger.debug(f"Routing packet to right: {self.right}")
            self.send_right(packet)
        elif direction is Direction.LEFT:
            self.logger.debug(f"Routing packet to left: {self.left}")
            self.send_left(packet)
        elif direction is Direction.LOCAL:
            self._deliver_locally(packet)
        else:
            # the target should sit between us and the next neighbor: it is gone
            self._node_not_found(packet)

    def update_routing_cache(self, node_id, address):
        if node_id != self.node_id:
            self.address_cache[node_id] = address

    def _node_not_found(self, packet):
        target = format_id(packet.target_id)
        if packet.sender_id == self.node_id:
            self.logger.error(f"Node {target} not found")
        elif isinstance(packet, Undeliverable):
            self.logger.error(f"Node {target} not found, dropping failure notice: {packet.reason}")
        else:
            self.logger.warning(f"Node {target} not found, notifying sender {packet.sender_address}")
            self.route(Undeliverable(self.address, self.node_id, packet.sender_id, NODE_NOT_FOUND, packet))

    def _deliver_locally(self, packet):
        if isinstance(packet, RouteMessage):
            self.inbox.append(packet)
            self.logger.info(f"Received a message from {format_id(packet.sender_id)}: {packet.payload}")
        elif isinstance(packet, Undeliverable):
            self.undelivered.append(packet)
            self.logger.error(
                f"Was not able to deliver a message to "
                f"{format_id(packet.original_packet.target_id)}: {packet.reason}"
            )
        elif isinstance(packet, GetResponse):
            self._to_application(packet)
        else:
            raise UnknownPacketError(f"Routable packet not recognized: {packet!r}")
