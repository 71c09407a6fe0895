"""
Tests for ring membership: joins, leaves and routing between peers.
"""

import logging

import pytest

from dht_errors import NoActivePeerError, PeerStateError
from dht_packets import Discovery, RouteMessage, Side, SwitchNeighbor
from dht_ring import NODE_NOT_FOUND
from simulation import build_ring, check_ring, walk_ring

from conftest import make_network, make_ring


class TestLifecycle:

    def test_awake_twice(self, ring):
        with pytest.raises(PeerStateError):
            ring.peers[0].awake_as_initial()
        with pytest.raises(PeerStateError):
            ring.peers[1].awake()

    def test_idle_peer_cannot_act(self, network):
        peer = network.add_peer(10)
        with pytest.raises(PeerStateError):
            peer.leave()
        with pytest.raises(PeerStateError):
            peer.send_message(20, "hello")
        with pytest.raises(PeerStateError):
            peer.is_alone()

    def test_awake_without_contact(self, network):
        """A join needs an awake peer to contact."""
        peers = network.add_peers(2)
        with pytest.raises(NoActivePeerError):
            peers[0].awake()
        assert peers[0].idle

    def test_initial_peer_is_alone(self, network):
        peer = network.add_peer(10)
        peer.awake_as_initial()
        assert peer.is_alone()
        assert peer.left == peer.right == peer.address
        assert check_ring(network) == []

    def test_joiner_stays_idle_until_welcomed(self, network):
        first, second = network.add_peer(10), network.add_peer(50)
        first.awake_as_initial()
        second.awake()
        assert second.idle
        network.run()
        assert not second.idle

    def test_awake_while_joining(self, network):
        first, second = network.add_peer(10), network.add_peer(50)
        first.awake_as_initial()
        second.awake()
        assert second.joining
        with pytest.raises(PeerStateError):
            second.awake()
        network.run()
        assert not second.joining


class TestJoin:

    def test_neighbors(self, ring):
        """Peers are linked in increasing id order, the ring closing on itself."""
        assert [(peer.left, peer.right) for peer in ring.peers] == [
            (4, 1), (0, 2), (1, 3), (2, 4), (3, 0),
        ]
        assert check_ring(ring) == []

    def test_edges(self, ring):
        first, middle, last = ring.peers[0], ring.peers[2], ring.peers[4]
        assert first.is_first() and not first.is_last()
        assert last.is_last() and not last.is_first()
        assert not middle.is_edge()
        assert first.is_edge() and last.is_edge()

    def test_ring_of_two(self):
        network = make_ring(ids=[90, 30])
        a, b = network.peers
        assert (a.left, a.right) == (1, 1)
        assert (b.left, b.right) == (0, 0)
        assert check_ring(network) == []

    @pytest.mark.parametrize("ids", [
        [10, 50, 90, 130, 170],
        [170, 130, 90, 50, 10],
        [90, 10, 170, 50, 130],
        [90, 91, 89, 255, 0],
    ])
    def test_join_order_does_not_matter(self, ids):
        network = make_ring(ids=ids)
        assert check_ring(network) == []
        ring = walk_ring(network, min(network.peers, key=lambda peer: peer.node_id))
        assert [peer.node_id for peer in ring] == sorted(ids)

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_random_ids(self, seed):
        """Random 64 bit ids give a sorted ring."""
        network = make_ring(size=12, seed=seed, id_bits=64, min_delay=1, max_delay=2)
        assert check_ring(network) == []
        assert network.awake_count() == 12

    def test_discovery_to_idle_peer(self, network, caplog):
        """An idle peer cannot insert anyone: the discovery is reported and dropped."""
        network.add_peers(2)
        network.schedule(0, Discovery(1, 99), 0)
        with caplog.at_level(logging.ERROR):
            network.run()
        assert "Failed to handle Discovery" in caplog.text
        assert not network.peers[0].crashed

    def test_identifier_collision(self, caplog):
        network = make_ring(ids=[10, 50])
        twin = network.add_peer(50)
        with caplog.at_level(logging.ERROR):
            twin.awake()
            network.run()
        assert "same id" in caplog.text
        assert twin.idle
        assert check_ring(network) == []

    def test_unknown_packet_stops_the_peer(self, ring, caplog):
        with caplog.at_level(logging.CRITICAL):
            ring.schedule(0, "garbage", 2)
            ring.run()
        assert ring.peers[2].crashed
        assert "Stopping" in caplog.text
        assert not ring.peers[1].crashed

    def test_crashed_peer_gets_nothing(self, ring, caplog):
        """Packets for a stopped peer are dropped instead of piling up in its mailbox."""
        ring.schedule(0, "garbage", 2)
        ring.run()
        with caplog.at_level(logging.WARNING):
            ring.peers[0].send_message(90, "hello")
            ring.run()
        assert "Dropping RouteMessage" in caplog.text
        assert not ring.peers[2].messages.items
        assert not ring.peers[2].inbox


def awake_all_at_once(network):
    """Wake peer 0 as initial, then every other peer without waiting for the joins."""
    network.peers[0].awake_as_initial()
    for peer in network.peers[1:]:
        peer.awake()
    network.run()
    return network


class TestOverlappingJoins:

    @pytest.mark.parametrize("seed", range(20))
    def test_joins_in_flight(self, seed):
        """Joiners reached by packets before their welcome still end up in a sound ring."""
        network = awake_all_at_once(make_network(ids=[10, 50, 90, 130], seed=seed))
        assert network.awake_count() == 4
        assert not any(peer.joining for peer in network.peers)
        assert check_ring(network) == []

    @pytest.mark.parametrize("seed", range(10))
    def test_joins_on_both_sides(self, seed):
        network = awake_all_at_once(make_network(ids=[120, 30, 200, 80, 250, 5, 160], seed=seed))
        assert network.awake_count() == 7
        assert check_ring(network) == []

    def test_early_packets_are_replayed(self, network):
        """A switch reaching a joiner before its welcome is applied after it."""
        first, second, third = network.add_peer(10), network.add_peer(90), network.add_peer(50)
        first.awake_as_initial()
        second.awake()
        network.schedule(0, SwitchNeighbor(Side.LEFT, 2, 0), 1)
        network.run()
        assert second.left == 2
        assert not second.early_packets

    def test_switch_waits_for_earlier_one(self, ring):
        """Switches crossing each other are applied in the order they were sent."""
        last = ring.peers[4]
        ring.add_peer(150)
        ring.add_peer(160)
        last.on_switch_neighbor(SwitchNeighbor(Side.LEFT, 6, 5))
        assert last.left == 3
        assert len(last.deferred_switches) == 1
        last.on_switch_neighbor(SwitchNeighbor(Side.LEFT, 5, 3))
        assert last.left == 6
        assert not last.deferred_switches

    def test_switch_passed_to_split_link(self, ring):
        """A switch for a link split meanwhile goes to the peer now on that side."""
        newcomer = ring.add_peer(200)
        first = ring.peers[0]
        first.on_switch_neighbor(SwitchNeighbor(Side.LEFT, newcomer.address, 3))
        ring.run()
        assert first.left == 4
        assert ring.peers[4].left == newcomer.address


class TestLeave:

    def test_leave(self, ring):
        ring.peers[2].leave()
        ring.run()
        assert ring.peers[2].idle
        assert ring.peers[2].left is None and ring.peers[2].right is None
        assert ring.peers[1].right == 3
        assert ring.peers[3].left == 1
        assert check_ring(ring) == []

    def test_leave_edge(self, ring):
        """The seam moves when the last peer leaves."""
        ring.peers[4].leave()
        ring.run()
        assert ring.peers[3].right == 0
        assert ring.peers[0].left == 3
        assert ring.peers[3].is_last()
        assert check_ring(ring) == []

    def test_leave_ring_of_two(self):
        network = make_ring(ids=[10, 50])
        network.peers[1].leave()
        network.run()
        assert network.peers[0].is_alone()
        assert check_ring(network) == []

    def test_leave_ring_of_one(self, network):
        peer = network.add_peer(10)
        peer.awake_as_initial()
        peer.leave()
        network.run()
        assert peer.idle
        assert network.awake_count() == 0

    def test_leave_then_rejoin(self, ring):
        peer = ring.peers[2]
        peer.leave()
        ring.run()
        peer.awake()
        ring.run()
        assert not peer.idle
        assert (peer.left, peer.right) == (1, 3)
        assert check_ring(ring) == []

    def test_rebuild_subset(self):
        network = make_network(ids=[10, 50, 90, 130])
        build_ring(network, addresses=[3, 1])
        assert network.awake_count() == 2
        assert check_ring(network) == []


class TestRouting:

    def test_message_reaches_target(self, ring):
        ring.peers[0].send_message(170, "hello")
        ring.run()
        assert [message.payload for message in ring.peers[4].inbox] == ["hello"]
        assert all(not peer.inbox for peer in ring.peers[:4])

    def test_message_to_self(self, ring):
        ring.peers[2].send_message(90, "me")
        assert ring.peers[2].inbox[0].payload == "me"

    def test_missing_target_notifies_sender(self, ring):
        """A message to an id nobody holds comes back as a failure notice."""
        ring.peers[0].send_message(100, "lost")
        ring.run()
        notices = ring.peers[0].undelivered
        assert len(notices) == 1
        assert notices[0].reason == NODE_NOT_FOUND
        assert notices[0].original_packet.target_id == 100
        assert notices[0].original_packet.payload == "lost"
        assert all(not peer.inbox for peer in ring.peers)

    @pytest.mark.parametrize("sender, target_id", [(2, 100), (4, 200), (0, 5)])
    def test_missing_target_next_to_sender(self, ring, caplog, sender, target_id):
        """The sender itself finds out and only logs it."""
        with caplog.at_level(logging.ERROR):
            ring.peers[sender].send_message(target_id, "lost")
            ring.run()
        assert "not found" in caplog.text
        assert all(not peer.undelivered for peer in ring.peers)

    def test_routing_cache(self, ring):
        ring.peers[4].send_message(10, "ping")
        ring.run()
        first = ring.peers[0]
        assert first.address_cache[170] == 4
        assert 10 not in first.address_cache

        sent = []
        send = ring.send

        def spy(packet, target_address):
            sent.append(target_address)
            return send(packet, target_address)

        ring.send = spy
        first.send_message(170, "pong")
        ring.run()
        assert sent == [4]
        assert ring.peers[4].inbox[0].payload == "pong"

    def test_stale_cache_entry(self, ring, caplog):
        """Routing to a peer that left is reported by the idle peer."""
        ring.peers[4].send_message(10, "ping")
        ring.run()
        ring.peers[4].leave()
        ring.run()

        with caplog.at_level(logging.ERROR):
            ring.peers[0].send_message(170, "anyone there?")
            ring.run()
        assert "Failed to handle RouteMessage" in caplog.text
        assert not ring.peers[4].inbox

    def test_route_packet_directly(self, ring):
        ring.peers[1].route(RouteMessage(1, 50, 130, "direct"))
        ring.run()
        assert ring.peers[3].inbox[0].sender_id == 50
