"""
Tests for the driver, the inspection helpers and the scenarios.
"""

import logging

import pytest

from dht_routing import format_id
from simulation import (
    NodeController, check_ring, create_network, display_ring, find_owner, initialize, load_statistics,
    log_when_resolved, run_controller_simulation, run_ring_simulation, run_routing_simulation,
    run_storage_simulation, walk_ring,
)


class TestInspection:

    def test_walk_ring(self, ring):
        assert [peer.address for peer in walk_ring(ring)] == [0, 1, 2, 3, 4]
        assert [peer.address for peer in walk_ring(ring, ring.peers[3])] == [3, 4, 0, 1, 2]

    def test_walk_empty_network(self, network):
        network.add_peers(3)
        assert walk_ring(network) == []
        assert check_ring(network) == []

    def test_display_ring(self, ring):
        text = display_ring(ring)
        assert text.startswith(f"{format_id(10)} (0) => ")
        assert text.count(" => ") == 4

    def test_check_ring_broken_pointer(self, ring):
        ring.peers[1].right = 3
        problems = check_ring(ring)
        assert problems
        assert any("Only visited" in problem for problem in problems)

    def test_check_ring_unsorted(self, ring):
        """Swapping two ids breaks the order even though pointers agree."""
        ring.peers[1].node_id, ring.peers[3].node_id = ring.peers[3].node_id, ring.peers[1].node_id
        assert any("not sorted" in problem for problem in check_ring(ring))

    def test_find_owner(self, ring):
        assert find_owner(ring, "anything") in ring.peers
        for peer in ring.peers:
            peer.leave()
        assert find_owner(ring, "anything") is None

    def test_load_statistics_empty(self, network):
        assert load_statistics(network)["peers"] == 0

    def test_log_when_resolved(self, network, caplog):
        peer = network.add_peer(10)
        peer.awake_as_initial()
        peer.application.put("key", "value")
        with caplog.at_level(logging.INFO, logger="Simulation"):
            log_when_resolved(peer.application.get("key"), "key")
            network.run()
        assert "For key `key`, got: value" in caplog.text


class TestSetup:

    def test_initialize_needs_two_peers(self):
        with pytest.raises(ValueError):
            initialize(create_network(1, seed=1))

    def test_initialize(self):
        network = create_network(3, seed=1)
        initial = initialize(network)
        assert initial.address == 0
        assert network.awake_count() == 1


class TestNodeController:

    def test_actions(self):
        network = create_network(4, seed=1)
        controller = NodeController(network).add_default_actions()
        # three wake ups, display, disconnect, three messages, put and get
        assert len(controller.actions) == 10

    def test_execute_stops_after_last_action(self):
        network = create_network(2, seed=1)
        initialize(network)
        controller = NodeController(network)
        controller.actions.append(controller.display_ring)
        assert controller.execute()
        assert not controller.execute()

    def test_default_scenario(self):
        network, controller = run_controller_simulation(num_nodes=5, seed=3)
        assert network.peers[0].idle
        assert network.awake_count() == 4
        assert check_ring(network) == []
        assert controller.results == {"La clef": "La valeur"}
        assert sum(len(peer.inbox) for peer in network.peers) == 3


class TestScenarios:

    def test_ring_simulation(self):
        network = run_ring_simulation(duration=3000, max_nodes=6, seed=5, min_delay=1, max_delay=2,
                                      node_removal=False)
        assert network.awake_count() == 6
        assert check_ring(network) == []

    def test_ring_simulation_with_removal(self):
        network = run_ring_simulation(duration=3000, max_nodes=6, seed=5, min_delay=1, max_delay=2)
        assert network.awake_count() >= 3

    def test_routing_simulation(self):
        network = run_routing_simulation(duration=2000, max_nodes=5, seed=5, min_delay=1, max_delay=2)
        assert check_ring(network) == []
        assert sum(len(peer.inbox) for peer in network.peers) > 0

    def test_storage_simulation(self):
        network, answers = run_storage_simulation(duration=3000, max_nodes=5, seed=5, min_delay=1, max_delay=2)
        found = {key: value for key, value in answers.items() if value is not None}
        assert found
        for key, value in found.items():
            assert value == key.replace("key", "value")
        assert load_statistics(network)["total"] > 0

    def test_same_seed_same_run(self):
        a, _ = run_storage_simulation(duration=2000, max_nodes=4, seed=8)
        b, _ = run_storage_simulation(duration=2000, max_nodes=4, seed=8)
        assert display_ring(a) == display_ring(b)
        assert [peer.application.table for peer in a.peers] == [peer.application.table for peer in b.peers]
