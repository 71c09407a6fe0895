"""
Ring DHT Simulator Launcher
===========================
Runs the ring, routing, storage or controller simulation of the DHT.
"""

import argparse

import config
from dht_logging import setup_logging
from simulation import (
    print_ring, print_storage_summary, run_controller_simulation,
    run_ring_simulation, run_routing_simulation, run_storage_simulation,
)
from visualization import visualize_dht_ring


def print_header(title):
    print("\n" + "=" * 80)
    print(f" {title} ".center(80, '='))
    print("=" * 80 + "\n")


def run_ring_demo(args):
    print_header("RING SIMULATION")
    print("Nodes join the ring one after the other, some of them leave,")
    print("and the integrity of the ring is checked at the end.\n")
    network = run_ring_simulation(args.duration, args.nodes, args.seed, args.min_delay, args.max_delay,
                                  node_removal=not args.stable)
    print_ring(network)
    return network


def run_routing_demo(args):
    print_header("ROUTING SIMULATION")
    print("Messages are routed between random nodes of the ring, some of them")
    print("to ids that no node holds.\n")
    network = run_routing_simulation(args.duration, args.nodes, args.seed, args.min_delay, args.max_delay)
    print_ring(network)
    delivered = sum(len(peer.inbox) for peer in network.peers)
    failed = sum(len(peer.undelivered) for peer in network.peers)
    print(f"\n{delivered} messages delivered, {failed} failure notices received")
    return network


def run_storage_demo(args):
    print_header("STORAGE SIMULATION")
    print("Keys are put and fetched from random nodes of the ring.\n")
    network, answers = run_storage_simulation(args.duration, args.nodes, args.seed, args.min_delay,
                                              args.max_delay, node_removal=not args.stable)
    print_ring(network)
    print_storage_summary(network)
    missing = sorted(key for key, value in answers.items() if value is None)
    print(f"\n{len(answers)} keys fetched, {len(missing)} not found")
    return network


def run_controller_demo(args):
    print_header("NODE CONTROLLER")
    network, controller = run_controller_simulation(args.nodes, args.seed, args.min_delay, args.max_delay)
    print_ring(network)
    for key, value in controller.results.items():
        print(f"Fetched {key} = {value}")
    return network


DEMOS = {
    "ring": run_ring_demo,
    "routing": run_routing_demo,
    "storage": run_storage_demo,
    "controller": run_controller_demo,
}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Ring DHT Simulator")
    parser.add_argument("--demo", type=str, choices=list(DEMOS) + ["full"], default="controller",
                        help="Simulation to run (default: controller)")
    parser.add_argument("--nodes", type=int, default=config.NETWORK_SIZE,
                        help=f"Number of nodes in the network (default: {config.NETWORK_SIZE})")
    parser.add_argument("--duration", type=int, default=5000,
                        help="Simulation duration for the ring, routing and storage demos (default: 5000)")
    parser.add_argument("--seed", type=int, default=config.SEED,
                        help=f"Random seed for reproducibility (default: {config.SEED})")
    parser.add_argument("--min-delay", type=int, default=config.MIN_DELAY,
                        help=f"Minimum message latency (default: {config.MIN_DELAY})")
    parser.add_argument("--max-delay", type=int, default=config.MAX_DELAY,
                        help=f"Maximum message latency, excluded (default: {config.MAX_DELAY})")
    parser.add_argument("--stable", action="store_true",
                        help="Disable random node removal")
    parser.add_argument("--log-level", type=str, default=config.LOG_LEVEL,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help=f"Logging level (default: {config.LOG_LEVEL})")
    parser.add_argument("--plot", type=str, default=None, metavar="PATH",
                        help="Save a picture of the final ring to PATH")

    args = parser.parse_args(argv)
    if args.nodes < 2:
        parser.error("--nodes must be at least 2")
    try:
        config.validate_delays(args.min_delay, args.max_delay)
    except ValueError as e:
        parser.error(str(e))

    setup_logging(args.log_level)

    print(f"\n{'=' * 50}")
    print(f"Ring DHT simulation: {args.demo.upper()}")
    print(f"Nodes: {args.nodes}")
    print(f"Delay: [{args.min_delay}, {args.max_delay})")
    print(f"Random seed: {args.seed}")
    print(f"{'=' * 50}\n")

    demos = list(DEMOS) if args.demo == "full" else [args.demo]
    network = None
    for name in demos:
        network = DEMOS[name](args)

    if args.plot and network is not None:
        visualize_dht_ring(network, args.plot)
    return network


if __name__ == "__main__":
    main()
