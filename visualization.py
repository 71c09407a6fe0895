"""
Visualization of the DHT ring at the end of a simulation.
"""

import math

import matplotlib.pyplot as plt
import numpy as np

import config
from simulation import check_ring


def ring_positions(peers, id_bits=config.ID_BITS, radius=1.0):
    """(x, y) of each peer on a circle, the angle being proportional to its id."""
    ids = np.array([peer.node_id for peer in peers], dtype=float)
    angles = 2 * math.pi * ids / float(2 ** id_bits)
    xs = radius * np.cos(angles)
    ys = radius * np.sin(angles)
    return {peer: (x, y) for peer, x, y in zip(peers, xs, ys)}


def visualize_dht_ring(network, filename=config.PLOT_FILE, title=None, show=False):
    """
    Draw every peer of the network on the identifier circle, with an arrow
    for each right pointer. Awake peers are blue, idle ones gray; labels give
    the address and the number of stored entries.
    """
    fig, ax = plt.subplots(figsize=(10, 10))

    circle = plt.Circle((0, 0), 1, fill=False, color='black', linestyle='--')
    ax.add_patch(circle)

    positions = ring_positions(network.peers, network.id_bits)

    for peer, (x, y) in positions.items():
        color = 'gray' if peer.idle else 'blue'
        ax.plot(x, y, 'o', markersize=10, color=color)
        label = f"{peer.address}"
        if peer.application is not None and len(peer.application):
            label += f" [{len(peer.application)}]"
        ax.text(x * 1.1, y * 1.1, label, fontsize=9)

    for peer in network.awake_peers():
        if peer.right is None or peer.right == peer.address:
            continue
        start = positions[peer]
        end = positions[network.peer_at(peer.right)]
        ax.arrow(start[0], start[1],
                 (end[0] - start[0]) * 0.9,
                 (end[1] - start[1]) * 0.9,
                 head_width=0.04, head_length=0.08, fc='black', ec='black',
                 length_includes_head=True)

    legend_items = [
        plt.Line2D([0], [0], marker='o', color='blue', linestyle='', label='Awake node'),
        plt.Line2D([0], [0], marker='o', color='gray', linestyle='', label='Idle node'),
        plt.Line2D([0], [0], color='black', marker='>', markersize=8, label='Right neighbor'),
    ]
    ax.legend(handles=legend_items, loc='upper right')

    ax.set_xlim(-1.5, 1.5)
    ax.set_ylim(-1.5, 1.5)
    ax.set_aspect('equal')
    ax.grid(True)
    if title is None:
        problems = check_ring(network)
        title = f"DHT Ring - {network.awake_count()} awake nodes"
        if problems:
            title += f" ({len(problems)} problems)"
    ax.set_title(title)

    fig.tight_layout()
    if filename:
        fig.savefig(filename)
        print(f"Visualization saved as '{filename}'")
    if show:
        plt.show()
    plt.close(fig)
    return filename
