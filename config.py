"""
Configuration parameters for the ring DHT simulation.
"""

# Identifier space: peer ids and key hashes live in [0, 2^ID_BITS)
ID_BITS = 64

# Transport latency bounds, in simulated time units: [MIN_DELAY, MAX_DELAY)
MIN_DELAY = 1
MAX_DELAY = 10

# Network
NETWORK_SIZE = 10
CONTROL_STEP = 1000  # time between two controller actions

# Seed used when none is given on the command line
SEED = 42

# Logging
LOG_LEVEL = "INFO"  # DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(levelname)-8s %(name)s - %(message)s"

# Visualization
PLOT_FILE = "dht_ring.png"


def validate_delays(min_delay, max_delay):
    """Check a pair of latency bounds, returning them unchanged."""
    if min_delay < 0:
        raise ValueError(f"min_delay must be >= 0, got {min_delay}")
    if max_delay < min_delay:
        raise ValueError(f"max_delay ({max_delay}) is lower than min_delay ({min_delay})")
    return min_delay, max_delay


if __name__ == "__main__":
    print("Ring DHT Configuration:")
    print(f"  Identifier Space: 2^{ID_BITS}")
    print(f"  Delay: [{MIN_DELAY}, {MAX_DELAY})")
    print(f"  Network size: {NETWORK_SIZE}")
    print(f"  Control step: {CONTROL_STEP}")
