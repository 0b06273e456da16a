"""
Synthetic gradient-update traces for the shim benchmarks.

A trace is a list of (address, gradient) tuples.  Addresses are parameter
indices (not byte addresses) so that the low address bits spread across
all accumulator sets.  Gradients are mostly small, with a configurable
share of large spikes that take the direct path.
"""

import random
from dataclasses import dataclass


@dataclass
class TraceSpec:
    num_updates: int = 1000
    num_addresses: int = 64
    hot_fraction: float = 0.1      # share of addresses that are "hot"
    hot_weight: float = 0.7        # share of updates going to hot addresses
    grad_scale: int = 12           # std-dev of ordinary gradients
    spike_prob: float = 0.02       # chance of a large gradient
    spike_scale: int = 200
    base_addr: int = 0
    stride: int = 1
    grad_width: int = 16
    seed: int = 0


def _clamp(value, width):
    lo = -(1 << (width - 1))
    hi = (1 << (width - 1)) - 1
    return max(lo, min(hi, value))


def generate_trace(spec=None):
    """Generate a hot/cold gradient trace from a TraceSpec."""
    if spec is None:
        spec = TraceSpec()
    if spec.num_addresses < 1:
        raise ValueError("num_addresses must be positive")

    rng = random.Random(spec.seed)
    addresses = [spec.base_addr + i * spec.stride
                 for i in range(spec.num_addresses)]
    num_hot = max(1, int(spec.num_addresses * spec.hot_fraction))
    hot, cold = addresses[:num_hot], addresses[num_hot:] or addresses[:num_hot]

    trace = []
    for _ in range(spec.num_updates):
        pool = hot if rng.random() < spec.hot_weight else cold
        addr = rng.choice(pool)
        if rng.random() < spec.spike_prob:
            grad = rng.choice((-1, 1)) * rng.randint(spec.spike_scale,
                                                     2 * spec.spike_scale)
        else:
            grad = int(round(rng.gauss(0, spec.grad_scale)))
        trace.append((addr, _clamp(grad, spec.grad_width)))
    return trace


def uniform_trace(num_updates, num_addresses, max_grad, seed=0):
    """Uniformly random addresses and gradients in [-max_grad, max_grad]."""
    rng = random.Random(seed)
    return [(rng.randrange(num_addresses), rng.randint(-max_grad, max_grad))
            for _ in range(num_updates)]
