"""
Configuration for the Gradient Shim.

Bundles every size and policy parameter of the engine into one object so
the top level, the benchmarks and the golden model are built from the
same values.  Invalid combinations are rejected at construction.
"""

from dataclasses import dataclass
from typing import Optional

from memory.accumulator_store import (NUM_SETS, NUM_WAYS, ADDR_WIDTH,
                                      ACC_WIDTH, MAX_UPDATES)
from memory.overflow_queue import DEFAULT_QUEUE_DEPTH

from .admission_unit import GRAD_WIDTH, THRESHOLD
from .write_combining_buffer import WCB_CAPACITY


@dataclass(frozen=True)
class EMAConfig:
    """Adaptive threshold parameters (see AdaptiveThreshold)."""
    alpha_shift: int = 3        # EMA weight = 2**-alpha_shift
    gain_shift: int = 2         # threshold = ema << gain_shift
    min_threshold: int = 1
    max_threshold: int = 2**15
    init: Optional[int] = None  # initial EMA; None -> threshold >> gain_shift

    def __post_init__(self):
        if self.alpha_shift < 0 or self.gain_shift < 0:
            raise ValueError("EMA shifts must be non-negative")
        if self.min_threshold < 0 or self.max_threshold < self.min_threshold:
            raise ValueError(
                f"Invalid EMA threshold bounds "
                f"[{self.min_threshold}, {self.max_threshold}]")
        if self.init is not None and self.init < 0:
            raise ValueError(f"EMA init must be non-negative, not {self.init}")


@dataclass(frozen=True)
class ShimConfig:
    number_of_sets: int = NUM_SETS
    ways_per_set: int = NUM_WAYS
    max_updates: int = MAX_UPDATES
    threshold: int = THRESHOLD
    small_threshold: Optional[int] = None
    wcb_capacity: int = WCB_CAPACITY
    overflow_queue_capacity: int = DEFAULT_QUEUE_DEPTH
    addr_width: int = ADDR_WIDTH
    grad_width: int = GRAD_WIDTH
    acc_width: int = ACC_WIDTH
    adaptive: Optional[EMAConfig] = None

    def __post_init__(self):
        sets = self.number_of_sets
        if sets < 1 or sets & (sets - 1):
            raise ValueError(
                f"number_of_sets must be a positive power of two, not {sets}")
        for name in ("ways_per_set", "max_updates", "wcb_capacity",
                     "overflow_queue_capacity", "addr_width", "grad_width",
                     "acc_width"):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be positive, not {value}")
        if sets.bit_length() - 1 > self.addr_width:
            raise ValueError(
                f"{sets} sets need more index bits than addr_width "
                f"{self.addr_width} provides")
        if self.acc_width < self.grad_width:
            raise ValueError(
                f"acc_width ({self.acc_width}) must be at least "
                f"grad_width ({self.grad_width})")
        if not 1 <= self.threshold < 2**self.acc_width:
            raise ValueError(
                f"threshold {self.threshold} out of range for "
                f"acc_width {self.acc_width}")
        if self.small_threshold is not None and \
                not 0 <= self.small_threshold <= self.threshold:
            raise ValueError(
                f"small_threshold {self.small_threshold} must lie in "
                f"[0, threshold]")
        if self.adaptive is not None and \
                self.adaptive.max_threshold >= 2**self.acc_width:
            raise ValueError(
                f"adaptive max_threshold {self.adaptive.max_threshold} does "
                f"not fit acc_width {self.acc_width}")

    @property
    def resolved_small_threshold(self):
        """Tiny-drop bound for a fixed threshold (0 disables tiny-drop)."""
        if self.small_threshold is None:
            return self.threshold // 4
        return self.small_threshold

    @property
    def tracks_threshold(self):
        """True when the tiny-drop bound follows the adaptive threshold."""
        return self.adaptive is not None and self.small_threshold is None

    @property
    def ema_init(self):
        if self.adaptive is None:
            return None
        if self.adaptive.init is not None:
            return self.adaptive.init
        return self.threshold >> self.adaptive.gain_shift
