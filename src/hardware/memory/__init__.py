"""Storage modules for the Gradient Shim."""

from .accumulator_store import (
    AccumulatorStore, NUM_SETS, NUM_WAYS, ADDR_WIDTH, ACC_WIDTH, MAX_UPDATES,
    rr_incr,
)
from .overflow_queue import OverflowQueue, DEFAULT_QUEUE_DEPTH
