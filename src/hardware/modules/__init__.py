"""Processing modules for the Gradient Shim pipeline."""

from .gradient_shim import GradientShim
from .shim_config import ShimConfig, EMAConfig
from .admission_unit import AdmissionUnit, GRAD_WIDTH, THRESHOLD
from .push_channel import PushChannel
from .write_combining_buffer import WriteCombiningBuffer, WCB_CAPACITY
from .flush_sequencer import (
    FlushSequencer, RUNNING, L1_DRAINING, L2_FLUSH_SIGNAL, L2_DRAINING,
    HOLDING,
)
from .adaptive_threshold import AdaptiveThreshold
from .bandwidth_counter import BandwidthCounter
