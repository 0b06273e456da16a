"""
Gradient Shim -- Top-Level Module.

Bandwidth-reduction engine between a stream of small weight-gradient
updates and a slow external memory.  Integrates the two-level pipeline:

    update in -> Admission Unit (+ Accumulator Store)
              -> Push Channel
              -> Write-Combining Buffer
              -> Overflow Queue -> memory out

coordinated by the Flush Sequencer, with an optional Adaptive Threshold
source and a Bandwidth Counter on the side.

Every boundary uses valid/ready handshaking; a full queue stalls the WCB,
a stalled push stalls the Admission Unit, which drops in_ready.

Raising flush drains both levels; idle rises once nothing is resident
anywhere and stays high until flush is released.
"""

from amaranth import *

from memory.overflow_queue import OverflowQueue

from .shim_config import ShimConfig
from .admission_unit import AdmissionUnit
from .push_channel import PushChannel
from .write_combining_buffer import WriteCombiningBuffer
from .flush_sequencer import FlushSequencer
from .adaptive_threshold import AdaptiveThreshold
from .bandwidth_counter import BandwidthCounter


class GradientShim(Elaboratable):
    """
    Gradient Shim -- Top Level.

    Parameters
    ----------
    config : ShimConfig
        Sizes and policy; defaults to ShimConfig().

    Ports -- update input
    ---------------------
    in_valid : Signal(), in
    in_ready : Signal(), out
    in_addr  : Signal(addr_width), in
    in_grad  : Signal(signed(grad_width)), in

    Ports -- memory output
    ----------------------
    mem_valid : Signal(), out
    mem_ready : Signal(), in
    mem_addr  : Signal(addr_width), out
    mem_value : Signal(signed(acc_width)), out

    Ports -- control
    ----------------
    flush : Signal(), in   -- level-triggered
    idle  : Signal(), out  -- nothing resident in the pipeline
    phase : Signal(range(5)), out
        Flush Sequencer state: RUNNING, L1_DRAINING, L2_FLUSH_SIGNAL,
        L2_DRAINING or HOLDING (constants in flush_sequencer).

    Ports -- observability
    ----------------------
    threshold       : Signal(acc_width), out  -- threshold in use
    small_threshold : Signal(acc_width), out  -- tiny-drop bound in use
    accepted_count, write_count, stall_count : out
    counter_clear   : Signal(), in
    """

    def __init__(self, config=None):
        if config is None:
            config = ShimConfig()
        self.config = config
        cfg = config

        # --- Update input ---
        self.in_valid = Signal()
        self.in_ready = Signal()
        self.in_addr = Signal(cfg.addr_width)
        self.in_grad = Signal(signed(cfg.grad_width))

        # --- Memory output ---
        self.mem_valid = Signal()
        self.mem_ready = Signal()
        self.mem_addr = Signal(cfg.addr_width)
        self.mem_value = Signal(signed(cfg.acc_width))

        # --- Control ---
        self.flush = Signal()
        self.idle = Signal()
        self.phase = Signal(range(5))

        # --- Observability ---
        self.threshold = Signal(cfg.acc_width)
        self.small_threshold = Signal(cfg.acc_width)
        self.counter_clear = Signal()

        # --- Sub-modules (created here for external / test access) ---
        self.admission = AdmissionUnit(
            num_sets=cfg.number_of_sets,
            num_ways=cfg.ways_per_set,
            addr_width=cfg.addr_width,
            grad_width=cfg.grad_width,
            acc_width=cfg.acc_width,
            max_updates=cfg.max_updates,
        )
        self.channel = PushChannel(addr_width=cfg.addr_width,
                                   acc_width=cfg.acc_width)
        self.wcb = WriteCombiningBuffer(capacity=cfg.wcb_capacity,
                                        addr_width=cfg.addr_width,
                                        acc_width=cfg.acc_width)
        self.queue = OverflowQueue(depth=cfg.overflow_queue_capacity,
                                   addr_width=cfg.addr_width,
                                   acc_width=cfg.acc_width)
        self.sequencer = FlushSequencer()
        self.counter = BandwidthCounter()

        if cfg.adaptive is not None:
            ema = cfg.adaptive
            self.threshold_gen = AdaptiveThreshold(
                grad_width=cfg.grad_width,
                acc_width=cfg.acc_width,
                alpha_shift=ema.alpha_shift,
                gain_shift=ema.gain_shift,
                init=cfg.ema_init,
                min_threshold=ema.min_threshold,
                max_threshold=ema.max_threshold,
            )
        else:
            self.threshold_gen = None

        self.accepted_count = self.counter.accepted_count
        self.write_count = self.counter.write_count
        self.stall_count = self.counter.stall_count

    def ports(self):
        return [
            self.in_valid, self.in_ready, self.in_addr, self.in_grad,
            self.mem_valid, self.mem_ready, self.mem_addr, self.mem_value,
            self.flush, self.idle, self.phase,
            self.threshold, self.small_threshold, self.counter_clear,
            self.accepted_count, self.write_count, self.stall_count,
        ]

    def elaborate(self, platform):
        m = Module()

        cfg = self.config
        admission = self.admission
        store = admission.store
        channel = self.channel
        wcb = self.wcb
        queue = self.queue
        sequencer = self.sequencer
        counter = self.counter

        m.submodules.admission = admission
        m.submodules.channel = channel
        m.submodules.wcb = wcb
        m.submodules.queue = queue
        m.submodules.sequencer = sequencer
        m.submodules.counter = counter

        in_fire = Signal()
        m.d.comb += in_fire.eq(self.in_valid & self.in_ready)

        # =============================================================
        # Threshold source
        # =============================================================

        if self.threshold_gen is not None:
            m.submodules.threshold_gen = gen = self.threshold_gen
            m.d.comb += [
                gen.sample_valid.eq(in_fire),
                gen.sample_grad.eq(self.in_grad),
                self.threshold.eq(gen.threshold),
            ]
            if cfg.tracks_threshold:
                m.d.comb += self.small_threshold.eq(gen.threshold >> 2)
            else:
                m.d.comb += self.small_threshold.eq(cfg.small_threshold)
        else:
            m.d.comb += [
                self.threshold.eq(cfg.threshold),
                self.small_threshold.eq(cfg.resolved_small_threshold),
            ]

        m.d.comb += [
            admission.threshold.eq(self.threshold),
            admission.small_threshold.eq(self.small_threshold),
        ]

        # =============================================================
        # Update input -> Admission Unit
        # =============================================================

        m.d.comb += [
            admission.in_valid.eq(self.in_valid),
            admission.in_addr.eq(self.in_addr),
            admission.in_grad.eq(self.in_grad),
            self.in_ready.eq(admission.in_ready),
        ]

        # =============================================================
        # Admission Unit -> Push Channel -> WCB
        # =============================================================

        m.d.comb += [
            channel.src_valid.eq(admission.push_valid),
            channel.src_addr.eq(admission.push_addr),
            channel.src_value.eq(admission.push_value),
            admission.push_ready.eq(channel.src_ready),

            wcb.push_valid.eq(channel.dst_valid),
            wcb.push_addr.eq(channel.dst_addr),
            wcb.push_value.eq(channel.dst_value),
            channel.dst_ready.eq(wcb.push_ready),
        ]

        # =============================================================
        # WCB -> Overflow Queue -> memory
        # =============================================================

        m.d.comb += [
            queue.enq_valid.eq(wcb.enq_valid),
            queue.enq_addr.eq(wcb.enq_addr),
            queue.enq_value.eq(wcb.enq_value),
            wcb.enq_ready.eq(queue.enq_ready),

            self.mem_valid.eq(queue.mem_valid),
            self.mem_addr.eq(queue.mem_addr),
            self.mem_value.eq(queue.mem_value),
            queue.mem_ready.eq(self.mem_ready),
        ]

        # =============================================================
        # Flush / idle sequencing
        # =============================================================

        m.d.comb += [
            sequencer.flush.eq(self.flush),
            sequencer.l1_empty.eq(store.empty),
            sequencer.push_pending.eq(admission.push_valid),
            sequencer.l1_drained.eq(admission.drained),
            sequencer.wcb_empty.eq(wcb.empty),
            sequencer.wcb_busy.eq(wcb.busy),
            sequencer.queue_empty.eq(queue.empty),

            admission.hold.eq(sequencer.hold_input),
            admission.drain.eq(sequencer.l1_drain),
            wcb.flush.eq(sequencer.wcb_flush),

            self.idle.eq(sequencer.idle),
            self.phase.eq(sequencer.phase),
        ]

        # =============================================================
        # Bandwidth counter
        # =============================================================

        m.d.comb += [
            counter.in_fire.eq(in_fire),
            counter.mem_fire.eq(self.mem_valid & self.mem_ready),
            counter.stall.eq(channel.stalled),
            counter.clear.eq(self.counter_clear),
        ]

        return m
