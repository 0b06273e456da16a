"""
Global Flush/Idle Sequencer for the Gradient Shim.

Orchestrates a full level-1 drain, then a full level-2 drain, and reports
a single idle signal that callers use as a "everything is written"
barrier.

FSM: RUNNING -> L1_DRAINING -> L2_FLUSH_SIGNAL -> L2_DRAINING -> HOLDING
     -> RUNNING

  RUNNING          normal operation; on flush go to L1_DRAINING, or
                   straight to HOLDING if the pipeline is already empty
  L1_DRAINING      l1_drain high until the Admission Unit reports drained
  L2_FLUSH_SIGNAL  one-cycle wcb_flush pulse
  L2_DRAINING      wait for WCB and Overflow Queue to empty
  HOLDING          idle; back to RUNNING once flush is released

flush is level-triggered.  Input is held whenever flush is high or the
sequencer is not RUNNING.

idle = store empty & no push pending & WCB empty & queue empty
       & state in {RUNNING, HOLDING}
"""

from amaranth import *


# Sequencer phase encoding (exported on `phase`)
RUNNING         = 0
L1_DRAINING     = 1
L2_FLUSH_SIGNAL = 2
L2_DRAINING     = 3
HOLDING         = 4


class FlushSequencer(Elaboratable):
    """
    Flush Sequencer.

    Ports -- control
    ----------------
    flush : Signal(), in   -- level-triggered flush request
    idle  : Signal(), out  -- nothing resident anywhere in the pipeline
    phase : Signal(range(5)), out

    Ports -- pipeline status (in)
    -----------------------------
    l1_empty     : Accumulator Store holds no valid entry
    push_pending : a push request is outstanding on the Push Channel
    l1_drained   : Admission Unit finished its drain scan
    wcb_empty    : WCB holds no valid entry
    wcb_busy     : WCB flush in progress
    queue_empty  : Overflow Queue is empty

    Ports -- pipeline control (out)
    -------------------------------
    hold_input : block new updates at the Admission Unit
    l1_drain   : request the level-1 drain scan
    wcb_flush  : one-cycle WCB flush pulse
    """

    def __init__(self):
        self.flush = Signal()
        self.idle = Signal()
        self.phase = Signal(range(5))

        self.l1_empty = Signal()
        self.push_pending = Signal()
        self.l1_drained = Signal()
        self.wcb_empty = Signal()
        self.wcb_busy = Signal()
        self.queue_empty = Signal()

        self.hold_input = Signal()
        self.l1_drain = Signal()
        self.wcb_flush = Signal()

    def elaborate(self, platform):
        m = Module()

        pipeline_empty = Signal()
        m.d.comb += pipeline_empty.eq(
            self.l1_empty & ~self.push_pending
            & self.wcb_empty & self.queue_empty
        )

        with m.FSM(name="flush_seq"):
            with m.State("RUNNING"):
                m.d.comb += [
                    self.phase.eq(RUNNING),
                    self.hold_input.eq(self.flush),
                    self.idle.eq(pipeline_empty),
                ]
                with m.If(self.flush):
                    with m.If(pipeline_empty):
                        m.next = "HOLDING"
                    with m.Else():
                        m.next = "L1_DRAINING"

            with m.State("L1_DRAINING"):
                m.d.comb += [
                    self.phase.eq(L1_DRAINING),
                    self.hold_input.eq(1),
                    self.l1_drain.eq(1),
                ]
                with m.If(self.l1_drained):
                    m.next = "L2_FLUSH_SIGNAL"

            with m.State("L2_FLUSH_SIGNAL"):
                m.d.comb += [
                    self.phase.eq(L2_FLUSH_SIGNAL),
                    self.hold_input.eq(1),
                    self.wcb_flush.eq(1),
                ]
                m.next = "L2_DRAINING"

            with m.State("L2_DRAINING"):
                m.d.comb += [
                    self.phase.eq(L2_DRAINING),
                    self.hold_input.eq(1),
                ]
                with m.If(self.wcb_empty & ~self.wcb_busy & self.queue_empty):
                    m.next = "HOLDING"

            with m.State("HOLDING"):
                m.d.comb += [
                    self.phase.eq(HOLDING),
                    self.hold_input.eq(1),
                    self.idle.eq(pipeline_empty),
                ]
                with m.If(~self.flush):
                    m.next = "RUNNING"

        return m
