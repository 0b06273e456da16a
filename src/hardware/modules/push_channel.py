"""
Push Channel between level 1 (Admission Unit) and level 2 (WCB).

Single-slot valid/ready handshake.  A push transfers only on a cycle where
both src_valid and dst_ready are high.  The producer holds (addr, value)
stable while src_valid & ~dst_ready; since the Admission Unit forms at
most one push at a time, at most one request is ever in flight.

fire and stalled are exported for the bandwidth counter.
"""

from amaranth import *

from memory.accumulator_store import ADDR_WIDTH, ACC_WIDTH


class PushChannel(Elaboratable):
    """
    Push Channel.

    Ports -- producer side
    ----------------------
    src_valid : Signal(), in
    src_ready : Signal(), out
    src_addr  : Signal(addr_width), in
    src_value : Signal(signed(acc_width)), in

    Ports -- consumer side
    ----------------------
    dst_valid : Signal(), out
    dst_ready : Signal(), in
    dst_addr  : Signal(addr_width), out
    dst_value : Signal(signed(acc_width)), out

    Ports -- status
    ---------------
    fire    : Signal(), out  -- transfer this cycle
    stalled : Signal(), out  -- request held, consumer not ready
    """

    def __init__(self, addr_width=ADDR_WIDTH, acc_width=ACC_WIDTH):
        self.src_valid = Signal()
        self.src_ready = Signal()
        self.src_addr = Signal(addr_width)
        self.src_value = Signal(signed(acc_width))

        self.dst_valid = Signal()
        self.dst_ready = Signal()
        self.dst_addr = Signal(addr_width)
        self.dst_value = Signal(signed(acc_width))

        self.fire = Signal()
        self.stalled = Signal()

    def elaborate(self, platform):
        m = Module()

        m.d.comb += [
            self.dst_valid.eq(self.src_valid),
            self.dst_addr.eq(self.src_addr),
            self.dst_value.eq(self.src_value),
            self.src_ready.eq(self.dst_ready),

            self.fire.eq(self.src_valid & self.dst_ready),
            self.stalled.eq(self.src_valid & ~self.dst_ready),
        ]

        return m
