"""
Bandwidth counter for the Gradient Shim.

Tallies accepted input updates, completed memory writes and push-channel
stall cycles.  The ratio accepted_count / write_count is the write-traffic
reduction the shim achieves.  Counters wrap at their width.
"""

from amaranth import *


COUNTER_WIDTH = 32


class BandwidthCounter(Elaboratable):
    """
    Ports
    -----
    in_fire  : Signal(), in  -- input update accepted this cycle
    mem_fire : Signal(), in  -- memory write completed this cycle
    stall    : Signal(), in  -- push held without transfer this cycle
    clear    : Signal(), in  -- zero all counters
    accepted_count, write_count, stall_count : Signal(width), out
    """

    def __init__(self, width=COUNTER_WIDTH):
        self.in_fire = Signal()
        self.mem_fire = Signal()
        self.stall = Signal()
        self.clear = Signal()

        self.accepted_count = Signal(width)
        self.write_count = Signal(width)
        self.stall_count = Signal(width)

    def elaborate(self, platform):
        m = Module()

        with m.If(self.clear):
            m.d.sync += [
                self.accepted_count.eq(0),
                self.write_count.eq(0),
                self.stall_count.eq(0),
            ]
        with m.Else():
            with m.If(self.in_fire):
                m.d.sync += self.accepted_count.eq(self.accepted_count + 1)
            with m.If(self.mem_fire):
                m.d.sync += self.write_count.eq(self.write_count + 1)
            with m.If(self.stall):
                m.d.sync += self.stall_count.eq(self.stall_count + 1)

        return m
