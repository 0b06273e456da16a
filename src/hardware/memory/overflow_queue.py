"""
Overflow Queue for the Gradient Shim.

Buffers (address, value) writes evicted from the Write-Combining Buffer
before they are drained to external memory.  Standard synchronous
circular-buffer FIFO: enqueue refused when full, head offered to memory
with valid/ready, removed only on handshake.  No merging or reordering;
two entries for the same address produce two memory writes, in order.
"""

from amaranth import *
from amaranth.lib.memory import Memory

from .accumulator_store import ADDR_WIDTH, ACC_WIDTH, rr_incr


DEFAULT_QUEUE_DEPTH = 16


class OverflowQueue(Elaboratable):
    """
    Overflow Queue.

    Parameters
    ----------
    depth : int
        Number of entries the queue can hold (default 16).
    addr_width, acc_width : int
        Field widths of a queued write.

    Ports
    -----
    enq_valid : Signal(), in
        Asserted by the WCB to enqueue a write.
    enq_ready : Signal(), out
        High when the queue can accept an entry (not full).
    enq_addr : Signal(addr_width), in
    enq_value : Signal(signed(acc_width)), in
    mem_valid : Signal(), out
        Asserted when the head entry is offered to memory.
    mem_ready : Signal(), in
        Memory accepts the head entry this cycle.
    mem_addr : Signal(addr_width), out
    mem_value : Signal(signed(acc_width)), out
    empty : Signal(), out
    full : Signal(), out
    level : Signal(range(depth + 1)), out
        Number of queued entries.
    """

    def __init__(self, depth=DEFAULT_QUEUE_DEPTH, addr_width=ADDR_WIDTH,
                 acc_width=ACC_WIDTH):
        if depth < 1:
            raise ValueError(f"Queue depth must be positive, not {depth}")

        self.depth = depth
        self.addr_width = addr_width
        self.acc_width = acc_width

        # Enqueue side (from WCB)
        self.enq_valid = Signal()
        self.enq_ready = Signal()
        self.enq_addr = Signal(addr_width)
        self.enq_value = Signal(signed(acc_width))

        # Drain side (to external memory)
        self.mem_valid = Signal()
        self.mem_ready = Signal()
        self.mem_addr = Signal(addr_width)
        self.mem_value = Signal(signed(acc_width))

        # Status
        self.empty = Signal()
        self.full = Signal()
        self.level = Signal(range(depth + 1))

    def elaborate(self, platform):
        m = Module()

        depth = self.depth
        aw = self.addr_width
        entry_width = aw + self.acc_width

        # Storage: packed addr [0:aw] | value [aw:]
        m.submodules.mem = mem = Memory(
            shape=entry_width, depth=depth, init=[]
        )

        wr_ptr = Signal(range(depth))
        rd_ptr = Signal(range(depth))
        count = Signal(range(depth + 1))

        m.d.comb += [
            self.empty.eq(count == 0),
            self.full.eq(count == depth),
            self.level.eq(count),
            self.enq_ready.eq(~self.full),
            self.mem_valid.eq(~self.empty),
        ]

        do_enq = Signal()
        do_deq = Signal()
        m.d.comb += [
            do_enq.eq(self.enq_valid & ~self.full),
            do_deq.eq(self.mem_ready & ~self.empty),
        ]

        # --- Write port (synchronous) ---
        wr_port = mem.write_port()
        m.d.comb += [
            wr_port.addr.eq(wr_ptr),
            wr_port.data.eq(Cat(self.enq_addr, self.enq_value)),
            wr_port.en.eq(do_enq),
        ]

        # --- Read port (combinational head) ---
        rd_port = mem.read_port(domain="comb")
        m.d.comb += [
            rd_port.addr.eq(rd_ptr),
            self.mem_addr.eq(rd_port.data[:aw]),
            self.mem_value.eq(rd_port.data[aw:entry_width]),
        ]

        # --- Pointer and count update ---
        with m.If(do_enq & ~do_deq):
            m.d.sync += count.eq(count + 1)
        with m.Elif(do_deq & ~do_enq):
            m.d.sync += count.eq(count - 1)
        # Simultaneous enqueue+dequeue: count unchanged

        with m.If(do_enq):
            m.d.sync += wr_ptr.eq(rr_incr(wr_ptr, depth))
        with m.If(do_deq):
            m.d.sync += rd_ptr.eq(rr_incr(rd_ptr, depth))

        return m
