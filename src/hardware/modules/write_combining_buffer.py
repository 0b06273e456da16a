"""
Write-Combining Buffer for the Gradient Shim (level 2).

Small fully-associative buffer that merges pushes to the same address
before they take up Overflow Queue capacity.  No threshold logic: every
entry it evicts goes to the queue unconditionally.

On an accepted push (addr, value):
  hit         accum += value
  free slot   install (addr, value) in the lowest free slot
  full        enqueue the entry at the round-robin victim pointer, install
              the push in its place, advance the pointer.  The push is
              refused (push_ready low) while the queue is full.

A one-cycle flush pulse starts a flush: each cycle the lowest valid entry
is offered to the queue and cleared when accepted, until none remain.
Pushes are refused while flushing.
"""

from amaranth import *

from memory.accumulator_store import ADDR_WIDTH, ACC_WIDTH, rr_incr


# Default configuration
WCB_CAPACITY = 8


class WriteCombiningBuffer(Elaboratable):
    """
    Write-Combining Buffer.

    Parameters
    ----------
    capacity : int
        Number of slots (default 8).

    Ports -- push input (from Push Channel)
    ---------------------------------------
    push_valid : Signal(), in
    push_ready : Signal(), out
    push_addr  : Signal(addr_width), in
    push_value : Signal(signed(acc_width)), in

    Ports -- eviction output (to Overflow Queue)
    ---------------------------------------------
    enq_valid : Signal(), out
    enq_ready : Signal(), in
    enq_addr  : Signal(addr_width), out
    enq_value : Signal(signed(acc_width)), out

    Ports -- control / status
    -------------------------
    flush     : Signal(), in   -- pulse: evict every entry
    busy      : Signal(), out  -- flush in progress
    empty     : Signal(), out  -- no valid entry
    occupancy : Signal(range(capacity + 1)), out
    """

    def __init__(self, capacity=WCB_CAPACITY, addr_width=ADDR_WIDTH,
                 acc_width=ACC_WIDTH):
        if capacity < 1:
            raise ValueError(f"WCB capacity must be positive, not {capacity}")

        self.capacity = capacity
        self.addr_width = addr_width
        self.acc_width = acc_width

        self.push_valid = Signal()
        self.push_ready = Signal()
        self.push_addr = Signal(addr_width)
        self.push_value = Signal(signed(acc_width))

        self.enq_valid = Signal()
        self.enq_ready = Signal()
        self.enq_addr = Signal(addr_width)
        self.enq_value = Signal(signed(acc_width))

        self.flush = Signal()
        self.busy = Signal()
        self.empty = Signal()
        self.occupancy = Signal(range(capacity + 1))

    def elaborate(self, platform):
        m = Module()

        n = self.capacity

        valid = Array(Signal(name=f"valid{i}") for i in range(n))
        tag = Array(Signal(self.addr_width, name=f"tag{i}") for i in range(n))
        accum = Array(Signal(signed(self.acc_width), name=f"accum{i}")
                      for i in range(n))
        victim = Signal(range(n))
        flushing = Signal()

        valid_bits = Cat(*valid)
        any_valid = Signal()
        m.d.comb += [
            any_valid.eq(valid_bits.any()),
            self.empty.eq(~any_valid),
            self.busy.eq(flushing),
            self.occupancy.eq(sum(valid[i] for i in range(n))),
        ]

        # Tag match against the offered push
        match = Signal(n)
        for i in range(n):
            m.d.comb += match[i].eq(valid[i] & (tag[i] == self.push_addr))
        hit = Signal()
        hit_idx = Signal(range(n))
        m.d.comb += hit.eq(match.any())
        for i in range(n):
            with m.If(match[i]):
                m.d.comb += hit_idx.eq(i)

        # Lowest free slot / lowest valid slot
        has_free = Signal()
        free_idx = Signal(range(n))
        first_idx = Signal(range(n))
        m.d.comb += has_free.eq(~valid_bits.all())
        for i in reversed(range(n)):
            with m.If(~valid[i]):
                m.d.comb += free_idx.eq(i)
            with m.If(valid[i]):
                m.d.comb += first_idx.eq(i)

        merged = Signal(signed(self.acc_width))
        m.d.comb += merged.eq(accum[hit_idx] + self.push_value)

        with m.If(flushing):
            # Flush: drain lowest valid entry per cycle
            m.d.comb += [
                self.enq_valid.eq(any_valid),
                self.enq_addr.eq(tag[first_idx]),
                self.enq_value.eq(accum[first_idx]),
            ]
            with m.If(~any_valid):
                m.d.sync += flushing.eq(0)
            with m.Elif(self.enq_ready):
                m.d.sync += [
                    valid[first_idx].eq(0),
                    accum[first_idx].eq(0),
                ]

        with m.Elif(self.push_valid):
            with m.If(hit):
                # Merge
                m.d.comb += self.push_ready.eq(1)
                m.d.sync += accum[hit_idx].eq(merged)
            with m.Elif(has_free):
                # Allocate
                m.d.comb += self.push_ready.eq(1)
                m.d.sync += [
                    valid[free_idx].eq(1),
                    tag[free_idx].eq(self.push_addr),
                    accum[free_idx].eq(self.push_value),
                ]
            with m.Else():
                # Evict-then-allocate; stalls while the queue is full
                m.d.comb += [
                    self.enq_valid.eq(1),
                    self.enq_addr.eq(tag[victim]),
                    self.enq_value.eq(accum[victim]),
                    self.push_ready.eq(self.enq_ready),
                ]
                with m.If(self.enq_ready):
                    m.d.sync += [
                        tag[victim].eq(self.push_addr),
                        accum[victim].eq(self.push_value),
                        victim.eq(rr_incr(victim, n)),
                    ]

        with m.If(self.flush):
            m.d.sync += flushing.eq(1)

        return m
