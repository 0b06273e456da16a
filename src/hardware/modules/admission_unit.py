"""
Admission Unit for the Gradient Shim (level 1).

Classifies each incoming gradient update against the current contents of
the Accumulator Store and either bypasses it, accumulates it, evicts a
victim for it, or drops it.  Also performs the level-1 drain scan
requested by the Flush Sequencer.

FSM: ACCEPT -> PUSH | EVICT -> ACCEPT
     ACCEPT -> SCAN <-> SCAN_PUSH -> DRAINED -> ACCEPT

Decision for an update accepted in ACCEPT (THRESHOLD / SMALL_THRESHOLD
are input ports so a fixed or adaptive source can drive them):

  |grad| >= THRESHOLD             direct push (addr, grad), store untouched
  hit                             accum += grad, count += 1;
                                  push + clear on |accum| >= THRESHOLD
                                  or count == MAX_UPDATES
  miss, |grad| < SMALL_THRESHOLD  dropped
  miss, free way                  allocate (addr, grad, count=1)
  miss, set full                  push victim, install after the push
                                  is accepted, advance victim pointer

Push requests are registered and held stable in PUSH / EVICT / SCAN_PUSH
until push_ready; input is not accepted meanwhile.
"""

from amaranth import *

from memory.accumulator_store import (AccumulatorStore, NUM_SETS, NUM_WAYS,
                                      ADDR_WIDTH, ACC_WIDTH, MAX_UPDATES)


# Default configuration
GRAD_WIDTH = 16
THRESHOLD = 50


class AdmissionUnit(Elaboratable):
    """
    Admission Unit.

    Ports -- update input
    ---------------------
    in_valid  : Signal(), in
    in_ready  : Signal(), out  -- high only in ACCEPT with input not held
    in_addr   : Signal(addr_width), in
    in_grad   : Signal(signed(grad_width)), in

    Ports -- policy
    ---------------
    threshold       : Signal(acc_width), in
    small_threshold : Signal(acc_width), in  -- 0 disables tiny-drop

    Ports -- push request (to Write-Combining Buffer)
    --------------------------------------------------
    push_valid : Signal(), out
    push_ready : Signal(), in
    push_addr  : Signal(addr_width), out
    push_value : Signal(signed(acc_width)), out

    Ports -- flush control (from Flush Sequencer)
    ----------------------------------------------
    hold    : Signal(), in   -- block new updates
    drain   : Signal(), in   -- level: scan out every resident entry
    drained : Signal(), out  -- scan finished, held until drain drops
    """

    def __init__(self, num_sets=NUM_SETS, num_ways=NUM_WAYS,
                 addr_width=ADDR_WIDTH, grad_width=GRAD_WIDTH,
                 acc_width=ACC_WIDTH, max_updates=MAX_UPDATES):
        if acc_width < grad_width:
            raise ValueError(
                f"acc_width ({acc_width}) must be at least "
                f"grad_width ({grad_width})")

        self.addr_width = addr_width
        self.grad_width = grad_width
        self.acc_width = acc_width
        self.max_updates = max_updates

        # Update input
        self.in_valid = Signal()
        self.in_ready = Signal()
        self.in_addr = Signal(addr_width)
        self.in_grad = Signal(signed(grad_width))

        # Policy
        self.threshold = Signal(acc_width)
        self.small_threshold = Signal(acc_width)

        # Push request
        self.push_valid = Signal()
        self.push_ready = Signal()
        self.push_addr = Signal(addr_width)
        self.push_value = Signal(signed(acc_width))

        # Flush control
        self.hold = Signal()
        self.drain = Signal()
        self.drained = Signal()

        self.store = AccumulatorStore(num_sets=num_sets, num_ways=num_ways,
                                      addr_width=addr_width,
                                      acc_width=acc_width,
                                      max_updates=max_updates)

    def elaborate(self, platform):
        m = Module()

        m.submodules.store = store = self.store
        sets = store.num_sets
        ways = store.num_ways
        max_updates = self.max_updates

        # =============================================================
        # Decode the offered update against the addressed set
        # =============================================================

        in_set = Signal(range(sets))
        m.d.comb += in_set.eq(self.in_addr[:store.set_bits])

        grad_ext = Signal(signed(self.acc_width))
        m.d.comb += grad_ext.eq(self.in_grad)

        # One bit wider than the operand so |min| is representable
        grad_mag = Signal(self.grad_width + 1)
        m.d.comb += grad_mag.eq(Mux(self.in_grad < 0, -self.in_grad, self.in_grad))

        rd_valid = Array(store.rd_valid[w] for w in range(ways))
        rd_tag = Array(store.rd_tag)
        rd_accum = Array(store.rd_accum)
        rd_count = Array(store.rd_count)

        # Tag match (at most one way can match)
        match = Signal(ways)
        for w in range(ways):
            m.d.comb += match[w].eq(store.rd_valid[w] &
                                    (store.rd_tag[w] == self.in_addr))
        hit = Signal()
        hit_way = Signal(range(ways))
        m.d.comb += hit.eq(match.any())
        for w in range(ways):
            with m.If(match[w]):
                m.d.comb += hit_way.eq(w)

        # Lowest free way
        has_free = Signal()
        free_way = Signal(range(ways))
        m.d.comb += has_free.eq(~store.rd_valid.all())
        for w in reversed(range(ways)):
            with m.If(~store.rd_valid[w]):
                m.d.comb += free_way.eq(w)

        # Hit update (wraps at acc_width)
        new_accum = Signal(signed(self.acc_width))
        new_mag = Signal(self.acc_width + 1)
        new_count = Signal(range(max_updates + 1))
        hit_count = Signal(range(max_updates + 1))
        m.d.comb += [
            hit_count.eq(rd_count[hit_way]),
            new_accum.eq(rd_accum[hit_way] + grad_ext),
            new_mag.eq(Mux(new_accum < 0, -new_accum, new_accum)),
            new_count.eq(Mux(hit_count >= max_updates, max_updates,
                             hit_count + 1)),
        ]
        flush_hit = Signal()
        m.d.comb += flush_hit.eq((new_mag >= self.threshold) |
                                 (new_count == max_updates))

        # =============================================================
        # Registers
        # =============================================================

        push_addr = Signal(self.addr_width)
        push_value = Signal(signed(self.acc_width))
        m.d.comb += [
            self.push_addr.eq(push_addr),
            self.push_value.eq(push_value),
        ]

        # Entry to install once an eviction push is accepted
        pend_set = Signal(range(sets))
        pend_way = Signal(range(ways))
        pend_tag = Signal(self.addr_width)
        pend_accum = Signal(signed(self.acc_width))

        # Drain scan position (set-major, way-minor)
        scan_set = Signal(range(sets))
        scan_way = Signal(range(ways))
        scan_last = Signal()
        m.d.comb += scan_last.eq((scan_set == sets - 1) & (scan_way == ways - 1))

        def scan_advance():
            with m.If(scan_way == ways - 1):
                m.d.sync += [
                    scan_way.eq(0),
                    scan_set.eq(scan_set + 1),
                ]
            with m.Else():
                m.d.sync += scan_way.eq(scan_way + 1)

        # =============================================================
        # Control FSM
        # =============================================================

        with m.FSM(name="admit"):
            with m.State("ACCEPT"):
                m.d.comb += [
                    store.rd_set.eq(in_set),
                    self.in_ready.eq(~self.hold & ~self.drain),
                ]
                with m.If(self.drain):
                    m.d.sync += [
                        scan_set.eq(0),
                        scan_way.eq(0),
                    ]
                    m.next = "SCAN"
                with m.Elif(self.in_valid & ~self.hold):
                    with m.If(grad_mag >= self.threshold):
                        # Direct path
                        m.d.sync += [
                            push_addr.eq(self.in_addr),
                            push_value.eq(grad_ext),
                        ]
                        m.next = "PUSH"
                    with m.Elif(hit):
                        m.d.comb += [
                            store.wr_en.eq(1),
                            store.wr_set.eq(in_set),
                            store.wr_way.eq(hit_way),
                        ]
                        with m.If(flush_hit):
                            # Threshold crossed or count saturated: clear
                            m.d.sync += [
                                push_addr.eq(self.in_addr),
                                push_value.eq(new_accum),
                            ]
                            m.next = "PUSH"
                        with m.Else():
                            m.d.comb += [
                                store.wr_valid.eq(1),
                                store.wr_tag.eq(self.in_addr),
                                store.wr_accum.eq(new_accum),
                                store.wr_count.eq(new_count),
                            ]
                    with m.Elif(grad_mag < self.small_threshold):
                        pass  # tiny miss: dropped
                    with m.Elif(has_free):
                        m.d.comb += [
                            store.wr_en.eq(1),
                            store.wr_set.eq(in_set),
                            store.wr_way.eq(free_way),
                            store.wr_valid.eq(1),
                            store.wr_tag.eq(self.in_addr),
                            store.wr_accum.eq(grad_ext),
                            store.wr_count.eq(1),
                        ]
                    with m.Else():
                        # Set full: push the round-robin victim first
                        m.d.sync += [
                            push_addr.eq(rd_tag[store.rd_victim]),
                            push_value.eq(rd_accum[store.rd_victim]),
                            pend_set.eq(in_set),
                            pend_way.eq(store.rd_victim),
                            pend_tag.eq(self.in_addr),
                            pend_accum.eq(grad_ext),
                        ]
                        m.next = "EVICT"

            with m.State("PUSH"):
                m.d.comb += self.push_valid.eq(1)
                with m.If(self.push_ready):
                    m.next = "ACCEPT"

            with m.State("EVICT"):
                m.d.comb += self.push_valid.eq(1)
                with m.If(self.push_ready):
                    m.d.comb += [
                        store.wr_en.eq(1),
                        store.wr_set.eq(pend_set),
                        store.wr_way.eq(pend_way),
                        store.wr_valid.eq(1),
                        store.wr_tag.eq(pend_tag),
                        store.wr_accum.eq(pend_accum),
                        store.wr_count.eq(1),
                        store.victim_adv.eq(1),
                    ]
                    m.next = "ACCEPT"

            with m.State("SCAN"):
                m.d.comb += store.rd_set.eq(scan_set)
                with m.If(rd_valid[scan_way]):
                    m.d.comb += [
                        store.wr_en.eq(1),
                        store.wr_set.eq(scan_set),
                        store.wr_way.eq(scan_way),
                    ]
                    m.d.sync += [
                        push_addr.eq(rd_tag[scan_way]),
                        push_value.eq(rd_accum[scan_way]),
                    ]
                    m.next = "SCAN_PUSH"
                with m.Elif(scan_last):
                    m.next = "DRAINED"
                with m.Else():
                    scan_advance()

            with m.State("SCAN_PUSH"):
                m.d.comb += self.push_valid.eq(1)
                with m.If(self.push_ready):
                    with m.If(scan_last):
                        m.next = "DRAINED"
                    with m.Else():
                        scan_advance()
                        m.next = "SCAN"

            with m.State("DRAINED"):
                m.d.comb += self.drained.eq(1)
                with m.If(~self.drain):
                    m.next = "ACCEPT"

        return m
