"""
Set-Associative Accumulator Store for the Gradient Shim.

Holds the per-(set, way) accumulation state of the level-1 accumulator:
valid bit, tag (the full update address), signed running sum and update
count, plus one round-robin victim pointer per set.

Pure storage: all replacement and threshold policy lives in the
Admission Unit, which is the only writer.  Entries are kept in flip-flops
rather than a block RAM so that a whole set can be read combinationally
in one cycle and reset clears every entry at once.

Read port:  rd_set -> all ways of the set + the set's victim pointer (comb)
Write port: one (set, way) per cycle (sync)
"""

from amaranth import *
from amaranth.utils import exact_log2


# Default configuration
NUM_SETS = 16
NUM_WAYS = 4
ADDR_WIDTH = 32
ACC_WIDTH = 32
MAX_UPDATES = 10


def rr_incr(signal, modulo):
    """Round-robin successor of *signal* in [0, modulo)."""
    if modulo == 2**len(signal):
        return signal + 1
    else:
        return Mux(signal == modulo - 1, 0, signal + 1)


class AccumulatorStore(Elaboratable):
    """
    Accumulator Store.

    Parameters
    ----------
    num_sets : int
        Number of sets (power of two, default 16).
    num_ways : int
        Ways per set (default 4).
    addr_width : int
        Update address width; the full address is stored as the tag.
    acc_width : int
        Width of the signed accumulator.
    max_updates : int
        Largest update count an entry can hold.

    Ports
    -----
    rd_set : Signal(range(num_sets)), in
        Set to read.
    rd_valid : Signal(num_ways), out
        Valid bit of each way in rd_set.
    rd_tag : list of Signal(addr_width), out
        Tag of each way in rd_set.
    rd_accum : list of Signal(signed(acc_width)), out
        Accumulated value of each way in rd_set.
    rd_count : list of Signal(range(max_updates + 1)), out
        Update count of each way in rd_set.
    rd_victim : Signal(range(num_ways)), out
        Round-robin victim pointer of rd_set.
    wr_en : Signal(), in
        Write enable for the entry at (wr_set, wr_way).
    wr_set, wr_way : in
        Entry to write.
    wr_valid, wr_tag, wr_accum, wr_count : in
        New entry contents.  A clear is a write with all four zero.
    victim_adv : Signal(), in
        Advance the victim pointer of wr_set.
    empty : Signal(), out
        High when no entry in any set is valid.
    occupancy : Signal(range(num_sets * num_ways + 1)), out
        Number of valid entries.
    """

    def __init__(self, num_sets=NUM_SETS, num_ways=NUM_WAYS,
                 addr_width=ADDR_WIDTH, acc_width=ACC_WIDTH,
                 max_updates=MAX_UPDATES):
        if num_sets < 1 or num_sets & (num_sets - 1):
            raise ValueError(
                f"num_sets must be a positive power of two, not {num_sets}")
        if num_ways < 1:
            raise ValueError(f"num_ways must be positive, not {num_ways}")
        if max_updates < 1:
            raise ValueError(f"max_updates must be positive, not {max_updates}")

        self.num_sets = num_sets
        self.num_ways = num_ways
        self.addr_width = addr_width
        self.acc_width = acc_width
        self.max_updates = max_updates
        self.set_bits = exact_log2(num_sets)

        # Read port
        self.rd_set = Signal(range(num_sets))
        self.rd_valid = Signal(num_ways)
        self.rd_tag = [Signal(addr_width, name=f"rd_tag{w}")
                       for w in range(num_ways)]
        self.rd_accum = [Signal(signed(acc_width), name=f"rd_accum{w}")
                         for w in range(num_ways)]
        self.rd_count = [Signal(range(max_updates + 1), name=f"rd_count{w}")
                         for w in range(num_ways)]
        self.rd_victim = Signal(range(num_ways))

        # Write port
        self.wr_en = Signal()
        self.wr_set = Signal(range(num_sets))
        self.wr_way = Signal(range(num_ways))
        self.wr_valid = Signal()
        self.wr_tag = Signal(addr_width)
        self.wr_accum = Signal(signed(acc_width))
        self.wr_count = Signal(range(max_updates + 1))
        self.victim_adv = Signal()

        # Status
        self.empty = Signal()
        self.occupancy = Signal(range(num_sets * num_ways + 1))

    def elaborate(self, platform):
        m = Module()

        sets = self.num_sets
        ways = self.num_ways

        # Register arena: one Array per way, indexed by set
        valid = [Array(Signal(name=f"valid_w{w}_s{s}") for s in range(sets))
                 for w in range(ways)]
        tag = [Array(Signal(self.addr_width, name=f"tag_w{w}_s{s}")
                     for s in range(sets))
               for w in range(ways)]
        accum = [Array(Signal(signed(self.acc_width), name=f"accum_w{w}_s{s}")
                       for s in range(sets))
                 for w in range(ways)]
        count = [Array(Signal(range(self.max_updates + 1),
                              name=f"count_w{w}_s{s}")
                       for s in range(sets))
                 for w in range(ways)]
        victim = Array(Signal(range(ways), name=f"victim_s{s}")
                       for s in range(sets))

        # --- Whole-set read (combinational) ---
        for w in range(ways):
            m.d.comb += [
                self.rd_valid[w].eq(valid[w][self.rd_set]),
                self.rd_tag[w].eq(tag[w][self.rd_set]),
                self.rd_accum[w].eq(accum[w][self.rd_set]),
                self.rd_count[w].eq(count[w][self.rd_set]),
            ]
        m.d.comb += self.rd_victim.eq(victim[self.rd_set])

        # --- Single-way write (synchronous) ---
        with m.If(self.wr_en):
            for w in range(ways):
                with m.If(self.wr_way == w):
                    m.d.sync += [
                        valid[w][self.wr_set].eq(self.wr_valid),
                        tag[w][self.wr_set].eq(self.wr_tag),
                        accum[w][self.wr_set].eq(self.wr_accum),
                        count[w][self.wr_set].eq(self.wr_count),
                    ]

        # --- Victim pointer advance ---
        wr_victim = Signal(range(ways))
        m.d.comb += wr_victim.eq(victim[self.wr_set])
        with m.If(self.victim_adv):
            m.d.sync += victim[self.wr_set].eq(rr_incr(wr_victim, ways))

        # --- Occupancy ---
        all_valid = [valid[w][s] for s in range(sets) for w in range(ways)]
        m.d.comb += [
            self.empty.eq(~Cat(*all_valid).any()),
            self.occupancy.eq(sum(all_valid)),
        ]

        return m
