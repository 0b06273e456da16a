"""
Transaction-level golden model of the gradient shim.

Mirrors the hardware decisions update by update, without cycles: the
admission policy of level 1, write combining of level 2, and the flush
order of both.  Because the hardware never reorders pushes or queue
entries, and backpressure only changes *when* things happen, the exact
sequence of memory writes the RTL produces for a trace equals the
sequence this model produces for it.

The config argument is anything with the ShimConfig fields (duck-typed,
so this module does not depend on Amaranth).

Threshold sources are callables ``step -> threshold`` where step is the
number of updates accepted so far.  FixedThreshold and EMAThreshold cover
the two hardware variants; EMAThreshold also observes every accepted
gradient, the way the hardware EMA samples in_fire.
"""

from dataclasses import dataclass, field


def wrap_signed(value, width):
    """Two's-complement wrap of *value* to *width* bits."""
    half = 1 << (width - 1)
    return ((value + half) % (1 << width)) - half


# ── Threshold sources ─────────────────────────────────────────────────────

class FixedThreshold:
    def __init__(self, value):
        self.value = value

    def __call__(self, step):
        return self.value

    def observe(self, gradient):
        pass


class EMAThreshold:
    """Software twin of AdaptiveThreshold (saturating, never wrapping)."""

    def __init__(self, alpha_shift=3, gain_shift=2, init=0,
                 min_threshold=1, max_threshold=2**15):
        self.alpha_shift = alpha_shift
        self.gain_shift = gain_shift
        self.ema = init
        self.min_threshold = min_threshold
        self.max_threshold = max_threshold

    def __call__(self, step):
        scaled = self.ema << self.gain_shift
        return max(self.min_threshold, min(self.max_threshold, scaled))

    def observe(self, gradient):
        # Python >> on negative ints is an arithmetic shift, as in the RTL
        self.ema += (abs(gradient) - self.ema) >> self.alpha_shift


def threshold_source_for(config):
    """Build the threshold source matching a ShimConfig."""
    ema = getattr(config, "adaptive", None)
    if ema is None:
        return FixedThreshold(config.threshold)
    init = ema.init
    if init is None:
        init = config.threshold >> ema.gain_shift
    return EMAThreshold(alpha_shift=ema.alpha_shift,
                        gain_shift=ema.gain_shift,
                        init=init,
                        min_threshold=ema.min_threshold,
                        max_threshold=ema.max_threshold)


# ── Model state ───────────────────────────────────────────────────────────

@dataclass
class Entry:
    valid: bool = False
    tag: int = 0
    accum: int = 0
    count: int = 0

    def clear(self):
        self.valid = False
        self.tag = 0
        self.accum = 0
        self.count = 0


@dataclass
class ModelStats:
    accepted: int = 0
    direct: int = 0
    hits: int = 0
    forced: int = 0          # pushes caused by MAX_UPDATES
    threshold_pushes: int = 0
    allocations: int = 0
    evictions: int = 0
    dropped: int = 0
    wcb_merges: int = 0
    wcb_evictions: int = 0
    flushes: int = 0


@dataclass
class Decision:
    kind: str                # DIRECT / HIT / HIT_PUSH / DROP / ALLOC / EVICT
    pushes: list = field(default_factory=list)


class ReferenceShim:
    """Golden model of GradientShim."""

    def __init__(self, config, threshold_source=None):
        self.config = config
        self.num_sets = config.number_of_sets
        self.num_ways = config.ways_per_set
        self.acc_width = config.acc_width

        if threshold_source is None:
            threshold_source = threshold_source_for(config)
        elif not hasattr(threshold_source, "observe"):
            threshold_source = _CallableThreshold(threshold_source)
        self.threshold_source = threshold_source

        self.sets = [[Entry() for _ in range(self.num_ways)]
                     for _ in range(self.num_sets)]
        self.victims = [0] * self.num_sets
        self.wcb = [Entry() for _ in range(config.wcb_capacity)]
        self.wcb_victim = 0

        self.pushes = []   # (addr, value) crossing level 1 -> level 2
        self.writes = []   # (addr, value) reaching memory, in order
        self.stats = ModelStats()

    # ── Thresholds ────────────────────────────────────────────────────────

    def _thresholds(self):
        threshold = self.threshold_source(self.stats.accepted)
        small = self.config.small_threshold
        if small is None:
            if getattr(self.config, "adaptive", None) is not None:
                small = threshold >> 2
            else:
                small = self.config.threshold // 4
        return threshold, small

    # ── Level 1 ───────────────────────────────────────────────────────────

    def submit(self, addr, grad):
        """Apply one accepted update. Returns the Decision taken."""
        threshold, small = self._thresholds()
        decision = self._admit(addr, grad, threshold, small)
        self.threshold_source.observe(grad)
        self.stats.accepted += 1
        for push_addr, value in decision.pushes:
            self._push(push_addr, value)
        return decision

    def _admit(self, addr, grad, threshold, small):
        magnitude = abs(grad)
        if magnitude >= threshold:
            self.stats.direct += 1
            return Decision("DIRECT", [(addr, grad)])

        set_idx = addr & (self.num_sets - 1)
        ways = self.sets[set_idx]

        for entry in ways:
            if entry.valid and entry.tag == addr:
                self.stats.hits += 1
                accum = wrap_signed(entry.accum + grad, self.acc_width)
                count = min(entry.count + 1, self.config.max_updates)
                if abs(accum) >= threshold or count == self.config.max_updates:
                    if abs(accum) >= threshold:
                        self.stats.threshold_pushes += 1
                    else:
                        self.stats.forced += 1
                    entry.clear()
                    return Decision("HIT_PUSH", [(addr, accum)])
                entry.accum = accum
                entry.count = count
                return Decision("HIT")

        if magnitude < small:
            self.stats.dropped += 1
            return Decision("DROP")

        for entry in ways:
            if not entry.valid:
                self.stats.allocations += 1
                entry.valid, entry.tag, entry.accum, entry.count = True, addr, grad, 1
                return Decision("ALLOC")

        self.stats.evictions += 1
        victim = ways[self.victims[set_idx]]
        pushed = (victim.tag, victim.accum)
        victim.tag, victim.accum, victim.count = addr, grad, 1
        self.victims[set_idx] = (self.victims[set_idx] + 1) % self.num_ways
        return Decision("EVICT", [pushed])

    # ── Level 2 ───────────────────────────────────────────────────────────

    def _push(self, addr, value):
        self.pushes.append((addr, value))

        for entry in self.wcb:
            if entry.valid and entry.tag == addr:
                self.stats.wcb_merges += 1
                entry.accum = wrap_signed(entry.accum + value, self.acc_width)
                return

        for entry in self.wcb:
            if not entry.valid:
                entry.valid, entry.tag, entry.accum = True, addr, value
                return

        self.stats.wcb_evictions += 1
        victim = self.wcb[self.wcb_victim]
        self.writes.append((victim.tag, victim.accum))
        victim.tag, victim.accum = addr, value
        self.wcb_victim = (self.wcb_victim + 1) % len(self.wcb)

    # ── Flush ─────────────────────────────────────────────────────────────

    def flush(self):
        """Drain level 1 (set-major, way-minor) then level 2 (slot order)."""
        if self.idle:
            return
        self.stats.flushes += 1
        for ways in self.sets:
            for entry in ways:
                if entry.valid:
                    pushed = (entry.tag, entry.accum)
                    entry.clear()
                    self._push(*pushed)
        for entry in self.wcb:
            if entry.valid:
                self.writes.append((entry.tag, entry.accum))
                entry.clear()

    @property
    def idle(self):
        return (not any(e.valid for ways in self.sets for e in ways)
                and not any(e.valid for e in self.wcb))

    @property
    def l1_occupancy(self):
        return sum(e.valid for ways in self.sets for e in ways)

    @property
    def wcb_occupancy(self):
        return sum(e.valid for e in self.wcb)


class _CallableThreshold:
    def __init__(self, fn):
        self.fn = fn

    def __call__(self, step):
        return self.fn(step)

    def observe(self, gradient):
        pass


# ── Sum tracking ──────────────────────────────────────────────────────────

class SumTracker:
    """
    Bounded address -> sum table for conservation checks.

    Records what was submitted and what was written per address.  Running
    out of table capacity is a harness error, not a property of the shim.
    """

    def __init__(self, acc_width, capacity=4096):
        self.acc_width = acc_width
        self.capacity = capacity
        self.submitted = {}
        self.written = {}

    def _slot(self, table, addr):
        if addr not in table:
            if len(table) >= self.capacity:
                raise RuntimeError(
                    f"SumTracker capacity {self.capacity} exhausted; "
                    f"increase capacity")
            table[addr] = 0
        return table[addr]

    def submit(self, addr, grad):
        total = self._slot(self.submitted, addr)
        self.submitted[addr] = wrap_signed(total + grad, self.acc_width)

    def write(self, addr, value):
        total = self._slot(self.written, addr)
        self.written[addr] = wrap_signed(total + value, self.acc_width)

    def mismatches(self, exclude=()):
        """Addresses whose written sum differs from the submitted sum."""
        bad = {}
        for addr, total in self.submitted.items():
            if addr in exclude:
                continue
            got = self.written.get(addr, 0)
            if got != total:
                bad[addr] = (total, got)
        for addr, got in self.written.items():
            if addr not in self.submitted:
                bad[addr] = (0, got)
        return bad
