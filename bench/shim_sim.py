"""
Hardware shim simulation bridge -- drives GradientShim directly.

Streams a gradient trace into the Amaranth model of the shim, plays the
external memory (with optional random backpressure), optionally flushes
every N updates, and finishes with a full flush barrier.  Returns every
memory write in order plus cycle counters.
"""

import sys
import os
import random
from dataclasses import dataclass, field

# Add hardware source to path
_hw_dir = os.path.join(os.path.dirname(__file__), "..", "src", "hardware")
if _hw_dir not in sys.path:
    sys.path.insert(0, _hw_dir)

from amaranth import *
from amaranth.sim import Simulator

from modules.gradient_shim import GradientShim
from modules.flush_sequencer import HOLDING


# ── Cycle counters ────────────────────────────────────────────────────────

@dataclass
class CycleCounters:
    total_cycles: int = 0        # sync clock ticks for the whole run
    input_stall_cycles: int = 0  # in_valid high, in_ready low
    mem_stall_cycles: int = 0    # mem_valid high, mem_ready low
    flush_cycles: int = 0        # cycles spent waiting on a flush barrier
    flushes: int = 0
    accepted: int = 0            # hardware accepted_count at the end
    writes: int = 0              # hardware write_count at the end
    push_stalls: int = 0         # hardware stall_count at the end
    per_flush_cycles: list = field(default_factory=list)


# ── Hardware shim simulator ───────────────────────────────────────────────

class ShimSimulator:
    """Run a trace through GradientShim in Amaranth simulation."""

    def __init__(self, config, trace, mem_ready_prob=1.0, flush_every=0,
                 seed=0, max_flush_cycles=100000, verbose=False):
        self.config = config
        self.trace = list(trace)
        self.mem_ready_prob = mem_ready_prob
        self.flush_every = flush_every
        self.max_flush_cycles = max_flush_cycles
        self.verbose = verbose
        self.rng = random.Random(seed)
        self.counters = CycleCounters()
        self.writes = []

    def run(self, vcd_path=None):
        """Run the full trace in simulation. Returns (writes, counters)."""
        dut = GradientShim(self.config)
        sim = Simulator(dut)
        sim.add_clock(1e-8)  # 100 MHz sync

        async def testbench(ctx):
            await self._run_trace(ctx, dut)

        sim.add_testbench(testbench)
        if vcd_path is not None:
            with sim.write_vcd(vcd_path):
                sim.run()
        else:
            sim.run()

        return self.writes, self.counters

    # ── Per-cycle helpers ─────────────────────────────────────────────────

    async def _step(self, ctx, dut):
        """Play memory for one cycle, then advance the clock."""
        ready = self.rng.random() < self.mem_ready_prob
        ctx.set(dut.mem_ready, ready)
        if ctx.get(dut.mem_valid):
            if ready:
                self.writes.append((ctx.get(dut.mem_addr),
                                    ctx.get(dut.mem_value)))
            else:
                self.counters.mem_stall_cycles += 1
        await ctx.tick()
        self.counters.total_cycles += 1

    async def _submit(self, ctx, dut, addr, grad):
        """Offer one update until it is accepted."""
        ctx.set(dut.in_addr, addr)
        ctx.set(dut.in_grad, grad)
        ctx.set(dut.in_valid, 1)
        while not ctx.get(dut.in_ready):
            self.counters.input_stall_cycles += 1
            await self._step(ctx, dut)
        await self._step(ctx, dut)
        ctx.set(dut.in_valid, 0)

    async def _flush(self, ctx, dut):
        """Raise flush, wait for idle, release flush."""
        start = self.counters.total_cycles
        ctx.set(dut.flush, 1)
        for _ in range(self.max_flush_cycles):
            if ctx.get(dut.idle):
                break
            await self._step(ctx, dut)
        else:
            raise RuntimeError(
                f"Flush did not reach idle within {self.max_flush_cycles} cycles")
        # Let the sequencer settle into HOLDING before releasing
        while ctx.get(dut.phase) != HOLDING:
            await self._step(ctx, dut)
        ctx.set(dut.flush, 0)
        await self._step(ctx, dut)

        elapsed = self.counters.total_cycles - start
        self.counters.flushes += 1
        self.counters.flush_cycles += elapsed
        self.counters.per_flush_cycles.append(elapsed)
        if self.verbose:
            print(f"  flush #{self.counters.flushes}: {elapsed} cycles, "
                  f"{len(self.writes)} writes so far")

    # ── Main loop ─────────────────────────────────────────────────────────

    async def _run_trace(self, ctx, dut):
        for i, (addr, grad) in enumerate(self.trace):
            await self._submit(ctx, dut, addr, grad)
            if self.flush_every and (i + 1) % self.flush_every == 0:
                await self._flush(ctx, dut)

        await self._flush(ctx, dut)

        self.counters.accepted = ctx.get(dut.accepted_count)
        self.counters.writes = ctx.get(dut.write_count)
        self.counters.push_stalls = ctx.get(dut.stall_count)

        if self.verbose:
            print(f"  HW run: {self.counters.total_cycles} cycles, "
                  f"{self.counters.accepted} updates in, "
                  f"{self.counters.writes} writes out")
