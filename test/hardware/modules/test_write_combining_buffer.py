"""
Testbench for the Write-Combining Buffer.

Capacity 4.  The testbench plays the Overflow Queue (enq_ready) and
records every entry the WCB enqueues.

Verifies:
  1. Empty on reset.
  2. Same-address pushes merge into one slot.
  3. New addresses allocate the lowest free slot.
  4. Full buffer: the round-robin victim is enqueued and replaced.
  5. Queue full: eviction stalls, push_ready low, enqueue data stable.
  6. Merges proceed while the queue is full.
  7. Flush pulse drains every slot lowest-index first, refusing pushes,
     then clears busy.
"""

import sys, os

sys.path.insert(
    0,
    os.path.join(os.path.dirname(__file__), "..", "..", "..", "src", "hardware"),
)

from amaranth import *
from amaranth.sim import Simulator

from modules.write_combining_buffer import WriteCombiningBuffer


CAPACITY = 4


def test_write_combining_buffer():
    dut = WriteCombiningBuffer(capacity=CAPACITY, addr_width=32, acc_width=32)
    sim = Simulator(dut)
    sim.add_clock(1e-8)  # 100 MHz

    async def testbench(ctx):
        enqueued = []

        async def step():
            if ctx.get(dut.enq_valid) and ctx.get(dut.enq_ready):
                enqueued.append((ctx.get(dut.enq_addr), ctx.get(dut.enq_value)))
            await ctx.tick()

        async def push(addr, value, max_cycles=50):
            ctx.set(dut.push_addr, addr)
            ctx.set(dut.push_value, value)
            ctx.set(dut.push_valid, 1)
            for _ in range(max_cycles):
                if ctx.get(dut.push_ready):
                    break
                await step()
            else:
                raise AssertionError(f"push ({addr:#x}, {value}) never accepted")
            await step()
            ctx.set(dut.push_valid, 0)

        ctx.set(dut.enq_ready, 1)

        # ---- Test 1: Empty on reset ----
        assert ctx.get(dut.empty) == 1, "Test 1 FAIL: should be empty"
        assert ctx.get(dut.busy) == 0, "Test 1 FAIL: should not be busy"
        assert ctx.get(dut.occupancy) == 0, "Test 1 FAIL: occupancy != 0"
        assert ctx.get(dut.enq_valid) == 0, "Test 1 FAIL: enq_valid high"
        print("Test 1 PASSED: Empty on reset.")

        # ---- Test 2: Merge ----
        await push(0x10, 5)
        await push(0x10, 7)
        assert ctx.get(dut.occupancy) == 1, (
            f"Test 2 FAIL: occupancy {ctx.get(dut.occupancy)}, expected 1"
        )
        assert enqueued == [], f"Test 2 FAIL: unexpected enqueue {enqueued}"
        print("Test 2 PASSED: Same-address pushes merge.")

        # ---- Test 3: Allocate ----
        for addr, value in ((0x20, 1), (0x30, 2), (0x40, 3)):
            await push(addr, value)
        assert ctx.get(dut.occupancy) == CAPACITY, "Test 3 FAIL: should be full"
        assert enqueued == [], "Test 3 FAIL: allocation enqueued something"
        print("Test 3 PASSED: New addresses allocate free slots.")

        # ---- Test 4: Evict round-robin victim ----
        await push(0x50, 9)
        assert enqueued == [(0x10, 12)], f"Test 4 FAIL: enqueued {enqueued}"
        await push(0x60, 4)
        assert enqueued[-1] == (0x20, 1), f"Test 4 FAIL: enqueued {enqueued}"
        assert ctx.get(dut.occupancy) == CAPACITY, "Test 4 FAIL: occupancy changed"
        print("Test 4 PASSED: Victim evicted round-robin and replaced.")

        # ---- Test 5: Queue full stalls eviction ----
        ctx.set(dut.enq_ready, 0)
        ctx.set(dut.push_addr, 0x70)
        ctx.set(dut.push_value, 8)
        ctx.set(dut.push_valid, 1)
        for _ in range(5):
            assert ctx.get(dut.push_ready) == 0, "Test 5 FAIL: push accepted"
            assert ctx.get(dut.enq_valid) == 1, "Test 5 FAIL: enq_valid dropped"
            assert (ctx.get(dut.enq_addr), ctx.get(dut.enq_value)) == (0x30, 2), (
                "Test 5 FAIL: enqueue data moved during stall"
            )
            await step()
        ctx.set(dut.push_valid, 0)
        ctx.set(dut.enq_ready, 1)
        await push(0x70, 8)
        assert enqueued[-1] == (0x30, 2), f"Test 5 FAIL: enqueued {enqueued}"
        print("Test 5 PASSED: Eviction stalls while the queue is full.")

        # ---- Test 6: Merge with queue full ----
        ctx.set(dut.enq_ready, 0)
        await push(0x50, 1)
        ctx.set(dut.enq_ready, 1)
        assert len(enqueued) == 3, "Test 6 FAIL: merge caused an enqueue"
        print("Test 6 PASSED: Merges proceed while the queue is full.")

        # ---- Test 7: Flush ----
        # Slots now: 0:(0x50,10) 1:(0x60,4) 2:(0x70,8) 3:(0x40,3)
        before = len(enqueued)
        ctx.set(dut.flush, 1)
        await step()
        ctx.set(dut.flush, 0)
        assert ctx.get(dut.busy) == 1, "Test 7 FAIL: busy not raised"

        ctx.set(dut.push_addr, 0x80)
        ctx.set(dut.push_value, 1)
        ctx.set(dut.push_valid, 1)
        for _ in range(20):
            if not ctx.get(dut.busy):
                break
            assert ctx.get(dut.push_ready) == 0, "Test 7 FAIL: push accepted during flush"
            await step()
        ctx.set(dut.push_valid, 0)
        assert ctx.get(dut.busy) == 0, "Test 7 FAIL: flush never finished"
        assert ctx.get(dut.empty) == 1, "Test 7 FAIL: not empty after flush"
        assert enqueued[before:] == [(0x50, 10), (0x60, 4), (0x70, 8), (0x40, 3)], (
            f"Test 7 FAIL: flush order {enqueued[before:]}"
        )
        print("Test 7 PASSED: Flush drains every slot in index order.")

        print("\nAll tests PASSED.")

    sim.add_testbench(testbench)

    with sim.write_vcd(os.path.join(os.path.dirname(__file__), "..", "..", "logs", "write_combining_buffer.vcd")):
        sim.run()


def test_flush_under_backpressure():
    dut = WriteCombiningBuffer(capacity=2, addr_width=16, acc_width=16)
    sim = Simulator(dut)
    sim.add_clock(1e-8)

    async def testbench(ctx):
        for addr, value in ((0x1, -3), (0x2, 4)):
            ctx.set(dut.push_addr, addr)
            ctx.set(dut.push_value, value)
            ctx.set(dut.push_valid, 1)
            await ctx.tick()
        ctx.set(dut.push_valid, 0)

        ctx.set(dut.flush, 1)
        await ctx.tick()
        ctx.set(dut.flush, 0)

        drained = []
        ready = 0
        for _ in range(20):
            if not ctx.get(dut.busy):
                break
            ready ^= 1
            ctx.set(dut.enq_ready, ready)
            if ctx.get(dut.enq_valid) and ready:
                drained.append((ctx.get(dut.enq_addr), ctx.get(dut.enq_value)))
            await ctx.tick()
        assert drained == [(0x1, -3), (0x2, 4)], f"drained {drained}"
        assert ctx.get(dut.empty) == 1

    sim.add_testbench(testbench)
    sim.run()


if __name__ == "__main__":
    test_write_combining_buffer()
    test_flush_under_backpressure()
