"""
Benchmark runner CLI: push synthetic gradient traces through the golden
model and/or the hardware simulation and report write-traffic reduction.

Usage:
  python -m bench.benchmark_runner --mode sw_only --updates 20000
  python -m bench.benchmark_runner --mode hw_sim --updates 2000 --mem-ready 0.5
  python -m bench.benchmark_runner --mode both --traces 5 --adaptive
"""

import argparse
import json
import os
import sys
import time
from dataclasses import asdict

from .reference_model import ReferenceShim, SumTracker
from .trace_generator import TraceSpec, generate_trace

_hw_dir = os.path.join(os.path.dirname(__file__), "..", "src", "hardware")
if _hw_dir not in sys.path:
    sys.path.insert(0, _hw_dir)

from modules.shim_config import ShimConfig
from top import build_config

RESULTS_DIR = os.path.join(os.path.dirname(__file__), "results")

TARGET_FREQ_MHZ = 100  # for cycle-time estimates


def run_sw_only(config, trace):
    """Run the golden model over a trace. Returns dict of results."""
    model = ReferenceShim(config)
    tracker = SumTracker(config.acc_width, capacity=max(4096, len(trace)))
    dropped_addrs = set()

    t0 = time.perf_counter()
    for addr, grad in trace:
        decision = model.submit(addr, grad)
        if decision.kind == "DROP":
            dropped_addrs.add(addr)
        else:
            tracker.submit(addr, grad)
    model.flush()
    elapsed = time.perf_counter() - t0

    for addr, value in model.writes:
        tracker.write(addr, value)

    return {
        "mode": "sw_only",
        "time_s": round(elapsed, 6),
        "updates": len(trace),
        "writes": len(model.writes),
        "pushes": len(model.pushes),
        "reduction": round(len(trace) / max(1, len(model.writes)), 3),
        "conserved": not tracker.mismatches(),
        "dropped_addresses": len(dropped_addrs),
        "stats": asdict(model.stats),
        "_writes": model.writes,
    }


def run_hw_sim(config, trace, mem_ready_prob, seed):
    """Run the trace through the Amaranth shim. Returns dict of results."""
    from .shim_sim import ShimSimulator

    sim = ShimSimulator(config, trace, mem_ready_prob=mem_ready_prob,
                        seed=seed, verbose=False)
    t0 = time.perf_counter()
    writes, counters = sim.run()
    elapsed = time.perf_counter() - t0

    estimated_hw_s = counters.total_cycles / (TARGET_FREQ_MHZ * 1e6)

    return {
        "mode": "hw_sim",
        "sim_time_s": round(elapsed, 3),
        "updates": counters.accepted,
        "writes": counters.writes,
        "reduction": round(counters.accepted / max(1, counters.writes), 3),
        "total_cycles": counters.total_cycles,
        "input_stall_cycles": counters.input_stall_cycles,
        "mem_stall_cycles": counters.mem_stall_cycles,
        "push_stalls": counters.push_stalls,
        "flush_cycles": counters.flush_cycles,
        "estimated_hw_time_s": round(estimated_hw_s, 9),
        "_writes": writes,
    }


def run_benchmark(config, spec, mode, mem_ready_prob):
    """Run a single trace. Returns result dict."""
    trace = generate_trace(spec)
    result = {"seed": spec.seed, "updates": len(trace),
              "addresses": spec.num_addresses}

    if mode in ("sw_only", "both"):
        result["sw"] = run_sw_only(config, trace)
    if mode in ("hw_sim", "both"):
        result["hw"] = run_hw_sim(config, trace, mem_ready_prob, spec.seed)
    if mode == "both":
        result["match"] = result["sw"]["_writes"] == result["hw"]["_writes"]

    for key in ("sw", "hw"):
        if key in result:
            del result[key]["_writes"]
    return result


def print_summary_table(results, mode):
    """Print a summary table to stdout."""
    print()
    if mode in ("sw_only", "both"):
        print(f"{'Seed':<6} {'Updates':>8} {'Pushes':>8} {'Writes':>8} "
              f"{'Reduct':>8} {'Dropped':>8} {'Sum':>5} {'Time(s)':>10}")
        print("-" * 70)
        for r in results:
            sw = r["sw"]
            print(f"{r['seed']:<6} {sw['updates']:>8} {sw['pushes']:>8} "
                  f"{sw['writes']:>8} {sw['reduction']:>8.2f} "
                  f"{sw['stats']['dropped']:>8} "
                  f"{'OK' if sw['conserved'] else 'BAD':>5} "
                  f"{sw['time_s']:>10.4f}")

    if mode in ("hw_sim", "both"):
        print()
        print(f"{'Seed':<6} {'Updates':>8} {'Writes':>8} {'Reduct':>8} "
              f"{'Cycles':>8} {'InStall':>8} {'MemStall':>8} {'SimTime':>10}")
        print("-" * 72)
        for r in results:
            hw = r["hw"]
            print(f"{r['seed']:<6} {hw['updates']:>8} {hw['writes']:>8} "
                  f"{hw['reduction']:>8.2f} {hw['total_cycles']:>8} "
                  f"{hw['input_stall_cycles']:>8} {hw['mem_stall_cycles']:>8} "
                  f"{hw['sim_time_s']:>10.3f}")

    if mode == "both":
        mismatched = [r["seed"] for r in results if not r["match"]]
        print()
        if mismatched:
            print(f"HW/SW write sequences DIFFER for seeds {mismatched}")
        else:
            print("HW write sequence matches golden model for every trace.")
    print()


def main():
    defaults = ShimConfig()
    parser = argparse.ArgumentParser(
        description="Measure gradient shim write-traffic reduction")
    parser.add_argument("--mode", choices=["sw_only", "hw_sim", "both"],
                        default="sw_only",
                        help="Run mode (default: sw_only)")
    parser.add_argument("--traces", type=int, default=1,
                        help="Number of traces (seeds 0..N-1)")
    parser.add_argument("--updates", type=int, default=5000)
    parser.add_argument("--addresses", type=int, default=256)
    parser.add_argument("--grad-scale", type=int, default=12)
    parser.add_argument("--spike-prob", type=float, default=0.02)
    parser.add_argument("--sets", type=int, default=defaults.number_of_sets)
    parser.add_argument("--ways", type=int, default=defaults.ways_per_set)
    parser.add_argument("--max-updates", type=int, default=defaults.max_updates)
    parser.add_argument("--threshold", type=int, default=defaults.threshold)
    parser.add_argument("--small-threshold", type=int, default=None)
    parser.add_argument("--wcb", type=int, default=defaults.wcb_capacity)
    parser.add_argument("--queue", type=int,
                        default=defaults.overflow_queue_capacity)
    parser.add_argument("--addr-width", type=int, default=defaults.addr_width)
    parser.add_argument("--grad-width", type=int, default=defaults.grad_width)
    parser.add_argument("--acc-width", type=int, default=defaults.acc_width)
    parser.add_argument("--adaptive", action="store_true")
    parser.add_argument("--mem-ready", type=float, default=1.0,
                        help="Probability memory accepts a write each cycle")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Running {args.traces} trace(s) of {args.updates} updates "
          f"(mode={args.mode})")

    results = []
    for seed in range(args.traces):
        spec = TraceSpec(num_updates=args.updates,
                         num_addresses=args.addresses,
                         grad_scale=args.grad_scale,
                         spike_prob=args.spike_prob,
                         grad_width=config.grad_width,
                         seed=seed)
        print(f"  [{seed+1}/{args.traces}] seed={seed} ...", end=" ", flush=True)
        result = run_benchmark(config, spec, args.mode, args.mem_ready)
        results.append(result)
        key = "sw" if "sw" in result else "hw"
        print(f"{result[key]['writes']} writes "
              f"({result[key]['reduction']:.2f}x)")
        if args.verbose and "sw" in result:
            print(f"    {result['sw']['stats']}")

    print_summary_table(results, args.mode)

    # Save results
    os.makedirs(RESULTS_DIR, exist_ok=True)
    ts = time.strftime("%Y%m%d_%H%M%S")
    out_path = os.path.join(RESULTS_DIR, f"shim_{args.mode}_{ts}.json")
    with open(out_path, "w") as f:
        json.dump({
            "mode": args.mode,
            "config": asdict(config),
            "num_traces": len(results),
            "results": results,
        }, f, indent=2)
    print(f"Results saved to {out_path}")


if __name__ == "__main__":
    main()
