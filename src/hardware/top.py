"""
Gradient Shim Verilog export.

Elaborates GradientShim from command-line sizes and writes synthesizable
Verilog with the top-level ports of the shim:

    update stream ──► GradientShim ──► memory write stream
                         ▲     │
                       flush  idle

Usage:
  python top.py -o gradient_shim.v
  python top.py --sets 64 --ways 8 --threshold 128 --adaptive -o shim.v
"""

import argparse
import sys

from amaranth.back import verilog

from modules.gradient_shim import GradientShim
from modules.shim_config import ShimConfig, EMAConfig


def build_config(args):
    return ShimConfig(
        number_of_sets=args.sets,
        ways_per_set=args.ways,
        max_updates=args.max_updates,
        threshold=args.threshold,
        small_threshold=args.small_threshold,
        wcb_capacity=args.wcb,
        overflow_queue_capacity=args.queue,
        addr_width=args.addr_width,
        grad_width=args.grad_width,
        acc_width=args.acc_width,
        adaptive=EMAConfig() if args.adaptive else None,
    )


def parse_args(argv=None):
    defaults = ShimConfig()
    parser = argparse.ArgumentParser(description="Emit Verilog for the gradient shim")
    parser.add_argument("-o", "--output", default="gradient_shim.v")
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
    parser.add_argument("--adaptive", action="store_true",
                        help="Use the EMA threshold instead of a constant")
    return parser.parse_args(argv)


def main():
    args = parse_args()

    try:
        shim = GradientShim(build_config(args))
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    with open(args.output, "w") as f:
        f.write(verilog.convert(shim, name="gradient_shim", ports=shim.ports()))
    print(f"Wrote {args.output}")


if __name__ == "__main__":
    main()
