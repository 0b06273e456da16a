"""
Adaptive Threshold generator for the Gradient Shim.

Tracks an exponential moving average of the magnitude of accepted
gradients and derives the admission threshold from it, so the shim adapts
to the gradient scale of the training phase instead of using a constant.

    ema       <= ema + ((|grad| - ema) >>> alpha_shift)   on sample_valid
    threshold  = clamp(ema << gain_shift, min_threshold, max_threshold)

The threshold saturates at its bounds; it never wraps.  The value seen by
the Admission Unit in a cycle is the one before that cycle's sample.
"""

from amaranth import *

from memory.accumulator_store import ACC_WIDTH

from .admission_unit import GRAD_WIDTH


class AdaptiveThreshold(Elaboratable):
    """
    Adaptive Threshold.

    Parameters
    ----------
    alpha_shift : int
        EMA weight is 2**-alpha_shift.
    gain_shift : int
        Threshold is the EMA scaled by 2**gain_shift.
    init : int
        EMA value after reset.
    min_threshold, max_threshold : int
        Saturation bounds of the threshold.

    Ports
    -----
    sample_valid : Signal(), in
    sample_grad  : Signal(signed(grad_width)), in
    threshold    : Signal(acc_width), out
    ema          : Signal(grad_width + 1), out
    """

    def __init__(self, grad_width=GRAD_WIDTH, acc_width=ACC_WIDTH,
                 alpha_shift=3, gain_shift=2, init=0, min_threshold=1,
                 max_threshold=2**15):
        if not 0 <= init <= 2**grad_width:
            raise ValueError(
                f"EMA init {init} out of range for grad_width {grad_width}")
        if not 0 <= min_threshold <= max_threshold < 2**acc_width:
            raise ValueError(
                f"Invalid threshold bounds [{min_threshold}, {max_threshold}]")

        self.grad_width = grad_width
        self.acc_width = acc_width
        self.alpha_shift = alpha_shift
        self.gain_shift = gain_shift
        self.init = init
        self.min_threshold = min_threshold
        self.max_threshold = max_threshold

        self.sample_valid = Signal()
        self.sample_grad = Signal(signed(grad_width))
        self.threshold = Signal(acc_width)
        self.ema = Signal(grad_width + 1)

    def elaborate(self, platform):
        m = Module()

        mag_width = self.grad_width + 1

        ema = Signal(mag_width, init=self.init)
        m.d.comb += self.ema.eq(ema)

        mag = Signal(mag_width)
        delta = Signal(signed(mag_width + 1))
        step = Signal(signed(mag_width + 1))
        m.d.comb += [
            mag.eq(Mux(self.sample_grad < 0, -self.sample_grad, self.sample_grad)),
            delta.eq(mag - ema),
            step.eq(delta >> self.alpha_shift),
        ]

        # ema + step stays within [0, 2**grad_width]
        with m.If(self.sample_valid):
            m.d.sync += ema.eq(ema + step)

        scaled = Signal(mag_width + self.gain_shift)
        m.d.comb += scaled.eq(ema << self.gain_shift)

        with m.If(scaled > self.max_threshold):
            m.d.comb += self.threshold.eq(self.max_threshold)
        with m.Elif(scaled < self.min_threshold):
            m.d.comb += self.threshold.eq(self.min_threshold)
        with m.Else():
            m.d.comb += self.threshold.eq(scaled)

        return m
