"""Numeric helpers for field-oriented control: wrapping, polynomials and SVM."""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

__all__ = [
    "PI",
    "ONE_BY_SQRT3",
    "TWO_BY_SQRT3",
    "SQRT3_BY_2",
    "DEFAULT_DUTY_CYCLE_LIMIT",
    "SvmResult",
    "wrap_pm",
    "fmodf_pos",
    "wrap_pm_pi",
    "horner_poly_eval",
    "mod",
    "is_nan",
    "svm",
    "simple_svm",
]

PI = 3.14159265358979323846
ONE_BY_SQRT3 = 0.57735026919
TWO_BY_SQRT3 = 1.15470053838
SQRT3_BY_2 = 0.86602540378

DEFAULT_DUTY_CYCLE_LIMIT = 0.97
_SQRT3 = 1.732050807568877


@dataclass(frozen=True)
class SvmResult:
    """Per-phase duty cycles, each nominally in ``[0, 1]``."""

    t_a: float
    t_b: float
    t_c: float

    @property
    def valid(self) -> bool:
        """True when every duty cycle lies within ``[0, 1]`` (NaN is invalid)."""
        return all(0.0 <= t <= 1.0 for t in self)

    def __iter__(self) -> Iterator[float]:
        yield self.t_a
        yield self.t_b
        yield self.t_c


_INVALID = SvmResult(math.nan, math.nan, math.nan)


def wrap_pm(x: float, pm_range: float) -> float:
    """Wrap ``x`` into ``[-pm_range, pm_range)`` by steps of ``2 * pm_range``."""
    if not pm_range > 0.0:
        raise ValueError(f"pm_range must be positive, got {pm_range!r}")
    if math.isinf(x):
        raise ValueError(f"cannot wrap {x!r}")
    if math.isnan(x):
        return x
    period = 2.0 * pm_range
    if x >= pm_range or x < -pm_range:
        x -= math.floor((x + pm_range) / period) * period
    while x >= pm_range:
        x -= period
    while x < -pm_range:
        x += period
    return x


def fmodf_pos(x: float, y: float) -> float:
    """Like ``fmod`` but with a non-negative result; ``y`` must be positive."""
    res = wrap_pm(x, y)
    if res < 0:
        res += y
    return res


def wrap_pm_pi(x: float) -> float:
    """Wrap an angle with a half-range of ``2 * PI``."""
    return wrap_pm(x, 2 * PI)


def horner_poly_eval(x: float, coeffs: Iterable[float]) -> float:
    """Evaluate a polynomial whose coefficients run from highest order down."""
    result = 0.0
    for coeff in coeffs:
        result = result * x + coeff
    return result


def mod(dividend: int, divisor: int) -> int:
    """Modulo built on a truncating remainder, shifted up when negative."""
    if divisor == 0:
        raise ZeroDivisionError("mod by zero")
    r = abs(dividend) % abs(divisor)
    if dividend < 0:
        r = -r
    if r < 0:
        r += divisor
    return r


def is_nan(x: float) -> bool:
    """Return True if ``x`` is NaN."""
    return math.isnan(x)


def svm(valpha: float, vbeta: float, vbus: float) -> SvmResult:
    """Sextant-based space-vector modulation of an alpha-beta voltage.

    The magnitude of the normalised vector may not exceed ``sqrt(3)/2``;
    beyond that the returned result is not ``valid``.
    """
    if vbus == 0:
        return _INVALID
    alpha = valpha / ((2.0 / 3.0) * vbus)
    beta = vbeta / ((2.0 / 3.0) * vbus)

    if beta >= 0.0:
        if alpha >= 0.0:
            sextant = 2 if ONE_BY_SQRT3 * beta > alpha else 1
        else:
            sextant = 3 if -ONE_BY_SQRT3 * beta > alpha else 2
    else:
        if alpha >= 0.0:
            sextant = 5 if -ONE_BY_SQRT3 * beta > alpha else 6
        else:
            sextant = 4 if ONE_BY_SQRT3 * beta > alpha else 5

    if sextant == 1:
        t1 = alpha - ONE_BY_SQRT3 * beta
        t2 = TWO_BY_SQRT3 * beta
        t_a = (1.0 - t1 - t2) * 0.5
        t_c = t_a + t1
        t_b = t_c + t2
    elif sextant == 2:
        t2 = alpha + ONE_BY_SQRT3 * beta
        t3 = -alpha + ONE_BY_SQRT3 * beta
        t_c = (1.0 - t2 - t3) * 0.5
        t_a = t_c + t3
        t_b = t_a + t2
    elif sextant == 3:
        t3 = TWO_BY_SQRT3 * beta
        t4 = -alpha - ONE_BY_SQRT3 * beta
        t_c = (1.0 - t3 - t4) * 0.5
        t_b = t_c + t3
        t_a = t_b + t4
    elif sextant == 4:
        t4 = -alpha + ONE_BY_SQRT3 * beta
        t5 = -TWO_BY_SQRT3 * beta
        t_b = (1.0 - t4 - t5) * 0.5
        t_c = t_b + t5
        t_a = t_c + t4
    elif sextant == 5:
        t5 = -alpha - ONE_BY_SQRT3 * beta
        t6 = alpha - ONE_BY_SQRT3 * beta
        t_b = (1.0 - t5 - t6) * 0.5
        t_a = t_b + t5
        t_c = t_a + t6
    else:
        t6 = -TWO_BY_SQRT3 * beta
        t1 = alpha + ONE_BY_SQRT3 * beta
        t_a = (1.0 - t6 - t1) * 0.5
        t_b = t_a + t1
        t_c = t_b + t6

    return SvmResult(1.0 - t_a, 1.0 - t_b, 1.0 - t_c)


def simple_svm(alpha: float, beta: float, vbus: float) -> SvmResult:
    """Min-max centred modulation, scaled to stay within the duty-cycle limit."""
    if vbus == 0:
        return _INVALID
    x = alpha / vbus
    y = (-0.5 * alpha - 0.5 * _SQRT3 * beta) / vbus
    z = (-0.5 * alpha + 0.5 * _SQRT3 * beta) / vbus

    highest = max(x, y, z)
    lowest = min(x, y, z)
    centre = 0.5 * (highest + lowest)
    span_limit = 2.0 * DEFAULT_DUTY_CYCLE_LIMIT - 1.0
    spread = highest - lowest

    scale = span_limit / spread if spread > span_limit else 1.0
    return SvmResult(
        (x - centre) * scale + 0.5,
        (y - centre) * scale + 0.5,
        (z - centre) * scale + 0.5,
    )