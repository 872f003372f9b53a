"""Table-driven sine and cosine approximations.

The functions interpolate linearly between entries of a 512-step sine table.
They trade a little accuracy for a fixed, small amount of work.
"""

from __future__ import annotations

import math

__all__ = ["FAST_MATH_TABLE_SIZE", "SIN_TABLE", "sin_f32", "cos_f32"]

FAST_MATH_TABLE_SIZE = 512

# sin(2*pi*n/512) for n = 0..512, stored to eight decimal places.
SIN_TABLE: tuple[float, ...] = tuple(
    round(math.sin(2.0 * math.pi * n / FAST_MATH_TABLE_SIZE), 8)
    for n in range(FAST_MATH_TABLE_SIZE + 1)
)

_ONE_BY_TWO_PI = 0.159154943092


def _interpolate(turns: float, negative: bool) -> float:
    """Look up ``sin(2*pi*turns)`` in the table with linear interpolation."""
    if math.isnan(turns) or math.isinf(turns):
        raise ValueError(f"cannot evaluate table lookup for {turns!r}")

    n = int(turns)  # truncates toward zero
    if negative:
        n -= 1
    fraction_of_turn = turns - n

    findex = FAST_MATH_TABLE_SIZE * fraction_of_turn
    index = int(findex)
    # A fraction of exactly 1.0 lands past the end; rotate back to the start.
    if index >= FAST_MATH_TABLE_SIZE:
        index = 0
        findex -= FAST_MATH_TABLE_SIZE

    fract = findex - index
    a = SIN_TABLE[index]
    b = SIN_TABLE[index + 1]
    return (1.0 - fract) * a + fract * b


def sin_f32(x: float) -> float:
    """Fast approximation of ``sin(x)`` for ``x`` in radians."""
    return _interpolate(x * _ONE_BY_TWO_PI, x < 0.0)


def cos_f32(x: float) -> float:
    """Fast approximation of ``cos(x)`` for ``x`` in radians."""
    turns = x * _ONE_BY_TWO_PI + 0.25
    return _interpolate(turns, turns < 0.0)