import math

import pytest

from focdrive.utils import (
    DEFAULT_DUTY_CYCLE_LIMIT,
    ONE_BY_SQRT3,
    PI,
    SQRT3_BY_2,
    SvmResult,
    fmodf_pos,
    horner_poly_eval,
    is_nan,
    mod,
    simple_svm,
    svm,
    wrap_pm,
    wrap_pm_pi,
)

WRAP_INPUTS = [-100.3, -7.5, -1.0, -0.2, 0.0, 0.9, 1.0, 3.0, 12.25, 1000.1]


@pytest.mark.parametrize("x", WRAP_INPUTS)
def test_wrap_pm_lands_in_range_by_whole_periods(x):
    r = 1.5
    result = wrap_pm(x, r)
    assert -r <= result < r
    periods = (x - result) / (2 * r)
    assert abs(periods - round(periods)) < 1e-9


def test_wrap_pm_leaves_in_range_value_alone():
    assert wrap_pm(0.25, 1.0) == 0.25


@pytest.mark.parametrize("bad_range", [0.0, -1.0])
def test_wrap_pm_rejects_non_positive_range(bad_range):
    with pytest.raises(ValueError):
        wrap_pm(1.0, bad_range)


def test_wrap_pm_rejects_infinity():
    with pytest.raises(ValueError):
        wrap_pm(math.inf, 1.0)


def test_wrap_pm_passes_nan_through():
    assert is_nan(wrap_pm(math.nan, 1.0))


@pytest.mark.parametrize("x", WRAP_INPUTS)
def test_fmodf_pos_non_negative_and_congruent(x):
    y = 4.0
    result = fmodf_pos(x, y)
    assert 0.0 <= result < y
    quotient = (x - result) / y
    assert abs(quotient - round(quotient)) < 1e-9


@pytest.mark.parametrize("x", [-20.0, -3.0, 0.5, 7.0, 40.0])
def test_wrap_pm_pi_uses_two_pi_half_range(x):
    result = wrap_pm_pi(x)
    assert -2 * PI <= result < 2 * PI
    periods = (x - result) / (4 * PI)
    assert abs(periods - round(periods)) < 1e-9


def test_horner_poly_eval_quadratic():
    assert horner_poly_eval(2.0, [1.0, 2.0, 3.0]) == 11.0


def test_horner_poly_eval_empty_is_zero():
    assert horner_poly_eval(5.0, []) == 0.0


def test_mod_negative_dividend():
    assert mod(-1, 5) == 4


@pytest.mark.parametrize("dividend", [-17, -5, -1, 0, 1, 4, 5, 23])
def test_mod_positive_divisor_invariant(dividend):
    divisor = 5
    r = mod(dividend, divisor)
    assert 0 <= r < divisor
    assert (dividend - r) % divisor == 0


def test_mod_by_zero_raises():
    with pytest.raises(ZeroDivisionError):
        mod(3, 0)


def test_is_nan():
    assert is_nan(math.nan) is True
    assert is_nan(1.0) is False


def test_svm_result_iterates_in_phase_order():
    assert list(SvmResult(0.1, 0.2, 0.3)) == [0.1, 0.2, 0.3]


def test_svm_zero_vector_is_centred():
    result = svm(0.0, 0.0, 24.0)
    assert result.t_a == result.t_b == result.t_c
    assert result.valid


ANGLES = [k * PI / 12 + 0.01 for k in range(24)]


@pytest.mark.parametrize("angle", ANGLES)
def test_svm_reproduces_line_differences(angle):
    vbus = 24.0
    magnitude = 0.8 * SQRT3_BY_2 * (2.0 / 3.0) * vbus
    valpha = magnitude * math.cos(angle)
    vbeta = magnitude * math.sin(angle)
    result = svm(valpha, vbeta, vbus)
    alpha = valpha / ((2.0 / 3.0) * vbus)
    beta = vbeta / ((2.0 / 3.0) * vbus)
    assert result.valid
    assert result.t_a - result.t_c == pytest.approx(alpha - ONE_BY_SQRT3 * beta, abs=1e-9)
    assert result.t_a - result.t_b == pytest.approx(alpha + ONE_BY_SQRT3 * beta, abs=1e-9)
    assert max(result) + min(result) == pytest.approx(1.0, abs=1e-9)


@pytest.mark.parametrize("angle", ANGLES)
def test_svm_overmodulation_is_invalid(angle):
    vbus = 24.0
    magnitude = 2.0 * (2.0 / 3.0) * vbus
    result = svm(magnitude * math.cos(angle), magnitude * math.sin(angle), vbus)
    assert not result.valid


def test_svm_zero_bus_is_invalid():
    assert not svm(1.0, 1.0, 0.0).valid


@pytest.mark.parametrize("angle", ANGLES)
@pytest.mark.parametrize("fraction", [0.1, 0.5, 2.0, 10.0])
def test_simple_svm_centred_and_limited(angle, fraction):
    vbus = 24.0
    magnitude = fraction * vbus
    result = simple_svm(magnitude * math.cos(angle), magnitude * math.sin(angle), vbus)
    assert max(result) + min(result) == pytest.approx(1.0, abs=1e-9)
    assert max(result) - min(result) <= 2 * DEFAULT_DUTY_CYCLE_LIMIT - 1 + 1e-9
    assert result.valid


def test_simple_svm_zero_vector_all_equal():
    result = simple_svm(0.0, 0.0, 24.0)
    assert result.t_a == result.t_b == result.t_c
    assert result.t_a + result.t_b == 1.0


def test_simple_svm_zero_bus_is_invalid():
    assert not simple_svm(1.0, 0.0, 0.0).valid