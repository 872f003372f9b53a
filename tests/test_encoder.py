import math

import pytest

from focdrive.encoder import (
    CURRENT_MEAS_PERIOD,
    EncoderConfig,
    EncoderError,
    OpticalEncoder,
)
from focdrive.hardware import SimulatedHardware
from focdrive.motor import Motor, MotorConfig
from focdrive.utils import PI

CPR = 4096
POLE_PAIRS = 4


def make_encoder(hw=None, **overrides):
    hw = hw if hw is not None else SimulatedHardware()
    params = dict(cpr=CPR, bandwidth=200.0)
    params.update(overrides)
    return OpticalEncoder(EncoderConfig(**params), hw), hw


def make_motor(hw):
    return Motor(MotorConfig(pole_pairs=POLE_PAIRS), hw)


def test_update_before_init_returns_false():
    enc, _ = make_encoder()
    assert enc.update(POLE_PAIRS, 1.0) is False
    assert enc.is_ready is False


def test_init_reads_hardware_count():
    enc, hw = make_encoder()
    hw.encoder_value = 123
    assert enc.init() is True
    assert enc.is_ready is True
    assert enc.shadow_count == 123
    assert enc.count_in_cpr == 123
    assert enc.pos_cpr == 123.0
    assert enc.turn == 0
    assert enc.hfi.step == 1


def test_pll_gains_from_bandwidth():
    enc, _ = make_encoder(bandwidth=200.0)
    enc.init()
    assert enc.pll_kp == pytest.approx(400.0)
    assert enc.pll_ki == pytest.approx(0.25 * enc.pll_kp**2)
    assert enc.error == EncoderError.NONE


def test_unstable_gain_sets_error():
    enc, _ = make_encoder(bandwidth=20000.0)
    enc.init()
    assert enc.error == EncoderError.UNSTABLE_GAIN


def test_stationary_snaps_velocity_to_zero():
    enc, _ = make_encoder()
    enc.init()
    for _ in range(10):
        assert enc.update(POLE_PAIRS, 1.0) is True
    assert enc.vel_estimate == 0.0
    assert enc.interpolation == 0.5
    assert enc.vel_rpm == 0.0


def test_forward_edge_resets_interpolation():
    enc, hw = make_encoder()
    enc.init()
    hw.encoder_value = 1
    enc.update(POLE_PAIRS, 1.0)
    assert enc.count_in_cpr == 1
    assert enc.vel_estimate > 0.0
    assert enc.interpolation == 0.0


def test_backward_edge_sets_interpolation_and_truncating_remainder():
    enc, hw = make_encoder()
    enc.init()
    hw.encoder_value = 0xFFFFFFFF
    enc.update(POLE_PAIRS, 1.0)
    assert enc.shadow_count == -1
    assert enc.count_in_cpr == -1
    assert enc.vel_estimate < 0.0
    assert enc.interpolation == 1.0


def test_large_jumps_count_turns():
    enc, hw = make_encoder()
    enc.init()
    hw.encoder_value = 4000
    enc.update(POLE_PAIRS, 1.0)
    assert enc.turn == -1
    assert enc.count_in_cpr == 4000
    hw.encoder_value = 10
    enc.update(POLE_PAIRS, 1.0)
    assert enc.turn == 0
    assert enc.count_in_cpr == 10


def test_second_channel_reads_its_own_counter():
    enc, hw = make_encoder(num=1)
    enc.init()
    hw.encoder_value = 999
    hw.encoder1_value = 5
    enc.update(POLE_PAIRS, 1.0)
    assert enc.count_in_cpr == 5


def test_pll_tracks_constant_velocity():
    enc, hw = make_encoder()
    enc.init()
    for step in range(1, 4001):
        hw.encoder_value = step
        enc.update(POLE_PAIRS, 1.0)
        assert 0.0 <= enc.pos_cpr < CPR
        assert -2 * PI <= enc.phase < 2 * PI
    expected = 1.0 / CURRENT_MEAS_PERIOD
    assert enc.vel_estimate == pytest.approx(expected, rel=0.02)
    assert enc.vel_abs_rpm == pytest.approx(abs(enc.vel_rpm))


def test_count_stays_within_one_revolution():
    enc, hw = make_encoder()
    enc.init()
    raw = 0
    for step in range(3000):
        raw = (raw + (7 if step % 3 else -3)) & 0xFFFFFFFF
        hw.encoder_value = raw
        enc.update(POLE_PAIRS, 1.0)
        assert -CPR < enc.count_in_cpr < CPR
        assert 0.0 <= enc.interpolation <= 1.0


def test_non_positive_cpr_rejected():
    enc, _ = make_encoder(cpr=0)
    enc.init()
    with pytest.raises(ValueError):
        enc.update(POLE_PAIRS, 1.0)


def test_rotator_first_step_enables_motor():
    hw = SimulatedHardware()
    enc, _ = make_encoder(hw)
    motor = make_motor(hw)
    enc.init()
    assert enc.calibrate_offset_rotator(motor, 1.0) is False
    assert enc.hfi.step == 2
    assert motor.is_enable is True


def test_rotator_detects_stalled_rotor():
    hw = SimulatedHardware()
    enc, _ = make_encoder(hw)
    motor = make_motor(hw)
    enc.init()
    enc.count_in_cpr = 50
    calls = 0
    while not enc.calibrate_offset_rotator(motor, 1.0):
        calls += 1
        assert calls < 20000
    assert enc.hfi.start_pos == 50
    assert enc.error == EncoderError.ERROR_DIRECTION
    assert motor.is_enable is False


def test_rotator_successful_sweep_finds_offset():
    hw = SimulatedHardware()
    enc, _ = make_encoder(hw)
    motor = make_motor(hw)
    enc.init()
    start = 100
    per_turn = CPR // POLE_PAIRS
    enc.count_in_cpr = start
    calls = 0
    while True:
        step = enc.hfi.step
        t = enc.hfi.time + 1
        if step == 3:
            enc.count_in_cpr = start + (per_turn * t) // 8000
            enc.vel_rpm = enc.vel_abs_rpm = 20.0
        elif step == 4:
            enc.count_in_cpr = start + per_turn - (per_turn * t) // 8000
            enc.vel_rpm = -20.0
            enc.vel_abs_rpm = 20.0
        if enc.calibrate_offset_rotator(motor, 1.0):
            break
        calls += 1
        assert calls < 30000
    assert enc.error == EncoderError.NONE
    assert enc.config.offset == start
    assert enc.config.offset_float == 0.0
    assert enc.hfi.step == 1
    assert motor.is_enable is False


def test_clamper_alignment_then_offset_capture():
    hw = SimulatedHardware()
    enc, _ = make_encoder(hw, offset_float=0.5)
    motor = make_motor(hw)
    enc.init()
    assert enc.calibrate_offset_clamper(motor, 1.0) is False
    assert enc.hfi.step == 2
    for _ in range(8000):
        assert enc.calibrate_offset_clamper(motor, 1.0) is False
    assert enc.hfi.step == 3
    for _ in range(100):
        assert enc.calibrate_offset_clamper(motor, 1.0) is False
    assert enc.hfi.step == 3
    enc.hfi.step = 4
    enc.count_in_cpr = 321
    assert enc.calibrate_offset_clamper(motor, 1.0) is True
    assert enc.config.offset == 321
    assert enc.config.offset_float == 0.0
    assert enc.hfi.step == 1
    assert motor.is_enable is False


def test_phase_follows_offset():
    enc, hw = make_encoder(offset=0, offset_float=0.0)
    enc.init()
    hw.encoder_value = 0
    enc.update(POLE_PAIRS, 1.0)
    # At rest the interpolation sits at half a count.
    expected = POLE_PAIRS * 2 * PI / CPR * 0.5
    assert enc.phase == pytest.approx(expected)
    assert not math.isnan(enc.pos_estimate_degree)