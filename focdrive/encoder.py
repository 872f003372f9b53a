"""Incremental optical encoder with a PLL position/velocity estimator.

The estimator tracks the raw quadrature count sampled from the hardware and
derives turns, velocity, interpolated position and the rotor's electrical
phase. Two routines find the offset between encoder zero and electrical zero.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass

from focdrive.hardware import SimulatedHardware
from focdrive.motor import Motor
from focdrive.utils import PI, fmodf_pos, wrap_pm, wrap_pm_pi

__all__ = [
    "CURRENT_MEAS_PERIOD",
    "EncoderConfig",
    "EncoderError",
    "OpticalEncoder",
]

CURRENT_MEAS_PERIOD = 5e-5

_ALIGN_SETTLE_CYCLES = 1000
_CLAMPER_SETTLE_CYCLES = 8000
_SWEEP_CYCLES = 8000
_SAMPLE_INTERVAL = 2000
_ALIGN_VOLTAGE = 4.0
_CLAMPER_SWEEP_VOLTAGE = 6.0
_MIN_SWEEP_RPM = 10.0
_SAMPLE_COUNT = 10


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _c_rem(a: int, b: int) -> int:
    """Remainder that truncates toward zero, taking the sign of ``a``."""
    r = abs(a) % abs(b)
    return -r if a < 0 else r


def _c_div(a: int, b: int) -> int:
    """Integer division that truncates toward zero."""
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


@dataclass
class EncoderConfig:
    """Encoder parameters, normally loaded from persistent storage at start-up."""

    num: int = 0
    use_index: bool = False
    idx_search_speed: float = 0.0  # [rad/s electrical]
    zero_count_on_find_idx: bool = True
    cpr: int = 2048 * 4  # counts per mechanical revolution
    offset: int = 0  # encoder count at electrical zero
    offset_float: float = 0.0  # sub-count part of the offset
    calib_range: float = 0.02
    bandwidth: float = 5000.0  # PLL bandwidth [rad/s]


class EncoderError(enum.IntFlag):
    NONE = 0
    UNSTABLE_GAIN = 0x01
    CPR_OUT_OF_RANGE = 0x02
    ERROR_DIRECTION = 0x04
    INDEX_NOT_FOUND_YET = 0x20


@dataclass
class _HfiState:
    """Progress of an offset calibration sweep."""

    step: int = 1
    time: int = 0
    encvaluesum: int = 0
    start_pos: int = 0


class OpticalEncoder:
    """Encoder channel with count tracking, PLL estimation and offset search."""

    def __init__(
        self, config: EncoderConfig, hardware: SimulatedHardware | None = None
    ) -> None:
        self.config = config
        self.hardware = hardware if hardware is not None else SimulatedHardware()
        self.error = EncoderError.NONE
        self.index_found = False
        self.is_ready = False
        self.shadow_count = 0
        self.count_in_cpr = 0
        self.turn = 0
        self.interpolation = 0.0
        self.phase = 0.0
        self.pos_estimate = 0.0  # [count]
        self.pos_cpr = 0.0  # [count]
        self.vel_estimate = 0.0  # [count/s]
        self.pll_kp = 0.0
        self.pll_ki = 0.0
        self.vel_rpm = 0.0
        self.vel_abs_rpm = 0.0
        self.pos_degree = 0.0
        self.pos_estimate_degree = 0.0
        self.vel_estimate_degree = 0.0
        self.hfi = _HfiState()

    def init(self) -> bool:
        """Reset the estimator to the current raw count and mark it ready."""
        raw = self.hardware.encoder_value & 0xFFFFFFFF
        self.error = EncoderError.NONE
        self.index_found = False
        self.shadow_count = _to_int32(raw)
        self.count_in_cpr = _to_int32(raw)
        self.turn = 0
        self.interpolation = 0.0
        self.phase = 0.0
        self.pos_estimate = 0.0
        self.pos_cpr = float(raw)
        # The velocity estimate is seeded from the raw count, as on the board.
        self.vel_estimate = float(raw)
        self.pll_kp = 0.0
        self.pll_ki = 0.0
        self.vel_rpm = 0.0
        self.pos_degree = 0.0
        self.hfi.step = 1
        self.update_pll_gains()
        self.is_ready = True
        return True

    def set_error(self, error: EncoderError) -> None:
        self.error = EncoderError(error)

    def update_pll_gains(self) -> None:
        """Derive critically damped PLL gains from the configured bandwidth."""
        self.pll_kp = 2.0 * self.config.bandwidth
        self.pll_ki = 0.25 * (self.pll_kp * self.pll_kp)
        if not CURRENT_MEAS_PERIOD * self.pll_kp < 1.0:
            self.set_error(EncoderError.UNSTABLE_GAIN)

    def _raw_count(self) -> int:
        hw = self.hardware
        raw = hw.encoder_value if self.config.num == 0 else hw.encoder1_value
        return raw & 0xFFFFFFFF

    def update(self, motor_pole_pairs: int, delta: float) -> bool:
        """Sample the encoder and advance the estimator by one period.

        Returns False if the encoder has not been initialised.
        """
        if not self.is_ready:
            return False
        cpr = self.config.cpr
        if cpr <= 0:
            raise ValueError(f"cpr must be positive, got {cpr!r}")

        delta_enc = _to_int32(self._raw_count() - self.shadow_count)
        half = cpr // 2
        if delta_enc > half:
            self.turn -= 1
        if delta_enc < -half:
            self.turn += 1

        self.shadow_count = _to_int32(self.shadow_count + delta_enc)
        self.count_in_cpr = _c_rem(_to_int32(self.count_in_cpr + delta_enc), cpr)

        # Predict, then correct with the discrete phase detector.
        predicted = CURRENT_MEAS_PERIOD * self.vel_estimate * delta
        self.pos_estimate += predicted
        self.pos_cpr += predicted
        delta_pos = float(
            _to_int32(self.shadow_count - _to_int32(math.floor(self.pos_estimate)))
        )
        delta_pos_cpr = float(self.count_in_cpr - math.floor(self.pos_cpr))
        delta_pos_cpr = wrap_pm(delta_pos_cpr, 0.5 * float(cpr))
        self.pos_estimate += CURRENT_MEAS_PERIOD * self.pll_kp * delta_pos * delta
        self.pos_cpr += CURRENT_MEAS_PERIOD * self.pll_kp * delta_pos_cpr * delta
        self.pos_cpr = fmodf_pos(self.pos_cpr, float(cpr))
        self.vel_estimate += CURRENT_MEAS_PERIOD * self.pll_ki * delta_pos_cpr * delta

        snap_to_zero_vel = False
        if abs(self.vel_estimate) < 0.5 * CURRENT_MEAS_PERIOD * self.pll_ki:
            self.vel_estimate = 0.0  # keep the estimate from dithering at rest
            snap_to_zero_vel = True

        corrected_enc = self.count_in_cpr - self.config.offset
        if snap_to_zero_vel:
            self.interpolation = 0.5
        elif delta_enc > 0:
            self.interpolation = 0.0
        elif delta_enc < 0:
            self.interpolation = 1.0
        else:
            self.interpolation += CURRENT_MEAS_PERIOD * self.vel_estimate
            self.interpolation = min(max(self.interpolation, 0.0), 1.0)

        interpolated_enc = corrected_enc + self.interpolation
        self.vel_rpm = self.vel_estimate / float(cpr) * 60.0
        self.vel_abs_rpm = abs(self.vel_rpm)
        self.pos_degree = self.count_in_cpr / float(cpr) * 360.0
        self.pos_estimate_degree = (
            float(self.count_in_cpr) / float(cpr) + float(self.turn)
        ) * 360.0
        self.vel_estimate_degree = (self.vel_estimate / float(cpr)) * 360.0

        elec_rad_per_enc = motor_pole_pairs * 2 * PI * (1.0 / float(cpr))
        ph = elec_rad_per_enc * (interpolated_enc - self.config.offset_float)
        self.phase = wrap_pm_pi(ph)
        return True

    def _absolute_count(self) -> int:
        return self.count_in_cpr + self.turn * self.config.cpr

    def calibrate_offset_rotator(self, motor: Motor, delta: float) -> bool:
        """Advance the sweep-based offset search by one period.

        The rotor is locked to electrical zero, swept one electrical turn
        forward and back, and the offset is the mean of ten samples taken on
        the way. Returns True when finished, successfully or with
        ``ERROR_DIRECTION`` set.
        """
        hfi = self.hfi
        cpr = self.config.cpr
        counts_per_elec_turn = _c_div(cpr, motor.config.pole_pairs)

        if hfi.step == 1:
            hfi.step = 2
            motor.servo_on()
            hfi.time = 0
        elif hfi.step == 2:
            hfi.time += 1
            motor.foc_voltage(_ALIGN_VOLTAGE, 0.0, 0.0)
            if hfi.time >= _ALIGN_SETTLE_CYCLES:
                hfi.encvaluesum = self._absolute_count()
                hfi.start_pos = self._absolute_count()
                hfi.step = 3
                hfi.time = 0
        elif hfi.step == 3:
            hfi.time += 1
            progress = float(hfi.time) / _SWEEP_CYCLES
            motor.foc_voltage(_ALIGN_VOLTAGE, 0.0, progress * 2 * PI)
            if hfi.time % _SAMPLE_INTERVAL == 0:
                expected = int(counts_per_elec_turn * progress)
                hfi.encvaluesum += self._absolute_count() - expected
            if hfi.time >= _SWEEP_CYCLES:
                moved = self._absolute_count() - hfi.start_pos - counts_per_elec_turn
                if (
                    self.vel_rpm < 0.0
                    or self.vel_abs_rpm < _MIN_SWEEP_RPM
                    or abs(moved) > _c_div(counts_per_elec_turn, 6)
                ):
                    motor.servo_off()
                    self.error = EncoderError.ERROR_DIRECTION
                    return True
                hfi.encvaluesum += self._absolute_count() - counts_per_elec_turn
                hfi.step = 4
                hfi.time = 0
        elif hfi.step == 4:
            hfi.time += 1
            progress = float(hfi.time) / _SWEEP_CYCLES
            motor.foc_voltage(_ALIGN_VOLTAGE, 0.0, 2 * PI - progress * 2 * PI)
            if hfi.time % _SAMPLE_INTERVAL == 0:
                expected = int(counts_per_elec_turn * progress)
                hfi.encvaluesum += (
                    self._absolute_count() - counts_per_elec_turn + expected
                )
            if hfi.time >= _SWEEP_CYCLES:
                moved = self._absolute_count() - hfi.start_pos
                if (
                    self.vel_rpm > 0.0
                    or self.vel_abs_rpm < _MIN_SWEEP_RPM
                    or abs(moved) > _c_div(counts_per_elec_turn, 6)
                ):
                    motor.servo_off()
                    self.error = EncoderError.ERROR_DIRECTION
                    return True
                hfi.step = 5
                hfi.time = 0
        elif hfi.step == 5:
            self.config.offset = _c_div(hfi.encvaluesum, _SAMPLE_COUNT)
            self.config.offset_float = 0.0
            motor.servo_off()
            hfi.step = 1
            return True
        return False

    def calibrate_offset_clamper(self, motor: Motor, delta: float) -> bool:
        """Advance the d-axis alignment offset search by one period.

        The rotor is pulled onto the d axis and then swept open-loop. Step 4,
        which takes the current count as the offset and returns True, is
        entered from outside the sweep.
        """
        hfi = self.hfi
        if hfi.step == 1:
            hfi.step = 2
            motor.servo_on()
            hfi.time = 0
        elif hfi.step == 2:
            hfi.time += 1
            motor.foc_voltage(_ALIGN_VOLTAGE, 0.0, 0.0)
            if hfi.time >= _CLAMPER_SETTLE_CYCLES:
                hfi.step = 3
                hfi.time = 0
        elif hfi.step == 3:
            hfi.time += 1
            phase = float(hfi.time) / _SWEEP_CYCLES * 2 * PI
            motor.foc_voltage(_CLAMPER_SWEEP_VOLTAGE, 0.0, phase)
        elif hfi.step == 4:
            self.config.offset = self.count_in_cpr
            self.config.offset_float = 0.0
            motor.servo_off()
            hfi.step = 1
            return True
        return False