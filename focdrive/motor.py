"""Permanent-magnet motor: current sensing, FOC current loop and R/L measurement."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass

from focdrive.fastmath import cos_f32, sin_f32
from focdrive.hardware import UINT32_MAX, SimulatedHardware
from focdrive.utils import ONE_BY_SQRT3, PI, SQRT3_BY_2, simple_svm, svm

__all__ = [
    "PWM_PERIOD",
    "SERVO_HOLD_DUTY",
    "CURRENT_MEAS_PERIOD",
    "MotorConfig",
    "MotorError",
    "MotorState",
    "CurrentControl",
    "Motor",
]

PWM_PERIOD = 4250
SERVO_HOLD_DUTY = 2100
CURRENT_MEAS_PERIOD = 5e-5
INIT_CYCLES = 4000

_RESISTANCE_KI = 6.2  # [(V/s)/A]
_CALIBRATION_VOLTAGE_LIMIT = 16.0
_INDUCTANCE_TEST_VOLTAGE = 12.0
_INTEGRATOR_DECAY = 0.99


@dataclass
class MotorConfig:
    """Motor parameters, normally loaded from persistent storage at start-up."""

    num: int = 0
    motor_type: int = 0
    pole_pairs: int = 4
    phase_inductance: float = 5.0e-3  # [H]
    phase_resistance: float = 15.0  # [Ohm]
    adc_current_k: float = 3.3 / 4096.0 / 0.02 / 16.0  # [A per ADC count]
    current_lim: float = 5.0  # [A]
    requested_current_range: float = 0.4  # [A]
    current_control_bandwidth: float = 1200.0  # [rad/s]


class MotorError(enum.IntFlag):
    NONE = 0
    PHASE_RESISTANCE_OUT_OF_RANGE = 0x0001
    PHASE_INDUCTANCE_OUT_OF_RANGE = 0x0002
    ADC_FAILED = 0x0004
    OVER_CURRENT = 0x0008
    OVER_VOLTAGE = 0x0010
    UNDER_VOLTAGE = 0x0020
    OVER_TEMP = 0x0040


class MotorState(enum.IntEnum):
    NORMAL = 0
    ERROR = 1
    INIT = 2
    CALIBRE_R = 3
    CALIBRE_L = 4


@dataclass
class CurrentControl:
    """State and gains of the d/q current PI loop."""

    p_gain: float = 1.675  # [V/A]
    i_gain: float = 450.0  # [V/As]
    v_current_control_integral_d: float = 0.0  # [V]
    v_current_control_integral_q: float = 0.0  # [V]
    ibus: float = 0.0  # [A]
    final_v_alpha: float = 0.0  # [V]
    final_v_beta: float = 0.0  # [V]
    iq_setpoint: float = 0.0
    iq_measured: float = 0.0
    id_measured: float = 0.0
    max_allowed_current: float = 32.0
    deadband: float = 2.5
    i_a_delta: float = 1.5
    i_b_delta: float = 0.5


def _to_pwm(duty: float) -> int:
    """Convert a duty cycle to a compare value, saturating like the FPU does."""
    value = duty * PWM_PERIOD
    if math.isnan(value) or value <= 0.0:
        return 0
    if value >= UINT32_MAX:
        return UINT32_MAX
    return int(value)


class Motor:
    """One motor channel with its current loop and calibration routines."""

    resistance_test_cycles = round(12.0 / CURRENT_MEAS_PERIOD)
    inductance_test_cycles = 40000

    def __init__(
        self, config: MotorConfig, hardware: SimulatedHardware | None = None
    ) -> None:
        self.config = config
        self.hardware = hardware if hardware is not None else SimulatedHardware()
        self.error = MotorError.NONE
        self.bus_udc = 0.0
        self.bus_udc_filt = 0.0
        self.low_udc = 0.0
        self.low_udc_filt = 0.0
        self.ialpha = 0.0
        self.ibeta = 0.0
        self.izero = 0.0
        self.is_enable = False
        self.is_calibrated = False
        self.is_over_current = False
        self.init_count = 0
        self.phase_inductance = 0.0
        self.phase_resistance = 0.0
        self.mcu_temperature = 0.0
        self.extern_temperature = 0.0
        self.extern_torque = 0.0
        self.a_pwm = 0
        self.b_pwm = 0
        self.c_pwm = 0
        self.calibrate_step = 0
        self.calibrate_voltage = 0.0
        self.calibrate_voltage1 = 0.0
        self.calibrate_ialphas = [0.0, 0.0]
        self.state = MotorState.INIT
        self.ph_a = 0.0
        self.ph_b = 0.0
        self.ph_c = 0.0
        self.ia_offset = 2048.0
        self.ib_offset = 2048.0
        self.ext_offset = 0.0
        self.current_control = CurrentControl()
        self.init()

    def init(self) -> bool:
        """Switch the bridge off and return to the ADC offset measuring state."""
        self.motor_off()
        self.reset_current_control()
        self.calibrate_step = 0
        self.calibrate_voltage = 0.0
        self.calibrate_ialphas = [0.0, 0.0]
        self.state = MotorState.INIT
        self.error = MotorError.NONE
        self.init_count = 0
        return True

    # The bridge is never left floating: both servo_on and servo_off drive the
    # phases at a fixed duty so the motor brakes rather than free-wheels.
    def servo_on(self) -> None:
        num = self.config.num
        self.hardware.set_output(num, SERVO_HOLD_DUTY, SERVO_HOLD_DUTY, SERVO_HOLD_DUTY)
        self.hardware.servo_on(num)
        self.is_enable = True

    def servo_off(self) -> None:
        num = self.config.num
        self.is_enable = False
        self.hardware.set_output(num, SERVO_HOLD_DUTY, SERVO_HOLD_DUTY, SERVO_HOLD_DUTY)
        self.hardware.servo_on(num)

    def motor_off(self) -> None:
        self.hardware.servo_off(self.config.num)
        self.is_enable = False

    def _raw_phase_adc(self) -> tuple[float, float]:
        hw = self.hardware
        if self.config.num == 0:
            return float(hw.pmsm_ia), float(hw.pmsm_ib)
        return float(hw.pmsm_ia1), float(hw.pmsm_ib1)

    def _sample_bus_voltage(self) -> None:
        self.bus_udc = (float(self.hardware.bus_volt) / 4096.0 * 3.3) * 11.0
        self.bus_udc_filt = 0.98 * self.bus_udc_filt + 0.02 * self.bus_udc

    def adjust_adc_offset(self) -> bool:
        """Low-pass the phase ADC readings into the zero-current offsets."""
        ia, ib = self._raw_phase_adc()
        self.ia_offset = 0.95 * self.ia_offset + 0.05 * ia
        self.ib_offset = 0.95 * self.ib_offset + 0.05 * ib
        self._sample_bus_voltage()
        return True

    def phase_current_from_adcval(self) -> bool:
        """Convert the ADC readings to phase and alpha-beta currents.

        Returns False and enters the error state on phase A over-current.
        """
        k = self.config.adc_current_k
        ia, ib = self._raw_phase_adc()
        self.ph_b = -(ib - self.ib_offset) * k
        self.ph_c = -(ia - self.ia_offset) * k
        self.ph_a = -(self.ph_b + self.ph_c)

        self._sample_bus_voltage()
        self.ialpha = self.ph_a
        self.ibeta = -ONE_BY_SQRT3 * (self.ph_a + 2.0 * self.ph_b)

        limit = self.config.current_lim
        if self.ph_a > limit or self.ph_a < -limit:
            self.set_error(MotorError.OVER_CURRENT)
            return False
        return True

    def reset_current_control(self) -> None:
        """Recompute the current loop gains from the configured bandwidth."""
        cfg = self.config
        if cfg.phase_inductance == 0:
            raise ValueError("phase_inductance must be non-zero")
        ctrl = self.current_control
        ctrl.p_gain = cfg.current_control_bandwidth * cfg.phase_inductance
        plant_pole = cfg.phase_resistance / cfg.phase_inductance
        ctrl.i_gain = plant_pole * ctrl.p_gain
        ctrl.max_allowed_current = cfg.requested_current_range
        ctrl.v_current_control_integral_d = 0.0
        ctrl.v_current_control_integral_q = 0.0
        self.state = MotorState.NORMAL

    def set_error(self, error: MotorError) -> None:
        self.error = MotorError(error)
        self.state = MotorState.ERROR

    def _apply_duties(self, t_a: float, t_b: float, t_c: float) -> None:
        self.a_pwm = _to_pwm(t_a)
        self.b_pwm = _to_pwm(t_b)
        self.c_pwm = _to_pwm(t_c)
        self.hardware.set_output(self.config.num, self.a_pwm, self.b_pwm, self.c_pwm)

    def foc_voltage(self, v_d: float, v_q: float, phase: float) -> bool:
        """Open-loop voltage output in the rotor frame at electrical ``phase``."""
        if not self.is_enable:
            return False
        c = cos_f32(phase)
        s = sin_f32(phase)
        v_alpha = s * v_d + c * v_q
        v_beta = -s * v_q + c * v_d
        duties = svm(v_alpha, v_beta, self.bus_udc_filt)
        self._apply_duties(duties.t_a, duties.t_b, duties.t_c)
        return True

    def foc_current(
        self, id_des: float, iq_des: float, phase: float, omega: float
    ) -> bool:
        """Closed-loop d/q current control at electrical ``phase``."""
        if not self.is_enable:
            return False
        ictrl = self.current_control
        kp = ictrl.p_gain
        ki = ictrl.i_gain

        ictrl.iq_setpoint = iq_des
        c = cos_f32(phase)
        s = sin_f32(phase)
        i_d = s * self.ialpha + c * self.ibeta
        i_q = -s * self.ibeta + c * self.ialpha

        err_d = id_des - i_d
        err_q = iq_des - i_q
        ictrl.iq_measured = i_q
        ictrl.id_measured = i_d
        self.extern_torque = abs(i_q)

        v_d = ictrl.v_current_control_integral_d + err_d * kp
        v_q = ictrl.v_current_control_integral_q + err_q * kp

        mod_to_v = (2.0 / 3.0) * self.bus_udc_filt
        v_to_mod = 1.0 / mod_to_v if mod_to_v else math.inf
        mod_d = v_to_mod * v_d
        mod_q = v_to_mod * v_q

        # Anti-windup: scale back into the linear modulation range and bleed
        # the integrators instead of growing them.
        norm = math.sqrt(mod_d * mod_d + mod_q * mod_q)
        limit = 0.97 * SQRT3_BY_2
        mod_scalefactor = limit / norm if norm else math.inf
        if mod_scalefactor < 1.0:
            mod_d *= mod_scalefactor
            mod_q *= mod_scalefactor
            if abs(ictrl.v_current_control_integral_d) > 0.0001:
                ictrl.v_current_control_integral_d *= _INTEGRATOR_DECAY
            if abs(ictrl.v_current_control_integral_q) > 0.0001:
                ictrl.v_current_control_integral_q *= _INTEGRATOR_DECAY
        else:
            ictrl.v_current_control_integral_d += err_d * (ki * CURRENT_MEAS_PERIOD)
            ictrl.v_current_control_integral_q += err_q * (ki * CURRENT_MEAS_PERIOD)

        ictrl.ibus = mod_d * i_d + mod_q * i_q

        mod_alpha = s * mod_d + c * mod_q
        mod_beta = -s * mod_q + c * mod_d
        ictrl.final_v_alpha = mod_to_v * mod_alpha
        ictrl.final_v_beta = mod_to_v * mod_beta

        duties = simple_svm(ictrl.final_v_alpha, ictrl.final_v_beta, self.bus_udc_filt)
        if duties.valid:
            self._apply_duties(duties.t_a, duties.t_b, duties.t_c)
        return True

    def _resistance_step(self, target_current: float) -> bool:
        self.calibrate_voltage += (_RESISTANCE_KI * CURRENT_MEAS_PERIOD) * (
            target_current - self.ialpha
        )
        if abs(self.calibrate_voltage) > _CALIBRATION_VOLTAGE_LIMIT:
            self.set_error(MotorError.PHASE_RESISTANCE_OUT_OF_RANGE)
            self.servo_off()
            return False
        self.foc_voltage(self.calibrate_voltage, 0.0, 0.0)
        self.calibrate_step += 1
        return True

    def measure_phase_resistance(self) -> bool:
        """Advance the resistance measurement by one period; True when finished.

        The voltage needed for 0.1 A and then 0.3 A is found by integral
        control; the slope between the two gives the phase resistance.
        """
        cycles = self.resistance_test_cycles
        if self.calibrate_step < cycles:
            if self._resistance_step(0.1) and self.calibrate_step == cycles:
                self.calibrate_voltage1 = self.calibrate_voltage
            return False
        if self.calibrate_step < 2 * cycles:
            self._resistance_step(0.3)
            return False

        resistance = (self.calibrate_voltage - self.calibrate_voltage1) / 0.2
        self.phase_resistance = resistance
        if resistance < 0.01 or resistance > 15.0:
            self.set_error(MotorError.PHASE_RESISTANCE_OUT_OF_RANGE)
        return True

    def measure_phase_inductance(self) -> bool:
        """Advance the inductance measurement by one period; True when finished.

        A square-wave voltage is applied and the mean current slope between
        the two half-cycles gives the phase inductance.
        """
        cycles = self.inductance_test_cycles
        if self.calibrate_step < 2 * cycles:
            self.calibrate_ialphas[self.calibrate_step & 1] += self.ialpha
            self.foc_voltage(self.calibrate_voltage, 0.0, PI / 2)
            self.calibrate_step += 1
            self.calibrate_voltage = -self.calibrate_voltage
            return False

        di_by_dt = (self.calibrate_ialphas[0] - self.calibrate_ialphas[1]) / (
            CURRENT_MEAS_PERIOD * float(cycles)
        )
        self.phase_inductance = (
            _INDUCTANCE_TEST_VOLTAGE / di_by_dt if di_by_dt else math.inf
        )
        return True

    def calibrate(self) -> None:
        """Start measuring R and L unless already measuring or in error."""
        if self.state not in (
            MotorState.CALIBRE_R,
            MotorState.CALIBRE_L,
            MotorState.ERROR,
        ):
            self.servo_on()
            self.calibrate_step = 0
            self.calibrate_voltage = 0.0
            self.state = MotorState.CALIBRE_R

    def _reset_calibration(self, voltage: float) -> None:
        self.calibrate_step = 0
        self.calibrate_voltage = voltage
        self.calibrate_ialphas = [0.0, 0.0]

    def update(self) -> bool:
        """Run one period of the motor state machine."""
        state = self.state
        if state == MotorState.INIT:
            self.adjust_adc_offset()
            self.init_count += 1
            if self.init_count == INIT_CYCLES:
                self.state = MotorState.NORMAL
                self.servo_off()
        elif state == MotorState.CALIBRE_R:
            if self.phase_current_from_adcval() and self.measure_phase_resistance():
                self._reset_calibration(_INDUCTANCE_TEST_VOLTAGE)
                self.state = MotorState.CALIBRE_L
        elif state == MotorState.CALIBRE_L:
            if self.phase_current_from_adcval() and self.measure_phase_inductance():
                self._reset_calibration(0.0)
                self.state = MotorState.NORMAL
                self.servo_off()
        elif state == MotorState.NORMAL:
            self.phase_current_from_adcval()
        elif state == MotorState.ERROR:
            self.motor_off()
            self.phase_current_from_adcval()
        else:
            self.motor_off()
        return True