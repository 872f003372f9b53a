"""Cascaded position/velocity controller with trapezoidal trajectory planning."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Any

__all__ = [
    "CURRENT_MEAS_PERIOD",
    "POSITION_DEADBAND",
    "TrapConfig",
    "ControllerConfig",
    "Step",
    "TrapezoidalTrajectory",
    "ControlMode",
    "ControllerError",
    "Controller",
    "sign_hard",
]

CURRENT_MEAS_PERIOD = 5e-5
POSITION_DEADBAND = 20.0  # [degree]; smaller position errors are ignored
_INTEGRATOR_DECAY = 0.99


def sign_hard(val: float) -> float:
    """Sign function where zero (and NaN) counts as negative."""
    sign = -1.0
    if val > 0.0:
        sign = 1.0
    return sign


def _sqrt(x: float) -> float:
    """Square root that yields NaN instead of raising for negative input."""
    return math.sqrt(x) if x >= 0.0 else math.nan


@dataclass
class TrapConfig:
    """Kinematic limits for trajectory planning."""

    vel_limit: float = 20000.0  # [degree/s]
    accel_limit: float = 5000.0  # [degree/s^2]
    decel_limit: float = 5000.0  # [degree/s^2]
    a_per_css: float = 0.0  # [A/(degree/s^2)]


@dataclass
class ControllerConfig:
    """Gains and limits of the position and velocity loops."""

    pos_gain: float = 20.0  # [(degree/s) / degree]
    vel_gain: float = 5.0 / 10000.0  # [A/(degree/s)]
    vel_integrator_gain: float = 10.0 / 10000.0  # [A/(degree/s * s)]
    vel_limit: float = 20000.0  # [degree/s]
    acc_limit: float = 20000.0  # [degree/s^2]
    jerk_limit: float = 20000.0  # [degree/s^3]
    vel_limit_tolerance: float = 1.2  # ratio to vel_limit, 0.0 disables
    vel_ramp_rate: float = 10000.0  # [(degree/s) / s]


@dataclass(frozen=True)
class Step:
    """Position, velocity and acceleration at one instant of a trajectory."""

    y: float
    yd: float
    ydd: float


class TrapezoidalTrajectory:
    """Acceleration-limited trajectory with accel, coast and decel phases."""

    def __init__(self, config: TrapConfig) -> None:
        self.config = config
        self.xi = 0.0
        self.xf = 0.0
        self.vi = 0.0
        self.ar = 0.0
        self.vr = 0.0
        self.dr = 0.0
        self.ta = 0.0
        self.tv = 0.0
        self.td = 0.0
        self.tf = 0.0
        self.y_accel = 0.0
        self.t = 0.0

    def plan(
        self,
        xf: float,
        xi: float,
        vi: float,
        vmax: float,
        amax: float,
        dmax: float,
    ) -> bool:
        """Plan a move from ``xi`` at speed ``vi`` to rest at ``xf``."""
        for name, value in (("vmax", vmax), ("amax", amax), ("dmax", dmax)):
            if not value > 0.0:
                raise ValueError(f"{name} must be positive, got {value!r}")

        dx = xf - xi
        stop_dist = (vi * vi) / (2.0 * dmax)
        dx_stop = stop_dist if vi > 0.0 else -stop_dist
        s = sign_hard(dx - dx_stop)
        self.ar = s * amax
        self.dr = -s * dmax
        self.vr = s * vmax

        # Starting faster than cruise speed: decelerate into the cruise phase.
        if s * vi > s * self.vr:
            self.ar = -s * amax

        self.ta = (self.vr - vi) / self.ar
        self.td = -self.vr / self.dr

        dx_min = 0.5 * self.ta * (self.vr + vi) + 0.5 * self.td * self.vr

        if s * dx < s * dx_min:
            # Short move: triangular profile that never reaches cruise speed.
            denominator = self.dr - self.ar
            radicand = (
                (self.dr * vi * vi + 2 * self.ar * self.dr * dx) / denominator
                if denominator
                else math.nan
            )
            self.vr = s * _sqrt(radicand)
            self.ta = max(0.0, (self.vr - vi) / self.ar)
            self.td = max(0.0, -self.vr / self.dr)
            self.tv = 0.0
        else:
            self.tv = (dx - dx_min) / self.vr

        self.tf = self.ta + self.tv + self.td
        self.xi = xi
        self.xf = xf
        self.vi = vi
        self.y_accel = xi + vi * self.ta + 0.5 * self.ar * self.ta * self.ta
        return True

    def eval(self, t: float) -> Step:
        """Evaluate the planned trajectory at time ``t``."""
        if math.isnan(t):
            raise ValueError("cannot evaluate trajectory at NaN time")
        if t < 0.0:
            return Step(self.xi, self.vi, 0.0)
        if t < self.ta:
            return Step(
                self.xi + self.vi * t + 0.5 * self.ar * t * t,
                self.vi + self.ar * t,
                self.ar,
            )
        if t < self.ta + self.tv:
            return Step(self.y_accel + self.vr * (t - self.ta), self.vr, 0.0)
        if t < self.tf:
            td = t - self.tf
            return Step(self.xf + 0.5 * self.dr * td * td, self.dr * td, self.dr)
        return Step(self.xf, 0.0, 0.0)


class ControlMode(enum.IntEnum):
    """Control modes, ordered from lowest to highest level."""

    VOLTAGE = 0
    CURRENT = 1
    VELOCITY = 2
    POSITION = 3
    TRAJECTORY = 4


class ControllerError(enum.IntFlag):
    """Error flags reported by the controller."""

    NONE = 0
    OVERSPEED = 0x01


class Controller:
    """Position, velocity and current setpoint cascade producing a q-axis current."""

    def __init__(self, config: ControllerConfig, trap_config: TrapConfig) -> None:
        self.config = config
        self.trap = TrapezoidalTrajectory(trap_config)
        self.mode = ControlMode.POSITION
        self.error = ControllerError.NONE
        self.pos_err = 0.0
        self.pos_abs_err = 0.0
        self.vel_err = 0.0
        self.vel_abs_err = 0.0
        self.pos_setpoint = 0.0
        self.vel_setpoint = 0.0
        self.vel_integrator_current = 0.0
        self.current_setpoint = 0.0
        self.vel_ramp_target = 0.0
        self.vel_ramp_enable = False
        self.last_vel_set = 0.0
        self.last_acc_set = 0.0
        self.last_jerk_set = 0.0
        self.pos_estimate = 0.0
        self.vel_estimate = 0.0

    def reset(self) -> None:
        """Clear the velocity and current setpoints and the integrator."""
        self.vel_setpoint = 0.0
        self.vel_integrator_current = 0.0
        self.current_setpoint = 0.0

    def set_error(self, error: ControllerError) -> None:
        self.error = ControllerError(error)

    def set_pos_setpoint(
        self, pos_setpoint: float, vel_feed_forward: float, current_feed_forward: float
    ) -> None:
        self.pos_setpoint = pos_setpoint
        self.vel_setpoint = vel_feed_forward
        self.current_setpoint = current_feed_forward
        self.mode = ControlMode.POSITION

    def set_vel_setpoint(self, vel_setpoint: float, current_feed_forward: float) -> None:
        self.vel_setpoint = vel_setpoint
        self.current_setpoint = current_feed_forward
        self.mode = ControlMode.VELOCITY

    def set_current_setpoint(self, current_setpoint: float) -> None:
        self.current_setpoint = current_setpoint
        self.mode = ControlMode.CURRENT

    def move_to_pos(self, goal_point: float, cur_pos: float) -> None:
        """Plan a trajectory to ``goal_point`` and switch to trajectory control."""
        limits = self.trap.config
        self.trap.plan(
            goal_point,
            cur_pos,
            self.vel_estimate,
            limits.vel_limit,
            limits.accel_limit,
            limits.decel_limit,
        )
        self.trap.t = 0.0
        self.mode = ControlMode.TRAJECTORY

    def update(self, encoder: Any, pos_feedback: float, iq_limit: float) -> float:
        """Run one control period and return the requested q-axis current.

        ``encoder`` must provide ``count_in_cpr``, ``turn``, ``vel_estimate``
        and ``config.cpr``.
        """
        cpr = float(encoder.config.cpr)
        self.pos_estimate = (encoder.count_in_cpr / cpr + float(encoder.turn)) * 360.0
        self.vel_estimate = (encoder.vel_estimate / cpr) * 360.0

        if self.mode == ControlMode.TRAJECTORY:
            if self.trap.t > self.trap.tf:
                self.mode = ControlMode.POSITION
                self.vel_setpoint = 0.0
                self.current_setpoint = 0.0
            else:
                step = self.trap.eval(self.trap.t)
                self.pos_setpoint = step.y
                self.vel_setpoint = step.yd
                self.current_setpoint = 0.0
            self.trap.t += CURRENT_MEAS_PERIOD

        if self.mode == ControlMode.VELOCITY and self.vel_ramp_enable:
            full_step = self.vel_ramp_target - self.vel_setpoint
            max_step = CURRENT_MEAS_PERIOD * self.config.vel_ramp_rate
            if not full_step * self.vel_setpoint > 0:
                max_step *= 5.0
            if abs(full_step) > max_step:
                step_size = math.copysign(max_step, full_step)
            else:
                step_size = full_step
            self.vel_setpoint += step_size

        vel_des = self.vel_setpoint
        if self.mode >= ControlMode.POSITION:
            pos_err = self.pos_setpoint - pos_feedback
            self.pos_err = pos_err
            self.pos_abs_err = abs(pos_err)
            if self.pos_abs_err < POSITION_DEADBAND:
                pos_err = 0.0
            vel_des += self.config.pos_gain * pos_err

        vel_lim = self.config.vel_limit
        vel_des = min(max(vel_des, -vel_lim), vel_lim)

        iq = self.current_setpoint
        v_err = vel_des - self.vel_estimate
        self.vel_err = v_err
        self.vel_abs_err = abs(v_err)
        if self.mode >= ControlMode.VELOCITY:
            iq += self.config.vel_gain * v_err
            iq += self.vel_integrator_current

        limited = False
        if iq > iq_limit:
            limited = True
            iq = iq_limit
        if iq < -iq_limit:
            limited = True
            iq = -iq_limit

        if self.mode < ControlMode.VELOCITY:
            self.vel_integrator_current = 0.0
        elif limited:
            if abs(self.vel_integrator_current) > 0.0001:
                self.vel_integrator_current *= _INTEGRATOR_DECAY
        else:
            self.vel_integrator_current += (
                self.config.vel_integrator_gain * CURRENT_MEAS_PERIOD
            ) * v_err

        return iq