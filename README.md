# focdrive

Field-oriented control (FOC) building blocks for a small BLDC motor, written
in plain Python. The loops run against a simulated board, so you can step
them one control period at a time, look at every internal state and check
the algorithms in tests without any hardware.

## Modules

- `focdrive.fastmath`: `sin_f32` and `cos_f32`, which look values up in a
  512-step sine table (`SIN_TABLE`) and interpolate linearly between entries.
- `focdrive.utils`: angle wrapping (`wrap_pm`, `fmodf_pos`, `wrap_pm_pi`),
  `horner_poly_eval`, `mod` (non-negative for a positive divisor), `is_nan`,
  and two space-vector modulators, `svm` and `simple_svm`. Both return an
  `SvmResult` holding the three phase duty cycles, with a `valid` property
  that is true when all of them lie in `[0, 1]`.
- `focdrive.controller`: `TrapezoidalTrajectory`, which plans trapezoidal or
  triangular motion profiles (`plan`) and evaluates them over time (`eval`,
  returning a `Step`). There is also `Controller`, a cascaded position,
  velocity and current loop with an optional velocity ramp, velocity and
  current limiting and an anti-windup integrator. Its modes are listed in
  `ControlMode`, and it is configured through `ControllerConfig` and
  `TrapConfig`.
- `focdrive.hardware`: `SimulatedHardware`, which stands in for the board.
  It holds the raw phase-current ADC, bus-voltage and encoder readings and
  records the PWM compare values and servo enable state that the motor code
  commands.
- `focdrive.motor`: `Motor`, configured by `MotorConfig`. It tracks the ADC
  offsets, converts the readings to phase and alpha-beta currents, and runs
  open-loop voltage output (`foc_voltage`) and the closed-loop d/q current PI
  loop (`foc_current`). It also measures phase resistance and inductance
  (`calibrate`, then `update` every period). Errors are `MotorError` flags
  and states are `MotorState` values.
- `focdrive.encoder`: `OpticalEncoder`, configured by `EncoderConfig`. It
  counts turns, runs a PLL position and velocity estimate, interpolates
  between counts and outputs the electrical phase. It also has two routines
  that find the offset between encoder zero and electrical zero
  (`calibrate_offset_rotator` and `calibrate_offset_clamper`). Errors are
  `EncoderError` flags.

## Installing

```
pip install .
```

With the test dependencies:

```
pip install .[test]
pytest
```

## Quick look

```python
from focdrive.fastmath import sin_f32
from focdrive.utils import simple_svm
from focdrive.controller import TrapConfig, TrapezoidalTrajectory

print(sin_f32(0.5))                      # close to math.sin(0.5)

duty = simple_svm(1.0, 0.0, 24.0)        # SvmResult(t_a, t_b, t_c)
print(duty, duty.valid)

traj = TrapezoidalTrajectory(TrapConfig())
traj.plan(360.0, 0.0, 0.0, 3600.0, 36000.0, 36000.0)
print(traj.eval(0.05))                   # Step(y, yd, ydd)
```

## Wiring the loops together

The motor, the encoder and the controller share one `SimulatedHardware`.
You decide how its readings change between periods.

```python
from focdrive.hardware import SimulatedHardware
from focdrive.motor import Motor, MotorConfig, MotorState
from focdrive.encoder import EncoderConfig, OpticalEncoder
from focdrive.controller import Controller, ControllerConfig, TrapConfig

hw = SimulatedHardware(pmsm_ia=2048, pmsm_ib=2048, bus_volt=2700)
motor = Motor(MotorConfig(), hw)
encoder = OpticalEncoder(EncoderConfig(), hw)
controller = Controller(ControllerConfig(), TrapConfig())

motor.init()
while motor.state == MotorState.INIT:    # ADC offset tracking phase
    motor.update()

encoder.init()
motor.servo_on()
controller.set_vel_setpoint(360.0, 0.0)

for _ in range(100):
    motor.update()
    encoder.update(motor.config.pole_pairs, 1.0)
    iq = controller.update(encoder, controller.pos_estimate,
                           motor.config.requested_current_range)
    motor.foc_current(0.0, iq, encoder.phase, 0.0)

print(hw.outputs[0])                     # last PWM compare values
```

## What this package does not do

It has no application loop, gripper state machine or command interface.
You create and step `Motor`, `OpticalEncoder` and `Controller` yourself. It
ships no tuned configurations for a particular board beyond the dataclass
defaults, and it does not store configurations or calibration results. Nothing
here talks to real hardware. `SimulatedHardware` only holds the values you
put into it and records what the loops command.