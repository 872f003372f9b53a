"""In-memory model of the board interface that the motor code drives.

It holds the raw ADC and encoder readings the control loops sample and
records the PWM compare values and driver enable state they command.
"""

from __future__ import annotations

from dataclasses import dataclass, field

__all__ = ["UINT32_MAX", "SimulatedHardware"]

UINT32_MAX = 0xFFFFFFFF


@dataclass
class SimulatedHardware:
    """Raw sensor readings plus the last commands sent to each motor channel."""

    pmsm_ia: int = 0
    pmsm_ib: int = 0
    pmsm_ia1: int = 0
    pmsm_ib1: int = 0
    bus_volt: int = 0
    fault_flag: int = 0
    encoder_value: int = 0
    encoder1_value: int = 0
    outputs: dict[int, tuple[int, int, int]] = field(default_factory=dict)
    servo_enabled: dict[int, bool] = field(default_factory=dict)
    output_count: int = 0

    def set_output(self, num: int, pha: int, phb: int, phc: int) -> None:
        """Set the three PWM compare values of motor channel ``num``."""
        values = (pha, phb, phc)
        for value in values:
            if not 0 <= value <= UINT32_MAX:
                raise ValueError(f"PWM compare value out of range: {value!r}")
        self.outputs[num] = tuple(int(v) for v in values)  # type: ignore[assignment]
        self.output_count += 1

    def servo_on(self, num: int) -> None:
        """Enable the gate driver outputs of motor channel ``num``."""
        self.servo_enabled[num] = True

    def servo_off(self, num: int) -> None:
        """Disable the gate driver outputs of motor channel ``num``."""
        self.servo_enabled[num] = False