"""Merge the two virtual joysticks into full 4-axis commands.

The left stick owns throttle (vertical) and yaw (horizontal); the right
stick owns pitch (vertical) and roll (horizontal). Every movement yields
the complete command, with the other stick's axes carried over.
"""

from drone_controller.link.models import ControlCommand, FlightMode

_AXIS_SCALE: int = 100


def _to_axis(deflection: float) -> int:
    """Map a stick deflection in [-1, 1] onto an integer axis in [-100, 100]."""
    return max(-_AXIS_SCALE, min(_AXIS_SCALE, round(deflection * _AXIS_SCALE)))


class StickMixer:
    """Holds the last command and folds stick movements into it."""

    def __init__(self, flight_mode: FlightMode | None = None) -> None:
        self._command = ControlCommand(flight_mode=flight_mode)

    def current(self) -> ControlCommand:
        return self._command

    def move_left(self, x: float, y: float) -> ControlCommand:
        """Update throttle and yaw from the left stick position."""
        self._command = self._command.model_copy(
            update={"throttle": _to_axis(y), "yaw": _to_axis(x)},
        )
        return self._command

    def move_right(self, x: float, y: float) -> ControlCommand:
        """Update pitch and roll from the right stick position."""
        self._command = self._command.model_copy(
            update={"pitch": _to_axis(y), "roll": _to_axis(x)},
        )
        return self._command

    def release_right(self) -> ControlCommand:
        """Re-centre pitch and roll when the right stick springs back."""
        return self.move_right(0.0, 0.0)

    def set_flight_mode(self, flight_mode: FlightMode | None) -> ControlCommand:
        self._command = self._command.model_copy(update={"flight_mode": flight_mode})
        return self._command
