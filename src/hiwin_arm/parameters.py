"""
Speed and acceleration ratio handling.

Ratios are validated here before anything is sent to the controller.
"""

import logging

from .arm_utils import RATIO_READ_FAILED, RatioKind, is_accepted_code, validate_ratio
from .connection import ConnectionManager
from .exceptions import GatewayError, ValidationError
from .notifier import Severity, notify

logger = logging.getLogger(__name__)

# Accepted-code table key for each ratio write.
_SET_OPERATIONS = {
    RatioKind.SPEED: 'set_speed',
    RatioKind.ACCELERATION: 'set_acceleration',
}


class ParameterGuard:
    """Reads and writes the controller's global speed and acceleration ratios."""

    def __init__(self, session: ConnectionManager, notifier=None):
        self.session = session
        self.notifier = notifier

    def set_speed(self, value: int) -> bool:
        return self.set_ratio(RatioKind.SPEED, value)

    def set_acceleration(self, value: int) -> bool:
        return self.set_ratio(RatioKind.ACCELERATION, value)

    def get_speed(self) -> int:
        return self.get_ratio(RatioKind.SPEED)

    def get_acceleration(self) -> int:
        return self.get_ratio(RatioKind.ACCELERATION)

    def set_ratio(self, kind: RatioKind, value: int) -> bool:
        """
        Set a ratio in percent.

        Args:
            kind: Which ratio to set
            value: Integer percentage in [1, 100]

        Returns:
            bool: True once the controller accepted the value

        Raises:
            ValidationError: value is out of range; the controller is not contacted
            ArmNotReadyError: the session is not READY
            GatewayError: the controller answered with an unexpected code
        """
        is_valid, error_msg = validate_ratio(value, kind.value)
        if not is_valid:
            notify(self.notifier, error_msg, Severity.INFO)
            raise ValidationError(error_msg)

        self.session.require_ready(f"set the {kind.value} ratio")

        operation = _SET_OPERATIONS[kind]
        code = self.session.call(operation, self.session.gateway.set_ratio, self.session.id, kind, value)
        if not is_accepted_code(operation, code):
            message = f"Arm control error while setting the {kind.value} ratio to {value}%. Error code: {code}"
            notify(self.notifier, message, Severity.ERROR)
            raise GatewayError(operation, code, message)

        logger.debug(f"Arm {kind.value} ratio set to {value}%")
        return True

    def get_ratio(self, kind: RatioKind) -> int:
        """
        Read a ratio in percent.

        Returns -1 when the arm is not connected or the read failed; both
        cases are reported but not raised, so callers must check for -1.
        """
        if not self.session.connected:
            notify(self.notifier, f"Arm is not connected; cannot read the {kind.value} ratio.", Severity.INFO)
            return RATIO_READ_FAILED

        value = self.session.call(f'get_{kind.value}', self.session.gateway.get_ratio, self.session.id, kind)
        if value == RATIO_READ_FAILED:
            notify(self.notifier, f"Error reading the arm {kind.value} ratio.", Severity.ERROR)
        return value
