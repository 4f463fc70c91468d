"""
Blocking wait for motion completion.

The controller can only be polled, so completion is detected by sampling at
a fixed interval: either the controller's motion-state flag, or, for
controllers without one, position readback compared against the target.
"""

import logging
import threading
import time
from typing import Callable, Optional

from .arm_utils import (
    DEFAULT_TOLERANCE, MOTION_STATE_IDLE, PositionType, PositionVector, is_accepted_code,
)
from .connection import ConnectionManager
from .exceptions import GatewayError, MotionCancelledError, MotionTimeoutError, ValidationError
from .notifier import Severity, notify

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.2

MOTION_STATE_MODE = 'motion_state'
READBACK_MODE = 'readback'
COMPLETION_MODES = ('auto', MOTION_STATE_MODE, READBACK_MODE)


def poll_until(condition: Callable[[], bool], interval: float = DEFAULT_POLL_INTERVAL,
               timeout: Optional[float] = None, cancel_event: Optional[threading.Event] = None,
               description: str = "condition") -> int:
    """
    Sample ``condition`` until it returns True.

    Sleeps ``interval`` seconds between samples by waiting on ``cancel_event``,
    so setting the event interrupts the sleep immediately.

    Args:
        condition: Callable returning True when done
        interval: Seconds between samples
        timeout: Budget in seconds, None to wait indefinitely
        cancel_event: Event the caller sets to abandon the wait
        description: Text used in error messages

    Returns:
        int: Number of samples taken

    Raises:
        MotionTimeoutError: the budget elapsed first
        MotionCancelledError: ``cancel_event`` was set
    """
    if cancel_event is None:
        cancel_event = threading.Event()
    deadline = None if timeout is None else time.monotonic() + timeout

    samples = 0
    while True:
        if cancel_event.is_set():
            raise MotionCancelledError(f"Wait for {description} cancelled after {samples} samples")

        samples += 1
        if condition():
            return samples

        if deadline is None:
            delay = interval
        else:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise MotionTimeoutError(f"{description} not reached within {timeout:g} s ({samples} samples)")
            delay = min(interval, remaining)

        if cancel_event.wait(delay):
            raise MotionCancelledError(f"Wait for {description} cancelled after {samples} samples")


class CompletionWaiter:
    """Blocks the calling thread until the arm has finished the commanded motion."""

    def __init__(self, session: ConnectionManager, notifier=None, poll_interval: float = DEFAULT_POLL_INTERVAL,
                 tolerance: float = DEFAULT_TOLERANCE, mode: str = 'auto', default_timeout: Optional[float] = None):
        self.session = session
        self.gateway = session.gateway
        self.notifier = notifier
        self.poll_interval = poll_interval
        self.tolerance = tolerance
        self.default_timeout = default_timeout
        self.mode = self._resolve_mode(mode)

    def _resolve_mode(self, mode: str) -> str:
        if mode not in COMPLETION_MODES:
            raise ValidationError(f"Unknown completion mode {mode!r}. Expected one of: {', '.join(COMPLETION_MODES)}")
        if mode == 'auto':
            return MOTION_STATE_MODE if self.gateway.reports_motion_state else READBACK_MODE
        if mode == MOTION_STATE_MODE and not self.gateway.reports_motion_state:
            raise ValidationError(f"{type(self.gateway).__name__} does not report a motion state")
        return mode

    @property
    def uses_readback(self) -> bool:
        return self.mode == READBACK_MODE

    def wait(self, target: PositionVector, position_type: PositionType, timeout: Optional[float] = None,
             cancel_event: Optional[threading.Event] = None) -> int:
        """
        Wait until the arm is idle at ``target``.

        Args:
            target: Absolute target of the motion, used by the readback protocol
            position_type: Whether ``target`` holds Cartesian or joint values
            timeout: Budget in seconds; falls back to the configured default
            cancel_event: Event the caller sets to abandon the wait

        Returns:
            int: Number of samples taken
        """
        handle = self.session.id
        timeout = self.default_timeout if timeout is None else timeout

        if self.mode == MOTION_STATE_MODE:
            condition = lambda: self._motion_finished(handle)
            description = "idle motion state"
        else:
            target = PositionVector(target)
            condition = lambda: self._position_reached(handle, target, position_type)
            description = f"{position_type.value} position {target.format()}"

        try:
            samples = poll_until(condition, self.poll_interval, timeout, cancel_event, description)
        except MotionTimeoutError as e:
            notify(self.notifier, f"Timed out waiting for the arm: {e}", Severity.ERROR)
            raise
        except MotionCancelledError as e:
            notify(self.notifier, str(e), Severity.INFO)
            raise

        logger.debug(f"Motion complete after {samples} samples")
        return samples

    def _motion_finished(self, handle: int) -> bool:
        state = self.session.call('get_motion_state', self.gateway.get_motion_state, handle)
        if state < 0:
            message = f"Arm control error while reading the motion state. Error code: {state}"
            notify(self.notifier, message, Severity.ERROR)
            raise GatewayError('get_motion_state', state, message)
        return state == MOTION_STATE_IDLE

    def _position_reached(self, handle: int, target: PositionVector, position_type: PositionType) -> bool:
        code, values = self.session.call('read_position', self.gateway.read_position, handle, position_type)
        if not is_accepted_code('read_position', code):
            logger.debug(f"Position readback returned code {code}, sampling again")
            return False
        # Orientation angles can come back with the opposite sign (180 vs -180).
        return PositionVector(values).is_close(
            target, self.tolerance, compare_angle_magnitudes=position_type == PositionType.CARTESIAN)
