"""
Controller session lifecycle.

ConnectionManager owns the DISCONNECTED -> CONNECTING -> READY state machine,
the open/prime and shutdown sequences, and the callback the controller uses
for out-of-band events.
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Optional

from .arm_utils import (
    NO_ALARM_CODE, SUCCESS_CODE, UPDATE_EVENT_COMMAND, ConnectFailure, ConnectionState,
    classify_connect_failure, is_accepted_code, is_valid_session_handle,
)
from .exceptions import ArmConnectionError, ArmError, ArmNotReadyError, GatewayError
from .gateway import ControllerGateway
from .notifier import Severity, notify

logger = logging.getLogger(__name__)


def describe_connection_level(level: Optional[int]) -> str:
    if level is None:
        return "unknown"
    return "observer" if level == 0 else "operator"


def describe_motor_state(state: Optional[int]) -> str:
    if state is None:
        return "unknown"
    return "off" if state == 0 else "on"


class ConnectionManager:
    """
    Opens, primes and closes one controller session.

    Only this class changes ``state`` and ``id``. The event callback runs on
    a driver-owned thread and is limited to logging and the event history.
    """

    def __init__(self, gateway: ControllerGateway, host: str, mode: int = 1,
                 notifier=None, settle_delay: float = 0.5):
        self.gateway = gateway
        self.host = host
        self.mode = mode
        self.notifier = notifier
        self.settle_delay = settle_delay

        self.state = ConnectionState.DISCONNECTED
        self.id: Optional[int] = None
        self.last_error: Optional[ArmConnectionError] = None
        self.event_history = deque(maxlen=100)

        # The driver holds on to this for the whole session; it is created once
        # per open call and released when the session closes.
        self._event_callback: Optional[Callable[[int, int, str], None]] = None

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.READY

    @property
    def event_callback(self) -> Optional[Callable[[int, int, str], None]]:
        return self._event_callback

    # =============================================================================
    # CONNECT / DISCONNECT
    # =============================================================================

    def connect(self) -> bool:
        """
        Open the session, clear alarms and switch servo power on.
        A FAULTED session is closed first.

        Returns:
            bool: True when the session is READY, False if the controller
            refused the connection (see ``last_error``). No retry is attempted.
        """
        if self.state == ConnectionState.READY:
            logger.info("Controller session is already open.")
            return True
        if self.state == ConnectionState.FAULTED:
            logger.info(f"Closing faulted session {self.id} before reconnecting.")
            self.disconnect()

        self.state = ConnectionState.CONNECTING
        self.last_error = None
        self._event_callback = self._handle_controller_event

        try:
            handle = self.gateway.open_connection(self.host, self.mode, self._event_callback)
        except OSError as e:
            logger.error(f"Driver error while opening a session to {self.host}: {e}")
            handle = None
        time.sleep(self.settle_delay)

        if not is_valid_session_handle(handle):
            return self._fail_connect(handle)

        self.id = handle
        try:
            alarm_code = self._clear_alarm_quietly(handle)

            motor_code = self.gateway.set_motor_state(handle, True)
            if not is_accepted_code('set_motor_state', motor_code):
                notify(self.notifier, f"Switching servo power on returned code {motor_code}.", Severity.WARNING)
            time.sleep(self.settle_delay)

            motor_state = self.gateway.get_motor_state(handle)
            connection_level = self.gateway.get_connection_level(handle)
        except OSError as e:
            logger.error(f"Driver error while priming session {handle}: {e}")
            self._close_quietly(handle)
            return self._fail_connect(handle, cause=ConnectFailure.UNKNOWN, detail=str(e))

        notify(self.notifier,
               f"Connected to {self.host}. Arm ID: {handle}, "
               f"connection level: {describe_connection_level(connection_level)}, "
               f"motor: {describe_motor_state(motor_state)}, alarm code: {alarm_code}",
               Severity.INFO)

        self.state = ConnectionState.READY
        return True

    def disconnect(self) -> bool:
        """
        Switch servo power off, clear alarms and close the session.

        Always succeeds from the caller's point of view: driver failures along
        the way are reported, not raised. Safe to call repeatedly.
        """
        handle = self.id
        if handle is None:
            self._reset()
            return True

        self._shutdown_step("switching servo power off", self.gateway.set_motor_state, handle, False)
        time.sleep(self.settle_delay)
        alarm_code = self._shutdown_step("clearing alarms", self._clear_alarm_quietly, handle)
        motor_state = self._shutdown_step("reading servo power state", self.gateway.get_motor_state, handle)
        self._shutdown_step("closing the session", self.gateway.disconnect, handle)

        notify(self.notifier,
               f"Disconnected from {self.host}. Motor: {describe_motor_state(motor_state)}, "
               f"alarm code: {alarm_code if alarm_code is not None else 'unknown'}",
               Severity.INFO)

        self._reset()
        return True

    def _fail_connect(self, handle: Optional[int], cause: Optional[ConnectFailure] = None,
                      detail: Optional[str] = None) -> bool:
        cause = cause or classify_connect_failure(handle)
        message = f"Unable to connect to {self.host}. {handle}: {cause.value}"
        if detail:
            message += f" ({detail})"
        notify(self.notifier, message, Severity.ERROR)

        self.last_error = ArmConnectionError(message, code=handle, cause=cause)
        self._reset()
        return False

    def _reset(self):
        self.state = ConnectionState.DISCONNECTED
        self.id = None
        self._event_callback = None

    def _close_quietly(self, handle: int):
        try:
            self.gateway.disconnect(handle)
        except OSError as e:
            logger.warning(f"Failed to close session {handle}: {e}")

    def _shutdown_step(self, description: str, func: Callable[..., Any], *args) -> Any:
        try:
            return func(*args)
        except (OSError, ArmError) as e:
            notify(self.notifier, f"Error while {description}: {e}", Severity.WARNING)
            return None

    # =============================================================================
    # ALARMS AND SESSION CHECKS
    # =============================================================================

    def _clear_alarm_quietly(self, handle: int) -> int:
        code = self.gateway.clear_alarm(handle)
        if code == NO_ALARM_CODE:
            return SUCCESS_CODE
        if code != SUCCESS_CODE:
            notify(self.notifier, f"Clearing alarms returned code {code}.", Severity.WARNING)
        return code

    def clear_alarm(self) -> bool:
        """
        Clear latched controller alarms.

        "Nothing to clear" counts as success. Any other non-zero code is
        reported and raised as GatewayError.
        """
        if self.id is None:
            raise self._not_ready("clear alarms")

        code = self.call('clear_alarm', self.gateway.clear_alarm, self.id)
        if not is_accepted_code('clear_alarm', code):
            message = f"Arm control error while clearing alarms. Error code: {code}"
            notify(self.notifier, message, Severity.ERROR)
            raise GatewayError('clear_alarm', code, message)
        return True

    def require_ready(self, action: str = "command the arm"):
        """Raise ArmNotReadyError unless the session is READY."""
        if self.state != ConnectionState.READY:
            raise self._not_ready(action)

    def _not_ready(self, action: str) -> ArmNotReadyError:
        message = f"Arm is not connected ({self.state.value}); cannot {action}."
        notify(self.notifier, message, Severity.INFO)
        return ArmNotReadyError(message)

    def mark_faulted(self, reason: str):
        """Move a READY session to FAULTED after a driver-level failure."""
        if self.state == ConnectionState.READY:
            self.state = ConnectionState.FAULTED
            notify(self.notifier, f"Controller session faulted: {reason}. Disconnect and reconnect.",
                   Severity.ERROR)

    def call(self, operation: str, func: Callable[..., Any], *args) -> Any:
        """
        Invoke a gateway function, turning driver exceptions into GatewayError.

        A driver exception means the session can no longer be trusted, so the
        session is marked FAULTED. Return codes are left to the caller.
        """
        try:
            return func(*args)
        except OSError as e:
            self.mark_faulted(f"{operation}: {e}")
            raise GatewayError(operation, None, f"Driver failure during {operation}: {e}") from e

    # =============================================================================
    # CONTROLLER EVENTS
    # =============================================================================

    def _handle_controller_event(self, command_code: int, result_code: int, message: str = ''):
        """Out-of-band controller event. Runs on the driver's thread."""
        logger.debug(f"Command: {command_code} Result: {result_code}")
        self.event_history.append({
            'timestamp': time.time(),
            'command_code': command_code,
            'result_code': result_code,
            'message': message,
        })

        if result_code == SUCCESS_CODE:
            return
        if command_code == UPDATE_EVENT_COMMAND:
            text = f"Controller update failed. Result code: {result_code}"
        else:
            text = f"Controller command {command_code} reported result code {result_code}"
            if message:
                text += f": {message}"
        notify(self.notifier, text, Severity.WARNING)
