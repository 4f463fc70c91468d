"""
Controller gateway interface.

A gateway is the only object allowed to talk to the physical controller.
The control layer above it is written against ControllerGateway, so the
vendor SDK binding, the xArm adapter and the in-memory simulation are
interchangeable.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .arm_utils import (
    DEFAULT_CARTESIAN_HOME, DEFAULT_JOINT_HOME, MOTION_STATE_IDLE, NO_ALARM_CODE,
    SUCCESS_CODE, MotionKind, PositionType, PositionVector, RatioKind,
)

logger = logging.getLogger(__name__)

# (command_code, result_code, message)
EventCallback = Callable[[int, int, str], None]

ALL_RELATIVE_MOTIONS = frozenset(
    (motion, position_type) for motion in MotionKind for position_type in PositionType
)


class ControllerGateway(ABC):
    """
    Capability interface over a motion controller.

    Return codes follow the controller convention: 0 is success and the
    meaning of anything else depends on the call. Motion primitives take
    six-component targets in the controller's native units.
    """

    # Controllers that expose a motion-state flag can be waited on directly;
    # the others are waited on by comparing position readback.
    reports_motion_state: bool = True

    # (MotionKind, PositionType) pairs with a native relative primitive.
    relative_motions: FrozenSet[Tuple[MotionKind, PositionType]] = frozenset()

    def supports_relative(self, motion: MotionKind, position_type: PositionType) -> bool:
        return (motion, position_type) in self.relative_motions

    # Session
    @abstractmethod
    def open_connection(self, address: str, mode: int, callback: EventCallback) -> int:
        """Open a session. Returns a handle in [0, 65535] or a negative error code."""

    @abstractmethod
    def disconnect(self, handle: int) -> None:
        """Close the session."""

    @abstractmethod
    def clear_alarm(self, handle: int) -> int:
        """Clear latched alarms."""

    @abstractmethod
    def set_motor_state(self, handle: int, on: bool) -> int:
        """Switch servo power."""

    @abstractmethod
    def get_motor_state(self, handle: int) -> int:
        """1 when servo power is on, 0 when off."""

    @abstractmethod
    def get_connection_level(self, handle: int) -> int:
        """0 for an observer session, 1 for an operator session."""

    @abstractmethod
    def get_motion_state(self, handle: int) -> int:
        """1 when idle; other positive values while busy; negative on error."""

    # Ratios
    @abstractmethod
    def get_ratio(self, handle: int, kind: RatioKind) -> int:
        """Read a global ratio in percent, -1 on failure."""

    @abstractmethod
    def set_ratio(self, handle: int, kind: RatioKind, value: int) -> int:
        """Write a global ratio in percent."""

    # Readback
    @abstractmethod
    def read_position(self, handle: int, position_type: PositionType) -> Tuple[int, List[float]]:
        """Return (code, six values) for the current Cartesian pose or joint angles."""

    # Linear primitives
    @abstractmethod
    def lin_pos(self, handle: int, smooth_type: int, smooth_value: float, target: PositionVector) -> int:
        pass

    @abstractmethod
    def lin_axis(self, handle: int, smooth_type: int, smooth_value: float, target: PositionVector) -> int:
        pass

    def lin_rel_pos(self, handle: int, smooth_type: int, smooth_value: float, target: PositionVector) -> int:
        raise NotImplementedError(f"{type(self).__name__} has no relative linear Cartesian move")

    def lin_rel_axis(self, handle: int, smooth_type: int, smooth_value: float, target: PositionVector) -> int:
        raise NotImplementedError(f"{type(self).__name__} has no relative linear joint move")

    # Point-to-point primitives
    @abstractmethod
    def ptp_pos(self, handle: int, mode: int, target: PositionVector) -> int:
        pass

    @abstractmethod
    def ptp_axis(self, handle: int, mode: int, target: PositionVector) -> int:
        pass

    def ptp_rel_pos(self, handle: int, mode: int, target: PositionVector) -> int:
        raise NotImplementedError(f"{type(self).__name__} has no relative point-to-point Cartesian move")

    def ptp_rel_axis(self, handle: int, mode: int, target: PositionVector) -> int:
        raise NotImplementedError(f"{type(self).__name__} has no relative point-to-point joint move")


class SimulationGateway(ControllerGateway):
    """
    In-memory controller used for simulation mode and tests.

    Every call is recorded in ``calls`` as ``(name, args)``. Return codes can
    be overridden per call name through ``return_codes``. Queued values in
    ``motion_states`` and ``readbacks`` are served one per query; the last
    queued value keeps being served once the queue is down to one entry.
    """

    def __init__(self, handle: int = 0, native_relative: bool = True, reports_motion_state: bool = True,
                 cartesian: Iterable[float] = DEFAULT_CARTESIAN_HOME, joints: Iterable[float] = DEFAULT_JOINT_HOME):
        self.open_result = handle
        self.relative_motions = ALL_RELATIVE_MOTIONS if native_relative else frozenset()
        self.reports_motion_state = reports_motion_state

        self.calls: List[Tuple[str, tuple]] = []
        self.return_codes: Dict[str, int] = {}
        self.motion_states: Deque[int] = deque()
        self.readbacks: Dict[PositionType, Deque[Iterable[float]]] = {
            PositionType.CARTESIAN: deque(),
            PositionType.JOINT: deque(),
        }
        self.positions = {
            PositionType.CARTESIAN: PositionVector(cartesian),
            PositionType.JOINT: PositionVector(joints),
        }
        self.ratios = {RatioKind.SPEED: 100, RatioKind.ACCELERATION: 100}

        self.connected = False
        self.motor_on = False
        self.alarm_code = 0
        self.connection_level = 1
        self.callback: Optional[EventCallback] = None

    def _record(self, name: str, *args):
        self.calls.append((name, args))

    def _code(self, name: str, default: int = SUCCESS_CODE) -> int:
        return self.return_codes.get(name, default)

    @staticmethod
    def _serve(queue: Deque, fallback):
        if not queue:
            return fallback
        if len(queue) > 1:
            return queue.popleft()
        return queue[0]

    def calls_to(self, name: str) -> List[tuple]:
        """Arguments of every recorded call to ``name``."""
        return [args for call_name, args in self.calls if call_name == name]

    def emit_event(self, command_code: int, result_code: int, message: str = ''):
        """Deliver a controller event to the registered callback, like the driver thread would."""
        if self.callback is not None:
            self.callback(command_code, result_code, message)

    # Session
    def open_connection(self, address, mode, callback):
        self._record('open_connection', address, mode, callback)
        logger.debug(f"Simulated controller session to {address} (handle {self.open_result})")
        self.callback = callback
        self.connected = self.open_result >= 0
        return self.open_result

    def disconnect(self, handle):
        self._record('disconnect', handle)
        self.connected = False
        self.callback = None

    def clear_alarm(self, handle):
        self._record('clear_alarm', handle)
        if 'clear_alarm' in self.return_codes:
            return self.return_codes['clear_alarm']
        if self.alarm_code:
            self.alarm_code = 0
            return SUCCESS_CODE
        return NO_ALARM_CODE

    def set_motor_state(self, handle, on):
        self._record('set_motor_state', handle, on)
        code = self._code('set_motor_state')
        if code == SUCCESS_CODE:
            self.motor_on = bool(on)
        return code

    def get_motor_state(self, handle):
        self._record('get_motor_state', handle)
        return 1 if self.motor_on else 0

    def get_connection_level(self, handle):
        self._record('get_connection_level', handle)
        return self.connection_level

    def get_motion_state(self, handle):
        self._record('get_motion_state', handle)
        return self._serve(self.motion_states, MOTION_STATE_IDLE)

    # Ratios
    def get_ratio(self, handle, kind):
        self._record('get_ratio', handle, kind)
        return self._code(f'get_ratio:{kind.value}', self.ratios[kind])

    def set_ratio(self, handle, kind, value):
        self._record('set_ratio', handle, kind, value)
        default = 4000 if kind == RatioKind.ACCELERATION else SUCCESS_CODE
        code = self._code(f'set_ratio:{kind.value}', default)
        self.ratios[kind] = value
        return code

    # Readback
    def read_position(self, handle, position_type):
        self._record('read_position', handle, position_type)
        values = self._serve(self.readbacks[position_type], self.positions[position_type])
        return self._code('read_position'), list(values)

    # Motion
    def _move(self, name: str, position_type: PositionType, target, relative: bool = False) -> int:
        code = self._code(name)
        if code >= 0:
            current = self.positions[position_type]
            self.positions[position_type] = current.translated(target) if relative else PositionVector(target)
        return code

    def lin_pos(self, handle, smooth_type, smooth_value, target):
        self._record('lin_pos', handle, smooth_type, smooth_value, target)
        return self._move('lin_pos', PositionType.CARTESIAN, target)

    def lin_axis(self, handle, smooth_type, smooth_value, target):
        self._record('lin_axis', handle, smooth_type, smooth_value, target)
        return self._move('lin_axis', PositionType.JOINT, target)

    def lin_rel_pos(self, handle, smooth_type, smooth_value, target):
        self._record('lin_rel_pos', handle, smooth_type, smooth_value, target)
        return self._move('lin_rel_pos', PositionType.CARTESIAN, target, relative=True)

    def lin_rel_axis(self, handle, smooth_type, smooth_value, target):
        self._record('lin_rel_axis', handle, smooth_type, smooth_value, target)
        return self._move('lin_rel_axis', PositionType.JOINT, target, relative=True)

    def ptp_pos(self, handle, mode, target):
        self._record('ptp_pos', handle, mode, target)
        return self._move('ptp_pos', PositionType.CARTESIAN, target)

    def ptp_axis(self, handle, mode, target):
        self._record('ptp_axis', handle, mode, target)
        return self._move('ptp_axis', PositionType.JOINT, target)

    def ptp_rel_pos(self, handle, mode, target):
        self._record('ptp_rel_pos', handle, mode, target)
        return self._move('ptp_rel_pos', PositionType.CARTESIAN, target, relative=True)

    def ptp_rel_axis(self, handle, mode, target):
        self._record('ptp_rel_axis', handle, mode, target)
        return self._move('ptp_rel_axis', PositionType.JOINT, target, relative=True)
