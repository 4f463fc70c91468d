"""
Motion command dispatch.

Translates a motion request (kind x position type x coordinate type, plus
smoothing) into exactly one gateway primitive, resolving relative targets
either natively or by reading the current position first.
"""

import logging
import threading
from typing import Dict, Iterable, Optional, Tuple

from .arm_utils import (
    DEFAULT_CARTESIAN_HOME, DEFAULT_JOINT_HOME, DEFAULT_SMOOTHING, CoordinateType, MotionKind,
    PositionType, PositionVector, SmoothingSpec, is_accepted_code,
)
from .completion import CompletionWaiter
from .connection import ConnectionManager
from .exceptions import GatewayError, ValidationError
from .notifier import Severity, notify

logger = logging.getLogger(__name__)

DispatchKey = Tuple[MotionKind, PositionType, CoordinateType]

DISPATCH_TABLE: Dict[DispatchKey, str] = {
    (MotionKind.LINEAR, PositionType.CARTESIAN, CoordinateType.ABSOLUTE): 'lin_pos',
    (MotionKind.LINEAR, PositionType.JOINT, CoordinateType.ABSOLUTE): 'lin_axis',
    (MotionKind.LINEAR, PositionType.CARTESIAN, CoordinateType.RELATIVE): 'lin_rel_pos',
    (MotionKind.LINEAR, PositionType.JOINT, CoordinateType.RELATIVE): 'lin_rel_axis',
    (MotionKind.POINT_TO_POINT, PositionType.CARTESIAN, CoordinateType.ABSOLUTE): 'ptp_pos',
    (MotionKind.POINT_TO_POINT, PositionType.JOINT, CoordinateType.ABSOLUTE): 'ptp_axis',
    (MotionKind.POINT_TO_POINT, PositionType.CARTESIAN, CoordinateType.RELATIVE): 'ptp_rel_pos',
    (MotionKind.POINT_TO_POINT, PositionType.JOINT, CoordinateType.RELATIVE): 'ptp_rel_axis',
}

# Accepted-code table key per motion kind.
_CODE_POLICIES = {
    MotionKind.LINEAR: 'linear',
    MotionKind.POINT_TO_POINT: 'point_to_point',
}

RELATIVE_MODES = ('auto', 'native', 'convert')


class MotionDispatcher:
    """
    Issues motion commands for one controller session.

    The relative-target policy is fixed at construction, per motion kind and
    position type:

    * ``auto``: use the gateway's relative primitive when it has one,
      otherwise read the current position and send an absolute move
    * ``native``: always use the relative primitive; construction fails if
      the gateway lacks one
    * ``convert``: always read the current position and send an absolute move
    """

    def __init__(self, session: ConnectionManager, waiter: CompletionWaiter, notifier=None,
                 relative_mode: str = 'auto', cartesian_home: Iterable[float] = DEFAULT_CARTESIAN_HOME,
                 joint_home: Iterable[float] = DEFAULT_JOINT_HOME):
        self.session = session
        self.gateway = session.gateway
        self.waiter = waiter
        self.notifier = notifier

        self.home_positions = {
            PositionType.CARTESIAN: PositionVector(cartesian_home),
            PositionType.JOINT: PositionVector(joint_home),
        }
        self._primitives = {key: getattr(self.gateway, name) for key, name in DISPATCH_TABLE.items()}
        self.relative_mode = relative_mode
        self.native_relative = self._resolve_relative_policy(relative_mode)

    def _resolve_relative_policy(self, relative_mode: str) -> Dict[Tuple[MotionKind, PositionType], bool]:
        if relative_mode not in RELATIVE_MODES:
            raise ValidationError(f"Unknown relative mode {relative_mode!r}. Expected one of: {', '.join(RELATIVE_MODES)}")

        policy = {}
        for motion in MotionKind:
            for position_type in PositionType:
                supported = self.gateway.supports_relative(motion, position_type)
                if relative_mode == 'native' and not supported:
                    raise ValidationError(
                        f"{type(self.gateway).__name__} has no native relative "
                        f"{motion.value} {position_type.value} move")
                policy[(motion, position_type)] = supported and relative_mode != 'convert'
        return policy

    # =============================================================================
    # PUBLIC MOTION API
    # =============================================================================

    def home(self, position_type=PositionType.CARTESIAN, wait: bool = True, timeout: Optional[float] = None,
             cancel_event: Optional[threading.Event] = None) -> bool:
        """Point-to-point move to the home position of ``position_type``, without smoothing."""
        position_type = self._parse(PositionType, position_type)
        notify(self.notifier, f"Arm-Homing. {position_type.value}", Severity.TRACE)
        return self._dispatch(MotionKind.POINT_TO_POINT, position_type, CoordinateType.ABSOLUTE,
                              self.home_positions[position_type], SmoothingSpec.disabled(),
                              wait, timeout, cancel_event)

    def move_linear(self, target, position_type=PositionType.CARTESIAN,
                    coordinate_type=CoordinateType.ABSOLUTE, smoothing: SmoothingSpec = DEFAULT_SMOOTHING,
                    wait: bool = True, timeout: Optional[float] = None,
                    cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Move along a straight line.

        Args:
            target: Six target values (or offsets for relative moves)
            position_type: CARTESIAN or JOINT
            coordinate_type: ABSOLUTE or RELATIVE
            smoothing: Blending mode and magnitude
            wait: Block until the arm is idle at the target
            timeout: Completion budget in seconds
            cancel_event: Event that abandons the completion wait

        Returns:
            bool: True once the move was accepted (and completed, if waiting)
        """
        return self.move(MotionKind.LINEAR, target, position_type, coordinate_type, smoothing,
                         wait, timeout, cancel_event)

    def move_point_to_point(self, target, position_type=PositionType.CARTESIAN,
                            coordinate_type=CoordinateType.ABSOLUTE, smoothing: SmoothingSpec = DEFAULT_SMOOTHING,
                            wait: bool = True, timeout: Optional[float] = None,
                            cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Move by the fastest path. Only the smoothing type matters here:
        two-lines-speed blending is on, everything else stops at the target.
        """
        return self.move(MotionKind.POINT_TO_POINT, target, position_type, coordinate_type, smoothing,
                         wait, timeout, cancel_event)

    def move(self, motion, target, position_type=PositionType.CARTESIAN,
             coordinate_type=CoordinateType.ABSOLUTE, smoothing: Optional[SmoothingSpec] = DEFAULT_SMOOTHING,
             wait: bool = True, timeout: Optional[float] = None,
             cancel_event: Optional[threading.Event] = None) -> bool:
        motion = self._parse(MotionKind, motion)
        position_type = self._parse(PositionType, position_type)
        coordinate_type = self._parse(CoordinateType, coordinate_type)
        target = self._validated(PositionVector, target)
        if smoothing is None:
            smoothing = DEFAULT_SMOOTHING
        elif not isinstance(smoothing, SmoothingSpec):
            smoothing = self._validated(SmoothingSpec, smoothing)

        notify(self.notifier,
               f'Arm-{motion.value}: "{target.format()}". {position_type.value}, {coordinate_type.value}',
               Severity.TRACE)
        return self._dispatch(motion, position_type, coordinate_type, target, smoothing,
                              wait, timeout, cancel_event)

    def read_position(self, position_type=PositionType.CARTESIAN) -> PositionVector:
        """Current Cartesian pose or joint angles as reported by the controller."""
        position_type = self._parse(PositionType, position_type)
        self.session.require_ready("read the arm position")

        code, values = self.session.call('read_position', self.gateway.read_position,
                                         self.session.id, position_type)
        if not is_accepted_code('read_position', code):
            message = f"Arm control error while reading the {position_type.value} position. Error code: {code}"
            notify(self.notifier, message, Severity.ERROR)
            raise GatewayError('read_position', code, message)
        return PositionVector(values)

    def to_absolute(self, offset, position_type=PositionType.CARTESIAN) -> PositionVector:
        """Resolve a relative offset against the current position."""
        return self.read_position(position_type).translated(offset)

    # =============================================================================
    # DISPATCH
    # =============================================================================

    def _dispatch(self, motion: MotionKind, position_type: PositionType, coordinate_type: CoordinateType,
                  target: PositionVector, smoothing: SmoothingSpec, wait: bool, timeout: Optional[float],
                  cancel_event: Optional[threading.Event]) -> bool:
        self.session.require_ready(f"start a {motion.value} move")

        # Absolute target the completion waiter compares against.
        expected = target
        if coordinate_type == CoordinateType.RELATIVE:
            if not self.native_relative[(motion, position_type)]:
                target = expected = self.to_absolute(target, position_type)
                coordinate_type = CoordinateType.ABSOLUTE
            elif wait and self.waiter.uses_readback:
                expected = self.to_absolute(target, position_type)

        key = (motion, position_type, coordinate_type)
        primitive = self._primitives.get(key)
        if primitive is None:
            message = f"No controller command for {motion.value} {position_type.value} {coordinate_type.value} moves"
            notify(self.notifier, message, Severity.WARNING)
            raise ValidationError(message)

        handle = self.session.id
        name = DISPATCH_TABLE[key]
        if motion == MotionKind.LINEAR:
            code = self.session.call(name, primitive, handle, int(smoothing.type), smoothing.value, target)
        else:
            code = self.session.call(name, primitive, handle, smoothing.ptp_mode(), target)

        if not is_accepted_code(_CODE_POLICIES[motion], code):
            message = f"Arm control error during {name} to {target.format()}. Error code: {code}"
            notify(self.notifier, message, Severity.ERROR)
            raise GatewayError(name, code, message)
        logger.debug(f"{name} accepted with code {code}")

        if wait:
            self.waiter.wait(expected, position_type, timeout, cancel_event)
        return True

    def _parse(self, enum_type, value):
        return self._validated(enum_type.parse, value)

    def _validated(self, factory, value):
        try:
            return factory(value)
        except ValidationError as e:
            notify(self.notifier, str(e), Severity.WARNING)
            raise
