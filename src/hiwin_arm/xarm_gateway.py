"""
UFACTORY xArm adapter.

Drives an xArm through the official SDK behind the ControllerGateway
interface, so the same control layer runs against either vendor. The SDK
has no session handles, no motion-state flag of the HRSDK kind and no
global ratios; those are emulated here.
"""

import logging
from typing import Optional

from xarm.wrapper import XArmAPI

from .arm_utils import NO_ALARM_CODE, SUCCESS_CODE, MotionKind, PositionType, RatioKind, SmoothType
from .gateway import ControllerGateway

logger = logging.getLogger(__name__)

XARM_SESSION_HANDLE = 0
XARM_CONNECT_FAILED = -1
XARM_UNREACHABLE = -3

# Event command codes used when forwarding SDK callbacks.
XARM_ERROR_EVENT = 1
XARM_WARNING_EVENT = 2

# xArm state: 1 moving, 2 sleeping, 3 paused, 4 stopped, 5 unknown.
# Stopped and unknown mean the move was interrupted, so they map to errors.
_XARM_STATE_TO_MOTION_STATE = {1: 2, 2: 1, 3: 3, 4: -4, 5: -5}


def _normalize(code) -> int:
    return SUCCESS_CODE if code is None else code


def _motion_code(code) -> int:
    """xArm errors are positive; callers expect motion failures to be negative."""
    code = _normalize(code)
    return -code if code > 0 else code


class XArmGateway(ControllerGateway):
    """
    ControllerGateway over ``xarm.wrapper.XArmAPI``.

    Speed and acceleration ratios are kept here and scale the configured
    TCP and joint speeds of every move.
    """

    reports_motion_state = True
    relative_motions = frozenset({
        (MotionKind.LINEAR, PositionType.CARTESIAN),
        (MotionKind.POINT_TO_POINT, PositionType.CARTESIAN),
        (MotionKind.POINT_TO_POINT, PositionType.JOINT),
    })

    def __init__(self, tcp_speed: float = 100, tcp_acc: float = 2000, angle_speed: float = 20,
                 angle_acc: float = 500, check_joint_limit: bool = True):
        self.tcp_speed = tcp_speed
        self.tcp_acc = tcp_acc
        self.angle_speed = angle_speed
        self.angle_acc = angle_acc
        self.check_joint_limit = check_joint_limit

        self.arm: Optional[XArmAPI] = None
        self.ratios = {RatioKind.SPEED: 100, RatioKind.ACCELERATION: 100}
        self._motor_on = False
        self._callback = None

    def _scaled(self, value: float, kind: RatioKind) -> float:
        return value * self.ratios[kind] / 100.0

    # Session
    def open_connection(self, address, mode, callback):
        self._callback = callback
        try:
            self.arm = XArmAPI(address, do_not_open=True, check_joint_limit=self.check_joint_limit)
            self.arm.connect()
        except Exception as e:
            logger.error(f"xArm SDK could not reach {address}: {e}")
            self.arm = None
            return XARM_UNREACHABLE

        if not self.arm.connected:
            return XARM_CONNECT_FAILED
        self.arm.register_error_warn_changed_callback(self._error_warn_callback)
        return XARM_SESSION_HANDLE

    def disconnect(self, handle):
        if self.arm is not None:
            self.arm.disconnect()
        self.arm = None
        self._motor_on = False
        self._callback = None

    def _error_warn_callback(self, data):
        if self._callback is None:
            return
        error_code = data.get('error_code', 0)
        warn_code = data.get('warn_code', 0)
        if error_code:
            self._callback(XARM_ERROR_EVENT, error_code, f"xArm error {error_code}")
        if warn_code:
            self._callback(XARM_WARNING_EVENT, warn_code, f"xArm warning {warn_code}")

    def clear_alarm(self, handle):
        if not self.arm.error_code and not self.arm.warn_code:
            return NO_ALARM_CODE
        code = _normalize(self.arm.clean_error())
        self.arm.clean_warn()
        if code == SUCCESS_CODE and self._motor_on:
            # Clearing an error drops servo power on the xArm.
            self.arm.motion_enable(enable=True)
            self.arm.set_state(0)
        return code

    def set_motor_state(self, handle, on):
        code = _normalize(self.arm.motion_enable(enable=bool(on)))
        if code != SUCCESS_CODE:
            return code
        if on:
            self.arm.set_mode(0)
            self.arm.set_state(0)
        self._motor_on = bool(on)
        return SUCCESS_CODE

    def get_motor_state(self, handle):
        return 1 if self._motor_on else 0

    def get_connection_level(self, handle):
        return 1 if self.arm is not None and self.arm.connected else 0

    def get_motion_state(self, handle):
        code, state = self.arm.get_state()
        code = _normalize(code)
        if code != SUCCESS_CODE:
            return -abs(code)
        if self.arm.error_code:
            return -abs(self.arm.error_code)
        return _XARM_STATE_TO_MOTION_STATE.get(state, -5)

    # Ratios
    def get_ratio(self, handle, kind):
        return self.ratios[kind]

    def set_ratio(self, handle, kind, value):
        self.ratios[kind] = value
        return SUCCESS_CODE

    # Readback
    def read_position(self, handle, position_type):
        if position_type == PositionType.CARTESIAN:
            code, values = self.arm.get_position(is_radian=False)
        else:
            code, values = self.arm.get_servo_angle(is_radian=False)
        values = list(values or [])[:6]
        values += [0.0] * (6 - len(values))
        return _normalize(code), values

    # Motion
    def _set_position(self, target, smooth_type=SmoothType.DISABLE, smooth_value=0.0, relative=False,
                      motion_type=0):
        radius = smooth_value if smooth_type == SmoothType.BEZIER_RADIUS else None
        code = self.arm.set_position(*target, radius=radius,
                                     speed=self._scaled(self.tcp_speed, RatioKind.SPEED),
                                     mvacc=self._scaled(self.tcp_acc, RatioKind.ACCELERATION),
                                     relative=relative, wait=False, motion_type=motion_type)
        return _motion_code(code)

    def _set_servo_angle(self, target, relative=False):
        code = self.arm.set_servo_angle(angle=list(target),
                                        speed=self._scaled(self.angle_speed, RatioKind.SPEED),
                                        mvacc=self._scaled(self.angle_acc, RatioKind.ACCELERATION),
                                        relative=relative, wait=False)
        return _motion_code(code)

    def lin_pos(self, handle, smooth_type, smooth_value, target):
        return self._set_position(target, smooth_type, smooth_value)

    def lin_axis(self, handle, smooth_type, smooth_value, target):
        code, pose = self.arm.get_forward_kinematics(list(target), input_is_radian=False, return_is_radian=False)
        code = _normalize(code)
        if code != SUCCESS_CODE:
            return -abs(code)
        return self._set_position(pose, smooth_type, smooth_value)

    def lin_rel_pos(self, handle, smooth_type, smooth_value, target):
        return self._set_position(target, smooth_type, smooth_value, relative=True)

    # The point-to-point mode has no xArm counterpart; moves always stop at the target.
    def ptp_pos(self, handle, mode, target):
        return self._set_position(target, motion_type=2)

    def ptp_axis(self, handle, mode, target):
        return self._set_servo_angle(target)

    def ptp_rel_pos(self, handle, mode, target):
        return self._set_position(target, relative=True, motion_type=2)

    def ptp_rel_axis(self, handle, mode, target):
        return self._set_servo_angle(target, relative=True)
