"""
Arm Utility Functions

This module contains the value types, controller code tables and
configuration helpers shared by the connection manager, the parameter
guard, the motion dispatcher and the completion waiter. Nothing in here
talks to the controller.
"""

import logging
import math
import os
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict, FrozenSet, Iterable, List, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMERANTS
# =============================================================================

# Alternate spellings accepted by parse(); "descartes" is the controller
# vendor's name for the Cartesian frame.
_ENUM_ALIASES = {
    'DESCARTES': 'CARTESIAN',
    'PTP': 'POINT_TO_POINT',
    'LIN': 'LINEAR',
}


class _ParsableEnum(Enum):
    """Enum that converts names to members and rejects everything else."""

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace('-', '_').replace(' ', '_')
            key = _ENUM_ALIASES.get(key, key)
            if key in cls.__members__:
                return cls[key]
        expected = ', '.join(member.name for member in cls)
        raise ValidationError(f"Unknown {cls.__name__} {value!r}. Expected one of: {expected}")


class PositionType(_ParsableEnum):
    """Meaning of the six components of a position."""
    CARTESIAN = "cartesian"
    JOINT = "joint"


class CoordinateType(_ParsableEnum):
    """Whether a target is absolute or an offset from the current position."""
    ABSOLUTE = "absolute"
    RELATIVE = "relative"


class MotionKind(_ParsableEnum):
    """Path shape requested from the controller."""
    LINEAR = "linear"
    POINT_TO_POINT = "point_to_point"


class ConnectionState(Enum):
    """States of the controller session."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    FAULTED = "faulted"


class RatioKind(Enum):
    """Global override ratios kept by the controller."""
    SPEED = "speed"
    ACCELERATION = "acceleration"


class SmoothType(IntEnum):
    """Controller-side blending modes. Values are the controller's codes."""
    DISABLE = 0
    BEZIER_PERCENT = 1
    BEZIER_RADIUS = 2
    TWO_LINES_SPEED = 3


class ConnectFailure(Enum):
    """Causes behind a negative session handle."""
    CONNECT_FAILED = "connect failed"
    CALLBACK_FAILED = "callback channel creation failed"
    UNREACHABLE = "device unreachable"
    VERSION_MISMATCH = "protocol/version mismatch"
    UNKNOWN = "unknown error"


# =============================================================================
# CONTROLLER CODES
# =============================================================================

SUCCESS_CODE = 0
NO_ALARM_CODE = 300             # clear_alarm: there was nothing to clear
ACC_RATIO_PSEUDO_ERROR_CODE = 4000  # set_acc_dec_ratio always answers with this
MOTION_STATE_IDLE = 1
RATIO_READ_FAILED = -1
RATIO_LIMITS = (1, 100)
MIN_SESSION_HANDLE = 0
MAX_SESSION_HANDLE = 65535
UPDATE_EVENT_COMMAND = 4011     # controller software update finished

CONNECT_FAILURE_CODES = {
    -1: ConnectFailure.CONNECT_FAILED,
    -2: ConnectFailure.CALLBACK_FAILED,
    -3: ConnectFailure.UNREACHABLE,
    -4: ConnectFailure.VERSION_MISMATCH,
}


@dataclass(frozen=True)
class CodePolicy:
    """Return codes an operation treats as success."""
    accepted: FrozenSet[int] = frozenset({SUCCESS_CODE})
    accept_non_negative: bool = False

    def accepts(self, code: Optional[int]) -> bool:
        if code is None:
            return False
        if self.accept_non_negative and code >= 0:
            return True
        return code in self.accepted


# One entry per controller operation. Point-to-point moves report a queue
# index on success, so any non-negative code counts as accepted there.
ACCEPTED_CODES: Dict[str, CodePolicy] = {
    'set_speed': CodePolicy(frozenset({SUCCESS_CODE})),
    'set_acceleration': CodePolicy(frozenset({SUCCESS_CODE, ACC_RATIO_PSEUDO_ERROR_CODE})),
    'clear_alarm': CodePolicy(frozenset({SUCCESS_CODE, NO_ALARM_CODE})),
    'set_motor_state': CodePolicy(frozenset({SUCCESS_CODE})),
    'linear': CodePolicy(frozenset({SUCCESS_CODE})),
    'point_to_point': CodePolicy(accept_non_negative=True),
    'read_position': CodePolicy(frozenset({SUCCESS_CODE})),
}


def is_accepted_code(operation: str, code: Optional[int]) -> bool:
    """
    Check a controller return code against the operation's accepted set.

    Args:
        operation: Key into ACCEPTED_CODES
        code: Code returned by the gateway

    Returns:
        True if the code means success for that operation
    """
    return ACCEPTED_CODES[operation].accepts(code)


def is_valid_session_handle(handle: Optional[int]) -> bool:
    """Session handles are only valid in [0, 65535]."""
    return handle is not None and MIN_SESSION_HANDLE <= handle <= MAX_SESSION_HANDLE


def classify_connect_failure(handle: Optional[int]) -> ConnectFailure:
    """Map a failed open_connection result to its cause."""
    return CONNECT_FAILURE_CODES.get(handle, ConnectFailure.UNKNOWN)


# =============================================================================
# POSITIONS
# =============================================================================

DEFAULT_TOLERANCE = 0.01
DEFAULT_CARTESIAN_HOME = (0.0, 368.0, 294.0, 180.0, 0.0, 90.0)
DEFAULT_JOINT_HOME = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


class PositionVector(tuple):
    """
    Immutable six-component position.

    For Cartesian positions the components are (x, y, z, a, b, c) in the
    controller's length and angle units; for joint positions they are the
    six joint angles. Equality with ``==`` is exact; use ``is_close`` for
    the controller tolerance.
    """
    __slots__ = ()
    SIZE = 6

    def __new__(cls, values: Iterable[float]):
        if isinstance(values, PositionVector):
            return values
        if isinstance(values, (str, bytes)):
            raise ValidationError(f"Position must be a sequence of {cls.SIZE} numbers, got {values!r}")
        try:
            items = [float(value) for value in values]
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Position must be a sequence of {cls.SIZE} numbers, got {values!r}") from e

        if len(items) != cls.SIZE:
            raise ValidationError(f"Position must have exactly {cls.SIZE} values, got {len(items)}")
        if not all(math.isfinite(value) for value in items):
            raise ValidationError(f"Position values must be finite, got {items}")
        return super().__new__(cls, items)

    def translated(self, offset: Iterable[float]) -> 'PositionVector':
        """Return this position shifted component-wise by ``offset``."""
        offset = PositionVector(offset)
        return PositionVector(a + b for a, b in zip(self, offset))

    def is_close(self, other: Iterable[float], tolerance: float = DEFAULT_TOLERANCE,
                 compare_angle_magnitudes: bool = False) -> bool:
        """
        Check whether every component is within ``tolerance`` of ``other``.

        Args:
            other: Position to compare against
            tolerance: Strict absolute tolerance per component
            compare_angle_magnitudes: Compare components 3-5 on their absolute
                value, so 180 and -180 orientations match

        Returns:
            True if all six components are within tolerance
        """
        other = PositionVector(other)
        for index, (mine, theirs) in enumerate(zip(self, other)):
            if compare_angle_magnitudes and index >= 3:
                mine, theirs = abs(mine), abs(theirs)
            if not abs(mine - theirs) < tolerance:
                return False
        return True

    def format(self) -> str:
        return ','.join(f'{value:g}' for value in self)

    def __repr__(self):
        return f"PositionVector([{', '.join(repr(value) for value in self)}])"


# =============================================================================
# SMOOTHING
# =============================================================================

@dataclass(frozen=True)
class SmoothingSpec:
    """Blending mode plus its magnitude. The magnitude only matters for linear moves."""
    type: SmoothType = SmoothType.TWO_LINES_SPEED
    value: float = 50.0

    def __post_init__(self):
        try:
            if isinstance(self.type, str):
                smooth_type = SmoothType[self.type.strip().upper()]
            else:
                smooth_type = SmoothType(self.type)
            object.__setattr__(self, 'type', smooth_type)
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Unknown smoothing type {self.type!r}") from e
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise ValidationError(f"Smoothing value must be a number, got {self.value!r}")
        object.__setattr__(self, 'value', float(self.value))

    @classmethod
    def disabled(cls) -> 'SmoothingSpec':
        return cls(SmoothType.DISABLE, 0.0)

    def ptp_mode(self) -> int:
        """Point-to-point moves only know 'blend by speed' (1) or 'stop' (0)."""
        return 1 if self.type == SmoothType.TWO_LINES_SPEED else 0


DEFAULT_SMOOTHING = SmoothingSpec()


# =============================================================================
# VALIDATION UTILITIES
# =============================================================================

def validate_ratio(value: Any, ratio_type: str = "ratio") -> Tuple[bool, Optional[str]]:
    """
    Validate a speed or acceleration ratio.

    Args:
        value: Ratio in percent
        ratio_type: Name used in the error message

    Returns:
        Tuple of (is_valid, error_message)
    """
    min_ratio, max_ratio = RATIO_LIMITS
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"Arm {ratio_type} must be an integer percentage, got {value!r}"
    if not (min_ratio <= value <= max_ratio):
        return False, f"Arm {ratio_type} must be between {min_ratio}% and {max_ratio}%, got {value}"
    return True, None


# =============================================================================
# CONFIGURATION UTILITIES
# =============================================================================

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'settings', 'arm_config.yaml')


class ArmSettings(BaseModel):
    """Validated connection profile for one arm."""
    model_config = ConfigDict(extra='ignore')

    host: str = Field(default='127.0.0.1', description="Controller network address.")
    backend: Literal['hrsdk', 'xarm', 'simulation'] = Field(default='hrsdk', description="Gateway implementation to use.")
    connect_mode: int = Field(default=1, description="Connection mode passed to open_connection.")
    library_path: Optional[str] = Field(default=None, description="Path to the HRSDK shared library.")
    settle_delay: float = Field(default=0.5, ge=0, description="Pause after power/connection transitions, seconds.")
    poll_interval: float = Field(default=0.2, gt=0, description="Completion polling interval, seconds.")
    wait_timeout: Optional[float] = Field(default=None, gt=0, description="Completion wait budget, seconds. None waits forever.")
    position_tolerance: float = Field(default=DEFAULT_TOLERANCE, gt=0, description="Readback tolerance in native units.")
    relative_mode: Literal['auto', 'native', 'convert'] = Field(default='auto', description="How relative targets are resolved.")
    completion_mode: Literal['auto', 'motion_state', 'readback'] = Field(default='auto', description="Completion protocol.")
    cartesian_home: List[float] = Field(default_factory=lambda: list(DEFAULT_CARTESIAN_HOME))
    joint_home: List[float] = Field(default_factory=lambda: list(DEFAULT_JOINT_HOME))
    speed: Optional[int] = Field(default=None, ge=1, le=100, description="Speed ratio applied after connecting.")
    acceleration: Optional[int] = Field(default=None, ge=1, le=100, description="Acceleration ratio applied after connecting.")
    tcp_speed: float = Field(default=100, gt=0, description="Full-ratio TCP speed (xArm backend), mm/s.")
    tcp_acc: float = Field(default=2000, gt=0, description="Full-ratio TCP acceleration (xArm backend), mm/s^2.")
    angle_speed: float = Field(default=20, gt=0, description="Full-ratio joint speed (xArm backend), deg/s.")
    angle_acc: float = Field(default=500, gt=0, description="Full-ratio joint acceleration (xArm backend), deg/s^2.")

    @field_validator('cartesian_home', 'joint_home')
    @classmethod
    def _six_components(cls, value: List[float]) -> List[float]:
        if len(value) != PositionVector.SIZE:
            raise ValueError(f"home position needs exactly {PositionVector.SIZE} values")
        return value


def load_config(file_path: str) -> Dict[str, Any]:
    """
    Load YAML configuration file.

    Args:
        file_path: Path to the YAML configuration file

    Returns:
        Dictionary containing configuration data, empty dict if file not found
    """
    try:
        with open(file_path, 'r') as file:
            return yaml.safe_load(file) or {}
    except FileNotFoundError:
        logger.warning(f"Config file {file_path} not found, using defaults")
        return {}
    except yaml.YAMLError as e:
        logger.error(f"Error loading config {file_path}: {e}")
        return {}


def load_settings(profile_name: Optional[str] = None, config_path: Optional[str] = None,
                  overrides: Optional[Dict[str, Any]] = None) -> ArmSettings:
    """
    Resolve a connection profile into validated settings.

    Profile priority: the explicit ``profile_name``, then the file's
    ``default_profile``. Missing files and profiles fall back to defaults.

    Args:
        profile_name: Name of the profile under ``profiles``
        config_path: YAML file to read, defaults to the packaged settings
        overrides: Values that take priority over the profile

    Returns:
        The validated ArmSettings
    """
    full_config = load_config(config_path or DEFAULT_CONFIG_PATH)

    profile_to_use = profile_name or full_config.get('default_profile')
    profile: Dict[str, Any] = {}
    if profile_to_use:
        profile = dict(full_config.get('profiles', {}).get(profile_to_use) or {})
        if not profile:
            logger.warning(f"Profile '{profile_to_use}' not found. Using default settings.")
    else:
        logger.warning("No profile specified and no default_profile found. Using default settings.")

    profile.update({key: value for key, value in (overrides or {}).items() if value is not None})

    try:
        return ArmSettings(**profile)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid arm settings for profile '{profile_to_use}': {e}") from e
