"""Control layer for HIWIN robotic arms (and xArm, through the same interface)."""

from .arm_controller import ArmController, create_gateway
from .arm_utils import (
    ArmSettings, ConnectionState, CoordinateType, MotionKind, PositionType, PositionVector,
    RatioKind, SmoothingSpec, SmoothType, load_settings,
)
from .completion import CompletionWaiter
from .connection import ConnectionManager
from .exceptions import (
    ArmConnectionError, ArmError, ArmNotReadyError, GatewayError, MotionCancelledError,
    MotionTimeoutError, ValidationError,
)
from .gateway import ControllerGateway, SimulationGateway
from .motion import MotionDispatcher
from .notifier import LoggingNotifier, Severity, configure_logging
from .parameters import ParameterGuard

__version__ = '0.1.0'
