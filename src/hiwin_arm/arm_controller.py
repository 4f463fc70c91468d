import logging
import threading
import time
from typing import Any, Dict, Optional

from .arm_utils import (
    DEFAULT_SMOOTHING, ArmSettings, ConnectionState, CoordinateType, PositionType, PositionVector,
    SmoothingSpec, load_settings,
)
from .completion import CompletionWaiter
from .connection import ConnectionManager
from .gateway import ControllerGateway, SimulationGateway
from .motion import MotionDispatcher
from .exceptions import ValidationError
from .notifier import LoggingNotifier, Severity, notify
from .parameters import ParameterGuard

logger = logging.getLogger(__name__)


def create_gateway(settings: ArmSettings) -> ControllerGateway:
    """Build the gateway named by ``settings.backend``."""
    if settings.backend == 'simulation':
        return SimulationGateway()
    if settings.backend == 'xarm':
        from .xarm_gateway import XArmGateway
        return XArmGateway(tcp_speed=settings.tcp_speed, tcp_acc=settings.tcp_acc,
                           angle_speed=settings.angle_speed, angle_acc=settings.angle_acc)
    from .hrsdk_gateway import HRSDKGateway
    return HRSDKGateway(library_path=settings.library_path)


class ArmController:
    """
    Control layer for one robotic arm.

    Wires the session, ratio, motion and completion components around a
    single controller gateway. Every command blocks the calling thread.
    """

    def __init__(self, host: Optional[str] = None, profile_name: Optional[str] = None,
                 config_path: Optional[str] = None, gateway: Optional[ControllerGateway] = None,
                 notifier=None, simulation_mode: bool = False, settings: Optional[ArmSettings] = None):
        """
        Initialize the arm controller.

        Args:
            host (str, optional): Controller address, overrides the profile's host
            profile_name (str, optional): Profile name from arm_config.yaml
            config_path (str, optional): Alternative configuration file
            gateway (ControllerGateway, optional): Gateway to use instead of the configured backend
            notifier (optional): Receives operator messages, defaults to logging
            simulation_mode (bool): Use the in-memory controller (no hardware required)
            settings (ArmSettings, optional): Pre-built settings, skips the configuration file
        """
        overrides = {'host': host}
        if simulation_mode:
            overrides['backend'] = 'simulation'
        if settings is None:
            settings = load_settings(profile_name, config_path, overrides)
        else:
            settings = settings.model_copy(update={k: v for k, v in overrides.items() if v is not None})

        self.settings = settings
        self.profile_name = profile_name
        self.simulation_mode = settings.backend == 'simulation'
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.gateway = gateway if gateway is not None else create_gateway(settings)

        self.session = ConnectionManager(self.gateway, settings.host, settings.connect_mode,
                                         self.notifier, settings.settle_delay)
        self.parameters = ParameterGuard(self.session, self.notifier)
        self.waiter = CompletionWaiter(self.session, self.notifier, settings.poll_interval,
                                       settings.position_tolerance, settings.completion_mode,
                                       settings.wait_timeout)
        self.motion = MotionDispatcher(self.session, self.waiter, self.notifier, settings.relative_mode,
                                       settings.cartesian_home, settings.joint_home)

        logger.info(f"Arm controller ready for {settings.host} ({type(self.gateway).__name__})")

    # =============================================================================
    # CONNECTION
    # =============================================================================

    def connect(self) -> bool:
        """Open the session and apply the configured speed and acceleration ratios."""
        if not self.session.connect():
            return False
        if self.settings.speed is not None:
            self.parameters.set_speed(self.settings.speed)
        if self.settings.acceleration is not None:
            self.parameters.set_acceleration(self.settings.acceleration)
        return True

    def disconnect(self) -> bool:
        return self.session.disconnect()

    def clear_alarm(self) -> bool:
        return self.session.clear_alarm()

    @property
    def state(self) -> ConnectionState:
        return self.session.state

    @property
    def id(self) -> Optional[int]:
        return self.session.id

    @property
    def connected(self) -> bool:
        return self.session.connected

    @property
    def last_error(self):
        return self.session.last_error

    # =============================================================================
    # SPEED AND ACCELERATION
    # =============================================================================

    @property
    def speed(self) -> int:
        return self.parameters.get_speed()

    @speed.setter
    def speed(self, value: int):
        self.parameters.set_speed(value)

    @property
    def acceleration(self) -> int:
        return self.parameters.get_acceleration()

    @acceleration.setter
    def acceleration(self, value: int):
        self.parameters.set_acceleration(value)

    def set_speed(self, value: int) -> bool:
        return self.parameters.set_speed(value)

    def get_speed(self) -> int:
        return self.parameters.get_speed()

    def set_acceleration(self, value: int) -> bool:
        return self.parameters.set_acceleration(value)

    def get_acceleration(self) -> int:
        return self.parameters.get_acceleration()

    # =============================================================================
    # MOTION
    # =============================================================================

    def home(self, position_type=PositionType.CARTESIAN, wait: bool = True, timeout: Optional[float] = None,
             cancel_event: Optional[threading.Event] = None) -> bool:
        return self.motion.home(position_type, wait, timeout, cancel_event)

    def move_linear(self, target, position_type=PositionType.CARTESIAN, coordinate_type=CoordinateType.ABSOLUTE,
                    smoothing: SmoothingSpec = DEFAULT_SMOOTHING, wait: bool = True,
                    timeout: Optional[float] = None, cancel_event: Optional[threading.Event] = None) -> bool:
        return self.motion.move_linear(target, position_type, coordinate_type, smoothing,
                                       wait, timeout, cancel_event)

    def move_point_to_point(self, target, position_type=PositionType.CARTESIAN,
                            coordinate_type=CoordinateType.ABSOLUTE, smoothing: SmoothingSpec = DEFAULT_SMOOTHING,
                            wait: bool = True, timeout: Optional[float] = None,
                            cancel_event: Optional[threading.Event] = None) -> bool:
        return self.motion.move_point_to_point(target, position_type, coordinate_type, smoothing,
                                               wait, timeout, cancel_event)

    def wait_for_motion(self, target, position_type=PositionType.CARTESIAN, timeout: Optional[float] = None,
                        cancel_event: Optional[threading.Event] = None) -> int:
        """Wait for a move started with ``wait=False``. ``target`` must be absolute."""
        try:
            position_type = PositionType.parse(position_type)
            target = PositionVector(target)
        except ValidationError as e:
            notify(self.notifier, str(e), Severity.WARNING)
            raise
        self.session.require_ready("wait for motion")
        return self.waiter.wait(target, position_type, timeout, cancel_event)

    def get_position(self, position_type=PositionType.CARTESIAN) -> PositionVector:
        return self.motion.read_position(position_type)

    # =============================================================================
    # STATUS
    # =============================================================================

    def get_system_status(self) -> Dict[str, Any]:
        """Snapshot of the session for display. Positions are None unless connected."""
        position = joints = None
        if self.connected:
            position = list(self.get_position(PositionType.CARTESIAN))
            joints = list(self.get_position(PositionType.JOINT))

        return {
            'timestamp': time.time(),
            'connection': {
                'host': self.settings.host,
                'backend': type(self.gateway).__name__,
                'state': self.state.value,
                'id': self.id,
                'last_error': str(self.last_error) if self.last_error else None,
            },
            'arm': {
                'position': position,
                'joints': joints,
                'completion_mode': self.waiter.mode,
                'relative_mode': self.motion.relative_mode,
            },
            'events': list(self.session.event_history)[-10:],
        }

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.disconnect()
        return False
