"""
Tests for MotionDispatcher: primitive selection, relative targets and failures.
"""

from unittest.mock import Mock

import pytest

from conftest import reports
from hiwin_arm.arm_utils import (
    ConnectionState, CoordinateType, MotionKind, PositionType, PositionVector, SmoothingSpec, SmoothType,
)
from hiwin_arm.completion import CompletionWaiter
from hiwin_arm.connection import ConnectionManager
from hiwin_arm.exceptions import ArmNotReadyError, GatewayError, ValidationError
from hiwin_arm.gateway import ControllerGateway, SimulationGateway
from hiwin_arm.motion import DISPATCH_TABLE, MotionDispatcher
from hiwin_arm.notifier import Severity

TARGET = [100, 200, 300, 180, 0, 90]
OFFSET = [10, 20, 30, 0, 0, 0]


def build_dispatcher(gateway, notifier, relative_mode='auto', completion_mode='auto'):
    session = ConnectionManager(gateway, '10.0.0.5', notifier=notifier, settle_delay=0)
    session.connect()
    waiter = CompletionWaiter(session, notifier, poll_interval=0.01, mode=completion_mode)
    return MotionDispatcher(session, waiter, notifier, relative_mode=relative_mode)


def motion_calls(gateway):
    return [(name, args) for name, args in gateway.calls if name in DISPATCH_TABLE.values()]


class TestDispatchTable:
    """Every combination maps to exactly one primitive."""

    def test_table_is_complete(self):
        assert len(DISPATCH_TABLE) == 8
        assert len(set(DISPATCH_TABLE.values())) == 8

    @pytest.mark.parametrize("key,primitive", sorted(DISPATCH_TABLE.items(), key=lambda item: item[1]))
    def test_each_combination_issues_one_primitive(self, dispatcher, gateway, key, primitive):
        motion, position_type, coordinate_type = key
        dispatcher.move(motion, TARGET, position_type, coordinate_type, wait=False)
        assert [name for name, _ in motion_calls(gateway)] == [primitive]


class TestLinearMoves:
    """Test linear dispatch arguments."""

    def test_absolute_cartesian(self, dispatcher, gateway):
        assert dispatcher.move_linear(TARGET) is True
        assert gateway.calls_to('lin_pos') == [(5, int(SmoothType.TWO_LINES_SPEED), 50.0, PositionVector(TARGET))]

    def test_custom_smoothing(self, dispatcher, gateway):
        dispatcher.move_linear(TARGET, 'joint', smoothing=SmoothingSpec(SmoothType.BEZIER_RADIUS, 12))
        assert gateway.calls_to('lin_axis') == [(5, 2, 12.0, PositionVector(TARGET))]

    def test_nonzero_code_raises_and_session_stays_ready(self, dispatcher, gateway, notifier):
        gateway.return_codes['lin_pos'] = 4
        with pytest.raises(GatewayError) as exc_info:
            dispatcher.move_linear(TARGET)
        assert exc_info.value.code == 4
        assert dispatcher.session.state == ConnectionState.READY
        assert any("4" in text for text in reports(notifier, Severity.ERROR))
        assert gateway.calls_to('get_motion_state') == []


class TestPointToPointMoves:
    """Test point-to-point dispatch arguments."""

    def test_blending_mode(self, dispatcher, gateway):
        dispatcher.move_point_to_point(TARGET)
        dispatcher.move_point_to_point(TARGET, smoothing=SmoothingSpec(SmoothType.BEZIER_PERCENT, 80))
        assert [args[1] for args in gateway.calls_to('ptp_pos')] == [1, 0]

    def test_positive_code_is_accepted(self, dispatcher, gateway):
        gateway.return_codes['ptp_axis'] = 3
        assert dispatcher.move_point_to_point(TARGET, PositionType.JOINT) is True

    def test_negative_code_raises(self, dispatcher, gateway):
        gateway.return_codes['ptp_pos'] = -1
        with pytest.raises(GatewayError):
            dispatcher.move_point_to_point(TARGET)


class TestHome:
    """Test homing."""

    def test_home_cartesian(self, dispatcher, gateway):
        assert dispatcher.home() is True
        assert gateway.calls_to('ptp_pos') == [(5, 0, PositionVector([0, 368, 294, 180, 0, 90]))]

    def test_home_joint(self, dispatcher, gateway):
        dispatcher.home('joint')
        assert gateway.calls_to('ptp_axis') == [(5, 0, PositionVector([0] * 6))]

    def test_configured_home(self, ready_session, waiter, gateway):
        dispatcher = MotionDispatcher(ready_session, waiter, cartesian_home=[1, 2, 3, 4, 5, 6])
        dispatcher.home()
        assert gateway.calls_to('ptp_pos')[-1][2] == PositionVector([1, 2, 3, 4, 5, 6])

    def test_home_failure(self, dispatcher, gateway):
        gateway.return_codes['ptp_pos'] = -3
        with pytest.raises(GatewayError):
            dispatcher.home()


class TestRelativeMoves:
    """Test native and converted relative targets."""

    def test_native_relative(self, dispatcher, gateway):
        dispatcher.move_linear(OFFSET, coordinate_type='relative')
        assert gateway.calls_to('lin_rel_pos') == [(5, 3, 50.0, PositionVector(OFFSET))]
        assert gateway.calls_to('read_position') == []

    def test_convert_mode_reads_then_moves_absolute(self, gateway, notifier):
        dispatcher = build_dispatcher(gateway, notifier, relative_mode='convert')
        dispatcher.move_linear(OFFSET, coordinate_type=CoordinateType.RELATIVE)

        names = [name for name, _ in gateway.calls]
        assert names.index('read_position') < names.index('lin_pos')
        assert gateway.calls_to('lin_pos')[0][3] == PositionVector([10, 388, 324, 180, 0, 90])
        assert gateway.calls_to('lin_rel_pos') == []

    def test_auto_converts_without_native_support(self, notifier):
        gateway = SimulationGateway(handle=5, native_relative=False)
        dispatcher = build_dispatcher(gateway, notifier)
        dispatcher.move_point_to_point([5, 0, 0, 0, 0, 0], PositionType.JOINT, CoordinateType.RELATIVE)
        assert gateway.calls_to('ptp_axis')[0][2] == PositionVector([5, 0, 0, 0, 0, 0])

    def test_native_mode_requires_support(self, notifier):
        gateway = SimulationGateway(handle=5, native_relative=False)
        with pytest.raises(ValidationError):
            build_dispatcher(gateway, notifier, relative_mode='native')

    def test_unknown_relative_mode(self, ready_session, waiter):
        with pytest.raises(ValidationError):
            MotionDispatcher(ready_session, waiter, relative_mode='sometimes')

    def test_conversion_read_failure(self, gateway, notifier):
        dispatcher = build_dispatcher(gateway, notifier, relative_mode='convert')
        gateway.return_codes['read_position'] = 2
        with pytest.raises(GatewayError):
            dispatcher.move_linear(OFFSET, coordinate_type='relative')
        assert gateway.calls_to('lin_pos') == []

    def test_native_relative_with_readback_waits_for_absolute_target(self, notifier):
        gateway = SimulationGateway(handle=5, reports_motion_state=False)
        dispatcher = build_dispatcher(gateway, notifier)
        assert dispatcher.move_linear(OFFSET, coordinate_type='relative', timeout=1) is True
        assert gateway.calls_to('lin_rel_pos')[0][3] == PositionVector(OFFSET)
        assert gateway.positions[PositionType.CARTESIAN] == PositionVector([10, 388, 324, 180, 0, 90])


class TestRejectedRequests:
    """Requests rejected before any controller call."""

    def test_unknown_position_type(self, dispatcher, gateway, notifier):
        with pytest.raises(ValidationError):
            dispatcher.move_linear(TARGET, position_type='polar')
        assert motion_calls(gateway) == []
        assert reports(notifier, Severity.WARNING)

    def test_unknown_coordinate_type(self, dispatcher, gateway):
        with pytest.raises(ValidationError):
            dispatcher.move_point_to_point(TARGET, coordinate_type='sideways')
        assert motion_calls(gateway) == []

    def test_bad_target(self, dispatcher, gateway):
        with pytest.raises(ValidationError):
            dispatcher.move_linear([1, 2, 3])
        assert motion_calls(gateway) == []

    def test_not_connected(self, session, notifier):
        waiter = CompletionWaiter(session, notifier, poll_interval=0.01)
        dispatcher = MotionDispatcher(session, waiter, notifier)
        with pytest.raises(ArmNotReadyError):
            dispatcher.move_linear(TARGET)
        with pytest.raises(ArmNotReadyError):
            dispatcher.home()
        assert motion_calls(session.gateway) == []


class TestWaiting:
    """Test how moves hand over to the completion waiter."""

    def test_waits_for_idle(self, dispatcher, gateway):
        gateway.motion_states.extend([2, 2, 1])
        dispatcher.move_linear(TARGET)
        assert len(gateway.calls_to('get_motion_state')) == 3

    def test_no_wait(self, dispatcher, gateway):
        gateway.motion_states.append(2)
        assert dispatcher.move_linear(TARGET, wait=False) is True
        assert gateway.calls_to('get_motion_state') == []


class TestMockGateway:
    """Dispatch against a bare mock of the gateway interface."""

    def test_lin_pos_call(self, notifier):
        gateway = Mock(spec=ControllerGateway)
        gateway.supports_relative.return_value = True
        gateway.reports_motion_state = True
        gateway.open_connection.return_value = 9
        gateway.clear_alarm.return_value = 300
        gateway.set_motor_state.return_value = 0
        gateway.get_motion_state.return_value = 1
        gateway.lin_pos.return_value = 0

        dispatcher = build_dispatcher(gateway, notifier)
        assert dispatcher.move(MotionKind.LINEAR, TARGET)
        gateway.lin_pos.assert_called_once_with(9, 3, 50.0, PositionVector(TARGET))
        gateway.get_motion_state.assert_called_once_with(9)
