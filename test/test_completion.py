"""
Tests for the completion waiter and the polling helper.
"""

import threading
import time

import pytest

from conftest import reports
from hiwin_arm.arm_utils import PositionType, PositionVector
from hiwin_arm.completion import CompletionWaiter, poll_until
from hiwin_arm.connection import ConnectionManager
from hiwin_arm.exceptions import GatewayError, MotionCancelledError, MotionTimeoutError, ValidationError
from hiwin_arm.gateway import SimulationGateway
from hiwin_arm.notifier import Severity

HOME = PositionVector([0, 368, 294, 180, 0, 90])


@pytest.fixture
def readback_gateway():
    return SimulationGateway(handle=5, reports_motion_state=False)


@pytest.fixture
def readback_waiter(readback_gateway, notifier):
    session = ConnectionManager(readback_gateway, '10.0.0.5', notifier=notifier, settle_delay=0)
    session.connect()
    return CompletionWaiter(session, notifier, poll_interval=0.01)


class TestPollUntil:
    """Test the polling primitive."""

    def test_counts_samples(self):
        answers = iter([False, False, True])
        assert poll_until(lambda: next(answers), interval=0.001) == 3

    def test_timeout(self):
        with pytest.raises(MotionTimeoutError):
            poll_until(lambda: False, interval=0.01, timeout=0.05)

    def test_timeout_is_honoured_within_one_interval(self):
        start = time.monotonic()
        with pytest.raises(MotionTimeoutError):
            poll_until(lambda: False, interval=0.2, timeout=2.0)
        elapsed = time.monotonic() - start
        assert 2.0 <= elapsed <= 2.2

    def test_cancel_interrupts_sleep(self):
        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        start = time.monotonic()
        with pytest.raises(MotionCancelledError):
            poll_until(lambda: False, interval=5.0, cancel_event=cancel)
        assert time.monotonic() - start < 1.0

    def test_already_cancelled(self):
        cancel = threading.Event()
        cancel.set()
        calls = []
        with pytest.raises(MotionCancelledError):
            poll_until(lambda: calls.append(1), cancel_event=cancel)
        assert calls == []


class TestMotionStateMode:
    """Test waiting on the controller's motion-state flag."""

    def test_auto_selects_motion_state(self, waiter):
        assert waiter.mode == 'motion_state'
        assert not waiter.uses_readback

    def test_waits_until_idle(self, waiter, gateway):
        gateway.motion_states.extend([2, 2, 3, 1])
        assert waiter.wait(HOME, PositionType.CARTESIAN) == 4
        assert gateway.calls_to('get_motion_state') == [(5,)] * 4

    def test_timeout_reports_error(self, waiter, gateway, notifier):
        gateway.motion_states.append(2)
        with pytest.raises(MotionTimeoutError):
            waiter.wait(HOME, PositionType.CARTESIAN, timeout=0.05)
        assert reports(notifier, Severity.ERROR)

    def test_default_timeout(self, ready_session, gateway, notifier):
        waiter = CompletionWaiter(ready_session, notifier, poll_interval=0.01, default_timeout=0.05)
        gateway.motion_states.append(2)
        with pytest.raises(MotionTimeoutError):
            waiter.wait(HOME, PositionType.CARTESIAN)

    def test_negative_state_raises(self, waiter, gateway):
        gateway.motion_states.append(-2)
        with pytest.raises(GatewayError) as exc_info:
            waiter.wait(HOME, PositionType.CARTESIAN)
        assert exc_info.value.code == -2

    def test_cancel_reports_info(self, waiter, gateway, notifier):
        gateway.motion_states.append(2)
        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()
        with pytest.raises(MotionCancelledError):
            waiter.wait(HOME, PositionType.CARTESIAN, timeout=5, cancel_event=cancel)
        assert any("cancelled" in text for text in reports(notifier, Severity.INFO))


class TestReadbackMode:
    """Test waiting by comparing position readback."""

    def test_auto_selects_readback(self, readback_waiter):
        assert readback_waiter.uses_readback

    def test_forcing_motion_state_without_support(self, readback_waiter, notifier):
        with pytest.raises(ValidationError):
            CompletionWaiter(readback_waiter.session, notifier, mode='motion_state')

    def test_unknown_mode(self, ready_session):
        with pytest.raises(ValidationError):
            CompletionWaiter(ready_session, mode='guess')

    def test_waits_until_within_tolerance(self, readback_waiter, readback_gateway):
        readback_gateway.readbacks[PositionType.CARTESIAN].extend([
            [0, 300, 294, 180, 0, 90],
            [0, 367.5, 294, 180, 0, 90],
            [0, 368.005, 294, -180, 0, 90],
        ])
        assert readback_waiter.wait(HOME, PositionType.CARTESIAN) == 3

    def test_joint_angles_compared_with_sign(self, readback_waiter, readback_gateway):
        target = PositionVector([10, 0, 0, 0, 0, 0])
        readback_gateway.readbacks[PositionType.JOINT].append([-10, 0, 0, 0, 0, 0])
        with pytest.raises(MotionTimeoutError):
            readback_waiter.wait(target, PositionType.JOINT, timeout=0.05)

    def test_non_converging_readback_times_out_on_budget(self, readback_waiter, readback_gateway):
        waiter = CompletionWaiter(readback_waiter.session, poll_interval=0.2)
        readback_gateway.readbacks[PositionType.CARTESIAN].append([0, 300, 294, 180, 0, 90])
        start = time.monotonic()
        with pytest.raises(MotionTimeoutError):
            waiter.wait(HOME, PositionType.CARTESIAN, timeout=2.0)
        assert 2.0 <= time.monotonic() - start <= 2.2

    def test_failed_readback_keeps_polling(self, readback_waiter, readback_gateway):
        readback_gateway.return_codes['read_position'] = 5
        with pytest.raises(MotionTimeoutError):
            readback_waiter.wait(HOME, PositionType.CARTESIAN, timeout=0.05)

    def test_forced_readback_on_motion_state_gateway(self, ready_session, gateway):
        waiter = CompletionWaiter(ready_session, poll_interval=0.01, mode='readback')
        assert waiter.wait(HOME, PositionType.CARTESIAN) == 1
        assert gateway.calls_to('get_motion_state') == []
