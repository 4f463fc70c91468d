"""
Pytest configuration and fixtures for hiwin_arm tests.
"""

import pytest
import sys
import os
from unittest.mock import Mock

# Add src to path to allow imports without installing the package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from hiwin_arm.arm_controller import ArmController
from hiwin_arm.arm_utils import ArmSettings
from hiwin_arm.completion import CompletionWaiter
from hiwin_arm.connection import ConnectionManager
from hiwin_arm.gateway import SimulationGateway
from hiwin_arm.motion import MotionDispatcher
from hiwin_arm.parameters import ParameterGuard


@pytest.fixture
def notifier():
    """Mock notifier; inspect notifier.report.call_args_list."""
    return Mock()


@pytest.fixture
def gateway():
    """In-memory controller that hands out session handle 5."""
    return SimulationGateway(handle=5)


@pytest.fixture
def fast_settings():
    """Settings with no settle delays and a short poll interval."""
    return ArmSettings(host='10.0.0.5', backend='simulation', settle_delay=0, poll_interval=0.01)


@pytest.fixture
def session(gateway, notifier):
    return ConnectionManager(gateway, '10.0.0.5', notifier=notifier, settle_delay=0)


@pytest.fixture
def ready_session(session):
    assert session.connect(), "Simulated connect failed. This is a fixture error."
    return session


@pytest.fixture
def guard(ready_session, notifier):
    return ParameterGuard(ready_session, notifier)


@pytest.fixture
def waiter(ready_session, notifier):
    return CompletionWaiter(ready_session, notifier, poll_interval=0.01)


@pytest.fixture
def dispatcher(ready_session, waiter, notifier):
    return MotionDispatcher(ready_session, waiter, notifier)


@pytest.fixture
def controller(gateway, notifier, fast_settings):
    """Controller wired to the simulation gateway, not yet connected."""
    return ArmController(settings=fast_settings, gateway=gateway, notifier=notifier)


@pytest.fixture
def connected_controller(controller):
    assert controller.connect(), "Simulated connect failed. This is a fixture error."
    return controller


@pytest.fixture
def test_config_path(tmp_path):
    """Create a temporary arm configuration file with two profiles."""
    import yaml

    config = {
        'default_profile': 'bench',
        'profiles': {
            'bench': {
                'host': '192.168.0.10',
                'backend': 'simulation',
                'settle_delay': 0,
                'poll_interval': 0.01,
                'speed': 40,
                'acceleration': 60,
            },
            'cell_2': {
                'host': '192.168.0.20',
                'backend': 'simulation',
                'settle_delay': 0,
                'relative_mode': 'convert',
                'cartesian_home': [10, 20, 30, 180, 0, 90],
            },
        },
    }
    config_file = tmp_path / "arm_config.yaml"
    with open(config_file, 'w') as f:
        yaml.dump(config, f)
    return str(config_file)


def reports(notifier, severity=None):
    """Texts passed to a mock notifier, optionally filtered by severity."""
    texts = []
    for call in notifier.report.call_args_list:
        text, call_severity = call.args
        if severity is None or call_severity == severity:
            texts.append(text)
    return texts
