"""
HIWIN HRSDK binding.

Loads the vendor's shared library with ctypes and exposes it as a
ControllerGateway. The controller talks back through a C callback, which
the library keeps calling for the lifetime of the session.
"""

import ctypes
import ctypes.util
import logging
from typing import Dict, Optional

from .arm_utils import PositionType, RatioKind
from .gateway import ALL_RELATIVE_MOTIONS, ControllerGateway, EventCallback

logger = logging.getLogger(__name__)

HRSDK_LIBRARY_NAME = 'HRSDK'

# void callback(uint16 cmd, uint16 rlt, uint16 *msg, int len)
CALLBACK_TYPE = ctypes.CFUNCTYPE(None, ctypes.c_uint16, ctypes.c_uint16,
                                 ctypes.POINTER(ctypes.c_uint16), ctypes.c_int)

# Native callbacks must outlive the call that registered them, otherwise the
# library calls into freed memory. Keyed by session handle.
_live_callbacks: Dict[int, object] = {}

_Position = ctypes.c_double * 6


def load_hrsdk_library(library_path: Optional[str] = None):
    """Load the HRSDK shared library from ``library_path`` or the system search path."""
    path = library_path or ctypes.util.find_library(HRSDK_LIBRARY_NAME)
    if not path:
        raise OSError(f"{HRSDK_LIBRARY_NAME} library not found; set library_path in the arm configuration")
    logger.info(f"Loading {path}")
    return ctypes.CDLL(path)


def decode_event_message(message, length: int) -> str:
    """Controller event text arrives as an array of UTF-16 code units."""
    if not message or length <= 0:
        return ''
    return ''.join(chr(message[i]) for i in range(length)).rstrip('\x00')


class HRSDKGateway(ControllerGateway):
    """ControllerGateway over HIWIN's HRSDK library."""

    reports_motion_state = True
    relative_motions = ALL_RELATIVE_MOTIONS

    def __init__(self, library_path: Optional[str] = None, library=None):
        self.lib = library if library is not None else load_hrsdk_library(library_path)

    # Session
    def open_connection(self, address, mode, callback: EventCallback):
        def _thunk(command_code, result_code, message, length):
            try:
                callback(command_code, result_code, decode_event_message(message, length))
            except Exception as e:
                # Exceptions must not unwind into the library's thread.
                logger.error(f"Controller event handler failed: {e}")

        native_callback = CALLBACK_TYPE(_thunk)
        handle = self.lib.open_connection(address.encode('ascii'), mode, native_callback)
        if handle >= 0:
            _live_callbacks[handle] = native_callback
        return handle

    def disconnect(self, handle):
        self.lib.disconnect(handle)
        _live_callbacks.pop(handle, None)

    def clear_alarm(self, handle):
        return self.lib.clear_alarm(handle)

    def set_motor_state(self, handle, on):
        return self.lib.set_motor_state(handle, 1 if on else 0)

    def get_motor_state(self, handle):
        return self.lib.get_motor_state(handle)

    def get_connection_level(self, handle):
        return self.lib.get_connection_level(handle)

    def get_motion_state(self, handle):
        return self.lib.get_motion_state(handle)

    # Ratios
    def get_ratio(self, handle, kind):
        if kind == RatioKind.SPEED:
            return self.lib.get_override_ratio(handle)
        return self.lib.get_acc_dec_ratio(handle)

    def set_ratio(self, handle, kind, value):
        if kind == RatioKind.SPEED:
            return self.lib.set_override_ratio(handle, value)
        return self.lib.set_acc_dec_ratio(handle, value)

    # Readback
    def read_position(self, handle, position_type):
        buffer = _Position()
        if position_type == PositionType.CARTESIAN:
            code = self.lib.get_current_position(handle, buffer)
        else:
            code = self.lib.get_current_joint(handle, buffer)
        return code, list(buffer)

    # Motion
    def lin_pos(self, handle, smooth_type, smooth_value, target):
        return self.lib.lin_pos(handle, smooth_type, ctypes.c_double(smooth_value), _Position(*target))

    def lin_axis(self, handle, smooth_type, smooth_value, target):
        return self.lib.lin_axis(handle, smooth_type, ctypes.c_double(smooth_value), _Position(*target))

    def lin_rel_pos(self, handle, smooth_type, smooth_value, target):
        return self.lib.lin_rel_pos(handle, smooth_type, ctypes.c_double(smooth_value), _Position(*target))

    def lin_rel_axis(self, handle, smooth_type, smooth_value, target):
        return self.lib.lin_rel_axis(handle, smooth_type, ctypes.c_double(smooth_value), _Position(*target))

    def ptp_pos(self, handle, mode, target):
        return self.lib.ptp_pos(handle, mode, _Position(*target))

    def ptp_axis(self, handle, mode, target):
        return self.lib.ptp_axis(handle, mode, _Position(*target))

    def ptp_rel_pos(self, handle, mode, target):
        return self.lib.ptp_rel_pos(handle, mode, _Position(*target))

    def ptp_rel_axis(self, handle, mode, target):
        return self.lib.ptp_rel_axis(handle, mode, _Position(*target))
