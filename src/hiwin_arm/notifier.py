"""
Operator notification sink.

The control layer reports every validation failure, dispatch failure and
unexpected controller code through a notifier. The default implementation
forwards to the standard logging module; applications with an operator UI
provide their own object with a ``report(text, severity)`` method.
"""

import logging
from enum import Enum

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger(__name__)


class Severity(Enum):
    """Severity levels understood by notifiers."""
    TRACE = TRACE
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR


class LoggingNotifier:
    """Notifier that writes operator messages to a logger."""

    def __init__(self, logger_name: str = 'hiwin_arm.operator'):
        self.logger = logging.getLogger(logger_name)

    def report(self, text: str, severity: Severity = Severity.INFO):
        self.logger.log(severity.value, text)


def notify(notifier, text: str, severity: Severity):
    """
    Deliver a message to a notifier without depending on it.

    The notifier's return value is ignored, and a notifier that raises is
    logged rather than allowed to interrupt the control flow.
    """
    if notifier is None:
        return
    try:
        notifier.report(text, severity)
    except Exception as e:
        logger.error(f"Notifier failed while reporting '{text}': {e}")


def configure_logging(level: int = logging.INFO):
    """Configure root logging with timestamps and logger names, for scripts driving the arm."""
    logging.basicConfig(level=level, format='[%(asctime)s][%(name)s] %(levelname)s: %(message)s')
