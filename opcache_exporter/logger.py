"""
Opcache Exporter - Logger Module

Console logging for the exporter: one line per event, component-prefixed.
"""

import sys
from datetime import datetime
from typing import Optional, TextIO

from .errors import cause_chain


class Logger:
    """Component-prefixed console logger

    Lines look like `[2024-01-05 10:00:00] [FastCGI] WARN: message`.
    Debug lines are dropped unless debug mode is enabled.
    """

    def __init__(self, debug: bool = False, component: str = "Exporter",
                 stream: Optional[TextIO] = None):
        """Initialize logger

        Args:
            debug: Enable debug logging
            component: Component name for log prefix
            stream: Output stream (defaults to stdout at write time)
        """
        self.debug_enabled = debug
        self.component = component
        self.stream = stream

    def _log(self, level: str, message: str, always: bool = False) -> None:
        if not always and not self.debug_enabled and level == "DEBUG":
            return

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        print(f"[{timestamp}] [{self.component}] {level}: {message}",
              file=self.stream or sys.stdout, flush=True)

    def debug(self, message: str) -> None:
        """Debug message (only if debug enabled)"""
        self._log("DEBUG", message)

    def info(self, message: str, always: bool = False) -> None:
        """Info message

        Args:
            message: Log message
            always: If True, log even when debug is disabled
        """
        self._log("INFO", message, always)

    def warn(self, message: str) -> None:
        """Warning message (always logged)"""
        self._log("WARN", message, always=True)

    def error(self, message: str) -> None:
        """Error message (always logged)"""
        self._log("ERROR", message, always=True)

    def failure(self, message: str, error: BaseException, level: str = "WARN") -> None:
        """Log an exception followed by one `Caused by:` line per chained cause

        Args:
            message: Leading message
            error: Exception to describe
            level: WARN or ERROR
        """
        describe = getattr(error, 'describe', None)
        detail = describe() if describe else f"{type(error).__name__}: {error}"
        self._log(level, f"{message}: {detail}", always=True)
        for cause in cause_chain(error):
            self._log(level, f"  Caused by: {cause}", always=True)

    def create_child(self, component: str) -> 'Logger':
        """Create child logger sharing debug setting and stream

        Args:
            component: Component name for child logger
        """
        return Logger(self.debug_enabled, component, self.stream)


def setup_logger(debug: bool = False, component: str = "Exporter") -> Logger:
    """Setup and return root logger"""
    return Logger(debug=debug, component=component)
