"""
Centralized logging for the lmchat package.

Components of the package do not call the `logging` module directly.
They receive an object implementing the `LoggerBase` interface, by
default a `ConsoleLogger` delegating to a standard `logging.Logger`.
This allows the caller to replace the logger, for example with a
`LoglistLogger` that records the messages so that they can be
inspected after a chat turn.

Usage:
    ```python
    from lmchat.utils.logging import get_logger, LoglistLogger
    from lmchat.language_models.tool_loop import ToolCallingLoop

    # the default, a console logger
    logger = get_logger(__name__)

    # collect the messages of the tool loop instead
    logs = LoglistLogger()
    loop = ToolCallingLoop(model, logger=logs)
    ...
    print(logs.get_logs(level=2))  # warnings and errors
    ```
"""

import logging
import sys
from pathlib import Path
from abc import ABC, abstractmethod

LOG_FORMAT = '%(levelname)s - %(name)s - %(message)s'
PACKAGE_LOGGER = "lmchat"


class LoggerBase(ABC):
    """
    Abstract interface for logging functionality.
    """

    @abstractmethod
    def set_level(self, level: int) -> None:
        """Set the logging level for the logger."""
        pass

    @abstractmethod
    def get_level(self) -> int:
        """Get the current logging level"""
        pass

    @abstractmethod
    def debug(self, msg: str) -> None:
        """Log a debug message."""
        pass

    @abstractmethod
    def info(self, msg: str) -> None:
        """Log an informational message."""
        pass

    @abstractmethod
    def error(self, msg: str) -> None:
        """Log an error message."""
        pass

    @abstractmethod
    def warning(self, msg: str) -> None:
        """Log a warning message."""
        pass

    @abstractmethod
    def critical(self, msg: str) -> None:
        """Log a critical message."""
        pass


class ConsoleLogger(LoggerBase):
    """
    A console logger implementation that uses logging.Logger as a
    delegate.
    """

    def __init__(self, name: str | None = None) -> None:
        """
        Initialize the ConsoleLogger with a specific logger name,
        typically __name__ to use the module name
        """
        self.logger = logging.getLogger(name or None)

        # module loggers of the package inherit level and handler
        # from the package logger
        base = self.logger
        if self.logger.name.startswith(PACKAGE_LOGGER + "."):
            base = logging.getLogger(PACKAGE_LOGGER)
        if base.level == logging.NOTSET:
            base.setLevel(logging.INFO)

        # Ensure we have a console handler if none exists
        if not base.hasHandlers():
            handler = logging.StreamHandler(sys.stdout)
            formatter = logging.Formatter(LOG_FORMAT)
            handler.setFormatter(formatter)
            base.addHandler(handler)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    def get_level(self) -> int:
        return self.logger.level

    def debug(self, msg: str) -> None:
        self.logger.debug(msg)

    def info(self, msg: str) -> None:
        self.logger.info(msg)

    def error(self, msg: str) -> None:
        self.logger.error(msg)

    def warning(self, msg: str) -> None:
        self.logger.warning(msg)

    def critical(self, msg: str) -> None:
        self.logger.critical(msg, stack_info=True)


class FileLogger(ConsoleLogger):
    """
    Logs messages to a file, and optionally relays them to the
    console handlers of the logger hierarchy.
    """

    def __init__(
        self,
        name: str = "",
        log_file: str | Path = "lmchat.log",
        *,
        propagate: bool = False,
    ) -> None:
        """
        Args:
            name: The name of the logger, typically __name__
            log_file: Path to the log file where messages will be
                written
            propagate: if True, messages also reach the handlers of
                the parent loggers (i.e. the console)
        """
        self.logger = logging.getLogger(f"{name}_file")
        self.logger.setLevel(logging.INFO)

        # Clear any existing handlers to avoid duplicates
        self.logger.handlers.clear()

        handler = logging.FileHandler(log_file)
        handler.setFormatter(
            logging.Formatter('%(asctime)s - ' + LOG_FORMAT)
        )
        self.logger.addHandler(handler)
        self.logger.propagate = propagate


class LoglistLogger(LoggerBase):
    """
    Maintains a list of logged messages that can be inspected by the
    object creator.
    """

    def __init__(self) -> None:
        self.logs: list[dict[str, str]] = []
        self.level: int = logging.DEBUG

    def set_level(self, level: int) -> None:
        self.level = level

    def get_level(self) -> int:
        return self.level

    def debug(self, msg: str) -> None:
        if self.level <= logging.DEBUG:
            self.logs.append({'debug': msg})

    def info(self, msg: str) -> None:
        if self.level <= logging.INFO:
            self.logs.append({'info': msg})

    def error(self, msg: str) -> None:
        self.logs.append({'error': msg})

    def warning(self, msg: str) -> None:
        if self.level <= logging.WARNING:
            self.logs.append({'warning': msg})

    def critical(self, msg: str) -> None:
        self.logs.append({'critical': msg})

    def get_logs(self, level: int = 0) -> list[str]:
        """
        Returns a list of strings with the log messages.

        Args:
           level: a filter on the logs. Possible values:
                0 or less: returns all messages
                1: omit debug
                2: omit debug and info
                3 or more: only errors and critical
        """
        logs: list[str] = []
        for entry in self.logs:
            match entry:
                case {'debug': msg}:
                    if level < 1:
                        logs.append("DEBUG - " + msg)
                case {'info': msg}:
                    if level < 2:
                        logs.append("INFO - " + msg)
                case {'warning': msg}:
                    if level < 3:
                        logs.append("WARNING - " + msg)
                case {'error': msg}:
                    logs.append("ERROR - " + msg)
                case {'critical': msg}:
                    logs.append("CRITICAL - " + msg)
                case _:
                    logs.append(str(entry))
        return logs

    def count_logs(self, level: int = 0) -> int:
        """The number of recorded logs. Zero means there
        were no recorded logs."""
        return len(self.get_logs(level))

    def clear_logs(self) -> None:
        """Clear the logs from the cache"""
        self.logs.clear()


def get_logger(name: str) -> LoggerBase:
    """
    Get a logger with the specified name.

    Args:
        name: The name of the logger, typically __name__ to use the
            module name

    Returns:
        A configured logger instance
    """
    return ConsoleLogger(name)


def set_log_level(level: int) -> None:
    """
    Set the log level of all the loggers of the package.

    Args:
        level: The logging level (e.g., logging.DEBUG, logging.INFO)
    """
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
