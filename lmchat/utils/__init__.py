# pyright: reportUnusedImport=false
# flake8: noqa

# default logger initialized from here
from .logging import LoggerBase, ConsoleLogger, LoglistLogger, get_logger

logger: LoggerBase = ConsoleLogger("lmchat")
