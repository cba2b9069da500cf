from .base import CommandRunner, DateParser, NotificationSink
from .shell_executor import ShellCommandRunner
from .date_parser import NaturalDateParser
from .notification import ConsoleSink, DesktopSink, LogSink, build_sink

__all__ = [
    "CommandRunner",
    "DateParser",
    "NotificationSink",
    "ShellCommandRunner",
    "NaturalDateParser",
    "ConsoleSink",
    "DesktopSink",
    "LogSink",
    "build_sink",
]
