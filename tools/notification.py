"""
Notification sinks - Concrete delivery channels for run-complete messages.
通知投递端 —— 运行完成消息的具体投递渠道。

  - ConsoleSink:  Rich panel on the terminal
  - DesktopSink:  `notify-send` desktop notification (Linux)
  - LogSink:      plain log record

  - ConsoleSink:  在终端打印 Rich 面板
  - DesktopSink:  通过 `notify-send` 发送桌面通知（Linux）
  - LogSink:      仅写一条日志
"""

from __future__ import annotations

import logging
import shutil
import subprocess

from rich.console import Console
from rich.panel import Panel

import config
from tools.base import NotificationSink

logger = logging.getLogger(__name__)


class ConsoleSink(NotificationSink):
    """Print the notification as a Rich panel. / 以 Rich 面板形式打印通知。"""

    def __init__(self, console: Console | None = None):
        self._console = console or Console()

    @property
    def name(self) -> str:
        return "console"

    def send(self, title: str, body: str) -> None:
        style = "red" if "error" in body.lower() else "green"
        self._console.print(Panel(body, title=f"[bold]{title}[/bold]", border_style=style))


class DesktopSink(NotificationSink):
    """
    Desktop notification via `notify-send`.
    通过 `notify-send` 发送桌面通知。
    """

    def __init__(self, binary: str = "notify-send", timeout: int = 5):
        self._binary = binary
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "desktop"

    def available(self) -> bool:
        return shutil.which(self._binary) is not None

    def send(self, title: str, body: str) -> None:
        subprocess.run(
            [self._binary, "--app-name=cmdflow", title, body],
            check=True,
            capture_output=True,
            timeout=self._timeout,
        )


class LogSink(NotificationSink):
    @property
    def name(self) -> str:
        return "log"

    def send(self, title: str, body: str) -> None:
        logger.info("[Notify] %s: %s", title, body)


def build_sink(backend: str | None = None, console: Console | None = None) -> NotificationSink | None:
    """
    Build the sink selected by NOTIFY_BACKEND; None disables notifications.
    根据 NOTIFY_BACKEND 构建投递端；返回 None 表示关闭通知。
    """
    backend = (backend or config.NOTIFY_BACKEND).lower()
    if backend == "console":
        return ConsoleSink(console)
    if backend == "desktop":
        return DesktopSink()
    if backend == "log":
        return LogSink()
    if backend != "none":
        logger.warning("Unknown NOTIFY_BACKEND %r, notifications disabled", backend)
    return None
