"""
Collaborator interfaces - Abstract contracts the flow engine depends on.
协作者接口 —— 流程引擎所依赖的抽象契约。

The engine never spawns processes, parses dates or pops notifications
itself. It talks to these three interfaces:
  - CommandRunner:    run a shell command, report the outcome as a value
  - DateParser:       turn free text into a point in time (or None)
  - NotificationSink: best-effort delivery of a short title/body message

引擎本身不直接启动进程、解析日期或弹出通知，只依赖以下三个接口：
  - CommandRunner:    执行 shell 命令，以值的形式返回结果
  - DateParser:       将自然语言文本解析为时间点（或 None）
  - NotificationSink: 尽力投递简短的标题/正文消息
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from schema import CommandOutcome


class CommandRunner(ABC):
    """
    Abstract base class for command runners.
    命令执行器的抽象基类。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Short runner name used in logs.
        执行器名称，用于日志。
        """

    @abstractmethod
    async def run(self, command: str) -> CommandOutcome:
        """
        Run `command` to completion and return its outcome.
        Failures must come back as `CommandOutcome(success=False)`, not as exceptions.

        执行 `command` 直至结束并返回结果。
        失败必须以 `CommandOutcome(success=False)` 返回，而不是抛出异常。
        """


class DateParser(ABC):
    """
    Abstract base class for natural-language date parsers.
    自然语言日期解析器的抽象基类。
    """

    @abstractmethod
    def parse(self, text: str, reference: datetime, forward: bool = True) -> datetime | None:
        """
        Resolve `text` relative to `reference`; None when nothing matches.
        With `forward`, ambiguous expressions resolve to the next future occurrence.

        以 `reference` 为基准解析 `text`；无法识别时返回 None。
        `forward` 为 True 时，含糊表达式解析为下一个未来时刻。
        """


class NotificationSink(ABC):
    """
    Abstract base class for notification sinks.
    通知投递端的抽象基类。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Sink name used in logs. / 投递端名称，用于日志。"""

    def available(self) -> bool:
        """
        Whether the sink can deliver right now (e.g. a binary is installed).
        当前是否可以投递（例如所需程序已安装）。
        """
        return True

    @abstractmethod
    def send(self, title: str, body: str) -> None:
        """
        Deliver one message. May raise; callers treat delivery as best effort.
        投递一条消息。可以抛出异常，调用方按「尽力而为」处理。
        """
