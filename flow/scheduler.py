"""
Schedule Controller - Natural-language scheduling of one deferred run per flow.
定时控制器 —— 每个流程至多一个、由自然语言描述的延迟运行。

State machine:
状态机：
    IDLE ──set_schedule_text──> PENDING_PARSE ──debounce──> RESOLVED | UNRESOLVED
    RESOLVED ──commit()──> ARMED ──timer──> FIRED ──run done──> CLEARED
    Any state ──clear()──> IDLE
    Any state ──close()──> CLEARED   (timers cancelled, nothing fired or saved)

The controller owns exactly two kinds of asyncio timer handle: the debounce
timer for parsing and the fire timer for the committed schedule. Re-arming
either one always cancels the previous handle first.
控制器只持有两类 asyncio 定时器句柄：解析用的防抖定时器和已提交定时的触发定时器。
任何一类重新设置时，都会先取消旧的句柄。

Editing the text never touches an armed schedule; only commit() and clear() do.
编辑文本不会影响已激活的定时，只有 commit() 与 clear() 会改变它。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from typing import Any

import config
from schema import ScheduleState
from tools.base import DateParser

logger = logging.getLogger(__name__)


class ScheduleStatus(str, Enum):
    IDLE = "idle"                    # 没有输入定时文本
    PENDING_PARSE = "pending_parse"  # 防抖等待中
    RESOLVED = "resolved"            # 文本已解析为未来时间点，可提交
    UNRESOLVED = "unresolved"        # 无法解析，或时间点已过去
    ARMED = "armed"                  # 已提交，触发定时器运行中
    FIRED = "fired"                  # 已触发，流程正在运行
    CLEARED = "cleared"              # 已触发完毕或流程已关闭


class ScheduleController:
    """
    Debounced parsing plus a single cancellable deferred run.
    防抖解析 + 单个可取消的延迟运行。
    """

    def __init__(
        self,
        parser: DateParser,
        on_fire: Callable[[], Awaitable[Any]],
        on_change: Callable[[ScheduleState | None], None] | None = None,
        debounce_seconds: float | None = None,
        clock: Callable[[], datetime] = datetime.now,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        """
        Args:
            parser:    natural-language date parser
            on_fire:   coroutine function that performs the full run
            on_change: called with the committed schedule (or None) whenever it
                       must be persisted
            parser:    自然语言日期解析器
            on_fire:   执行完整运行的协程函数
            on_change: 已提交定时需要持久化时调用，参数为新定时或 None
        """
        self._parser = parser
        self._on_fire = on_fire
        self._on_change = on_change or (lambda _state: None)
        self._debounce = config.SCHEDULE_DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds
        self._clock = clock
        self._emit = on_event or (lambda *_: None)

        self._status = ScheduleStatus.IDLE
        self._text = ""                                   # 当前编辑中的文本
        self._resolved: datetime | None = None            # 当前文本解析结果
        self._armed: ScheduleState | None = None          # 已提交的定时
        self._parse_handle: asyncio.TimerHandle | None = None
        self._fire_handle: asyncio.TimerHandle | None = None
        self._fire_task: asyncio.Task | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Read-only state
    # 只读状态
    # ------------------------------------------------------------------

    @property
    def status(self) -> ScheduleStatus:
        return self._status

    @property
    def text(self) -> str:
        return self._text

    @property
    def resolved(self) -> datetime | None:
        return self._resolved

    @property
    def armed(self) -> ScheduleState | None:
        return self._armed

    @property
    def is_armed(self) -> bool:
        return self._fire_handle is not None

    @property
    def parse_pending(self) -> bool:
        return self._parse_handle is not None

    @property
    def fire_task(self) -> asyncio.Task | None:
        return self._fire_task

    # ------------------------------------------------------------------
    # Editing + debounced parse
    # 编辑 + 防抖解析
    # ------------------------------------------------------------------

    def set_schedule_text(self, text: str) -> None:
        """
        Record new text and (re)start the debounce timer.
        记录新文本并（重新）启动防抖定时器。
        """
        if self._closed:
            logger.debug("[Schedule] Ignoring edit on closed controller")
            return
        self._cancel_parse()
        self._text = text
        self._resolved = None
        self._status = ScheduleStatus.PENDING_PARSE
        loop = asyncio.get_running_loop()
        self._parse_handle = loop.call_later(self._debounce, self._on_debounce)

    def _on_debounce(self) -> None:
        self._parse_handle = None
        self.parse_now()

    def parse_now(self) -> datetime | None:
        """
        Parse the current text immediately, cancelling any pending debounce.
        立即解析当前文本，并取消尚未触发的防抖定时器。
        """
        self._cancel_parse()
        if not self._text.strip():
            self._resolved = None
            self._status = ScheduleStatus.IDLE
            return None

        now = self._clock()
        resolved = self._parser.parse(self._text, now, forward=True)
        if resolved is None or resolved <= now:
            self._resolved = None
            self._status = ScheduleStatus.UNRESOLVED
            logger.info("[Schedule] Could not resolve %r to a future time", self._text)
        else:
            self._resolved = resolved
            self._status = ScheduleStatus.RESOLVED
            logger.debug("[Schedule] %r resolved to %s", self._text, resolved.isoformat())
        self._emit("schedule_parsed", {"text": self._text, "resolved": self._resolved})
        return self._resolved

    # ------------------------------------------------------------------
    # Commit / arm / clear
    # 提交 / 激活 / 清除
    # ------------------------------------------------------------------

    def commit(self) -> bool:
        """
        Arm the schedule for the current text. False if it does not resolve.
        按当前文本激活定时。无法解析为未来时间时返回 False。
        """
        if self._closed:
            return False
        if self._parse_handle is not None:
            # 防抖尚未触发时立即解析，避免提交过期结果
            self.parse_now()
        if self._resolved is None:
            self._status = ScheduleStatus.UNRESOLVED
            return False
        return self.arm(self._resolved, self._text)

    def arm(self, at: datetime, text: str | None = None, persist: bool = True) -> bool:
        """
        Replace any armed schedule with one firing at `at`.
        以在 `at` 触发的新定时替换已激活的定时。

        A time that is not in the future is a validation failure: nothing is
        armed, the previous schedule is kept, and False is returned.
        非未来时间视为校验失败：不激活任何定时，保留原有定时，并返回 False。
        """
        if self._closed:
            return False
        now = self._clock()
        if at <= now:
            logger.warning("[Schedule] Refusing to arm for %s: not in the future", at.isoformat())
            self._status = ScheduleStatus.UNRESOLVED
            return False

        self._cancel_fire()
        delay = (at - now).total_seconds()
        loop = asyncio.get_running_loop()
        self._fire_handle = loop.call_later(delay, self._on_fire_timer)
        self._armed = ScheduleState(text=self._text if text is None else text, at=at)
        self._status = ScheduleStatus.ARMED
        logger.info("[Schedule] Armed for %s (in %.1fs)", at.isoformat(), delay)
        self._emit("schedule_armed", self._armed)
        if persist:
            self._on_change(self._armed)
        return True

    def clear(self) -> None:
        """
        Cancel every timer, forget the schedule and persist the cleared state.
        取消所有定时器，丢弃定时并持久化清除后的状态。
        """
        self._cancel_parse()
        self._cancel_fire()
        self._text = ""
        self._resolved = None
        self._armed = None
        self._status = ScheduleStatus.IDLE
        self._emit("schedule_cleared", None)
        if not self._closed:
            self._on_change(None)

    def close(self) -> None:
        """
        Teardown: cancel timers without firing or persisting anything.
        关闭：取消定时器，不触发运行也不持久化。
        """
        self._cancel_parse()
        self._cancel_fire()
        self._closed = True
        self._status = ScheduleStatus.CLEARED
        logger.debug("[Schedule] Controller closed")

    # ------------------------------------------------------------------
    # Firing
    # 触发
    # ------------------------------------------------------------------

    def _on_fire_timer(self) -> None:
        self._fire_handle = None
        if self._closed:
            return
        self._status = ScheduleStatus.FIRED
        self._fire_task = asyncio.ensure_future(self._fire(self._armed))

    async def _fire(self, armed: ScheduleState | None) -> None:
        logger.info("[Schedule] Firing scheduled run (%s)", armed.text if armed else "")
        self._emit("schedule_fired", armed)
        try:
            await self._on_fire()
        except Exception:
            logger.exception("[Schedule] Scheduled run failed")
        finally:
            # 运行期间若已重新提交了新定时，则保留新的
            if self._armed is armed:
                self._armed = None
                if self._status == ScheduleStatus.FIRED:
                    self._status = ScheduleStatus.CLEARED
                self._on_change(None)

    # ------------------------------------------------------------------
    # Timer helpers
    # 定时器辅助方法
    # ------------------------------------------------------------------

    def _cancel_parse(self) -> None:
        if self._parse_handle is not None:
            self._parse_handle.cancel()
            self._parse_handle = None

    def _cancel_fire(self) -> None:
        if self._fire_handle is not None:
            self._fire_handle.cancel()
            self._fire_handle = None
            logger.debug("[Schedule] Previous fire timer cancelled")
