"""
Flow Session - One open flow: graph, runner, schedule and persistence together.
流程会话 —— 一个已打开的流程：图、执行器、定时与持久化的组合。

The session is the single owner of a flow's mutable state. It guarantees
that no two runs of the same flow overlap (a manual run and a fired schedule
included), and it ties the schedule's lifecycle to the flow's: closing the
session cancels its timers.
会话是一个流程全部可变状态的唯一持有者。它保证同一流程不会同时进行两次运行
（包括手动运行与定时触发），并将定时的生命周期与流程绑定：关闭会话即取消其定时器。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from flow.executor import FlowExecutor
from flow.graph import FlowGraph
from flow.notifier import ResultNotifier
from flow.scheduler import ScheduleController
from schema import FlowDocument, RunReport, ScheduleState
from storage.flow_store import FlowStore
from tools.base import CommandRunner, DateParser
from tools.date_parser import NaturalDateParser

logger = logging.getLogger(__name__)


class FlowSession:
    """
    Per-flow coordinator for editing, running and scheduling.
    单个流程的协调者，负责编辑、运行与定时。
    """

    def __init__(
        self,
        name: str,
        runner: CommandRunner,
        graph: FlowGraph | None = None,
        store: FlowStore | None = None,
        notifier: ResultNotifier | None = None,
        parser: DateParser | None = None,
        debounce_seconds: float | None = None,
        clock: Callable[[], datetime] = datetime.now,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        self.name = name
        self.graph = graph or FlowGraph()
        self._store = store
        self._notifier = notifier or ResultNotifier()
        self._parser = parser or NaturalDateParser()
        self._clock = clock
        self._emit = on_event or (lambda *_: None)
        self._executor = FlowExecutor(runner, clock=clock, on_event=on_event)
        self.schedule = ScheduleController(
            self._parser,
            on_fire=self._run_scheduled,
            on_change=self._persist_schedule,
            debounce_seconds=debounce_seconds,
            clock=clock,
            on_event=on_event,
        )
        self._running = False               # 运行中标志，防止同一流程并发运行
        self.last_report: RunReport | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # 生命周期
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, name: str, runner: CommandRunner, store: FlowStore, **kwargs: Any) -> FlowSession:
        """
        Load `name` from `store` (empty flow if absent) and re-arm its schedule.
        Must be called from inside a running event loop.

        从 `store` 加载 `name`（不存在则为空流程）并重新激活其定时。
        必须在运行中的事件循环内调用。
        """
        doc = store.load(name)
        graph = FlowGraph.from_document(doc) if doc is not None else None
        session = cls(name, runner, graph=graph, store=store, **kwargs)
        if doc is not None:
            session._restore_schedule(doc)
        logger.info("[Session] Opened %s: %s", name, session.graph.summary())
        return session

    def close(self) -> None:
        """
        Cancel pending timers. Whatever schedule was last committed stays persisted.
        取消待处理的定时器。最后一次提交的定时保持持久化状态不变。
        """
        self.schedule.close()
        logger.info("[Session] Closed %s", self.name)

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Running
    # 运行
    # ------------------------------------------------------------------

    async def run(self, trigger: str = "manual") -> RunReport | None:
        """
        Run the flow once. Returns None if a run is already in progress.
        运行一次流程。若已有运行在进行中则返回 None。
        """
        if self._running:
            logger.warning("[Session] %s is already running, ignoring %s run request", self.name, trigger)
            self._emit("run_rejected", {"flow": self.name, "trigger": trigger})
            return None

        self._running = True
        try:
            report = await self._executor.run(self.graph, self.name, trigger=trigger)
        finally:
            self._running = False

        self.last_report = report
        # 投递端可能阻塞（如 notify-send），放到线程池中执行，避免卡住事件循环
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._notifier.notify, self.name, report.has_errors)
        return report

    async def _run_scheduled(self) -> RunReport | None:
        return await self.run(trigger="schedule")

    # ------------------------------------------------------------------
    # Persistence
    # 持久化
    # ------------------------------------------------------------------

    def to_document(self, schedule: ScheduleState | None = None) -> FlowDocument:
        return self.graph.to_document(
            schedule_text=schedule.text if schedule else "",
            scheduled_at=schedule.at if schedule else None,
        )

    def save(self) -> bool:
        """
        Persist the graph together with the committed schedule.
        持久化图结构及已提交的定时。
        """
        return self._save(self.schedule.armed)

    def _save(self, schedule: ScheduleState | None) -> bool:
        if self._store is None:
            return False
        return self._store.save(self.name, self.to_document(schedule))

    def _persist_schedule(self, schedule: ScheduleState | None) -> None:
        if not self._save(schedule) and self._store is not None:
            logger.warning("[Session] Could not persist schedule for %s", self.name)

    def _restore_schedule(self, doc: FlowDocument) -> None:
        """
        Re-arm a persisted schedule. Instants already in the past are dropped,
        never fired, and the cleared state is written back.

        重新激活已持久化的定时。已经过去的时间点会被丢弃（不会触发），
        并写回清除后的状态。
        """
        if not doc.schedule_text and doc.scheduled_at is None:
            return

        now = self._clock()
        at = doc.scheduled_at
        if at is None:
            # 旧文档只有文本：按当前时间重新解析
            at = self._parser.parse(doc.schedule_text, now, forward=True)
            if at is None:
                logger.warning("[Session] Saved schedule %r for %s no longer parses", doc.schedule_text, self.name)
                self._save(None)
                return
            if self.schedule.arm(at, doc.schedule_text):
                return
        elif self.schedule.arm(at, doc.schedule_text, persist=False):
            return

        logger.warning("[Session] Discarding stale schedule %r for %s", doc.schedule_text, self.name)
        self._save(None)
