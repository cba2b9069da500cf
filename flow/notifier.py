"""
Result Notifier - Announces that a run finished.
运行结果通知器 —— 通知一次运行已完成。

Delivery is fire-and-forget: a missing or failing sink is logged and
never affects the run's results.
投递是「发出即忘」的：投递端缺失或失败只记日志，绝不影响运行结果。
"""

from __future__ import annotations

import logging

from tools.base import NotificationSink

logger = logging.getLogger(__name__)


class ResultNotifier:
    def __init__(self, sink: NotificationSink | None = None):
        self._sink = sink

    @staticmethod
    def format_message(flow_name: str, has_errors: bool) -> tuple[str, str]:
        title = f"{flow_name} - Run Complete"
        body = "Commands finished with errors" if has_errors else "Click to review results"
        return title, body

    def notify(self, flow_name: str, has_errors: bool) -> bool:
        """
        Send the completion signal. Returns True if the sink accepted it.
        发送完成通知。投递成功返回 True。
        """
        if self._sink is None:
            logger.debug("[Notifier] No sink configured, skipping notification for %s", flow_name)
            return False

        title, body = self.format_message(flow_name, has_errors)
        try:
            if not self._sink.available():
                logger.warning("[Notifier] Sink %s unavailable, notification dropped", self._sink.name)
                return False
            self._sink.send(title, body)
        except Exception as exc:
            logger.warning("[Notifier] Sink %s failed: %s", self._sink.name, exc)
            return False
        return True
