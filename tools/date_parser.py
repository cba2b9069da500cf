"""
Natural-language date parser backed by parsedatetime.
基于 parsedatetime 的自然语言日期解析器。

Turns expressions such as "tomorrow 3pm", "monday 10am" or "in 2 hours"
into a concrete datetime relative to a reference instant.
将 "tomorrow 3pm"、"monday 10am"、"in 2 hours" 之类的表达式
解析为相对于参考时刻的具体 datetime。
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

import parsedatetime

from tools.base import DateParser

logger = logging.getLogger(__name__)


class NaturalDateParser(DateParser):
    """
    parsedatetime wrapper with forward-date bias.
    带「向前（未来）偏好」的 parsedatetime 封装。

    parsedatetime already resolves bare weekdays and month/day dates to their
    next occurrence. A bare time of day ("3pm") is resolved on the reference
    day, so when that is already past we roll it over to the next day.
    parsedatetime 本身会把星期名和月/日解析为下一次出现的日期；
    但单独的时刻（"3pm"）会落在参考日当天，若已过去则顺延一天。
    """

    def __init__(self):
        self._calendar = parsedatetime.Calendar(version=parsedatetime.VERSION_CONTEXT_STYLE)

    def parse(self, text: str, reference: datetime, forward: bool = True) -> datetime | None:
        text = text.strip()
        if not text:
            return None

        # parsedatetime 使用 time.struct_time，不保留时区与微秒
        source = reference.replace(tzinfo=None, microsecond=0)
        resolved, ctx = self._calendar.parseDT(text, sourceTime=source)
        if not ctx.hasDateOrTime:
            logger.debug("[DateParser] No match for %r", text)
            return None

        if forward and resolved <= source and ctx.hasTime and not ctx.hasDate:
            resolved += timedelta(days=1)

        if reference.tzinfo is not None:
            resolved = resolved.replace(tzinfo=reference.tzinfo)
        logger.debug("[DateParser] %r -> %s", text, resolved.isoformat())
        return resolved
