"""
ScheduleController / NaturalDateParser 测试：
  1. 防抖解析 (连续输入只解析一次)
  2. 提交校验 (无法解析 / 过去时间 均拒绝)
  3. 重新激活只保留一个定时器 (只触发一次)
  4. 触发后自动清除并持久化；clear() / close() 取消定时器
  5. 自然语言解析的「未来偏好」

定时器测试使用几十毫秒级的真实延迟。
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from flow.scheduler import ScheduleController, ScheduleStatus
from tools.date_parser import NaturalDateParser

DEBOUNCE = 0.02


def _soon(seconds: float = 0.05) -> datetime:
    return datetime.now() + timedelta(seconds=seconds)


def _controller(parse_result=None, **kwargs):
    """构建控制器：parser 固定返回 parse_result（可为 callable）。"""
    parser = MagicMock()
    if callable(parse_result):
        parser.parse = MagicMock(side_effect=lambda text, ref, forward=True: parse_result())
    else:
        parser.parse = MagicMock(return_value=parse_result)
    on_fire = AsyncMock()
    on_change = MagicMock()
    ctrl = ScheduleController(
        parser,
        on_fire=on_fire,
        on_change=on_change,
        debounce_seconds=DEBOUNCE,
        **kwargs,
    )
    return ctrl, parser, on_fire, on_change


class TestDebouncedParse:

    @pytest.mark.asyncio
    async def test_burst_of_edits_parses_once(self):
        ctrl, parser, _, _ = _controller(parse_result=lambda: _soon(60))

        for partial in ("t", "to", "tom", "tomorrow", "tomorrow 3pm"):
            ctrl.set_schedule_text(partial)
            await asyncio.sleep(0)

        assert ctrl.status == ScheduleStatus.PENDING_PARSE
        assert parser.parse.call_count == 0

        await asyncio.sleep(DEBOUNCE * 3)
        assert parser.parse.call_count == 1
        assert parser.parse.call_args.args[0] == "tomorrow 3pm"
        assert parser.parse.call_args.kwargs == {"forward": True}
        assert ctrl.status == ScheduleStatus.RESOLVED
        assert ctrl.resolved is not None

    @pytest.mark.asyncio
    async def test_unparseable_text_is_unresolved(self):
        ctrl, _, on_fire, on_change = _controller(parse_result=None)
        ctrl.set_schedule_text("asdf")
        await asyncio.sleep(DEBOUNCE * 3)

        assert ctrl.status == ScheduleStatus.UNRESOLVED
        assert not ctrl.commit()
        assert not ctrl.is_armed
        on_change.assert_not_called()
        on_fire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_text_returns_to_idle(self):
        ctrl, parser, _, _ = _controller(parse_result=lambda: _soon(60))
        ctrl.set_schedule_text("")
        await asyncio.sleep(DEBOUNCE * 3)

        assert ctrl.status == ScheduleStatus.IDLE
        parser.parse.assert_not_called()

    @pytest.mark.asyncio
    async def test_commit_flushes_pending_parse(self):
        ctrl, parser, _, on_change = _controller(parse_result=lambda: _soon(60))
        ctrl.set_schedule_text("in 1 minute")

        assert ctrl.commit(), "防抖未触发时提交应立即解析"
        assert not ctrl.parse_pending
        assert ctrl.status == ScheduleStatus.ARMED
        assert ctrl.armed.text == "in 1 minute"
        on_change.assert_called_once_with(ctrl.armed)
        ctrl.close()


class TestArming:

    @pytest.mark.asyncio
    async def test_past_time_rejected(self):
        ctrl, _, on_fire, on_change = _controller()
        assert not ctrl.arm(datetime.now() - timedelta(seconds=1), "yesterday")
        assert ctrl.status == ScheduleStatus.UNRESOLVED
        assert not ctrl.is_armed
        on_change.assert_not_called()

    @pytest.mark.asyncio
    async def test_rearm_fires_once(self):
        """连续两次激活只应触发一次."""
        ctrl, _, on_fire, _ = _controller()
        assert ctrl.arm(_soon(0.05), "first")
        assert ctrl.arm(_soon(0.08), "second")

        await asyncio.sleep(0.25)
        assert on_fire.await_count == 1

    @pytest.mark.asyncio
    async def test_fire_clears_and_persists(self):
        ctrl, _, on_fire, on_change = _controller()
        ctrl.arm(_soon(0.03), "soon")

        await asyncio.sleep(0.15)
        await ctrl.fire_task

        on_fire.assert_awaited_once()
        assert ctrl.status == ScheduleStatus.CLEARED
        assert ctrl.armed is None
        assert not ctrl.is_armed
        assert on_change.call_args_list[-1].args == (None,), "触发后应持久化清除状态"

    @pytest.mark.asyncio
    async def test_fire_failure_still_clears(self):
        ctrl, _, on_fire, on_change = _controller()
        on_fire.side_effect = RuntimeError("run blew up")
        ctrl.arm(_soon(0.02), "soon")

        await asyncio.sleep(0.1)
        await ctrl.fire_task

        assert ctrl.armed is None
        assert on_change.call_args_list[-1].args == (None,)

    @pytest.mark.asyncio
    async def test_editing_text_keeps_armed_timer(self):
        ctrl, _, on_fire, _ = _controller(parse_result=None)
        ctrl.arm(_soon(0.05), "soon")
        ctrl.set_schedule_text("garbage")

        await asyncio.sleep(0.2)
        on_fire.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_clear_cancels_everything(self):
        ctrl, _, on_fire, on_change = _controller(parse_result=lambda: _soon(60))
        ctrl.arm(_soon(0.05), "soon")
        ctrl.set_schedule_text("later")
        ctrl.clear()

        await asyncio.sleep(0.15)
        on_fire.assert_not_awaited()
        assert ctrl.status == ScheduleStatus.IDLE
        assert ctrl.text == ""
        assert not ctrl.parse_pending and not ctrl.is_armed
        assert on_change.call_args_list[-1].args == (None,)

    @pytest.mark.asyncio
    async def test_close_cancels_without_side_effects(self):
        ctrl, parser, on_fire, on_change = _controller(parse_result=lambda: _soon(60))
        ctrl.arm(_soon(0.05), "soon")
        on_change.reset_mock()
        ctrl.set_schedule_text("next week")
        ctrl.close()

        await asyncio.sleep(0.15)
        on_fire.assert_not_awaited()
        parser.parse.assert_not_called()
        on_change.assert_not_called()
        assert ctrl.status == ScheduleStatus.CLEARED
        assert not ctrl.arm(_soon(0.05)), "关闭后不可再激活"


class TestNaturalDateParser:
    REFERENCE = datetime(2025, 1, 15, 9, 30, 0)  # Wednesday

    def test_tomorrow_3pm(self):
        parser = NaturalDateParser()
        resolved = parser.parse("tomorrow 3pm", self.REFERENCE)

        expected = self.REFERENCE + timedelta(hours=24) + (
            datetime.combine(self.REFERENCE.date(), datetime.min.time()).replace(hour=15)
            - self.REFERENCE
        )
        assert resolved == expected == datetime(2025, 1, 16, 15, 0, 0)
        assert resolved > self.REFERENCE

    def test_gibberish_is_none(self):
        assert NaturalDateParser().parse("asdf", self.REFERENCE) is None

    def test_blank_is_none(self):
        assert NaturalDateParser().parse("   ", self.REFERENCE) is None

    def test_weekday_resolves_forward(self):
        resolved = NaturalDateParser().parse("monday 10am", self.REFERENCE)
        assert resolved == datetime(2025, 1, 20, 10, 0, 0)

    def test_bare_time_in_past_rolls_to_tomorrow(self):
        resolved = NaturalDateParser().parse("8am", self.REFERENCE)
        assert resolved == datetime(2025, 1, 16, 8, 0, 0)

    def test_bare_time_later_today(self):
        resolved = NaturalDateParser().parse("5pm", self.REFERENCE)
        assert resolved == datetime(2025, 1, 15, 17, 0, 0)
