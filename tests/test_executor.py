"""
FlowExecutor 测试：
  1. Kahn 拓扑排序 (完整性、边约束、确定性)
  2. 串行执行 + 失败不中断 (best-effort)
  3. 备注节点 / 空指令跳过
  4. 结果文本拼接格式

除一个真实 shell 端到端用例外，其余测试均通过 Mock 模拟命令执行器。
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from flow.executor import FlowExecutor, GraphIntegrityError, compute_order, format_result_text
from flow.graph import FlowGraph
from schema import CommandOutcome, FlowEdge, FlowNode, InstructionPayload, NodeKind, NotePayload
from tools.shell_executor import ShellCommandRunner

FIXED_NOW = datetime(2025, 1, 15, 9, 30, 0)


def _abc_flow() -> tuple[FlowGraph, str, str, str]:
    """A → B → C，全部为指令节点，命令分别为 echo 1/2/3."""
    graph = FlowGraph()
    ids = []
    for i in (1, 2, 3):
        node = graph.add_node(NodeKind.INSTRUCTION)
        graph.set_command(node.id, f"echo {i}")
        ids.append(node.id)
    a, b, c = ids
    graph.add_edge(a, b)
    graph.add_edge(b, c)
    return graph, a, b, c


def _fake_runner(fail: set[str] = frozenset()) -> AsyncMock:
    runner = AsyncMock()
    runner.name = "fake"

    async def fake_run(command: str) -> CommandOutcome:
        if command in fail:
            return CommandOutcome(success=False, error=f"Command failed: {command}", stderr="boom\n")
        return CommandOutcome(success=True, stdout=command.split()[-1] + "\n")

    runner.run = AsyncMock(side_effect=fake_run)
    return runner


def _called_commands(runner: AsyncMock) -> list[str]:
    return [c.args[0] for c in runner.run.await_args_list]


class TestComputeOrder:

    def test_every_edge_respected(self):
        graph = FlowGraph()
        ids = [graph.add_node(NodeKind.INSTRUCTION).id for _ in range(6)]
        for s, t in ((0, 3), (1, 3), (3, 4), (2, 5), (4, 5)):
            graph.add_edge(ids[s], ids[t])
        nodes, edges = graph.snapshot()

        order = compute_order(nodes, edges)
        pos = {nid: i for i, nid in enumerate(order)}

        assert sorted(order) == sorted(ids), "排序结果应是全部节点的一个排列"
        for e in edges:
            assert pos[e.source] < pos[e.target]

    def test_ties_follow_node_order(self):
        """无依赖的节点按创建顺序入队，保证测试可复现."""
        graph = FlowGraph()
        ids = [graph.add_node(NodeKind.NOTE).id for _ in range(4)]
        nodes, edges = graph.snapshot()
        assert compute_order(nodes, edges) == ids

    def test_repeatable(self):
        graph, *_ = _abc_flow()
        nodes, edges = graph.snapshot()
        assert compute_order(nodes, edges) == compute_order(nodes, edges)

    def test_cycle_is_integrity_error(self):
        # 绕过 FlowGraph 的守卫直接构造一个环
        nodes = [
            FlowNode(id="x", payload=InstructionPayload()),
            FlowNode(id="y", payload=InstructionPayload()),
            FlowNode(id="z", payload=InstructionPayload()),
        ]
        edges = [FlowEdge(source="x", target="y"), FlowEdge(source="y", target="x")]
        with pytest.raises(GraphIntegrityError):
            compute_order(nodes, edges)

    def test_empty_graph(self):
        assert compute_order([], []) == []


class TestResultText:

    def test_success_stdout_only(self):
        assert format_result_text(CommandOutcome(success=True, stdout="1\n")) == "1\n"

    def test_success_with_stderr(self):
        text = format_result_text(CommandOutcome(success=True, stdout="out", stderr="warn"))
        assert text == "out\n\nSTDERR:\nwarn"

    def test_success_stderr_without_stdout(self):
        assert format_result_text(CommandOutcome(success=True, stderr="warn")) == "STDERR:\nwarn"

    def test_failure_layout(self):
        text = format_result_text(
            CommandOutcome(success=False, error="Command failed", stdout="partial", stderr="boom")
        )
        assert text == "ERROR: Command failed\n\nSTDOUT:\npartial\n\nSTDERR:\nboom"


class TestSequentialExecution:

    @pytest.mark.asyncio
    async def test_runs_in_order(self):
        graph, a, b, c = _abc_flow()
        runner = _fake_runner()
        executor = FlowExecutor(runner, clock=lambda: FIXED_NOW)

        report = await executor.run(graph, "abc")

        assert report.order == [a, b, c]
        assert _called_commands(runner) == ["echo 1", "echo 2", "echo 3"]
        assert not report.has_errors
        assert all(r.success for r in report.results.values())

    @pytest.mark.asyncio
    async def test_failure_does_not_halt(self):
        """B 失败时 C 仍然执行；has_errors 为 True，A 和 C 成功."""
        graph, a, b, c = _abc_flow()
        runner = _fake_runner(fail={"echo 2"})
        executor = FlowExecutor(runner, clock=lambda: FIXED_NOW)

        report = await executor.run(graph, "abc")

        assert _called_commands(runner) == ["echo 1", "echo 2", "echo 3"]
        assert report.has_errors
        assert report.results[a].success
        assert not report.results[b].success
        assert report.results[c].success
        assert report.results[b].output.startswith("ERROR: Command failed: echo 2")

    @pytest.mark.asyncio
    async def test_failure_does_not_halt_real_shell(self):
        """真实 shell：B 执行 exit 1 失败，C 仍然执行并输出 3."""
        graph, a, b, c = _abc_flow()
        graph.set_command(b, "exit 1")
        executor = FlowExecutor(ShellCommandRunner(timeout=10), clock=lambda: FIXED_NOW)

        report = await executor.run(graph, "abc")

        assert report.order == [a, b, c]
        assert report.has_errors
        assert report.results[a].output == "1\n"
        assert report.results[b].output.startswith("ERROR: Command failed with exit code 1")
        assert report.results[c].success
        assert graph.nodes[c].payload.result == "3\n"

    @pytest.mark.asyncio
    async def test_results_written_back(self):
        graph, a, b, c = _abc_flow()
        executor = FlowExecutor(_fake_runner(), clock=lambda: FIXED_NOW)

        await executor.run(graph, "abc")

        payload = graph.nodes[c].payload
        assert payload.result == "3\n"
        assert payload.last_run == FIXED_NOW

    @pytest.mark.asyncio
    async def test_note_and_empty_command_skipped(self):
        graph, a, b, c = _abc_flow()
        note = graph.add_node(NodeKind.NOTE)
        graph.set_text(note.id, "just a reminder")
        graph.add_edge(a, note.id)
        empty = graph.add_node(NodeKind.INSTRUCTION)
        graph.set_command(empty.id, "   ")

        events: list[str] = []
        runner = _fake_runner()
        executor = FlowExecutor(runner, clock=lambda: FIXED_NOW, on_event=lambda e, _d: events.append(e))
        report = await executor.run(graph, "abc")

        assert note.id not in report.results, "备注节点不应产生 RunResult"
        assert empty.id not in report.results
        assert len(runner.run.await_args_list) == 3
        assert isinstance(graph.nodes[note.id].payload, NotePayload)
        assert events.count("node_skipped") == 2

    @pytest.mark.asyncio
    async def test_strictly_sequential(self):
        """同一时刻最多只有一条命令在执行."""
        graph, *_ = _abc_flow()
        in_flight = 0
        peak = 0

        async def slow_run(command: str) -> CommandOutcome:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return CommandOutcome(success=True, stdout=command)

        runner = AsyncMock()
        runner.name = "slow"
        runner.run = AsyncMock(side_effect=slow_run)
        await FlowExecutor(runner).run(graph, "abc")

        assert peak == 1

    @pytest.mark.asyncio
    async def test_raising_runner_becomes_failure(self):
        graph, a, b, c = _abc_flow()
        runner = AsyncMock()
        runner.name = "broken"
        runner.run = AsyncMock(side_effect=[
            CommandOutcome(success=True, stdout="1"),
            RuntimeError("spawn exploded"),
            CommandOutcome(success=True, stdout="3"),
        ])

        report = await FlowExecutor(runner, clock=lambda: FIXED_NOW).run(graph, "abc")

        assert report.has_errors
        assert report.results[b].output == "ERROR: spawn exploded"
        assert report.results[c].success

    @pytest.mark.asyncio
    async def test_edits_during_run_do_not_change_order(self):
        graph, a, b, c = _abc_flow()
        seen: list[str] = []

        async def editing_run(command: str) -> CommandOutcome:
            seen.append(command)
            if command == "echo 1":
                # 运行中修改图：不影响本次快照
                graph.set_command(c, "echo changed")
            return CommandOutcome(success=True, stdout=command)

        runner = AsyncMock()
        runner.name = "editing"
        runner.run = AsyncMock(side_effect=editing_run)
        await FlowExecutor(runner).run(graph, "abc")

        assert seen == ["echo 1", "echo 2", "echo 3"]
