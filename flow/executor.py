"""
Flow Executor - Orders a flow graph and runs its instructions one by one.
流程执行引擎 —— 对流程图排序并逐个运行指令节点。

Two steps per run:
  1. compute_order(): Kahn's algorithm over a snapshot of the graph
  2. execute():       walk that order strictly sequentially, dispatching each
                      non-empty instruction to the CommandRunner and awaiting
                      it before moving on

每次运行分两步：
  1. compute_order(): 在图快照上执行 Kahn 算法
  2. execute():       严格串行地遍历该顺序，将非空指令交给 CommandRunner，
                      等待其完成后再处理下一个

Failures are best-effort, not fail-fast: a failed node is recorded and the
run carries on with the rest of the order.
失败处理是「尽力而为」而非「快速失败」：失败节点被记录，运行继续。
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from flow.graph import FlowGraph
from schema import CommandOutcome, FlowEdge, FlowNode, InstructionPayload, RunReport, RunResult
from tools.base import CommandRunner

logger = logging.getLogger(__name__)


class GraphIntegrityError(Exception):
    """
    Raised when the graph is not a DAG (topological sort could not consume every node).
    当图不是 DAG（拓扑排序无法消费全部节点）时抛出。
    """
    pass


# ----------------------------------------------------------------------
# Ordering
# 排序
# ----------------------------------------------------------------------

def compute_order(nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> list[str]:
    """
    Kahn's algorithm - returns node IDs in a valid execution order.
    Kahn 算法 —— 返回节点 ID 的合法拓扑执行顺序。

    Ties are broken by node order: the queue is seeded with zero in-degree
    nodes in the order `nodes` yields them (creation order for FlowGraph),
    and successors are released in edge insertion order.
    平局按节点顺序处理：入度为 0 的节点按 `nodes` 的迭代顺序（FlowGraph 中即创建顺序）
    入队，后继节点按边的插入顺序释放。
    """
    node_ids = [n.id for n in nodes]
    in_degree: dict[str, int] = {nid: 0 for nid in node_ids}
    adjacency: dict[str, list[str]] = {nid: [] for nid in node_ids}
    for e in edges:
        if e.source not in in_degree or e.target not in in_degree:
            continue  # 悬空边不参与排序
        adjacency[e.source].append(e.target)
        in_degree[e.target] += 1

    queue = deque(nid for nid in node_ids if in_degree[nid] == 0)
    order: list[str] = []

    while queue:
        nid = queue.popleft()
        order.append(nid)
        for succ in adjacency[nid]:
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                queue.append(succ)

    if len(order) != len(node_ids):
        stuck = sorted(nid for nid, deg in in_degree.items() if deg > 0)
        raise GraphIntegrityError(
            f"Cycle detected: {len(node_ids) - len(order)} node(s) never became ready: {stuck}"
        )
    return order


# ----------------------------------------------------------------------
# Result text
# 结果文本
# ----------------------------------------------------------------------

def format_result_text(outcome: CommandOutcome) -> str:
    """
    Fold an outcome into the single string shown to the user.
    将执行结果合并为展示给用户的单个字符串。
    """
    if outcome.success:
        text = outcome.stdout
        if outcome.stderr:
            text += ("\n\n" if text else "") + "STDERR:\n" + outcome.stderr
        return text

    text = f"ERROR: {outcome.error or 'Command failed'}"
    if outcome.stdout:
        text += "\n\nSTDOUT:\n" + outcome.stdout
    if outcome.stderr:
        text += "\n\nSTDERR:\n" + outcome.stderr
    return text


class FlowExecutor:
    """
    Runs a flow's instruction nodes in topological order.
    按拓扑顺序运行流程中的指令节点。
    """

    def __init__(
        self,
        runner: CommandRunner,
        clock: Callable[[], datetime] = datetime.now,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        self._runner = runner                          # 外部命令执行器
        self._clock = clock                            # 时间来源（测试时可替换）
        self._emit = on_event or (lambda *_: None)     # 事件回调（用于 UI 实时更新）

    # ------------------------------------------------------------------
    # Main entry point
    # 主入口
    # ------------------------------------------------------------------

    async def run(self, graph: FlowGraph, flow_name: str, trigger: str = "manual") -> RunReport:
        """
        Order a snapshot of `graph`, execute it, then write results back.
        对 `graph` 的快照排序并执行，最后将结果写回图中。
        """
        nodes, edges = graph.snapshot()
        order = compute_order(nodes, edges)
        logger.info("[Executor] Running %s (%s): %s", flow_name, trigger, graph.summary())
        self._emit("run_start", {"flow": flow_name, "order": order, "trigger": trigger})

        results, has_errors = await self.execute(order, {n.id: n for n in nodes})
        graph.apply_results(results)

        report = RunReport(
            flow_name=flow_name,
            order=order,
            results=results,
            has_errors=has_errors,
            trigger=trigger,
        )
        self._emit("run_complete", report)
        return report

    async def execute(self, order: list[str], nodes: dict[str, FlowNode]) -> tuple[dict[str, RunResult], bool]:
        """
        Walk `order` sequentially. Returns (results by node ID, has_errors).
        串行遍历 `order`，返回（按节点 ID 索引的结果, 是否有错误）。

        Notes and empty instructions are skipped and get no RunResult.
        备注节点和空指令被跳过，不产生 RunResult。
        """
        results: dict[str, RunResult] = {}
        has_errors = False

        for node_id in order:
            node = nodes.get(node_id)
            if node is None:
                continue
            payload = node.payload
            if not isinstance(payload, InstructionPayload):
                logger.debug("[Executor] Skipping note %s", node_id)
                self._emit("node_skipped", {"node": node, "reason": "note"})
                continue
            if not payload.command.strip():
                logger.debug("[Executor] Skipping %s: empty command", node_id)
                self._emit("node_skipped", {"node": node, "reason": "empty"})
                continue

            self._emit("node_running", {"node": node})
            result = await self._run_node(node_id, payload.command)
            results[node_id] = result

            if result.success:
                self._emit("node_completed", {"node": node, "result": result})
            else:
                has_errors = True
                logger.warning("[Executor] Node %s failed: %s", node_id, result.error)
                self._emit("node_failed", {"node": node, "result": result})

        return results, has_errors

    # ------------------------------------------------------------------
    # Node execution
    # 节点执行
    # ------------------------------------------------------------------

    async def _run_node(self, node_id: str, command: str) -> RunResult:
        try:
            outcome = await self._runner.run(command)
        except Exception as exc:
            # 执行器契约要求以值返回失败；这里兜底处理违反契约的实现
            logger.exception("[Executor] Runner %s raised for node %s", self._runner.name, node_id)
            outcome = CommandOutcome(success=False, error=str(exc) or type(exc).__name__)

        return RunResult(
            node_id=node_id,
            success=outcome.success,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            error=outcome.error,
            output=format_result_text(outcome),
            completed_at=self._clock(),
        )
