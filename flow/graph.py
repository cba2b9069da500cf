"""
FlowGraph - The node/edge model a user edits.
FlowGraph —— 用户编辑的节点/边模型。

The FlowGraph holds:
  - nodes: dict of FlowNode (instruction / note), in creation order
  - edges: list of FlowEdge (plain dependency edges)

FlowGraph 包含：
  - nodes: FlowNode 字典（指令 / 备注节点），保持创建顺序
  - edges: FlowEdge 列表（普通依赖边）

Key operations:
  - add_edge():       guarded by CycleGuard, so the graph is a DAG by construction
  - snapshot():       deep-copied nodes/edges for the executor
  - apply_results():  write a run's results back into instruction payloads

核心操作：
  - add_edge():       由 CycleGuard 把关，图在构造层面始终无环
  - snapshot():       为执行引擎提供深拷贝的节点/边快照
  - apply_results():  将运行结果写回指令节点负载
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from flow.cycle_guard import would_create_cycle
from schema import (
    FlowDocument,
    FlowEdge,
    FlowNode,
    InstructionPayload,
    NodeKind,
    NotePayload,
    RunResult,
)

logger = logging.getLogger(__name__)


class FlowGraph:
    """
    Directed acyclic graph of instruction and note nodes.
    由指令节点和备注节点组成的有向无环图。
    """

    def __init__(self, nodes: list[FlowNode] | None = None, edges: list[FlowEdge] | None = None):
        self.nodes: dict[str, FlowNode] = {}  # 所有节点，key 为节点 ID（保持插入顺序）
        self.edges: list[FlowEdge] = []       # 所有边
        for node in nodes or []:
            self.nodes[node.id] = node
        # 逐条经过守卫加入，来历不明的边（悬空/成环）在此被丢弃
        for edge in edges or []:
            if not self.add_edge(edge.source, edge.target):
                logger.warning("[FlowGraph] Dropped invalid edge %s -> %s", edge.source, edge.target)

    # ------------------------------------------------------------------
    # Node operations
    # 节点操作
    # ------------------------------------------------------------------

    def add_node(self, kind: NodeKind, placement: dict[str, Any] | None = None) -> FlowNode:
        """
        Create a node of the given kind with an empty payload.
        创建指定类型、负载为空的新节点。
        """
        if kind == NodeKind.INSTRUCTION:
            payload = InstructionPayload()
        else:
            payload = NotePayload()
        node = FlowNode(payload=payload, placement=placement)
        self.nodes[node.id] = node
        logger.debug("[FlowGraph] Node added: %s (%s)", node.id, kind.value)
        return node

    def remove_node(self, node_id: str) -> None:
        """
        Remove a node and every edge touching it. Unknown IDs are ignored.
        删除节点及其所有关联边。未知 ID 直接忽略。
        """
        if self.nodes.pop(node_id, None) is None:
            return
        self.edges = [e for e in self.edges if e.source != node_id and e.target != node_id]
        logger.debug("[FlowGraph] Node removed: %s", node_id)

    def set_command(self, node_id: str, command: str) -> bool:
        node = self.nodes.get(node_id)
        if node is None or not isinstance(node.payload, InstructionPayload):
            return False
        node.payload.command = command
        return True

    def set_text(self, node_id: str, text: str) -> bool:
        node = self.nodes.get(node_id)
        if node is None or not isinstance(node.payload, NotePayload):
            return False
        node.payload.text = text
        return True

    # ------------------------------------------------------------------
    # Edge operations
    # 边操作
    # ------------------------------------------------------------------

    def add_edge(self, source: str, target: str) -> bool:
        """
        Add `source -> target` if it keeps the graph a DAG.
        若不破坏 DAG 不变量则添加 `source -> target`。

        Returns False (and leaves the edge set untouched) for unknown
        endpoints, duplicates, self-loops and cycle-closing edges.
        对未知端点、重复边、自环以及会成环的边返回 False，且边集合保持不变。
        """
        if source not in self.nodes or target not in self.nodes:
            logger.warning("[FlowGraph] Cannot add edge %s -> %s: unknown node", source, target)
            return False
        if self.has_edge(source, target):
            logger.debug("[FlowGraph] Edge %s -> %s already exists, skipping", source, target)
            return False
        if would_create_cycle(source, target, self.nodes.keys(), self.edges):
            logger.warning("[FlowGraph] Rejected edge %s -> %s: would create a cycle", source, target)
            return False

        self.edges.append(FlowEdge(source=source, target=target))
        logger.debug("[FlowGraph] Edge added: %s -> %s", source, target)
        return True

    def remove_edge(self, source: str, target: str) -> None:
        self.edges = [e for e in self.edges if not (e.source == source and e.target == target)]

    def has_edge(self, source: str, target: str) -> bool:
        return any(e.source == source and e.target == target for e in self.edges)

    # ------------------------------------------------------------------
    # Queries
    # 查询
    # ------------------------------------------------------------------

    def snapshot(self) -> tuple[list[FlowNode], list[FlowEdge]]:
        """
        Read-only copy for the executor. Later edits do not leak into a run.
        供执行引擎使用的只读副本，之后的编辑不会影响正在进行的运行。
        """
        return (
            [n.model_copy(deep=True) for n in self.nodes.values()],
            [e.model_copy() for e in self.edges],
        )

    def get_predecessors(self, node_id: str) -> list[str]:
        return [e.source for e in self.edges if e.target == node_id]

    def get_successors(self, node_id: str) -> list[str]:
        return [e.target for e in self.edges if e.source == node_id]

    # ------------------------------------------------------------------
    # Result write-back
    # 结果回写
    # ------------------------------------------------------------------

    def apply_results(self, results: dict[str, RunResult]) -> None:
        """
        Merge run results into the matching instruction payloads.
        将运行结果合并到对应指令节点的负载中。

        Nodes deleted while the run was in flight are simply skipped.
        运行期间被删除的节点直接跳过。
        """
        for node_id, result in results.items():
            node = self.nodes.get(node_id)
            if node is None or not isinstance(node.payload, InstructionPayload):
                continue
            node.payload.result = result.output
            node.payload.last_run = result.completed_at

    # ------------------------------------------------------------------
    # Serialization
    # 序列化 / 反序列化
    # ------------------------------------------------------------------

    def to_document(self, schedule_text: str = "", scheduled_at: datetime | None = None) -> FlowDocument:
        nodes, edges = self.snapshot()
        return FlowDocument(nodes=nodes, edges=edges, schedule_text=schedule_text, scheduled_at=scheduled_at)

    @classmethod
    def from_document(cls, doc: FlowDocument) -> FlowGraph:
        return cls(
            nodes=[n.model_copy(deep=True) for n in doc.nodes],
            edges=list(doc.edges),
        )

    def summary(self) -> str:
        """
        One-line summary for logging, e.g. Flow[3 nodes: 2 instruction, 1 note; 2 edges]
        生成单行摘要，用于日志输出。
        """
        counts: dict[str, int] = {}
        for n in self.nodes.values():
            counts[n.kind.value] = counts.get(n.kind.value, 0) + 1
        parts = [f"{v} {k}" for k, v in counts.items()]
        return f"Flow[{len(self.nodes)} nodes: {', '.join(parts) or 'empty'}; {len(self.edges)} edges]"
