"""
Pydantic data models for cmdflow.
Defines the core data structures shared by the graph, executor, scheduler and store.
cmdflow 的 Pydantic 数据模型。
定义了贯穿图模型、执行引擎、调度器与存储层的核心数据结构。
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field


# ======================================================================
# Node payloads
# 节点负载（按类型区分的两种形态）
# ======================================================================

class NodeKind(str, Enum):
    """
    The two node kinds a flow can contain.
    流程中的两种节点类型。
    """
    INSTRUCTION = "instruction"  # 指令节点：执行一条 shell 命令
    NOTE = "note"                # 备注节点：纯文本，不执行


class InstructionPayload(BaseModel):
    """
    Payload of an instruction node: the command plus its last outcome.
    指令节点负载：命令字符串及最近一次运行结果。
    """
    kind: Literal["instruction"] = "instruction"
    command: str = ""                   # 要执行的 shell 命令
    last_run: datetime | None = None    # 最近一次运行完成时间
    result: str | None = None           # 最近一次运行的合并输出文本


class NotePayload(BaseModel):
    """
    Payload of a note node: free text only.
    备注节点负载：仅包含自由文本。
    """
    kind: Literal["note"] = "note"
    text: str = ""


NodePayload = Union[InstructionPayload, NotePayload]


# ======================================================================
# Graph structures
# 图结构
# ======================================================================

class FlowNode(BaseModel):
    """
    A single node in the flow graph.
    流程图中的单个节点。

    `placement` belongs to whatever front end draws the graph; the engine
    stores it verbatim and never reads it.
    `placement` 由绘图前端持有，引擎只原样保存，从不读取。
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))               # 稳定的节点 ID
    payload: NodePayload = Field(discriminator="kind")                       # 带标签的负载
    placement: dict[str, Any] | None = None                                  # 可视化位置（对引擎不透明）

    @property
    def kind(self) -> NodeKind:
        return NodeKind(self.payload.kind)


class FlowEdge(BaseModel):
    """
    A directed edge: `source` must run before `target`.
    有向边：`source` 必须先于 `target` 执行。
    """
    source: str = Field(description="Source node ID")   # 起点节点 ID
    target: str = Field(description="Target node ID")   # 终点节点 ID


# ======================================================================
# Execution results
# 执行结果模型
# ======================================================================

class CommandOutcome(BaseModel):
    """
    What the command runner reports back for one command.
    命令执行器返回的单条命令结果。失败以值的形式返回，而不是抛异常。
    """
    success: bool
    stdout: str = ""
    stderr: str = ""
    error: str | None = None  # 失败信息（仅 success=False 时有意义）


class RunResult(BaseModel):
    """
    Per-node outcome of one run.
    单次运行中某个节点的结果。
    """
    node_id: str
    success: bool
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    output: str = ""            # 合并后的人类可读结果文本
    completed_at: datetime


class RunReport(BaseModel):
    """
    Aggregate result of a full run.
    一次完整运行的汇总结果。
    """
    flow_name: str
    order: list[str] = Field(default_factory=list)                   # 本次使用的拓扑顺序
    results: dict[str, RunResult] = Field(default_factory=dict)      # node_id -> RunResult（仅已执行节点）
    has_errors: bool = False
    trigger: str = "manual"                                          # "manual" | "schedule"


# ======================================================================
# Scheduling
# 定时调度
# ======================================================================

class ScheduleState(BaseModel):
    """
    A committed schedule: the text the user typed and the instant it resolved to.
    已提交的定时：用户输入的原始文本及其解析出的时间点。
    """
    text: str
    at: datetime


# ======================================================================
# Persistence
# 持久化文档
# ======================================================================

class FlowDocument(BaseModel):
    """
    Serialized form of one flow: graph plus optional schedule.
    单个流程的序列化形式：图结构 + 可选定时信息。
    """
    nodes: list[FlowNode] = Field(default_factory=list)
    edges: list[FlowEdge] = Field(default_factory=list)
    schedule_text: str = ""                  # 已提交的定时文本，空串表示无定时
    scheduled_at: datetime | None = None     # 已提交定时解析出的时间点
