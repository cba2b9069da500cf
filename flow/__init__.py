"""
Flow module - Core engine for command-flow editing, execution and scheduling.
Flow 模块 —— 命令流程的编辑、执行与定时核心引擎。

Components:
  - cycle_guard.py: DAG invariant check for every new edge
  - graph.py:       FlowGraph data structure
  - executor.py:    Kahn ordering + sequential runner
  - scheduler.py:   debounced natural-language scheduling
  - notifier.py:    run-complete notification
  - session.py:     per-flow owner of all of the above

模块组成：
  - cycle_guard.py: 每条新边的 DAG 不变量检查
  - graph.py:       FlowGraph 数据结构
  - executor.py:    Kahn 排序 + 串行执行
  - scheduler.py:   防抖的自然语言定时
  - notifier.py:    运行完成通知
  - session.py:     以上组件在单个流程上的持有者
"""

from flow.graph import FlowGraph                       # 流程图
from flow.cycle_guard import would_create_cycle        # 环检测
from flow.executor import FlowExecutor, GraphIntegrityError, compute_order  # 执行引擎
from flow.scheduler import ScheduleController, ScheduleStatus  # 定时控制器
from flow.notifier import ResultNotifier               # 结果通知
from flow.session import FlowSession                   # 流程会话
