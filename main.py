"""
cmdflow - Command-line entry point.
cmdflow —— 命令行入口。

Edit, run and schedule command flows from the terminal with a Rich console
UI that shows the execution order, each node's progress and its output.
在终端中编辑、运行和定时命令流程，Rich 控制台 UI 实时展示执行顺序、
各节点进度及其输出。

Examples:
    python main.py add-instruction build "make build"
    python main.py add-instruction build "make test" --after <id>
    python main.py run build
    python main.py schedule build tomorrow 3pm
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from flow.executor import GraphIntegrityError, compute_order
from flow.graph import FlowGraph
from flow.notifier import ResultNotifier
from flow.session import FlowSession
from schema import InstructionPayload, NodeKind, NotePayload, RunReport, RunResult, ScheduleState
from storage.flow_store import FlowStore
from tools.notification import build_sink
from tools.shell_executor import ShellCommandRunner

console = Console()

# Node kind -> Rich style mapping
# 节点类型 -> Rich 样式映射
_KIND_STYLES = {
    NodeKind.INSTRUCTION: "cyan",
    NodeKind.NOTE: "yellow",
}


# ======================================================================
# Graph visualization
# 流程图可视化
# ======================================================================

def _node_label(graph: FlowGraph, node_id: str) -> str:
    node = graph.nodes[node_id]
    style = _KIND_STYLES[node.kind]
    payload = node.payload
    if isinstance(payload, InstructionPayload):
        body = payload.command or "[dim](empty)[/dim]"
    else:
        body = payload.text.splitlines()[0] if payload.text else "[dim](empty)[/dim]"
    return f"[{style}]{node.id[:8]}[/{style}] {node.kind.value}: {body}"


def _build_flow_tree(name: str, graph: FlowGraph) -> Tree:
    """
    Build a Rich Tree following edges from the root nodes.
    从无前驱的根节点出发，沿边构建 Rich Tree。
    Nodes reachable through several parents appear under each of them.
    有多个父节点的节点会在每个父节点下各出现一次。
    """
    tree = Tree(f"[bold]{name}[/bold] [dim]{graph.summary()}[/dim]")

    def add_children(branch: Tree, node_id: str, path: frozenset[str]) -> None:
        for succ in graph.get_successors(node_id):
            if succ in path:
                continue
            child = branch.add(_node_label(graph, succ))
            add_children(child, succ, path | {succ})

    for node_id in graph.nodes:
        if not graph.get_predecessors(node_id):
            root = tree.add(_node_label(graph, node_id))
            add_children(root, node_id, frozenset({node_id}))
    return tree


def _build_order_table(graph: FlowGraph) -> Table:
    nodes, edges = graph.snapshot()
    table = Table(title="Execution Order", border_style="cyan", show_lines=True)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Node", width=10)
    table.add_column("Kind", width=12)
    table.add_column("Command / Text", style="white")
    table.add_column("Last run", style="dim")
    for i, nid in enumerate(compute_order(nodes, edges), 1):
        node = graph.nodes[nid]
        payload = node.payload
        if isinstance(payload, InstructionPayload):
            detail = payload.command
            last_run = payload.last_run.strftime("%Y-%m-%d %H:%M:%S") if payload.last_run else "-"
        else:
            detail = payload.text
            last_run = "-"
        table.add_row(str(i), nid[:8], node.kind.value, detail, last_run)
    return table


# ======================================================================
# UI Event Handler - Pretty-prints session events
# UI 事件处理器 —— 美化打印会话事件
# ======================================================================

def on_event(event: str, data: Any) -> None:
    """
    Handle events from FlowExecutor/ScheduleController and display them.
    处理来自 FlowExecutor/ScheduleController 的事件并在控制台展示。
    """

    if event == "run_start":
        trigger = data["trigger"]
        console.print(Panel(
            f"[bold]{data['flow']}[/bold] ({len(data['order'])} nodes)",
            title=f"[bold blue]Run ({trigger})[/bold blue]",
            border_style="blue",
        ))

    elif event == "node_running":
        node = data["node"]
        console.print(f"  [yellow]>> {node.id[:8]}:[/yellow] {node.payload.command}")

    elif event == "node_completed":
        node = data["node"]
        result: RunResult = data["result"]
        console.print(f"  [green]<< {node.id[:8]} completed.[/green]")
        if result.output:
            console.print(Panel(result.output[:2000], title=f"{node.id[:8]} Output", border_style="green"))

    elif event == "node_failed":
        node = data["node"]
        result: RunResult = data["result"]
        console.print(f"  [red]<< {node.id[:8]} FAILED.[/red]")
        console.print(Panel(result.output[:2000], title=f"{node.id[:8]} Error", border_style="red"))

    elif event == "node_skipped":
        node = data["node"]
        console.print(f"  [dim]-- {node.id[:8]} skipped ({data['reason']})[/dim]")

    elif event == "run_complete":
        report: RunReport = data
        failed = sum(1 for r in report.results.values() if not r.success)
        style = "red" if report.has_errors else "green"
        console.print(
            f"[{style}]Done: {len(report.results)} command(s) run, {failed} failed.[/{style}]"
        )

    elif event == "run_rejected":
        console.print(f"[yellow]{data['flow']} is already running; {data['trigger']} run ignored.[/yellow]")

    elif event == "schedule_armed":
        state: ScheduleState = data
        console.print(f"[cyan]Next run: {state.at:%Y-%m-%d %H:%M:%S}[/cyan] [dim]({state.text})[/dim]")

    elif event == "schedule_fired":
        console.print("[bold cyan]Scheduled run starting...[/bold cyan]")

    elif event == "schedule_cleared":
        console.print("[dim]Schedule cleared.[/dim]")


# ======================================================================
# Commands
# 子命令
# ======================================================================

def _resolve_node(graph: FlowGraph, ref: str) -> str | None:
    """
    Accept a full node ID or a unique prefix of one.
    接受完整节点 ID 或其唯一前缀。
    """
    if ref in graph.nodes:
        return ref
    matches = [nid for nid in graph.nodes if nid.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    console.print(f"[red]{'Ambiguous' if matches else 'Unknown'} node: {ref}[/red]")
    return None


def _open(args: argparse.Namespace, store: FlowStore) -> FlowSession:
    return FlowSession.open(
        args.flow,
        ShellCommandRunner(),
        store,
        notifier=ResultNotifier(build_sink(console=console)),
        on_event=on_event,
    )


async def _dispatch(args: argparse.Namespace) -> int:
    store = FlowStore()
    session = _open(args, store)
    graph = session.graph
    try:
        if args.command == "show":
            console.print(_build_flow_tree(args.flow, graph))
            console.print(f"[dim]Stored in {store.directory}[/dim]")
            console.print(_build_order_table(graph))
            armed = session.schedule.armed
            if armed:
                console.print(f"[cyan]Next run: {armed.at:%Y-%m-%d %H:%M:%S}[/cyan] [dim]({armed.text})[/dim]")
            return 0

        if args.command in ("add-instruction", "add-note"):
            kind = NodeKind.INSTRUCTION if args.command == "add-instruction" else NodeKind.NOTE
            after = _resolve_node(graph, args.after) if args.after else None
            if args.after and after is None:
                return 1
            node = graph.add_node(kind)
            text = " ".join(args.text)
            if isinstance(node.payload, InstructionPayload):
                graph.set_command(node.id, text)
            elif isinstance(node.payload, NotePayload):
                graph.set_text(node.id, text)
            if after:
                graph.add_edge(after, node.id)
            session.save()
            console.print(f"Added {kind.value} [cyan]{node.id}[/cyan]")
            return 0

        if args.command in ("connect", "disconnect"):
            source = _resolve_node(graph, args.source)
            target = _resolve_node(graph, args.target)
            if source is None or target is None:
                return 1
            if args.command == "disconnect":
                graph.remove_edge(source, target)
            elif not graph.add_edge(source, target):
                console.print("[red]Edge rejected: it would create a cycle, a self-loop or a duplicate.[/red]")
                return 1
            session.save()
            return 0

        if args.command == "remove":
            node_id = _resolve_node(graph, args.node)
            if node_id is None:
                return 1
            graph.remove_node(node_id)
            session.save()
            return 0

        if args.command == "run":
            report = await session.run()
            session.save()
            return 1 if report is None or report.has_errors else 0

        if args.command == "schedule":
            session.schedule.set_schedule_text(" ".join(args.when))
            if not session.schedule.commit():
                console.print("[red]Could not parse date. Try a different format.[/red]")
                return 1
            console.print("[dim]Waiting for the scheduled run (Ctrl+C to detach; the schedule stays saved)...[/dim]")
            while session.schedule.is_armed:
                await asyncio.sleep(1)
            task = session.schedule.fire_task
            if task is not None:
                await task
            report = session.last_report
            return 1 if report is None or report.has_errors else 0

        if args.command == "unschedule":
            session.schedule.clear()
            return 0
    except GraphIntegrityError as exc:
        console.print(f"[red]Flow is not a valid DAG: {exc}[/red]")
        return 2
    finally:
        session.close()
    return 0


# ======================================================================
# Main
# 主函数
# ======================================================================

def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging with rich handler.
    使用 Rich 处理器配置日志系统。
    verbose=True 时启用 DEBUG 级别，显示所有内部调试信息。
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cmdflow", description="Compose, run and schedule command flows.")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("show", help="show the graph and its execution order")
    p.add_argument("flow")

    for name, help_text in (("add-instruction", "add a command node"), ("add-note", "add a note node")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("flow")
        p.add_argument("text", nargs="+")
        p.add_argument("--after", help="connect the new node after this node (ID or prefix)")

    for name in ("connect", "disconnect"):
        p = sub.add_parser(name, help=f"{name} two nodes")
        p.add_argument("flow")
        p.add_argument("source")
        p.add_argument("target")

    p = sub.add_parser("remove", help="remove a node and its edges")
    p.add_argument("flow")
    p.add_argument("node")

    p = sub.add_parser("run", help="run the flow now")
    p.add_argument("flow")

    p = sub.add_parser("schedule", help="schedule a run, e.g. 'tomorrow 3pm', and wait for it")
    p.add_argument("flow")
    p.add_argument("when", nargs="+")

    p = sub.add_parser("unschedule", help="clear the saved schedule")
    p.add_argument("flow")
    return parser


def main(argv: list[str] | None = None) -> int:
    """
    程序入口：解析命令行参数并分发到对应子命令。
    """
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    try:
        return asyncio.run(_dispatch(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Detached. The committed schedule remains saved.[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
