"""
Shell Command Runner - Runs instruction commands in a subprocess.
Shell 命令执行器 —— 在子进程中运行指令节点的命令。

Executes a command line through the platform shell with an optional timeout,
capturing stdout and stderr. Every failure (non-zero exit, timeout, spawn
error) is reported as a CommandOutcome value.
通过系统 shell 执行命令行，可选超时保护，捕获 stdout 和 stderr。
所有失败（非零退出码、超时、启动错误）都以 CommandOutcome 值返回。
"""

from __future__ import annotations

import asyncio
import logging
import subprocess

import config
from schema import CommandOutcome
from tools.base import CommandRunner

logger = logging.getLogger(__name__)


class ShellCommandRunner(CommandRunner):
    """
    Run shell commands in a subprocess with timeout protection.
    在带超时保护的子进程中执行 shell 命令。
    """

    def __init__(self, cwd: str | None = None, timeout: int | None = None):
        self._cwd = cwd or config.COMMAND_CWD
        # 0 表示不限制超时
        limit = config.COMMAND_TIMEOUT if timeout is None else timeout
        self._timeout = limit or None

    @property
    def name(self) -> str:
        return "shell"

    async def run(self, command: str) -> CommandOutcome:
        if not command.strip():
            return CommandOutcome(success=False, error="No command provided.")

        logger.info("Executing command: %s", command)

        try:
            # 使用 run_in_executor 将同步的 subprocess.run 包装为异步，避免阻塞事件循环
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self._run_sync, command)
        except subprocess.TimeoutExpired as exc:
            return CommandOutcome(
                success=False,
                error=f"Command timed out after {self._timeout}s: {command}",
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr),
            )
        except Exception as exc:
            return CommandOutcome(success=False, error=f"Error executing command: {exc}")

        if result.returncode != 0:
            # 非零退出码视为失败，保留已产生的输出
            return CommandOutcome(
                success=False,
                error=f"Command failed with exit code {result.returncode}: {command}",
                stdout=result.stdout or "",
                stderr=result.stderr or "",
            )
        return CommandOutcome(success=True, stdout=result.stdout or "", stderr=result.stderr or "")

    def _run_sync(self, command: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            command,
            shell=True,
            cwd=self._cwd,
            capture_output=True,  # 同时捕获 stdout 和 stderr
            text=True,
            timeout=self._timeout,
        )


def _as_text(data: str | bytes | None) -> str:
    # TimeoutExpired 可能携带 bytes，即使 text=True
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
