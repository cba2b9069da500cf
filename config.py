"""
Configuration module for cmdflow.
Loads settings from environment variables or .env file.
cmdflow 配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Storage ---
# --- 存储 ---
FLOWS_DIR = os.path.expanduser(os.getenv("SAVED_FLOWS_DIR", os.path.join(os.getcwd(), "flows")))  # 流程 JSON 文件目录

# --- Scheduling ---
# --- 定时调度 ---
SCHEDULE_DEBOUNCE_SECONDS = float(os.getenv("SCHEDULE_DEBOUNCE_SECONDS", "0.5"))  # 定时文本解析的防抖延迟（秒）

# --- Command execution ---
# --- 命令执行 ---
COMMAND_TIMEOUT = int(os.getenv("COMMAND_TIMEOUT", "600"))  # 单条命令超时（秒），0 表示不限制
COMMAND_CWD = os.path.expanduser(os.getenv("COMMAND_CWD", os.getcwd()))  # 命令执行的工作目录

# --- Notifications ---
# --- 通知 ---
NOTIFY_BACKEND = os.getenv("NOTIFY_BACKEND", "console")  # "console" | "desktop" | "log" | "none"
