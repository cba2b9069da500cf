"""
Flow Store - Persistent JSON-file storage for flow documents.
流程存储 —— 基于 JSON 文件的流程文档持久化。

Each flow lives in `<FLOWS_DIR>/<flow>.json` and holds the graph plus the
committed schedule. Failures come back as values: `load()` returns None and
`save()` returns False; nothing is retried.
每个流程保存在 `<FLOWS_DIR>/<flow>.json`，包含图结构与已提交的定时。
失败以值返回：`load()` 返回 None，`save()` 返回 False，不做自动重试。
"""

from __future__ import annotations

import json
import logging
import os

from pydantic import ValidationError

import config
from schema import FlowDocument

logger = logging.getLogger(__name__)


class FlowStore:
    """
    JSON-file backed flow persistence.
    基于 JSON 文件的流程持久化。
    """

    def __init__(self, flows_dir: str | None = None):
        self._dir = flows_dir or config.FLOWS_DIR  # 流程文件存储目录

    @property
    def directory(self) -> str:
        return self._dir

    def path_for(self, flow_id: str) -> str:
        return os.path.join(self._dir, f"{flow_id}.json")

    # ------------------------------------------------------------------
    # Persistence
    # 持久化
    # ------------------------------------------------------------------

    def load(self, flow_id: str) -> FlowDocument | None:
        """
        Load a flow document from disk.
        从磁盘加载流程文档。若文件不存在或格式错误则返回 None。
        """
        path = self.path_for(flow_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return FlowDocument.model_validate(data)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("[FlowStore] Failed to load flow %s: %s", flow_id, exc)
            return None

    def save(self, flow_id: str, doc: FlowDocument) -> bool:
        """
        Persist a flow document (JSON, ensure_ascii=False).
        将流程文档持久化到磁盘（JSON 格式，ensure_ascii=False 支持中文）。

        Writes to a temporary file first and swaps it in, so a crash never
        leaves a half-written document behind.
        先写临时文件再替换，避免崩溃时留下写了一半的文档。
        """
        path = self.path_for(flow_id)
        tmp_path = path + ".tmp"
        try:
            os.makedirs(self._dir, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(doc.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
        except OSError as exc:
            logger.warning("[FlowStore] Failed to save flow %s: %s", flow_id, exc)
            return False
        logger.debug("[FlowStore] Saved flow %s (%d nodes)", flow_id, len(doc.nodes))
        return True

    def exists(self, flow_id: str) -> bool:
        return os.path.exists(self.path_for(flow_id))
