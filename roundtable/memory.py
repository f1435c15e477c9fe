"""Append-only JSONL memory: deliberation opportunities in, prompt context out."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List
import json
import logging
import uuid
try:
    import fcntl  # type: ignore
except Exception:  # pragma: no cover - non-POSIX environments
    fcntl = None

from roundtable.text import jaccard

logger = logging.getLogger(__name__)

CONTEXT_SNIPPET_CHARS = 500


@dataclass
class MemoryStore:
    path: Path
    max_entries: int = 5
    min_similarity: float = 0.2

    def store_memory(
        self,
        role: str,
        task_description: str,
        content: str,
        quality_score: float,
    ) -> Dict[str, Any]:
        entry = {
            "id": uuid.uuid4().hex[:12],
            "created_at": datetime.now().astimezone().isoformat(timespec="seconds"),
            "role": role,
            "task_description": task_description,
            "content": content,
            "quality_score": quality_score,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            if fcntl is not None:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                handle.write(json.dumps(entry) + "\n")
            finally:
                if fcntl is not None:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        logger.debug("Stored %s memory %s", role, entry["id"])
        return entry

    def entries(self, role: str | None = None, limit: int | None = None) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        items: List[Dict[str, Any]] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                item = json.loads(line)
            except ValueError:
                logger.warning("Skipping corrupt memory line in %s", self.path)
                continue
            if role and item.get("role") != role:
                continue
            items.append(item)
        if limit is not None:
            items = items[-limit:]
        return items

    def relevant(self, role: str, task_description: str, limit: int | None = None) -> List[Dict[str, Any]]:
        """Stored entries for ``role`` that resemble the task, best first.

        Ranked by 0.6 * similarity + 0.4 * quality_score; entries below
        ``min_similarity`` are dropped.
        """
        scored = []
        for item in self.entries(role=role):
            text = f"{item.get('task_description', '')} {item.get('content', '')}"
            similarity = jaccard(task_description, text)
            if similarity < self.min_similarity:
                continue
            quality = float(item.get("quality_score") or 0.0)
            scored.append((similarity * 0.6 + quality * 0.4, item))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [item for _, item in scored[: limit or self.max_entries]]

    def build_context(self, role: str, task_description: str) -> str:
        memories = self.relevant(role, task_description)
        if not memories:
            return ""
        parts = []
        for i, item in enumerate(memories, start=1):
            content = str(item.get("content", ""))
            snippet = content[:CONTEXT_SNIPPET_CHARS] + ("..." if len(content) > CONTEXT_SNIPPET_CHARS else "")
            quality = float(item.get("quality_score") or 0.0)
            parts.append(
                f"[Example {i} - Quality: {quality * 100:.0f}%]\n"
                f"Task: {item.get('task_description', '')}\n"
                f"Response: {snippet}"
            )
        body = "\n\n".join(parts)
        return f"--- Relevant Past Examples ---\n{body}\n--- End Examples ---"
