"""Append-only per-conversation tool log."""

import json
import logging
import re
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.\-]+$")


@dataclass
class ToolLogEntry:
    """One tool call outcome. Successful and failed calls are both recorded."""

    turn: int
    name: str
    input: Any
    ok: bool
    latency_ms: int
    idempotency_key: str
    correlation_id: str
    result: Any = None
    error_class: Optional[str] = None
    org_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ToolLog:
    """Storage interface. Entries are only ever appended."""

    def append(self, conversation_id: str, entry: ToolLogEntry) -> None:
        raise NotImplementedError

    def read(self, conversation_id: str) -> List[ToolLogEntry]:
        raise NotImplementedError

    def next_turn(self, conversation_id: str) -> int:
        return len(self.read(conversation_id)) + 1


class InMemoryToolLog(ToolLog):
    def __init__(self):
        self._entries: Dict[str, List[ToolLogEntry]] = {}

    def append(self, conversation_id: str, entry: ToolLogEntry) -> None:
        self._entries.setdefault(conversation_id, []).append(entry)

    def read(self, conversation_id: str) -> List[ToolLogEntry]:
        return list(self._entries.get(conversation_id, []))


class JsonlToolLog(ToolLog):
    """One JSON Lines file per conversation under ``log_dir``."""

    def __init__(self, log_dir: Path):
        self.log_dir = Path(log_dir)
        self._lock = threading.Lock()

    def _path(self, conversation_id: str) -> Path:
        if not _SAFE_ID.match(conversation_id or ""):
            raise ValueError(f"Invalid conversation id for tool log: {conversation_id!r}")
        return self.log_dir / f"{conversation_id}.jsonl"

    def append(self, conversation_id: str, entry: ToolLogEntry) -> None:
        path = self._path(conversation_id)
        line = json.dumps(entry.to_dict(), ensure_ascii=False, default=str)
        with self._lock:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        logger.debug(f"Appended tool log entry for conversation {conversation_id}: {entry.name} ok={entry.ok}")

    def read(self, conversation_id: str) -> List[ToolLogEntry]:
        path = self._path(conversation_id)
        if not path.exists():
            return []
        entries = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(ToolLogEntry(**json.loads(line)))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.error(f"Corrupt tool log line in {path}: {e}")
        return entries
