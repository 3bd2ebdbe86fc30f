"""Append-only audit log for consolidation decisions, stored as JSONL."""

from dataclasses import dataclass, asdict, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional
import json
import uuid
import aiofiles

from ..config import config


@dataclass
class AuditEntry:
    """A single write-once audit record."""
    operation_id: str
    timestamp: str
    details: dict[str, Any] = field(default_factory=dict)
    operation_type: str = "memory_organization"
    user_id: str = "system"
    risk_level: str = "low"
    success: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @classmethod
    def for_organization(cls, now: datetime, details: dict) -> "AuditEntry":
        stamp = int(now.timestamp() * 1000)
        return cls(
            id=f"memory-org-{stamp}-{uuid.uuid4().hex[:8]}",
            operation_id=f"memory-org-{stamp}",
            timestamp=now.isoformat(),
            details=details,
        )


class AuditLog:
    """
    Writes audit entries in JSONL format, one file per day.

    Structure:
    data/audit/2024-01-30.jsonl
    """

    def __init__(self, base_path: Optional[Path] = None):
        self.base_path = base_path or config.paths.audit
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for(self, day: date) -> Path:
        return self.base_path / f"{day.isoformat()}.jsonl"

    async def append(self, entry: AuditEntry) -> None:
        """Append one entry to the file of the entry's day."""
        day = datetime.fromisoformat(entry.timestamp).date()
        async with aiofiles.open(self._path_for(day), "a", encoding="utf-8") as f:
            await f.write(json.dumps(asdict(entry), ensure_ascii=False) + "\n")

    async def read_entries(self, day: date) -> list[AuditEntry]:
        """Read back the entries of one day."""
        path = self._path_for(day)
        if not path.exists():
            return []

        entries = []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            async for line in f:
                line = line.strip()
                if line:
                    try:
                        entries.append(AuditEntry(**json.loads(line)))
                    except (json.JSONDecodeError, TypeError):
                        continue
        return entries
