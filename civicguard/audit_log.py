"""Admin action log.

Moderation decisions are appended as newline-delimited JSON in daily files
under ``~/.civicguard/admin_logs/``. The log is written after the decision
commits; it is a record of what admins did, not part of the decision itself.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

ADMIN_ACTIONS = ["flag_review", "issue_delete"]
TARGET_TYPES = ["issue", "flag"]


@dataclass
class AdminLogEntry:
    """A single admin action."""

    id: str
    timestamp: str
    admin_id: str
    action: str
    target_type: str
    target_id: str
    details: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """File-based JSON-lines admin log."""

    def __init__(self, base_dir: Optional[Path | str] = None) -> None:
        self._base_dir = Path(base_dir) if base_dir else Path.home() / ".civicguard" / "admin_logs"
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _log_file_for_date(self, dt: datetime) -> Path:
        return self._base_dir / f"{dt.strftime('%Y-%m-%d')}.jsonl"

    def _read_all_entries(self) -> list[AdminLogEntry]:
        entries: list[AdminLogEntry] = []
        for path in sorted(self._base_dir.glob("*.jsonl")):
            for line in path.read_text(encoding="utf-8").splitlines():
                if line.strip():
                    entries.append(AdminLogEntry(**json.loads(line)))
        return entries

    def log_action(
        self,
        admin_id: str,
        action: str,
        target_type: str,
        target_id: str,
        details: Optional[dict[str, Any]] = None,
    ) -> AdminLogEntry:
        """Append an admin action and return the created entry."""
        if action not in ADMIN_ACTIONS:
            raise ValueError(f"Unknown admin action: {action}")
        if target_type not in TARGET_TYPES:
            raise ValueError(f"Unknown target type: {target_type}")
        now = datetime.now(timezone.utc)
        entry = AdminLogEntry(
            id=uuid.uuid4().hex[:16],
            timestamp=now.isoformat(),
            admin_id=admin_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details or {},
        )
        with self._lock:
            with self._log_file_for_date(now).open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(asdict(entry), default=str) + "\n")
        return entry

    def log_flag_review(
        self, admin_id: str, issue_id: str, action: str, comment: str, flag_count: int, resolved: int
    ) -> AdminLogEntry:
        return self.log_action(
            admin_id,
            "flag_review",
            "issue",
            issue_id,
            {"review_action": action, "comment": comment, "flag_count": flag_count, "resolved_flags": resolved},
        )

    def log_issue_deletion(self, admin_id: str, issue_id: str, reason: str) -> AdminLogEntry:
        return self.log_action(admin_id, "issue_delete", "issue", issue_id, {"reason": reason})

    def get_entries(
        self,
        *,
        admin_id: Optional[str] = None,
        action: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        limit: int = 200,
    ) -> list[AdminLogEntry]:
        """Return filtered entries, newest first."""
        entries = self._read_all_entries()
        if admin_id:
            entries = [e for e in entries if e.admin_id == admin_id]
        if action:
            entries = [e for e in entries if e.action == action]
        if target_type:
            entries = [e for e in entries if e.target_type == target_type]
        if target_id:
            entries = [e for e in entries if e.target_id == target_id]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]
