"""Append-only activity log per order."""

from pathlib import Path
from typing import Any

from . import config
from .logs import get_logger
from .models import ActivityLogEntry, _generate_id, _utc_now
from .storage import KeyedLocks, read_json, remove_file, safe_filename, write_json_atomic

ACTIVITY_DIR = "activity"

log = get_logger("activity_log")


class ActivityLogRecorder:
    """Records lifecycle events for orders, one file per order."""

    def __init__(self, config_dir: Path | None = None):
        """
        Initialize ActivityLogRecorder.

        Args:
            config_dir: Override data directory (for testing).
        """
        self.config_dir = config_dir or config.data_dir()
        self.activity_dir = self.config_dir / ACTIVITY_DIR
        self._locks = KeyedLocks(self.config_dir, ACTIVITY_DIR)

    def _path(self, order_id: str) -> Path:
        return self.activity_dir / f"{safe_filename(order_id)}.json"

    def _load(self, order_id: str) -> list[dict[str, Any]]:
        return read_json(self._path(order_id), default={"entries": []}).get("entries", [])

    def record(
        self,
        order_id: str,
        action: str,
        performed_by: str,
        from_status: str | None = None,
        to_status: str | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityLogEntry:
        """Append one entry; its sequence number is one past the last entry."""
        with self._locks.hold(order_id):
            entries = self._load(order_id)
            entry = ActivityLogEntry(
                id=_generate_id(),
                order_id=order_id,
                sequence=len(entries) + 1,
                action=action,
                from_status=from_status,
                to_status=to_status,
                performed_by=performed_by,
                notes=notes,
                metadata=metadata,
                timestamp=_utc_now(),
            )
            entries.append(entry.to_dict())
            write_json_atomic(self._path(order_id), {"order_id": order_id, "entries": entries})

        log.debug("activity_recorded", order_id=order_id, action=action, sequence=entry.sequence)
        return entry

    def entries(self, order_id: str) -> list[ActivityLogEntry]:
        """All entries for an order, oldest first."""
        entries = [ActivityLogEntry.from_dict(e) for e in self._load(order_id)]
        entries.sort(key=lambda e: (e.sequence, e.timestamp))
        return entries

    def status_history(self, order_id: str) -> list[str]:
        """Statuses the order has passed through, reconstructed from the log."""
        return [e.to_status for e in self.entries(order_id) if e.to_status]

    def discard(self, order_id: str) -> None:
        """Drop the log of an order whose creation was rolled back."""
        with self._locks.hold(order_id):
            remove_file(self._path(order_id))
