"""
Change Log Service
Append-only audit trail of guest manifest mutations, persisted as JSON.
"""
import json
import logging
import os
import tempfile
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..core.schemas import ChangeFilter, ChangeLogEntry, ChangeRequest, utc_now
from .prometheus import PrometheusExporter

logger = logging.getLogger(__name__)


def generate_batch_id() -> str:
    """Shared id for changes that belong to one bulk action."""
    return f"batch_{uuid.uuid4().hex[:12]}"


def _find_change(request: ChangeRequest, field: str):
    return next((c for c in request.changes if c.field == field), None)


def describe_change(request: ChangeRequest) -> str:
    """Human-readable description for a change, keyed on the operation name."""
    guest = request.guests[0] if request.guests else None
    ctx = request.additional_context
    op = request.operation

    if op == "CREATE_GUEST":
        if guest:
            nationality = ctx.get("nationality", "Unknown")
            booking = ctx.get("booking_number", "No booking")
            return f"Guest '{guest.name}' added to Cabin {guest.cabin} (Nationality: {nationality}, Booking: {booking})"
        return "New guest added to manifest"

    if op == "ASSIGN_TABLE":
        table_change = _find_change(request, "table_nr")
        if guest and table_change:
            move = f"moved from Table {table_change.old_value} to" if table_change.old_value else "assigned to"
            return f"Guest '{guest.name}' (Cabin {guest.cabin}) {move} Table {table_change.new_value}"
        return "Table assignment updated"

    if op == "ASSIGN_CABIN_TO_TABLE":
        if request.affected_count and ctx.get("cabin") and ctx.get("table"):
            return f"Cabin {ctx['cabin']} ({request.affected_count} guests) assigned to Table {ctx['table']}"
        return "Cabin assigned to table"

    if op == "REMOVE_FROM_TABLE":
        if guest and ctx.get("table"):
            return f"Guest '{guest.name}' (Cabin {guest.cabin}) removed from Table {ctx['table']}"
        return "Guest removed from table"

    if op == "UPDATE_CABIN":
        cabin_change = _find_change(request, "cabin_nr")
        if guest and cabin_change:
            return f"Guest '{guest.name}' cabin changed from {cabin_change.old_value} to {cabin_change.new_value}"
        return "Cabin assignment changed"

    if op == "UPDATE_NATIONALITY":
        nat_change = _find_change(request, "nationality")
        if guest and nat_change:
            return (
                f"Guest '{guest.name}' (Cabin {guest.cabin}) nationality updated from "
                f"'{nat_change.old_value}' to '{nat_change.new_value}'"
            )
        return "Guest nationality updated"

    if op == "DELETE_GUEST":
        if guest:
            table = f", Table {ctx['table_nr']}" if ctx.get("table_nr") else ""
            return f"Guest '{guest.name}' (Cabin {guest.cabin}{table}) removed from manifest"
        return "Guest removed from manifest"

    if op == "BULK_IMPORT":
        success_count = ctx.get("successCount", 0)
        error_count = ctx.get("errorCount", 0)
        failed = f", {error_count} failed" if error_count > 0 else ""
        return f"Bulk import from '{request.file_name}': {success_count} guests imported successfully{failed}"

    if op == "AUTO_ASSIGN_TABLES":
        return (
            f"Automatic table assignment: {request.affected_count or 0} guests distributed across "
            f"{ctx.get('tableCount', 0)} tables using optimization algorithm"
        )

    if op == "CLEAR_ALL_ASSIGNMENTS":
        return (
            f"All table assignments cleared: {request.affected_count or 0} guests unassigned from "
            f"{ctx.get('tableCount', 0)} tables"
        )

    if op == "BULK_CABIN_UPDATE":
        return f"Bulk cabin update: {request.affected_count or 0} guests updated with prefix '{ctx.get('prefix', '')}'"

    if op == "CABIN_SWAP":
        return f"Cabin swap completed: Guests in Cabin {ctx.get('cabin1', '')} ↔ Cabin {ctx.get('cabin2', '')}"

    affected = request.affected_count or len(request.guests) or 1
    return f"{op}: {affected} record(s) affected"


class ChangeLog:
    """
    JSON-backed change history, newest entry first.

    Storage failures never reach the caller: audit logging must not block
    the user action that produced the change.
    """

    def __init__(
        self,
        storage_path: Path = None,
        max_entries: int = 1000,
        clock: Callable[[], datetime] = utc_now,
        exporter: Optional[PrometheusExporter] = None,
    ):
        self.storage_path = Path(storage_path or Path(__file__).parent.parent.parent.parent / "data" / "change_history.json")
        self.max_entries = max_entries
        self._clock = clock
        self._exporter = exporter

    def _load(self) -> List[ChangeLogEntry]:
        """Load all entries. Raises on unreadable storage."""
        if not self.storage_path.exists():
            return []
        raw = json.loads(self.storage_path.read_text() or "[]")
        return [ChangeLogEntry.model_validate(e) for e in raw]

    def _save(self, entries: List[ChangeLogEntry]):
        """Persist all entries. The file is swapped in whole or not at all."""
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([e.model_dump(mode="json") for e in entries], indent=2, ensure_ascii=False)

        fd, tmp_name = tempfile.mkstemp(dir=self.storage_path.parent, prefix=f".{self.storage_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self.storage_path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _load_or_reset(self) -> List[ChangeLogEntry]:
        """
        Load entries for an append.

        Unparseable storage is moved aside to `<name>.corrupt` and the log
        starts over, so one bad write never blocks later changes.
        """
        try:
            return self._load()
        except ValueError as e:
            corrupt_path = self.storage_path.with_name(self.storage_path.name + ".corrupt")
            os.replace(self.storage_path, corrupt_path)
            logger.warning(f"Unreadable change history moved to {corrupt_path}: {e}")
            if self._exporter:
                self._exporter.record_change_log_failure("corrupt")
            return []

    def append(self, request: ChangeRequest, operation_id: Optional[str] = None) -> Optional[ChangeLogEntry]:
        """
        Record a change.

        Returns:
            The stored entry, or None if it could not be persisted
        """
        try:
            entry = ChangeLogEntry(
                id=f"change_{uuid.uuid4().hex[:12]}",
                timestamp=self._clock(),
                action_type=request.type,
                operation=request.operation,
                affected_guests=request.guests,
                changes=request.changes,
                description=request.description or describe_change(request),
                method=request.method,
                user_action=request.user_action,
                batch_id=request.batch_id,
                file_name=request.file_name,
                error_details=request.error_details,
                affected_count=request.affected_count,
                operation_id=operation_id,
            )
            entries = [entry] + self._load_or_reset()
            self._save(entries[:self.max_entries])
        except Exception as e:
            logger.error(f"Failed to log change {request.operation}: {e}")
            if self._exporter:
                self._exporter.record_change_log_failure("append")
            return None

        logger.info(f"Change logged: {entry.id} {entry.operation} ({entry.action_type})")
        if self._exporter:
            self._exporter.record_change(entry.action_type)
        return entry

    def read_all(self) -> List[ChangeLogEntry]:
        """All entries, newest first. Unreadable storage reads as empty."""
        try:
            return self._load()
        except Exception as e:
            logger.error(f"Failed to read change history: {e}")
            if self._exporter:
                self._exporter.record_change_log_failure("read")
            return []

    def clear(self) -> None:
        """Drop all entries."""
        try:
            if self.storage_path.exists():
                self.storage_path.unlink()
            logger.info("Change history cleared")
        except Exception as e:
            logger.error(f"Failed to clear change history: {e}")
            if self._exporter:
                self._exporter.record_change_log_failure("clear")

    def recent(self, minutes: float) -> List[ChangeLogEntry]:
        """Entries newer than `minutes` ago."""
        cutoff = self._clock() - timedelta(minutes=minutes)
        return [e for e in self.read_all() if e.timestamp > cutoff]

    def filter(self, filters: ChangeFilter, durations: Optional[Dict[str, float]] = None) -> List[ChangeLogEntry]:
        return filter_changes(self.read_all(), filters, durations)


def _matches_search(entry: ChangeLogEntry, term: str) -> bool:
    if term in entry.description.lower() or term in entry.operation.lower() or term in entry.user_action.lower():
        return True
    return any(term in g.name.lower() or term in g.cabin.lower() for g in entry.affected_guests)


def filter_changes(
    entries: List[ChangeLogEntry],
    filters: ChangeFilter,
    durations: Optional[Dict[str, float]] = None,
) -> List[ChangeLogEntry]:
    """
    Apply search filters, sorting and pagination to a change history.

    Args:
        entries: Change history, newest first
        filters: Query options
        durations: operation_id -> duration (ms), used when sorting by duration
    """
    changes = list(entries)

    if filters.start:
        changes = [c for c in changes if c.timestamp >= filters.start]
    if filters.end:
        changes = [c for c in changes if c.timestamp <= filters.end]

    if filters.operations:
        changes = [c for c in changes if c.operation in filters.operations]
    if filters.action_types:
        changes = [c for c in changes if c.action_type in filters.action_types]
    if filters.methods:
        changes = [c for c in changes if c.method in filters.methods]

    if filters.error_status == "errors":
        changes = [c for c in changes if c.error_details]
    elif filters.error_status == "success":
        changes = [c for c in changes if not c.error_details]

    if filters.batch_operations is True:
        changes = [c for c in changes if c.batch_id]
    elif filters.batch_operations is False:
        changes = [c for c in changes if not c.batch_id]

    if filters.search_term:
        term = filters.search_term.lower()
        changes = [c for c in changes if _matches_search(c, term)]

    if filters.affected_guests:
        wanted = set(filters.affected_guests)
        changes = [
            c for c in changes
            if any({g.id, g.name, g.cabin} & wanted for g in c.affected_guests)
        ]

    if filters.sort_by:
        durations = durations or {}
        sort_keys = {
            "timestamp": lambda c: c.timestamp,
            "operation": lambda c: c.operation,
            "affected_count": lambda c: c.affected_count or len(c.affected_guests),
            "duration": lambda c: durations.get(c.operation_id, 0.0),
        }
        changes.sort(key=sort_keys[filters.sort_by], reverse=filters.sort_order == "desc")

    return changes[filters.offset:filters.offset + filters.limit]
