"""Audit storage backends.

Provides append-only storage implementations for audit entries.
"""

import logging
from pathlib import Path
from typing import Any, Iterable, Protocol

from packages.audit.models import AuditEntry, AuditPage, AuditQuery

logger = logging.getLogger(__name__)


class AuditStore(Protocol):
    """Protocol for audit entry storage.

    Append-only: nothing in the service updates or deletes entries.
    """

    async def append(self, entry: AuditEntry) -> None:
        """Append an entry to storage."""
        ...

    async def query(self, query: AuditQuery) -> AuditPage:
        """Filter entries, newest first, then paginate."""
        ...


def _paginate(entries: Iterable[AuditEntry], query: AuditQuery) -> AuditPage:
    """Apply filters and pagination to entries ordered newest first."""
    filtered = [entry for entry in entries if query.matches(entry)]

    start = query.offset
    end = start + query.limit
    return AuditPage(
        entries=filtered[start:end],
        total=len(filtered),
        limit=query.limit,
        offset=query.offset,
    )


class InMemoryAuditStorage:
    """In-memory audit storage for development and tests."""

    def __init__(self):
        self._entries: list[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    async def query(self, query: AuditQuery) -> AuditPage:
        newest_first = sorted(self._entries, key=lambda e: e.timestamp, reverse=True)
        return _paginate(newest_first, query)

    @property
    def entries(self) -> list[AuditEntry]:
        """All entries in append order."""
        return list(self._entries)


class FileAuditStorage:
    """File-based audit storage for development and small deployments.

    Stores entries in JSONL (JSON Lines) format, one entry per line, in a
    single `audit.jsonl` under the storage directory.

    WARNING: This is NOT suitable for high-volume production use. Every
    query reads the whole file.
    """

    FILENAME = "audit.jsonl"

    def __init__(self, storage_path: str | Path):
        """Initialize file storage.

        Args:
            storage_path: Directory to store the audit file
        """
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.file_path = self.storage_path / self.FILENAME
        logger.info("FileAuditStorage initialized at %s", self.storage_path)

    async def append(self, entry: AuditEntry) -> None:
        """Append an entry to storage."""
        with open(self.file_path, "a", encoding="utf-8") as f:
            f.write(entry.model_dump_json() + "\n")

        logger.debug("Appended audit entry: %s %s", entry.entry_id, entry.action.value)

    async def get_all(self) -> list[AuditEntry]:
        """Get all entries in append order."""
        if not self.file_path.exists():
            return []

        entries = []
        with open(self.file_path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                entries.append(AuditEntry.model_validate_json(line))

        return entries

    async def query(self, query: AuditQuery) -> AuditPage:
        """Query audit entries with filters."""
        all_entries = await self.get_all()
        all_entries.sort(key=lambda e: e.timestamp, reverse=True)
        return _paginate(all_entries, query)


# Factory function
def get_audit_storage(config: dict[str, Any] | None = None) -> AuditStore:
    """Get audit storage instance based on configuration."""
    if config and config.get("type") == "memory":
        return InMemoryAuditStorage()

    # Default to file storage
    storage_path = config.get("path", "data/audit") if config else "data/audit"
    return FileAuditStorage(storage_path)
