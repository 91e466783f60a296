"""Role assignment storage backends.

The role store is an external collaborator; these adapters exist so the
service can run standalone in development and tests.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from packages.authz.models import Role, UserRoleAssignment

logger = logging.getLogger(__name__)


class RoleStore(Protocol):
    """Protocol for role assignment storage.

    One assignment per subject. Clearing keeps the record with no role.
    Implementations raise on persistence failures.
    """

    async def find_role_assignment(self, subject_id: str) -> Role | None:
        """Get the subject's active role, None if unassigned."""
        ...

    async def get_assignment(self, subject_id: str) -> UserRoleAssignment | None:
        """Get the full assignment record, including cleared ones."""
        ...

    async def upsert_role_assignment(
        self, subject_id: str, role: Role, assigned_by: str | None = None
    ) -> None:
        """Set the subject's role, replacing any previous one."""
        ...

    async def clear_role_assignment(
        self, subject_id: str, cleared_by: str | None = None
    ) -> None:
        """Move the subject to the no-role state."""
        ...

    async def list_assignments(self) -> list[UserRoleAssignment]:
        """All assignment records."""
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _apply_upsert(
    records: dict[str, UserRoleAssignment],
    subject_id: str,
    role: Role,
    assigned_by: str | None,
) -> None:
    now = _utcnow()
    existing = records.get(subject_id)
    if existing is None:
        records[subject_id] = UserRoleAssignment(
            subject_id=subject_id,
            role=role,
            assigned_by=assigned_by,
            assigned_at=now,
            updated_at=now,
        )
        return

    records[subject_id] = existing.model_copy(
        update={"role": role, "assigned_by": assigned_by, "assigned_at": now, "updated_at": now}
    )


def _apply_clear(
    records: dict[str, UserRoleAssignment],
    subject_id: str,
    cleared_by: str | None,
) -> None:
    existing = records.get(subject_id)
    if existing is None:
        return
    records[subject_id] = existing.model_copy(
        update={"role": None, "assigned_by": cleared_by, "updated_at": _utcnow()}
    )


class InMemoryRoleStore:
    """Dictionary-backed role store for development and tests."""

    def __init__(self, initial: dict[str, Role | str] | None = None):
        self._records: dict[str, UserRoleAssignment] = {}
        for subject_id, role in (initial or {}).items():
            _apply_upsert(self._records, subject_id, Role(role), "seed")

    async def find_role_assignment(self, subject_id: str) -> Role | None:
        record = self._records.get(subject_id)
        return record.role if record else None

    async def get_assignment(self, subject_id: str) -> UserRoleAssignment | None:
        return self._records.get(subject_id)

    async def upsert_role_assignment(
        self, subject_id: str, role: Role, assigned_by: str | None = None
    ) -> None:
        _apply_upsert(self._records, subject_id, role, assigned_by)

    async def clear_role_assignment(
        self, subject_id: str, cleared_by: str | None = None
    ) -> None:
        _apply_clear(self._records, subject_id, cleared_by)

    async def list_assignments(self) -> list[UserRoleAssignment]:
        return list(self._records.values())


class FileRoleStore:
    """JSON file role store.

    The whole document is rewritten on every change through a temporary
    file and an atomic rename, so a failed write leaves the previous state.

    WARNING: Single-process only. Use a database-backed store when the
    service is replicated.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        logger.info("FileRoleStore initialized at %s", self.path)

    def _read(self) -> dict[str, UserRoleAssignment]:
        if not self.path.exists():
            return {}

        with open(self.path, "r", encoding="utf-8") as f:
            data: dict[str, Any] = json.load(f)

        return {
            subject_id: UserRoleAssignment.model_validate(record)
            for subject_id, record in data.get("assignments", {}).items()
        }

    def _write(self, records: dict[str, UserRoleAssignment]) -> None:
        payload = {
            "assignments": {
                subject_id: record.model_dump(mode="json")
                for subject_id, record in records.items()
            }
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.path)

    async def find_role_assignment(self, subject_id: str) -> Role | None:
        record = self._read().get(subject_id)
        return record.role if record else None

    async def get_assignment(self, subject_id: str) -> UserRoleAssignment | None:
        return self._read().get(subject_id)

    async def upsert_role_assignment(
        self, subject_id: str, role: Role, assigned_by: str | None = None
    ) -> None:
        async with self._lock:
            records = self._read()
            _apply_upsert(records, subject_id, role, assigned_by)
            self._write(records)

    async def clear_role_assignment(
        self, subject_id: str, cleared_by: str | None = None
    ) -> None:
        async with self._lock:
            records = self._read()
            _apply_clear(records, subject_id, cleared_by)
            self._write(records)

    async def list_assignments(self) -> list[UserRoleAssignment]:
        return list(self._read().values())


# Factory function
def get_role_store(config: dict[str, Any] | None = None) -> RoleStore:
    """Get role store instance based on configuration."""
    if config and config.get("type") == "file":
        return FileRoleStore(config.get("path", "data/roles.json"))
    return InMemoryRoleStore()
