"""Audit logger.

Builds audit entries and hands them to the audit store. Delivery is
best-effort: a failing store is logged, never surfaced to the caller, and
never changes the outcome of the action being audited.

When started, entries go through an asyncio queue drained by a background
task. When not started (scripts, tests), entries are appended inline.
"""

import asyncio
import functools
import inspect
import logging
from typing import Any, Awaitable, Callable

from packages.audit.models import (
    AuditAction,
    AuditActor,
    AuditEntry,
    AuditFields,
    AuditOutcome,
    AuditSeverity,
)
from packages.audit.storage import AuditStore

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("onboard.audit")
security_logger = logging.getLogger("onboard.security")

DEFAULT_QUEUE_SIZE = 1000

# derive_fields(args, kwargs, result) on success, derive_fields(args, kwargs) on failure
FieldDeriver = Callable[..., dict[str, Any]]


def failure_severity(action: AuditAction) -> AuditSeverity:
    """Failed logins are expected noise; other failures are errors."""
    if "login" in action.value:
        return AuditSeverity.WARNING
    return AuditSeverity.ERROR


class AuditLogger:
    """Records audit entries.

    Usage:
        audit = AuditLogger(FileAuditStorage("data/audit"))
        await audit.start()

        await audit.log_success(AuditFields(
            action=AuditAction.ROLE_ASSIGN,
            actor=AuditActor(actor_id="admin@example.com"),
            resource_type="user",
            resource_id="intern@example.com",
        ))
    """

    def __init__(self, store: AuditStore, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.store = store
        self._queue_size = queue_size
        self._queue: asyncio.Queue[AuditEntry] | None = None
        self._task: asyncio.Task | None = None

    # =========================================================================
    # Entry construction
    # =========================================================================

    def _build_entry(
        self,
        fields: AuditFields,
        outcome: AuditOutcome,
        reason: str | None = None,
    ) -> AuditEntry | None:
        actor = fields.actor
        if actor is None or not actor.actor_id:
            logger.debug("Audit skipped, no actor for %s", fields.action.value)
            return None

        if fields.severity is not None:
            severity = fields.severity
        elif outcome == AuditOutcome.FAILURE:
            severity = failure_severity(fields.action)
        else:
            severity = AuditSeverity.INFO

        return AuditEntry(
            actor_id=actor.actor_id,
            actor_email=actor.email,
            actor_role=actor.role,
            action=fields.action,
            severity=severity,
            resource_type=fields.resource_type,
            resource_id=fields.resource_id,
            resource_name=fields.resource_name,
            outcome=outcome,
            failure_reason=(reason or "Unknown error") if outcome == AuditOutcome.FAILURE else None,
            details=fields.details,
            metadata=fields.metadata,
        )

    async def log_success(self, fields: AuditFields) -> AuditEntry | None:
        """Record a successful action. Returns the entry, None if skipped."""
        entry = self._build_entry(fields, AuditOutcome.SUCCESS)
        if entry is not None:
            await self._submit(entry)
        return entry

    async def log_failure(self, fields: AuditFields, reason: str) -> AuditEntry | None:
        """Record a failed action. Returns the entry, None if skipped."""
        entry = self._build_entry(fields, AuditOutcome.FAILURE, reason)
        if entry is not None:
            await self._submit(entry)
        return entry

    # =========================================================================
    # Guarded actions
    # =========================================================================

    def with_audit(
        self,
        action: AuditAction,
        fn: Callable[..., Awaitable[Any] | Any],
        derive_fields: FieldDeriver | None = None,
        *,
        actor: AuditActor | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Callable[..., Awaitable[Any]]:
        """Wrap an action so its outcome is audited.

        The wrapper returns whatever `fn` returns and re-raises whatever it
        raises. Exactly one entry is written per call, unless the actor is
        unknown or building the entry fails.
        """

        def build_fields(*derive_args: Any) -> AuditFields | None:
            try:
                derived = derive_fields(*derive_args) if derive_fields else {}
                base: dict[str, Any] = {
                    "action": action,
                    "actor": actor,
                    "metadata": dict(metadata or {}),
                }
                base.update(derived or {})
                return AuditFields(**base)
            except Exception:
                logger.exception("Failed to derive audit fields for %s", action.value)
                return None

        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                result = fn(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                fields = build_fields(args, kwargs)
                if fields is not None:
                    await self._safe_log(self.log_failure(fields, str(e)))
                raise

            fields = build_fields(args, kwargs, result)
            if fields is not None:
                await self._safe_log(self.log_success(fields))
            return result

        return wrapper

    async def _safe_log(self, pending: Awaitable[AuditEntry | None]) -> None:
        try:
            await pending
        except Exception:
            logger.exception("Audit logging failed")

    def bind(
        self, actor: AuditActor | None, metadata: dict[str, Any] | None = None
    ) -> "BoundAuditLogger":
        """Get a view of this logger attributed to one identity."""
        return BoundAuditLogger(self, actor, metadata)

    # =========================================================================
    # Delivery
    # =========================================================================

    async def _submit(self, entry: AuditEntry) -> None:
        audit_logger.info(
            "%s by %s outcome=%s resource=%s/%s",
            entry.action.value,
            entry.actor_email or entry.actor_id,
            entry.outcome.value,
            entry.resource_type,
            entry.resource_id,
        )
        if entry.severity == AuditSeverity.CRITICAL:
            security_logger.critical(
                "Critical audit event: %s by %s (%s)",
                entry.action.value,
                entry.actor_id,
                entry.failure_reason or "success",
            )

        if self._queue is not None and self.is_running():
            try:
                self._queue.put_nowait(entry)
                return
            except asyncio.QueueFull:
                logger.warning("Audit queue full, writing %s inline", entry.entry_id)

        await self._deliver(entry)

    async def _deliver(self, entry: AuditEntry) -> None:
        try:
            await self.store.append(entry)
        except Exception:
            logger.exception("Failed to persist audit entry %s", entry.entry_id)

    async def _run(self) -> None:
        """Queue consumer loop."""
        assert self._queue is not None
        while True:
            entry = await self._queue.get()
            try:
                await self._deliver(entry)
            finally:
                self._queue.task_done()

    async def start(self) -> None:
        """Start the background dispatcher."""
        if self.is_running():
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._task = asyncio.create_task(self._run())
        logger.info("Audit dispatcher started (queue size %d)", self._queue_size)

    async def flush(self) -> None:
        """Wait until every queued entry has been delivered."""
        if self._queue is not None and self.is_running():
            await self._queue.join()

    async def stop(self) -> None:
        """Drain the queue and stop the dispatcher."""
        await self.flush()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._queue = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()


class BoundAuditLogger:
    """Audit logger attributed to one identity, typically per request.

    Usage:
        audit = audit_logger.bind(actor, {"ip_address": "10.0.0.1"})
        await audit.log_action(AuditAction.REPORT_EXPORT, resource_type="report")
    """

    def __init__(
        self,
        audit: AuditLogger,
        actor: AuditActor | None,
        metadata: dict[str, Any] | None = None,
    ):
        self._audit = audit
        self.actor = actor
        self.metadata = dict(metadata or {})

    def _fields(self, action: AuditAction, params: dict[str, Any]) -> AuditFields:
        metadata = {**self.metadata, **params.pop("metadata", {})}
        return AuditFields(action=action, actor=self.actor, metadata=metadata, **params)

    async def log_action(self, action: AuditAction, **params: Any) -> AuditEntry | None:
        return await self._audit.log_success(self._fields(action, params))

    async def log_error(
        self, action: AuditAction, error: Exception | str, **params: Any
    ) -> AuditEntry | None:
        return await self._audit.log_failure(self._fields(action, params), str(error))

    def with_audit(
        self,
        action: AuditAction,
        fn: Callable[..., Awaitable[Any] | Any],
        derive_fields: FieldDeriver | None = None,
    ) -> Callable[..., Awaitable[Any]]:
        return self._audit.with_audit(
            action, fn, derive_fields, actor=self.actor, metadata=self.metadata
        )
