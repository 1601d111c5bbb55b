"""Audit trail for template and series mutations.

Entries describe what happened to a business object (created, updated,
deleted, generated) and are handed to an :class:`AuditSink`. Writing the
audit trail is best effort: a failing sink is logged and never undoes or
blocks the operation being audited.
"""

from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arq_cashflow.models import SeriesScope, TenantContext
from arq_cashflow.store.tables import AuditLogRecord

logger = structlog.get_logger(__name__)


class AuditAction(str, Enum):
    """What happened to the audited entity."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    GENERATED = "generated"
    REGENERATED = "regenerated"


class EntityType(str, Enum):
    RECURRING_EXPENSE = "recurring_expense"
    EXPENSE_SERIES = "expense_series"


def _jsonable(value: Any) -> Any:
    """Convert domain values into JSON-friendly primitives."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class AuditEntry:
    """One audited change."""

    team_id: UUID
    user_id: UUID
    entity_type: EntityType
    entity_id: UUID
    action: AuditAction
    user_email: str = ""
    changes: dict[str, Any] = field(default_factory=dict)
    snapshot: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    entry_id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging or JSON storage."""
        return {
            "id": str(self.entry_id),
            "team_id": str(self.team_id),
            "user_id": str(self.user_id),
            "user_email": self.user_email,
            "entity_type": self.entity_type.value,
            "entity_id": str(self.entity_id),
            "action": self.action.value,
            "changes": _jsonable(self.changes),
            "snapshot": _jsonable(self.snapshot),
            "metadata": _jsonable(self.metadata),
            "timestamp": self.timestamp.isoformat(),
        }


class AuditSink(Protocol):
    async def record(self, entry: AuditEntry) -> None: ...


class LoggingAuditSink:
    """Writes audit entries as structured log lines."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="audit")

    async def record(self, entry: AuditEntry) -> None:
        self._logger.info("audit_entry", **entry.to_dict())


class SqlAuditSink:
    """Persists audit entries to the ``audit_log`` table in their own transaction."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions

    async def record(self, entry: AuditEntry) -> None:
        data = entry.to_dict()
        async with self._sessions() as session, session.begin():
            session.add(
                AuditLogRecord(
                    id=entry.entry_id,
                    team_id=entry.team_id,
                    user_id=entry.user_id,
                    user_email=entry.user_email,
                    entity_type=data["entity_type"],
                    entity_id=entry.entity_id,
                    action=data["action"],
                    changes=data["changes"],
                    snapshot=data["snapshot"],
                    metadata_=data["metadata"],
                    created_at=entry.timestamp,
                )
            )


async def record_safely(sink: AuditSink, entry: AuditEntry) -> None:
    """Hand ``entry`` to ``sink``; sink failures are logged, not raised."""
    try:
        await sink.record(entry)
    except Exception as exc:
        logger.warning(
            "audit_failed",
            error=str(exc),
            entity_type=entry.entity_type.value,
            entity_id=str(entry.entity_id),
            action=entry.action.value,
        )


# === Entry factories ===


def _entry(
    ctx: TenantContext,
    entity_type: EntityType,
    entity_id: UUID,
    action: AuditAction,
    **kwargs: Any,
) -> AuditEntry:
    return AuditEntry(
        team_id=ctx.team_id,
        user_id=ctx.user_id,
        user_email=ctx.user_email,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        **kwargs,
    )


def template_created(ctx: TenantContext, template: Any) -> AuditEntry:
    return _entry(
        ctx, EntityType.RECURRING_EXPENSE, template.id, AuditAction.CREATED,
        snapshot=_jsonable(template),
    )


def template_updated(
    ctx: TenantContext, template: Any, changes: dict[str, Any], rule_changed: bool
) -> AuditEntry:
    return _entry(
        ctx, EntityType.RECURRING_EXPENSE, template.id, AuditAction.UPDATED,
        changes=changes,
        snapshot=_jsonable(template),
        metadata={"rule_changed": rule_changed},
    )


def series_generated(
    ctx: TenantContext, template_id: UUID, generated_count: int, skipped: int = 0
) -> AuditEntry:
    return _entry(
        ctx, EntityType.EXPENSE_SERIES, template_id, AuditAction.GENERATED,
        metadata={"generated_count": generated_count, "skipped_count": skipped},
    )


def series_updated(
    ctx: TenantContext,
    template_id: UUID,
    scope: SeriesScope,
    updated_count: int,
    changes: dict[str, Any],
    target_id: UUID | None = None,
) -> AuditEntry:
    return _entry(
        ctx, EntityType.EXPENSE_SERIES, template_id, AuditAction.UPDATED,
        changes=changes,
        metadata={
            "scope": scope.value,
            "updated_count": updated_count,
            "target_id": str(target_id) if target_id else None,
        },
    )


def series_deleted(
    ctx: TenantContext,
    template_id: UUID,
    scope: SeriesScope,
    deleted_count: int,
    target_id: UUID | None = None,
) -> AuditEntry:
    return _entry(
        ctx, EntityType.EXPENSE_SERIES, template_id, AuditAction.DELETED,
        metadata={
            "scope": scope.value,
            "deleted_count": deleted_count,
            "target_id": str(target_id) if target_id else None,
        },
    )


def series_regenerated(
    ctx: TenantContext,
    template_id: UUID,
    removed_count: int,
    generated_count: int,
    preserved_paid: int,
) -> AuditEntry:
    return _entry(
        ctx, EntityType.EXPENSE_SERIES, template_id, AuditAction.REGENERATED,
        metadata={
            "removed_count": removed_count,
            "generated_count": generated_count,
            "preserved_paid_count": preserved_paid,
        },
    )
