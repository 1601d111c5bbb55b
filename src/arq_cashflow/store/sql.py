"""SQLAlchemy-backed series store.

Each transaction is one ``AsyncSession`` inside ``session.begin()``: the
block commits when it exits cleanly and rolls back on any exception. Every
statement is filtered by the tenant the transaction was opened for.
"""

import asyncio
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, event, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from arq_cashflow.config import Settings, get_settings
from arq_cashflow.errors import NotFoundError, TransactionError, ValidationError
from arq_cashflow.models import (
    ExpenseType,
    Frequency,
    Occurrence,
    OccurrenceFilter,
    OccurrenceStatus,
    RecurrenceTemplate,
    TemplateFilters,
    TenantContext,
)
from arq_cashflow.store.tables import Base, ExpenseRecord, RecurringExpenseRecord

logger = structlog.get_logger(__name__)

_TEMPLATE_COLUMNS = frozenset(RecurringExpenseRecord.__table__.columns.keys())
_EXPENSE_COLUMNS = frozenset(ExpenseRecord.__table__.columns.keys())
# Columns a series patch may never touch.
_PROTECTED_EXPENSE_COLUMNS = frozenset(
    {"id", "team_id", "recurring_expense_id", "due_date", "status", "created_at"}
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _template_from_record(record: RecurringExpenseRecord) -> RecurrenceTemplate:
    return RecurrenceTemplate(
        id=record.id,
        team_id=record.team_id,
        created_by=record.created_by,
        description=record.description,
        amount=record.amount,
        category=record.category,
        frequency=Frequency(record.frequency),
        interval=record.interval,
        start_date=record.start_date,
        day_of_month=record.day_of_month,
        end_date=record.end_date,
        max_occurrences=record.max_occurrences,
        vendor=record.vendor,
        notes=record.notes,
        invoice_number=record.invoice_number,
        expense_type=ExpenseType(record.expense_type) if record.expense_type else None,
        contract_id=record.contract_id,
        is_active=record.is_active,
        next_due=record.next_due,
        generated_count=record.generated_count,
        last_generated=_aware(record.last_generated),
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def _record_from_template(template: RecurrenceTemplate) -> RecurringExpenseRecord:
    return RecurringExpenseRecord(
        **{name: _db_value(getattr(template, name)) for name in _TEMPLATE_COLUMNS}
    )


def _occurrence_from_record(record: ExpenseRecord) -> Occurrence:
    return Occurrence(
        id=record.id,
        team_id=record.team_id,
        recurring_expense_id=record.recurring_expense_id,
        due_date=record.due_date,
        status=OccurrenceStatus(record.status),
        amount=record.amount,
        description=record.description,
        category=record.category,
        vendor=record.vendor,
        notes=record.notes,
        paid_date=record.paid_date,
        paid_amount=record.paid_amount,
        invoice_number=record.invoice_number,
        expense_type=ExpenseType(record.expense_type) if record.expense_type else None,
        contract_id=record.contract_id,
        is_recurring=record.is_recurring,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


class SqlSeriesTransaction:
    """One tenant-scoped unit of work over an ``AsyncSession``."""

    def __init__(self, session: AsyncSession, ctx: TenantContext):
        self._session = session
        self.ctx = ctx

    # === Templates ===

    async def _template_record(self, template_id: UUID) -> RecurringExpenseRecord | None:
        stmt = (
            select(RecurringExpenseRecord)
            .where(
                RecurringExpenseRecord.id == template_id,
                RecurringExpenseRecord.team_id == self.ctx.team_id,
            )
            .execution_options(populate_existing=True)
        )
        return (await self._session.scalars(stmt)).one_or_none()

    async def get_template(self, template_id: UUID) -> RecurrenceTemplate | None:
        record = await self._template_record(template_id)
        return _template_from_record(record) if record else None

    async def insert_template(self, template: RecurrenceTemplate) -> RecurrenceTemplate:
        if template.team_id != self.ctx.team_id:
            raise ValidationError(
                "Template belongs to a different team", template_id=template.id
            )
        record = _record_from_template(template)
        self._session.add(record)
        await self._session.flush()
        return _template_from_record(record)

    async def update_template(
        self, template_id: UUID, changes: Mapping[str, Any]
    ) -> RecurrenceTemplate:
        forbidden = (set(changes) - _TEMPLATE_COLUMNS) | ({"id", "team_id"} & set(changes))
        if forbidden:
            raise ValueError(f"Cannot update template columns: {sorted(forbidden)}")
        record = await self._template_record(template_id)
        if record is None:
            raise NotFoundError("Recurring expense not found", template_id=template_id)
        for name, value in changes.items():
            setattr(record, name, _db_value(value))
        record.updated_at = _utcnow()
        await self._session.flush()
        return _template_from_record(record)

    async def delete_template(self, template_id: UUID) -> None:
        await self._session.execute(
            delete(RecurringExpenseRecord)
            .where(
                RecurringExpenseRecord.id == template_id,
                RecurringExpenseRecord.team_id == self.ctx.team_id,
            )
            .execution_options(synchronize_session=False)
        )

    async def list_templates(self, filters: TemplateFilters) -> list[RecurrenceTemplate]:
        stmt = select(RecurringExpenseRecord).where(
            RecurringExpenseRecord.team_id == self.ctx.team_id
        )
        if filters.category:
            stmt = stmt.where(RecurringExpenseRecord.category == filters.category)
        if filters.frequency:
            stmt = stmt.where(RecurringExpenseRecord.frequency == _db_value(filters.frequency))
        if filters.vendor:
            stmt = stmt.where(RecurringExpenseRecord.vendor.ilike(f"%{filters.vendor}%"))
        if filters.contract_id:
            stmt = stmt.where(RecurringExpenseRecord.contract_id == filters.contract_id)
        if filters.is_active is not None:
            stmt = stmt.where(RecurringExpenseRecord.is_active == filters.is_active)
        if filters.start_after:
            stmt = stmt.where(RecurringExpenseRecord.start_date >= filters.start_after)
        if filters.start_before:
            stmt = stmt.where(RecurringExpenseRecord.start_date <= filters.start_before)
        if filters.end_after:
            stmt = stmt.where(RecurringExpenseRecord.end_date >= filters.end_after)
        if filters.end_before:
            stmt = stmt.where(RecurringExpenseRecord.end_date <= filters.end_before)
        stmt = stmt.order_by(
            RecurringExpenseRecord.created_at.desc(), RecurringExpenseRecord.id
        ).execution_options(populate_existing=True)
        return [_template_from_record(r) for r in (await self._session.scalars(stmt)).all()]

    # === Occurrences ===

    async def get_occurrence(self, occurrence_id: UUID) -> Occurrence | None:
        stmt = (
            select(ExpenseRecord)
            .where(ExpenseRecord.id == occurrence_id, ExpenseRecord.team_id == self.ctx.team_id)
            .execution_options(populate_existing=True)
        )
        record = (await self._session.scalars(stmt)).one_or_none()
        return _occurrence_from_record(record) if record else None

    def _occurrence_record(self, occurrence: Occurrence) -> ExpenseRecord:
        if occurrence.team_id != self.ctx.team_id:
            raise ValidationError(
                "Occurrence belongs to a different team",
                template_id=occurrence.recurring_expense_id,
                target_id=occurrence.id,
            )
        return ExpenseRecord(
            **{name: _db_value(getattr(occurrence, name)) for name in _EXPENSE_COLUMNS}
        )

    async def create_many(self, occurrences: Sequence[Occurrence]) -> list[Occurrence]:
        records = []
        for occurrence in occurrences:
            record = self._occurrence_record(occurrence)
            self._session.add(record)
            records.append(record)
        await self._session.flush()
        return [_occurrence_from_record(r) for r in records]

    async def find_many(
        self, template_id: UUID, filter: OccurrenceFilter | None = None
    ) -> list[Occurrence]:
        stmt = select(ExpenseRecord).where(
            ExpenseRecord.team_id == self.ctx.team_id,
            ExpenseRecord.recurring_expense_id == template_id,
        )
        if filter is not None:
            if filter.ids is not None:
                stmt = stmt.where(ExpenseRecord.id.in_(filter.ids))
            if filter.statuses is not None:
                stmt = stmt.where(ExpenseRecord.status.in_([s.value for s in filter.statuses]))
            if filter.due_on_or_after is not None:
                stmt = stmt.where(ExpenseRecord.due_date >= filter.due_on_or_after)
        stmt = stmt.order_by(ExpenseRecord.due_date, ExpenseRecord.id).execution_options(
            populate_existing=True
        )
        return [_occurrence_from_record(r) for r in (await self._session.scalars(stmt)).all()]

    async def update_many(self, ids: Iterable[UUID], patch: Mapping[str, Any]) -> int:
        id_list = list(ids)
        if not id_list or not patch:
            return 0
        forbidden = (set(patch) - _EXPENSE_COLUMNS) | (set(patch) & _PROTECTED_EXPENSE_COLUMNS)
        if forbidden:
            raise ValueError(f"Cannot patch expense columns: {sorted(forbidden)}")
        values = {name: _db_value(value) for name, value in patch.items()}
        values["updated_at"] = _utcnow()
        result = await self._session.execute(
            update(ExpenseRecord)
            .where(ExpenseRecord.team_id == self.ctx.team_id, ExpenseRecord.id.in_(id_list))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_many(self, ids: Iterable[UUID]) -> int:
        id_list = list(ids)
        if not id_list:
            return 0
        result = await self._session.execute(
            delete(ExpenseRecord)
            .where(ExpenseRecord.team_id == self.ctx.team_id, ExpenseRecord.id.in_(id_list))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class SqlSeriesStore:
    """Series store over an async SQLAlchemy engine."""

    transaction_class: type[SqlSeriesTransaction] = SqlSeriesTransaction

    def __init__(
        self,
        engine: AsyncEngine,
        transaction_timeout: float | None = None,
    ):
        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)
        self._timeout = transaction_timeout or get_settings().transaction_timeout_seconds
        self._logger = logger.bind(component="sql_store")

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        echo: bool = False,
        transaction_timeout: float | None = None,
    ) -> "SqlSeriesStore":
        """Create a store for ``url``; in-memory SQLite shares one connection."""
        kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite") and (url.endswith("://") or ":memory:" in url):
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
        engine = create_async_engine(url, **kwargs)
        if engine.dialect.name == "sqlite":
            event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return cls(engine, transaction_timeout=transaction_timeout)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SqlSeriesStore":
        settings = settings or get_settings()
        return cls.from_url(
            settings.database_url,
            echo=settings.database_echo,
            transaction_timeout=settings.transaction_timeout_seconds,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def sessions(self) -> async_sessionmaker[AsyncSession]:
        return self._sessions

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def transaction(self, ctx: TenantContext) -> AsyncIterator[SqlSeriesTransaction]:
        """Open a tenant-scoped transaction.

        Database failures and timeouts surface as :class:`TransactionError`
        after the whole transaction has been rolled back.
        """
        try:
            async with asyncio.timeout(self._timeout):
                async with self._sessions() as session, session.begin():
                    yield self.transaction_class(session, ctx)
        except SQLAlchemyError as exc:
            self._logger.error(
                "transaction_failed", team_id=str(ctx.team_id), error=str(exc)
            )
            raise TransactionError(
                "Persistence transaction failed", details={"error": str(exc)}
            ) from exc
        except TimeoutError as exc:
            self._logger.error(
                "transaction_timeout", team_id=str(ctx.team_id), timeout=self._timeout
            )
            raise TransactionError(
                "Persistence transaction timed out", details={"timeout_seconds": self._timeout}
            ) from exc


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
