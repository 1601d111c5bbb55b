"""Persistence for recurring-expense templates and their occurrences."""

from arq_cashflow.store.base import SeriesStore, SeriesTransaction
from arq_cashflow.store.sql import SqlSeriesStore, SqlSeriesTransaction
from arq_cashflow.store.tables import (
    AuditLogRecord,
    Base,
    ExpenseRecord,
    RecurringExpenseRecord,
)

__all__ = [
    # Contract
    "SeriesStore",
    "SeriesTransaction",
    # SQLAlchemy implementation
    "SqlSeriesStore",
    "SqlSeriesTransaction",
    # Tables
    "Base",
    "RecurringExpenseRecord",
    "ExpenseRecord",
    "AuditLogRecord",
]
