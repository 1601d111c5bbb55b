"""ArqCashflow - recurring-expense scheduling and series-mutation engine."""

__version__ = "0.1.0"

from arq_cashflow.audit import AuditEntry, AuditSink, LoggingAuditSink, SqlAuditSink
from arq_cashflow.clock import Clock, FixedClock, SystemClock
from arq_cashflow.config import configure_logging, get_settings
from arq_cashflow.errors import (
    NotFoundError,
    SeriesError,
    TransactionError,
    ValidationError,
    error_context,
)
from arq_cashflow.generator import SeriesGenerator
from arq_cashflow.models import (
    DayOfMonthPolicy,
    ExpenseType,
    Frequency,
    Occurrence,
    OccurrenceStatus,
    RecurrenceRule,
    RecurrenceTemplate,
    SeriesScope,
    TenantContext,
)
from arq_cashflow.mutator import SeriesMutator
from arq_cashflow.scheduling import generate_sequence, next_occurrence
from arq_cashflow.service import RecurringExpenseService
from arq_cashflow.store import SeriesStore, SqlSeriesStore

__all__ = [
    # Version
    "__version__",
    # Service
    "RecurringExpenseService",
    "SeriesGenerator",
    "SeriesMutator",
    # Scheduling
    "next_occurrence",
    "generate_sequence",
    # Models
    "DayOfMonthPolicy",
    "ExpenseType",
    "Frequency",
    "Occurrence",
    "OccurrenceStatus",
    "RecurrenceRule",
    "RecurrenceTemplate",
    "SeriesScope",
    "TenantContext",
    # Errors
    "SeriesError",
    "ValidationError",
    "NotFoundError",
    "TransactionError",
    "error_context",
    # Persistence & audit
    "SeriesStore",
    "SqlSeriesStore",
    "AuditEntry",
    "AuditSink",
    "LoggingAuditSink",
    "SqlAuditSink",
    # Infrastructure
    "Clock",
    "SystemClock",
    "FixedClock",
    "configure_logging",
    "get_settings",
]
