"""Domain types for recurring-expense templates and their occurrences."""

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class Frequency(str, Enum):
    """How often a template recurs."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class OccurrenceStatus(str, Enum):
    """Payment status of a generated expense."""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class SeriesScope(str, Enum):
    """Selection mode for series mutations."""

    SINGLE = "single"  # one occurrence, named by id
    FUTURE = "future"  # pending occurrences due today or later
    ALL = "all"  # every occurrence of the template


class ExpenseType(str, Enum):
    """Accounting bucket of an expense."""

    OPERATIONAL = "operational"
    PROJECT = "project"
    ADMINISTRATIVE = "administrative"


class DayOfMonthPolicy(str, Enum):
    """What to do with a day-of-month anchor the target month lacks (e.g. 31 in February)."""

    CLAMP = "clamp"  # use the last day of the month
    ROLLOVER = "rollover"  # spill the extra days into the following month


# Template fields that change which dates exist in a series.
RULE_FIELDS: frozenset[str] = frozenset(
    {"frequency", "interval", "day_of_month", "start_date", "end_date", "max_occurrences"}
)

# Template fields copied onto each occurrence and patchable per scope.
SERIES_FIELDS: tuple[str, ...] = (
    "amount",
    "description",
    "category",
    "vendor",
    "notes",
    "expense_type",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TenantContext:
    """Tenant scope threaded through every store call.

    ``team_id`` bounds every selection; ``user_id`` is recorded as the
    author of created templates and audit entries.
    """

    team_id: UUID
    user_id: UUID
    user_email: str = ""


@dataclass(frozen=True)
class RecurrenceRule:
    """The date-producing part of a template."""

    frequency: Frequency
    interval: int
    start_date: date
    day_of_month: int | None = None
    end_date: date | None = None
    max_occurrences: int | None = None


@dataclass
class RecurrenceTemplate:
    """A recurring expense: the rule plus the fields copied onto each occurrence."""

    team_id: UUID
    created_by: UUID
    description: str
    amount: Decimal
    category: str
    frequency: Frequency
    interval: int
    start_date: date
    id: UUID = field(default_factory=uuid4)
    day_of_month: int | None = None
    end_date: date | None = None
    max_occurrences: int | None = None
    vendor: str | None = None
    notes: str | None = None
    invoice_number: str | None = None
    expense_type: ExpenseType | None = None
    contract_id: UUID | None = None
    is_active: bool = True
    next_due: date | None = None
    generated_count: int = 0
    last_generated: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def rule(self) -> RecurrenceRule:
        return RecurrenceRule(
            frequency=self.frequency,
            interval=self.interval,
            start_date=self.start_date,
            day_of_month=self.day_of_month,
            end_date=self.end_date,
            max_occurrences=self.max_occurrences,
        )

    def with_changes(self, **changes: Any) -> "RecurrenceTemplate":
        return replace(self, **changes)


@dataclass
class Occurrence:
    """One scheduled instance of a template, stored as an expense line item."""

    team_id: UUID
    due_date: date
    amount: Decimal
    description: str
    category: str
    id: UUID = field(default_factory=uuid4)
    recurring_expense_id: UUID | None = None
    status: OccurrenceStatus = OccurrenceStatus.PENDING
    vendor: str | None = None
    notes: str | None = None
    paid_date: date | None = None
    paid_amount: Decimal | None = None
    invoice_number: str | None = None
    expense_type: ExpenseType | None = None
    contract_id: UUID | None = None
    is_recurring: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_paid(self) -> bool:
        return self.status == OccurrenceStatus.PAID


@dataclass(frozen=True)
class OccurrenceFilter:
    """Narrowing applied by ``find_many`` on top of the tenant/template scope."""

    ids: frozenset[UUID] | None = None
    statuses: frozenset[OccurrenceStatus] | None = None
    due_on_or_after: date | None = None


@dataclass(frozen=True)
class TemplateFilters:
    """Filters for listing templates."""

    category: str | None = None
    frequency: Frequency | None = None
    vendor: str | None = None  # case-insensitive substring
    contract_id: UUID | None = None
    is_active: bool | None = None
    start_after: date | None = None
    start_before: date | None = None
    end_after: date | None = None
    end_before: date | None = None


@dataclass
class SeriesGenerationResult:
    """Outcome of materializing a template's occurrences."""

    recurring_expense_id: UUID
    generated_count: int
    occurrences: list[Occurrence] = field(default_factory=list)
    skipped_dates: list[date] = field(default_factory=list)
    next_due: date | None = None


@dataclass
class RegenerationOutcome:
    """Counts from rebuilding a series."""

    template_id: UUID
    removed_count: int
    generated_count: int
    preserved_paid_count: int


@dataclass
class TemplateWithOccurrences:
    template: RecurrenceTemplate
    occurrences: list[Occurrence]


@dataclass
class TemplateUpdate:
    """Result of a template update plus the decision whether to regenerate."""

    template: RecurrenceTemplate
    rule_changed: bool
    affected_fields: frozenset[str]
    regenerated_count: int | None = None


@dataclass
class BreakdownEntry:
    count: int = 0
    amount: Decimal = Decimal("0")


@dataclass
class RecurringExpenseSummary:
    """Aggregate view over a tenant's templates.

    Amounts only include active templates; counts include all of them.
    """

    total_active: int = 0
    total_inactive: int = 0
    total_amount: Decimal = Decimal("0")
    by_frequency: dict[str, BreakdownEntry] = field(default_factory=dict)
    by_category: dict[str, BreakdownEntry] = field(default_factory=dict)
    by_type: dict[str, BreakdownEntry] = field(default_factory=dict)
