"""Series generation: turns a recurring-expense template into expense rows.

Occurrences are materialized eagerly, up to a rolling horizon. Dates
before today are recorded as already paid (backfill) and dates from today
on are pending. A generation run is validated as a whole before a single
batched insert, so a template never ends up with half a series.
"""

from collections.abc import Collection
from datetime import date, timedelta
from uuid import UUID

import structlog

from arq_cashflow import audit, scheduling
from arq_cashflow.audit import AuditSink, LoggingAuditSink, record_safely
from arq_cashflow.clock import Clock, SystemClock
from arq_cashflow.config import Settings, get_settings
from arq_cashflow.errors import NotFoundError, ValidationError, error_context
from arq_cashflow.models import (
    DayOfMonthPolicy,
    Occurrence,
    OccurrenceStatus,
    RecurrenceTemplate,
    SeriesGenerationResult,
    TenantContext,
)
from arq_cashflow.schemas import validate_rule
from arq_cashflow.store import SeriesStore, SeriesTransaction

logger = structlog.get_logger(__name__)


def invoice_number_for(base: str | None, due_date: date) -> str | None:
    """Per-occurrence invoice number: ``{base}-{month}{year}``."""
    if not base:
        return None
    return f"{base}-{due_date.month}{due_date.year}"


class SeriesGenerator:
    """Materializes the occurrences of a template inside one transaction."""

    def __init__(
        self,
        store: SeriesStore,
        audit_sink: AuditSink | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self._store = store
        self._audit = audit_sink or LoggingAuditSink()
        self._clock = clock or SystemClock()
        self._horizon_years = settings.series_horizon_years
        self._max_occurrences = settings.series_max_occurrences
        self._policy = DayOfMonthPolicy(settings.day_of_month_policy)
        self._logger = logger.bind(component="series_generator")

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def policy(self) -> DayOfMonthPolicy:
        return self._policy

    def horizon_for(self, template: RecurrenceTemplate) -> date:
        return scheduling.horizon_date(
            self._clock.today(), self._horizon_years, template.end_date
        )

    def next_due_for(self, template: RecurrenceTemplate) -> date | None:
        """First scheduled date on or after today.

        An occurrence due today is still pending, so it is also the next one
        due; the boundary is the same one that separates paid from pending.
        """
        reference = self._clock.today() - timedelta(days=1)
        return scheduling.next_due(template.rule, reference, self._policy)

    def build_occurrence(
        self, template: RecurrenceTemplate, due_date: date, today: date
    ) -> Occurrence:
        """Draft the expense row for one scheduled date."""
        paid = due_date < today
        return Occurrence(
            team_id=template.team_id,
            recurring_expense_id=template.id,
            due_date=due_date,
            status=OccurrenceStatus.PAID if paid else OccurrenceStatus.PENDING,
            amount=template.amount,
            description=template.description,
            category=template.category,
            vendor=template.vendor,
            notes=template.notes,
            paid_date=due_date if paid else None,
            paid_amount=template.amount if paid else None,
            invoice_number=invoice_number_for(template.invoice_number, due_date),
            expense_type=template.expense_type,
            contract_id=template.contract_id,
            is_recurring=True,
        )

    def plan(
        self,
        template: RecurrenceTemplate,
        skip_dates: Collection[date] = frozenset(),
        include_past: bool = True,
    ) -> tuple[list[Occurrence], list[date]]:
        """Build and validate every occurrence of a run without writing anything.

        With ``include_past=False`` dates before today are left out entirely
        instead of being backfilled as paid.

        Returns:
            The drafted occurrences and the scheduled dates left out because
            they appear in ``skip_dates``.

        Raises:
            ValidationError: If the rule or any drafted occurrence is invalid.
        """
        validate_rule(template.rule, template_id=template.id)
        today = self._clock.today()
        dates = scheduling.sequence_for_rule(
            template.rule, self.horizon_for(template), self._max_occurrences, self._policy
        )

        drafts: list[Occurrence] = []
        skipped: list[date] = []
        for due_date in dates:
            if due_date in skip_dates:
                skipped.append(due_date)
                continue
            if not include_past and due_date < today:
                continue
            drafts.append(self.build_occurrence(template, due_date, today))

        for draft in drafts:
            self._check(template, draft)
        return drafts, skipped

    def _check(self, template: RecurrenceTemplate, draft: Occurrence) -> None:
        problems = []
        if draft.amount is None or draft.amount <= 0:
            problems.append("amount must be positive")
        if not draft.description:
            problems.append("description is required")
        if not draft.category:
            problems.append("category is required")
        if template.end_date is not None and draft.due_date > template.end_date:
            problems.append("due date is after the template end date")
        if problems:
            raise ValidationError(
                "Generated occurrence is invalid",
                template_id=template.id,
                details={"due_date": draft.due_date.isoformat(), "problems": problems},
            )

    async def generate_in(
        self,
        tx: SeriesTransaction,
        template: RecurrenceTemplate,
        skip_dates: Collection[date] = frozenset(),
        include_past: bool = True,
    ) -> SeriesGenerationResult:
        """Generate inside an already open transaction.

        Dates that already hold an occurrence of the template are skipped, so
        running it again never duplicates a date. Writes the occurrences and
        the template bookkeeping (``generated_count``, ``last_generated``,
        ``next_due``); the caller owns commit and rollback.
        """
        existing = await tx.find_many(template.id)
        taken = set(skip_dates) | {o.due_date for o in existing}
        drafts, skipped = self.plan(template, taken, include_past)
        created = await tx.create_many(drafts) if drafts else []
        next_due = self.next_due_for(template)
        await tx.update_template(
            template.id,
            {
                "generated_count": len(created),
                "last_generated": self._clock.now(),
                "next_due": next_due,
            },
        )

        if not created:
            self._logger.info(
                "series_empty",
                template_id=str(template.id),
                start_date=template.start_date.isoformat(),
                skipped=len(skipped),
            )
        else:
            self._logger.info(
                "series_generated",
                template_id=str(template.id),
                generated=len(created),
                paid=sum(1 for o in created if o.is_paid),
                skipped=len(skipped),
                first_due=created[0].due_date.isoformat(),
                last_due=created[-1].due_date.isoformat(),
            )

        return SeriesGenerationResult(
            recurring_expense_id=template.id,
            generated_count=len(created),
            occurrences=created,
            skipped_dates=skipped,
            next_due=next_due,
        )

    async def generate(self, ctx: TenantContext, template_id: UUID) -> SeriesGenerationResult:
        """Materialize the series of a stored template in its own transaction.

        Raises:
            NotFoundError: If the template does not exist for ``ctx``'s team.
            ValidationError: If the rule is invalid; nothing is written.
            TransactionError: If persisting fails; nothing is written.
        """
        with error_context(template_id=template_id):
            async with self._store.transaction(ctx) as tx:
                template = await tx.get_template(template_id)
                if template is None:
                    raise NotFoundError("Recurring expense not found", template_id=template_id)
                result = await self.generate_in(tx, template)

        await record_safely(
            self._audit,
            audit.series_generated(
                ctx, template_id, result.generated_count, skipped=len(result.skipped_dates)
            ),
        )
        return result
