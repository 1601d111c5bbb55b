"""Recurring-expense service: the entry point callers use.

Wires the generator and mutator to a store and an audit sink, and adds the
template-level operations (create, update, get, list, summary) around them.
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from uuid import UUID

import structlog

from arq_cashflow import audit
from arq_cashflow.audit import AuditSink, LoggingAuditSink, record_safely
from arq_cashflow.clock import Clock, SystemClock
from arq_cashflow.config import Settings, bind_request_context, get_settings
from arq_cashflow.errors import NotFoundError, error_context
from arq_cashflow.generator import SeriesGenerator
from arq_cashflow.models import (
    RULE_FIELDS,
    BreakdownEntry,
    Occurrence,
    OccurrenceFilter,
    RecurrenceTemplate,
    RecurringExpenseSummary,
    SeriesScope,
    TemplateFilters,
    TemplateUpdate,
    TemplateWithOccurrences,
    TenantContext,
)
from arq_cashflow.mutator import SeriesMutator
from arq_cashflow.schemas import (
    RecurringExpenseCreate,
    RecurringExpenseUpdate,
    SeriesPatch,
    parse_input,
    validate_rule,
)
from arq_cashflow.store import SeriesStore, SeriesTransaction

logger = structlog.get_logger(__name__)


def _add(breakdown: dict[str, BreakdownEntry], key: str, amount: Decimal | None) -> None:
    entry = breakdown.setdefault(key, BreakdownEntry())
    entry.count += 1
    if amount is not None:
        entry.amount += amount


class RecurringExpenseService:
    """Template lifecycle plus scoped series operations for one store."""

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
        self.generator = SeriesGenerator(store, self._audit, self._clock, settings)
        self.mutator = SeriesMutator(store, self.generator, self._audit)
        self._logger = logger.bind(component="recurring_expense_service")

    @staticmethod
    def _bind(ctx: TenantContext, **extra: Any) -> None:
        bind_request_context(team_id=ctx.team_id, user_id=ctx.user_id, **extra)

    async def _require_template(
        self, tx: SeriesTransaction, template_id: UUID
    ) -> RecurrenceTemplate:
        template = await tx.get_template(template_id)
        if template is None:
            raise NotFoundError("Recurring expense not found", template_id=template_id)
        return template

    # === Templates ===

    async def create_template_and_generate(
        self, ctx: TenantContext, fields: RecurringExpenseCreate | Mapping[str, Any]
    ) -> TemplateWithOccurrences:
        """Create a template and materialize its series in one transaction.

        Inactive templates are stored without occurrences.

        Raises:
            ValidationError: Invalid fields or date range; nothing is written.
            TransactionError: Persisting failed; nothing is written.
        """
        self._bind(ctx)
        data = parse_input(RecurringExpenseCreate, fields)
        template = RecurrenceTemplate(
            team_id=ctx.team_id, created_by=ctx.user_id, **data.model_dump()
        )
        validate_rule(template.rule, template_id=template.id)
        template.next_due = self.generator.next_due_for(template)

        result = None
        with error_context(template_id=template.id):
            async with self._store.transaction(ctx) as tx:
                await tx.insert_template(template)
                if template.is_active:
                    result = await self.generator.generate_in(tx, template)
                stored = await self._require_template(tx, template.id)

        occurrences = result.occurrences if result else []
        self._logger.info(
            "template_created",
            template_id=str(stored.id),
            frequency=stored.frequency.value,
            generated=len(occurrences),
        )
        await record_safely(self._audit, audit.template_created(ctx, stored))
        if result is not None:
            await record_safely(
                self._audit,
                audit.series_generated(
                    ctx, stored.id, result.generated_count, skipped=len(result.skipped_dates)
                ),
            )
        return TemplateWithOccurrences(template=stored, occurrences=occurrences)

    async def _apply_update(
        self,
        tx: SeriesTransaction,
        template_id: UUID,
        fields: RecurringExpenseUpdate | Mapping[str, Any],
    ) -> tuple[TemplateUpdate, dict[str, Any]]:
        data = parse_input(RecurringExpenseUpdate, fields, template_id=template_id)
        current = await self._require_template(tx, template_id)
        changes = {
            name: value
            for name, value in data.changes().items()
            if getattr(current, name) != value
        }
        affected = frozenset(changes) & RULE_FIELDS
        merged = current.with_changes(**changes)
        if affected:
            validate_rule(merged.rule, template_id=template_id)
            changes["next_due"] = self.generator.next_due_for(merged)

        updated = await tx.update_template(template_id, changes) if changes else current
        decision = TemplateUpdate(
            template=updated, rule_changed=bool(affected), affected_fields=affected
        )
        return decision, changes

    async def _report_update(
        self, ctx: TenantContext, decision: TemplateUpdate, changes: dict[str, Any]
    ) -> None:
        self._logger.info(
            "template_updated",
            template_id=str(decision.template.id),
            fields=sorted(changes),
            rule_changed=decision.rule_changed,
            regenerated=decision.regenerated_count,
        )
        if changes:
            await record_safely(
                self._audit,
                audit.template_updated(ctx, decision.template, changes, decision.rule_changed),
            )

    async def update_template(
        self,
        ctx: TenantContext,
        template_id: UUID,
        fields: RecurringExpenseUpdate | Mapping[str, Any],
    ) -> TemplateUpdate:
        """Update template fields without touching existing occurrences.

        The result tells the caller whether a rule field changed, in which
        case the series no longer matches the rule and should be regenerated.
        """
        self._bind(ctx, template_id=template_id)
        with error_context(template_id=template_id):
            async with self._store.transaction(ctx) as tx:
                decision, changes = await self._apply_update(tx, template_id, fields)
        await self._report_update(ctx, decision, changes)
        return decision

    async def update_template_and_maybe_regenerate(
        self,
        ctx: TenantContext,
        template_id: UUID,
        fields: RecurringExpenseUpdate | Mapping[str, Any],
    ) -> TemplateUpdate:
        """Update a template and, if its rule changed, regenerate the series.

        Paid occurrences are preserved. Update and regeneration commit
        together; inactive templates are never regenerated.
        """
        self._bind(ctx, template_id=template_id)
        outcome = None
        with error_context(template_id=template_id):
            async with self._store.transaction(ctx) as tx:
                decision, changes = await self._apply_update(tx, template_id, fields)
                if decision.rule_changed and decision.template.is_active:
                    outcome = await self.mutator.regenerate_in(tx, decision.template)
                    decision.template = await self._require_template(tx, template_id)
                    decision.regenerated_count = outcome.generated_count

        await self._report_update(ctx, decision, changes)
        if outcome is not None:
            await self.mutator.report_regeneration(ctx, outcome)
        return decision

    async def get_template(self, ctx: TenantContext, template_id: UUID) -> RecurrenceTemplate:
        async with self._store.transaction(ctx) as tx:
            return await self._require_template(tx, template_id)

    async def list_templates(
        self, ctx: TenantContext, filters: TemplateFilters | None = None
    ) -> list[RecurrenceTemplate]:
        async with self._store.transaction(ctx) as tx:
            return await tx.list_templates(filters or TemplateFilters())

    async def list_occurrences(
        self,
        ctx: TenantContext,
        template_id: UUID,
        filter: OccurrenceFilter | None = None,
    ) -> list[Occurrence]:
        """Occurrences of a template ordered by due date."""
        async with self._store.transaction(ctx) as tx:
            await self._require_template(tx, template_id)
            return await tx.find_many(template_id, filter)

    async def get_summary(
        self, ctx: TenantContext, filters: TemplateFilters | None = None
    ) -> RecurringExpenseSummary:
        """Counts per state and amount totals of active templates.

        Breakdown counts include inactive templates; amounts do not.
        """
        summary = RecurringExpenseSummary()
        for template in await self.list_templates(ctx, filters):
            amount = template.amount if template.is_active else None
            if template.is_active:
                summary.total_active += 1
                summary.total_amount += template.amount
            else:
                summary.total_inactive += 1
            _add(summary.by_frequency, template.frequency.value, amount)
            _add(summary.by_category, template.category, amount)
            expense_type = template.expense_type.value if template.expense_type else "none"
            _add(summary.by_type, expense_type, amount)
        return summary

    # === Series ===

    async def update_series(
        self,
        ctx: TenantContext,
        template_id: UUID,
        patch: SeriesPatch | Mapping[str, Any],
        scope: SeriesScope | str,
        target_occurrence_id: UUID | None = None,
    ) -> int:
        self._bind(ctx, template_id=template_id)
        return await self.mutator.update_series(
            ctx, template_id, patch, scope, target_occurrence_id
        )

    async def delete_series(
        self,
        ctx: TenantContext,
        template_id: UUID,
        scope: SeriesScope | str,
        target_occurrence_id: UUID | None = None,
    ) -> int:
        self._bind(ctx, template_id=template_id)
        return await self.mutator.delete_series(ctx, template_id, scope, target_occurrence_id)

    async def regenerate(
        self, ctx: TenantContext, template_id: UUID, preserve_paid_occurrences: bool = True
    ) -> int:
        self._bind(ctx, template_id=template_id)
        return await self.mutator.regenerate(ctx, template_id, preserve_paid_occurrences)
