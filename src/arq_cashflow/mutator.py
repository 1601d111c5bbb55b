"""Scoped mutations over a template's generated occurrences.

Each operation selects occurrences by scope (``single``, ``future`` or
``all``), applies its change to the whole selection and commits it in one
transaction. ``future`` means pending occurrences due today or later;
paid history is never part of it.
"""

from collections.abc import Mapping
from typing import Any
from uuid import UUID

import structlog

from arq_cashflow import audit
from arq_cashflow.audit import AuditSink, LoggingAuditSink, record_safely
from arq_cashflow.errors import NotFoundError, ValidationError, error_context
from arq_cashflow.generator import SeriesGenerator
from arq_cashflow.models import (
    Occurrence,
    OccurrenceFilter,
    OccurrenceStatus,
    RecurrenceTemplate,
    RegenerationOutcome,
    SeriesScope,
    TenantContext,
)
from arq_cashflow.schemas import SeriesPatch, parse_input
from arq_cashflow.store import SeriesStore, SeriesTransaction

logger = structlog.get_logger(__name__)


class SeriesMutator:
    """Update, delete and regenerate the occurrences of a recurring expense."""

    def __init__(
        self,
        store: SeriesStore,
        generator: SeriesGenerator,
        audit_sink: AuditSink | None = None,
    ):
        self._store = store
        self._generator = generator
        self._audit = audit_sink or LoggingAuditSink()
        self._logger = logger.bind(component="series_mutator")

    # === Selection ===

    async def _load_template(
        self, tx: SeriesTransaction, template_id: UUID, scope: SeriesScope | None = None
    ) -> RecurrenceTemplate:
        template = await tx.get_template(template_id)
        if template is None:
            raise NotFoundError(
                "Recurring expense not found",
                template_id=template_id,
                scope=scope.value if scope else None,
            )
        return template

    async def _select(
        self,
        tx: SeriesTransaction,
        template_id: UUID,
        scope: SeriesScope,
        target_occurrence_id: UUID | None,
    ) -> list[Occurrence]:
        """Resolve the occurrences a scope refers to."""
        if scope == SeriesScope.SINGLE:
            occurrence = await tx.get_occurrence(target_occurrence_id)
            if occurrence is None or occurrence.recurring_expense_id != template_id:
                raise NotFoundError(
                    "Occurrence not found in this series",
                    template_id=template_id,
                    scope=scope.value,
                    target_id=target_occurrence_id,
                )
            return [occurrence]

        if scope == SeriesScope.FUTURE:
            return await tx.find_many(
                template_id,
                OccurrenceFilter(
                    statuses=frozenset({OccurrenceStatus.PENDING}),
                    due_on_or_after=self._generator.clock.today(),
                ),
            )

        return await tx.find_many(template_id)

    @staticmethod
    def _check_scope(
        template_id: UUID, scope: SeriesScope | str, target_occurrence_id: UUID | None
    ) -> SeriesScope:
        try:
            scope = SeriesScope(scope)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown scope: {scope}",
                code="INVALID_REQUEST",
                template_id=template_id,
                details={"allowed": [s.value for s in SeriesScope]},
            ) from exc
        if scope == SeriesScope.SINGLE and target_occurrence_id is None:
            raise ValidationError(
                "Scope 'single' requires a target occurrence id",
                code="INVALID_REQUEST",
                template_id=template_id,
                scope=scope.value,
            )
        return scope

    # === Operations ===

    async def update_series(
        self,
        ctx: TenantContext,
        template_id: UUID,
        patch: SeriesPatch | Mapping[str, Any],
        scope: SeriesScope | str,
        target_occurrence_id: UUID | None = None,
    ) -> int:
        """Apply ``patch`` to the occurrences selected by ``scope``.

        Due dates and statuses are never changed. For ``future`` and ``all``
        the template's own fields are patched as well, so later
        regenerations carry the new values.

        Returns:
            Number of occurrences updated.

        Raises:
            ValidationError: Invalid patch, or ``single`` without a target.
            NotFoundError: Unknown template, or a target outside the series.
            TransactionError: The update failed and was rolled back.
        """
        scope = self._check_scope(template_id, scope, target_occurrence_id)
        changes = parse_input(
            SeriesPatch, patch, template_id=template_id, scope=scope, target_id=target_occurrence_id
        ).changes()

        with error_context(template_id=template_id, scope=scope, target_id=target_occurrence_id):
            async with self._store.transaction(ctx) as tx:
                await self._load_template(tx, template_id, scope)
                selected = await self._select(tx, template_id, scope, target_occurrence_id)
                updated = await tx.update_many([o.id for o in selected], changes)
                if scope != SeriesScope.SINGLE:
                    await tx.update_template(template_id, changes)

        self._logger.info(
            "series_updated",
            team_id=str(ctx.team_id),
            template_id=str(template_id),
            scope=scope.value,
            fields=sorted(changes),
            updated=updated,
        )
        await record_safely(
            self._audit,
            audit.series_updated(
                ctx, template_id, scope, updated, changes, target_id=target_occurrence_id
            ),
        )
        return updated

    async def delete_series(
        self,
        ctx: TenantContext,
        template_id: UUID,
        scope: SeriesScope | str,
        target_occurrence_id: UUID | None = None,
    ) -> int:
        """Delete the occurrences selected by ``scope``.

        ``future`` also deactivates the template so nothing new is generated;
        ``all`` removes the template itself after its occurrences.

        Returns:
            Number of occurrences deleted.
        """
        scope = self._check_scope(template_id, scope, target_occurrence_id)

        with error_context(template_id=template_id, scope=scope, target_id=target_occurrence_id):
            async with self._store.transaction(ctx) as tx:
                await self._load_template(tx, template_id, scope)
                selected = await self._select(tx, template_id, scope, target_occurrence_id)
                deleted = await tx.delete_many([o.id for o in selected])
                if scope == SeriesScope.FUTURE:
                    await tx.update_template(
                        template_id, {"is_active": False, "next_due": None}
                    )
                elif scope == SeriesScope.ALL:
                    await tx.delete_template(template_id)

        self._logger.info(
            "series_deleted",
            team_id=str(ctx.team_id),
            template_id=str(template_id),
            scope=scope.value,
            deleted=deleted,
        )
        await record_safely(
            self._audit,
            audit.series_deleted(ctx, template_id, scope, deleted, target_id=target_occurrence_id),
        )
        return deleted

    async def regenerate(
        self,
        ctx: TenantContext,
        template_id: UUID,
        preserve_paid_occurrences: bool = True,
    ) -> int:
        """Rebuild a series from the template's current rule.

        Unpaid occurrences (or every occurrence, when paid ones are not
        preserved) are removed and the sequence is generated again. While paid
        occurrences are preserved they are the only record of the past, so
        only dates from today on are generated; otherwise the past is
        backfilled as on creation.

        Returns:
            Number of occurrences created.

        Raises:
            ValidationError: The template is inactive.
        """
        with error_context(template_id=template_id):
            async with self._store.transaction(ctx) as tx:
                template = await self._load_template(tx, template_id)
                outcome = await self.regenerate_in(tx, template, preserve_paid_occurrences)
        await self.report_regeneration(ctx, outcome)
        return outcome.generated_count

    async def regenerate_in(
        self,
        tx: SeriesTransaction,
        template: RecurrenceTemplate,
        preserve_paid_occurrences: bool = True,
    ) -> RegenerationOutcome:
        """Regenerate inside an already open transaction."""
        if not template.is_active:
            raise ValidationError(
                "Inactive recurring expenses cannot be regenerated",
                code="TEMPLATE_INACTIVE",
                template_id=template.id,
            )
        existing = await tx.find_many(template.id)
        kept = [o for o in existing if o.is_paid] if preserve_paid_occurrences else []
        kept_ids = {o.id for o in kept}
        removed = await tx.delete_many([o.id for o in existing if o.id not in kept_ids])

        result = await self._generator.generate_in(
            tx, template, include_past=not preserve_paid_occurrences
        )
        return RegenerationOutcome(
            template_id=template.id,
            removed_count=removed,
            generated_count=result.generated_count,
            preserved_paid_count=len(kept),
        )

    async def report_regeneration(self, ctx: TenantContext, outcome: RegenerationOutcome) -> None:
        """Log and audit a committed regeneration."""
        self._logger.info(
            "series_regenerated",
            team_id=str(ctx.team_id),
            template_id=str(outcome.template_id),
            removed=outcome.removed_count,
            generated=outcome.generated_count,
            preserved_paid=outcome.preserved_paid_count,
        )
        await record_safely(
            self._audit,
            audit.series_regenerated(
                ctx,
                outcome.template_id,
                outcome.removed_count,
                outcome.generated_count,
                outcome.preserved_paid_count,
            ),
        )
