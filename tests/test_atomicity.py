"""Tests that every series operation commits all-or-nothing."""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from arq_cashflow.errors import TransactionError
from arq_cashflow.models import SeriesScope
from arq_cashflow.store import SqlSeriesTransaction


class FailOnNthRow(SqlSeriesTransaction):
    """Transaction that fails while staging the Nth occurrence row."""

    fail_on_row = 5

    def __init__(self, session, ctx):
        super().__init__(session, ctx)
        self._rows = 0

    def _occurrence_record(self, occurrence):
        self._rows += 1
        if self._rows == self.fail_on_row:
            raise IntegrityError("INSERT INTO expenses", {}, Exception("injected failure"))
        return super()._occurrence_record(occurrence)


class FailOnTemplateDelete(SqlSeriesTransaction):
    async def delete_template(self, template_id):
        raise OperationalError("DELETE FROM recurring_expenses", {}, Exception("disk I/O error"))


class FailOnBulkUpdate(SqlSeriesTransaction):
    async def update_many(self, ids, patch):
        raise OperationalError("UPDATE expenses", {}, Exception("database is locked"))


class SlowTransaction(SqlSeriesTransaction):
    async def find_many(self, template_id, filter=None):
        await asyncio.sleep(1)
        return await super().find_many(template_id, filter)


class TestGenerationAtomicity:
    """Tests for failures during generation."""

    @pytest.mark.asyncio
    async def test_failed_create_leaves_nothing(self, service, store, ctx, monthly_fields):
        """Test a failure on the fifth row rolls back the template and all rows."""
        store.transaction_class = FailOnNthRow

        with pytest.raises(TransactionError) as exc_info:
            await service.create_template_and_generate(ctx, monthly_fields)

        store.transaction_class = SqlSeriesTransaction
        assert exc_info.value.code == "TRANSACTION_FAILED"
        assert exc_info.value.template_id is not None
        assert await service.list_templates(ctx) == []

    @pytest.mark.asyncio
    async def test_failed_regenerate_keeps_previous_series(
        self, service, store, ctx, monthly_fields
    ):
        """Test a failed regeneration restores the deleted rows."""
        created = await service.create_template_and_generate(ctx, monthly_fields)
        template_id = created.template.id
        store.transaction_class = FailOnNthRow

        with pytest.raises(TransactionError) as exc_info:
            await service.regenerate(ctx, template_id)

        store.transaction_class = SqlSeriesTransaction
        assert exc_info.value.template_id == template_id
        after = await service.list_occurrences(ctx, template_id)
        assert [o.id for o in after] == [o.id for o in created.occurrences]
        template = await service.get_template(ctx, template_id)
        assert template.generated_count == 27


class TestMutationAtomicity:
    """Tests for failures during deletes and updates."""

    @pytest.mark.asyncio
    async def test_failed_all_delete_keeps_occurrences(self, service, store, ctx, monthly_fields):
        """Test occurrences survive when deleting the template fails."""
        created = await service.create_template_and_generate(ctx, monthly_fields)
        template_id = created.template.id
        store.transaction_class = FailOnTemplateDelete

        with pytest.raises(TransactionError) as exc_info:
            await service.delete_series(ctx, template_id, SeriesScope.ALL)

        store.transaction_class = SqlSeriesTransaction
        error = exc_info.value.to_dict()
        assert error["template_id"] == str(template_id)
        assert error["scope"] == "all"
        assert error["target_id"] is None
        assert len(await service.list_occurrences(ctx, template_id)) == 27
        assert (await service.get_template(ctx, template_id)).id == template_id

    @pytest.mark.asyncio
    async def test_failed_single_update_names_target(self, service, store, ctx, monthly_fields):
        """Test a failed single update reports the occurrence it was changing."""
        created = await service.create_template_and_generate(ctx, monthly_fields)
        target = created.occurrences[4]
        store.transaction_class = FailOnBulkUpdate

        with pytest.raises(TransactionError) as exc_info:
            await service.update_series(
                ctx, created.template.id, {"amount": "175.00"}, SeriesScope.SINGLE, target.id
            )

        store.transaction_class = SqlSeriesTransaction
        error = exc_info.value.to_dict()
        assert error["template_id"] == str(created.template.id)
        assert error["scope"] == "single"
        assert error["target_id"] == str(target.id)
        after = await service.list_occurrences(ctx, created.template.id)
        assert after[4].amount == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_audit_not_written_on_failure(
        self, service, store, ctx, monthly_fields, audit_sink
    ):
        created = await service.create_template_and_generate(ctx, monthly_fields)
        audit_sink.entries.clear()
        store.transaction_class = FailOnTemplateDelete

        with pytest.raises(TransactionError):
            await service.delete_series(ctx, created.template.id, "all")

        assert audit_sink.entries == []

    @pytest.mark.asyncio
    async def test_timeout_rolls_back(self, service, store, ctx, monthly_fields):
        """Test a transaction exceeding its timeout fails as a whole."""
        created = await service.create_template_and_generate(ctx, monthly_fields)
        store._timeout = 0.05
        store.transaction_class = SlowTransaction

        with pytest.raises(TransactionError) as exc_info:
            await service.update_series(ctx, created.template.id, {"amount": "150.00"}, "all")

        store.transaction_class = SqlSeriesTransaction
        store._timeout = 5
        assert exc_info.value.details == {"timeout_seconds": 0.05}
        assert exc_info.value.scope == "all"
        template = await service.get_template(ctx, created.template.id)
        assert template.amount == created.template.amount
