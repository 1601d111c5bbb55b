"""Tests for scoped series updates, deletes and regeneration."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from arq_cashflow.errors import NotFoundError, ValidationError
from arq_cashflow.models import OccurrenceStatus, SeriesScope


async def _create(service, ctx, fields):
    created = await service.create_template_and_generate(ctx, fields)
    return created.template.id, created.occurrences


class TestUpdateSeries:
    """Tests for update_series."""

    @pytest.mark.asyncio
    async def test_future_scope_skips_paid(self, service, ctx, monthly_fields):
        """Test a future update leaves paid history untouched."""
        template_id, _ = await _create(service, ctx, monthly_fields)

        updated = await service.update_series(
            ctx, template_id, {"amount": Decimal("150.00")}, SeriesScope.FUTURE
        )

        occurrences = await service.list_occurrences(ctx, template_id)
        assert updated == 24
        for occurrence in occurrences:
            if occurrence.is_paid:
                assert occurrence.amount == Decimal("100.00")
            else:
                assert occurrence.amount == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_future_scope_patches_template(self, service, ctx, monthly_fields):
        """Test future and all updates carry over to the template."""
        template_id, _ = await _create(service, ctx, monthly_fields)

        await service.update_series(
            ctx, template_id, {"amount": "150.00", "vendor": "New Landlord"}, "future"
        )

        template = await service.get_template(ctx, template_id)
        assert template.amount == Decimal("150.00")
        assert template.vendor == "New Landlord"

    @pytest.mark.asyncio
    async def test_future_scope_excludes_past_pending(self, service, ctx, monthly_fields, clock):
        """Test pending occurrences that are already past due are not 'future'."""
        template_id, _ = await _create(service, ctx, monthly_fields)
        clock.advance(days=30)  # 2026-11-17: the 2026-11-10 row is pending but past

        updated = await service.update_series(
            ctx, template_id, {"notes": "renegotiated"}, SeriesScope.FUTURE
        )

        occurrences = await service.list_occurrences(ctx, template_id)
        november = next(o for o in occurrences if o.due_date == date(2026, 11, 10))
        assert updated == 23
        assert november.status == OccurrenceStatus.PENDING
        assert november.notes == "Paid by bank transfer"

    @pytest.mark.asyncio
    async def test_all_scope_updates_every_row(self, service, ctx, monthly_fields):
        template_id, _ = await _create(service, ctx, monthly_fields)

        updated = await service.update_series(
            ctx, template_id, {"category": "facilities"}, SeriesScope.ALL
        )

        occurrences = await service.list_occurrences(ctx, template_id)
        assert updated == 27
        assert {o.category for o in occurrences} == {"facilities"}

    @pytest.mark.asyncio
    async def test_single_scope_touches_one_row(self, service, ctx, monthly_fields):
        """Test a single update changes exactly the target occurrence."""
        template_id, occurrences = await _create(service, ctx, monthly_fields)
        target = occurrences[5]

        updated = await service.update_series(
            ctx, template_id, {"amount": "175.00"}, SeriesScope.SINGLE, target.id
        )

        after = await service.list_occurrences(ctx, template_id)
        changed = [o for o in after if o.amount != Decimal("100.00")]
        assert updated == 1
        assert [o.id for o in changed] == [target.id]
        assert [o.due_date for o in after] == [o.due_date for o in occurrences]
        template = await service.get_template(ctx, template_id)
        assert template.amount == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_single_scope_requires_target(self, service, ctx, monthly_fields):
        template_id, _ = await _create(service, ctx, monthly_fields)

        with pytest.raises(ValidationError) as exc_info:
            await service.update_series(ctx, template_id, {"amount": "1.00"}, "single")

        assert exc_info.value.code == "INVALID_REQUEST"
        assert exc_info.value.scope == "single"

    @pytest.mark.asyncio
    async def test_target_from_other_series(self, service, ctx, monthly_fields):
        """Test a target belonging to another template is not found."""
        template_id, _ = await _create(service, ctx, monthly_fields)
        _, other_occurrences = await _create(service, ctx, dict(monthly_fields))

        with pytest.raises(NotFoundError) as exc_info:
            await service.update_series(
                ctx, template_id, {"amount": "1.00"}, "single", other_occurrences[0].id
            )

        assert exc_info.value.target_id == other_occurrences[0].id

    @pytest.mark.asyncio
    async def test_unknown_scope(self, service, ctx, monthly_fields):
        template_id, _ = await _create(service, ctx, monthly_fields)

        with pytest.raises(ValidationError) as exc_info:
            await service.update_series(ctx, template_id, {"amount": "1.00"}, "past")

        assert exc_info.value.code == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_invalid_patch(self, service, ctx, monthly_fields):
        """Test patches are validated before anything is written."""
        template_id, _ = await _create(service, ctx, monthly_fields)

        with pytest.raises(ValidationError):
            await service.update_series(ctx, template_id, {"amount": "-5"}, "all")
        with pytest.raises(ValidationError):
            await service.update_series(ctx, template_id, {}, "all")
        with pytest.raises(ValidationError):
            await service.update_series(ctx, template_id, {"due_date": "2027-01-01"}, "all")

        occurrences = await service.list_occurrences(ctx, template_id)
        assert {o.amount for o in occurrences} == {Decimal("100.00")}

    @pytest.mark.asyncio
    async def test_unknown_template(self, service, ctx):
        with pytest.raises(NotFoundError):
            await service.update_series(ctx, uuid4(), {"amount": "1.00"}, "all")


class TestDeleteSeries:
    """Tests for delete_series."""

    @pytest.mark.asyncio
    async def test_future_delete_deactivates(self, service, ctx, monthly_fields):
        """Test future delete keeps paid rows and stops the template."""
        template_id, _ = await _create(service, ctx, monthly_fields)

        deleted = await service.delete_series(ctx, template_id, SeriesScope.FUTURE)

        template = await service.get_template(ctx, template_id)
        remaining = await service.list_occurrences(ctx, template_id)
        assert deleted == 24
        assert template.is_active is False
        assert template.next_due is None
        assert len(remaining) == 3
        assert all(o.is_paid for o in remaining)

    @pytest.mark.asyncio
    async def test_all_delete_cascades(self, service, store, ctx, monthly_fields):
        """Test all delete removes every occurrence and the template."""
        template_id, _ = await _create(service, ctx, monthly_fields)

        deleted = await service.delete_series(ctx, template_id, SeriesScope.ALL)

        assert deleted == 27
        with pytest.raises(NotFoundError):
            await service.get_template(ctx, template_id)
        async with store.transaction(ctx) as tx:
            assert await tx.find_many(template_id) == []

    @pytest.mark.asyncio
    async def test_single_delete(self, service, ctx, monthly_fields):
        template_id, occurrences = await _create(service, ctx, monthly_fields)

        deleted = await service.delete_series(ctx, template_id, "single", occurrences[10].id)

        remaining = await service.list_occurrences(ctx, template_id)
        assert deleted == 1
        assert len(remaining) == 26
        assert occurrences[10].id not in {o.id for o in remaining}
        assert (await service.get_template(ctx, template_id)).is_active is True

    @pytest.mark.asyncio
    async def test_single_delete_requires_target(self, service, ctx, monthly_fields):
        template_id, _ = await _create(service, ctx, monthly_fields)

        with pytest.raises(ValidationError):
            await service.delete_series(ctx, template_id, SeriesScope.SINGLE)

    @pytest.mark.asyncio
    async def test_unknown_template(self, service, ctx):
        with pytest.raises(NotFoundError):
            await service.delete_series(ctx, uuid4(), "all")


class TestRegenerate:
    """Tests for regenerate."""

    @pytest.mark.asyncio
    async def test_preserves_paid_without_duplicates(self, service, ctx, monthly_fields):
        """Test regeneration keeps paid rows and never duplicates their dates."""
        template_id, before = await _create(service, ctx, monthly_fields)
        paid_ids = {o.id for o in before if o.is_paid}

        created = await service.regenerate(ctx, template_id)

        after = await service.list_occurrences(ctx, template_id)
        dates = [o.due_date for o in after]
        assert created == 24
        assert len(dates) == len(set(dates)) == 27
        assert paid_ids <= {o.id for o in after}

    @pytest.mark.asyncio
    async def test_after_rule_change(self, service, ctx, monthly_fields):
        """Test regeneration follows the current rule."""
        template_id, _ = await _create(service, ctx, monthly_fields)
        decision = await service.update_template(ctx, template_id, {"day_of_month": 20})
        assert decision.rule_changed is True

        await service.regenerate(ctx, template_id)

        after = await service.list_occurrences(ctx, template_id)
        pending = [o for o in after if not o.is_paid]
        paid = [o for o in after if o.is_paid]
        assert {o.due_date.day for o in pending} == {20}
        assert date(2026, 10, 10) in {o.due_date for o in paid}
        assert len({o.due_date for o in after}) == len(after)

    @pytest.mark.asyncio
    async def test_rule_change_leaves_paid_history_as_is(self, service, ctx, monthly_fields):
        """Test past dates of the new rule are not recorded as paid."""
        template_id, before = await _create(service, ctx, monthly_fields)
        paid_before = [(o.id, o.due_date) for o in before if o.is_paid]

        decision = await service.update_template_and_maybe_regenerate(
            ctx, template_id, {"day_of_month": 20}
        )

        after = await service.list_occurrences(ctx, template_id)
        pending = [o.due_date for o in after if not o.is_paid]
        assert [(o.id, o.due_date) for o in after if o.is_paid] == paid_before
        assert decision.regenerated_count == len(pending) == 24
        assert pending[0] == date(2026, 10, 20)

    @pytest.mark.asyncio
    async def test_inactive_template_rejected(self, service, ctx, monthly_fields):
        """Test a series stopped by a future delete is not brought back."""
        template_id, _ = await _create(service, ctx, monthly_fields)
        await service.delete_series(ctx, template_id, SeriesScope.FUTURE)

        with pytest.raises(ValidationError) as exc_info:
            await service.regenerate(ctx, template_id)

        template = await service.get_template(ctx, template_id)
        assert exc_info.value.code == "TEMPLATE_INACTIVE"
        assert exc_info.value.template_id == template_id
        assert len(await service.list_occurrences(ctx, template_id)) == 3
        assert template.next_due is None

    @pytest.mark.asyncio
    async def test_without_preserving_paid(self, service, ctx, monthly_fields):
        template_id, before = await _create(service, ctx, monthly_fields)

        created = await service.regenerate(ctx, template_id, preserve_paid_occurrences=False)

        after = await service.list_occurrences(ctx, template_id)
        assert created == 27
        assert len(after) == 27
        assert not {o.id for o in before} & {o.id for o in after}

    @pytest.mark.asyncio
    async def test_unknown_template(self, service, ctx):
        with pytest.raises(NotFoundError):
            await service.regenerate(ctx, uuid4())
