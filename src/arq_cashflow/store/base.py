"""Persistence contract consumed by the series engine.

A store hands out transactions bound to one tenant. Everything done
through a transaction commits together or not at all, and every query it
runs is restricted to the tenant it was opened for.
"""

from collections.abc import Iterable, Mapping, Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol
from uuid import UUID

from arq_cashflow.models import (
    Occurrence,
    OccurrenceFilter,
    RecurrenceTemplate,
    TemplateFilters,
    TenantContext,
)


class SeriesTransaction(Protocol):
    """Unit of work scoped to ``ctx.team_id``."""

    ctx: TenantContext

    async def get_template(self, template_id: UUID) -> RecurrenceTemplate | None: ...

    async def insert_template(self, template: RecurrenceTemplate) -> RecurrenceTemplate: ...

    async def update_template(
        self, template_id: UUID, changes: Mapping[str, Any]
    ) -> RecurrenceTemplate: ...

    async def delete_template(self, template_id: UUID) -> None: ...

    async def list_templates(self, filters: TemplateFilters) -> list[RecurrenceTemplate]: ...

    async def get_occurrence(self, occurrence_id: UUID) -> Occurrence | None: ...

    async def create_many(self, occurrences: Sequence[Occurrence]) -> list[Occurrence]: ...

    async def find_many(
        self, template_id: UUID, filter: OccurrenceFilter | None = None
    ) -> list[Occurrence]: ...

    async def update_many(self, ids: Iterable[UUID], patch: Mapping[str, Any]) -> int: ...

    async def delete_many(self, ids: Iterable[UUID]) -> int: ...


class SeriesStore(Protocol):
    """Factory of tenant-scoped transactions."""

    def transaction(self, ctx: TenantContext) -> AbstractAsyncContextManager[SeriesTransaction]: ...
