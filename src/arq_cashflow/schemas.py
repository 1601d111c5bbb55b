"""Input schemas for template and series operations."""

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from arq_cashflow.errors import ValidationError
from arq_cashflow.models import (
    ExpenseType,
    Frequency,
    RecurrenceRule,
    SeriesScope,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class RecurringExpenseCreate(_Input):
    """Fields accepted when creating a template."""

    description: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    category: str = Field(min_length=1, max_length=100)
    frequency: Frequency
    interval: int = Field(default=1, ge=1, le=12)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    start_date: date
    end_date: date | None = None
    max_occurrences: int | None = Field(default=None, ge=1)
    vendor: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)
    invoice_number: str | None = Field(default=None, max_length=100)
    expense_type: ExpenseType | None = None
    contract_id: UUID | None = None
    is_active: bool = True


class RecurringExpenseUpdate(_Input):
    """Partial template update. Only fields explicitly set are applied."""

    description: str | None = Field(default=None, min_length=1, max_length=255)
    amount: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    category: str | None = Field(default=None, min_length=1, max_length=100)
    frequency: Frequency | None = None
    interval: int | None = Field(default=None, ge=1, le=12)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    start_date: date | None = None
    end_date: date | None = None
    max_occurrences: int | None = Field(default=None, ge=1)
    vendor: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)
    invoice_number: str | None = Field(default=None, max_length=100)
    expense_type: ExpenseType | None = None
    contract_id: UUID | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> "RecurringExpenseUpdate":
        required = ("description", "amount", "category", "frequency", "interval", "start_date")
        for name in (*required, "is_active"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SeriesPatch(_Input):
    """Fields a scoped series update may change. Dates and status are not patchable."""

    amount: Decimal | None = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    description: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = Field(default=None, min_length=1, max_length=100)
    vendor: str | None = Field(default=None, max_length=255)
    notes: str | None = Field(default=None, max_length=2000)
    expense_type: ExpenseType | None = None

    @model_validator(mode="after")
    def _not_empty(self) -> "SeriesPatch":
        if not self.model_fields_set:
            raise ValueError("patch must set at least one field")
        for name in ("amount", "description", "category"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def parse_input(
    model: type[ModelT],
    data: Mapping[str, Any] | BaseModel,
    *,
    template_id: UUID | None = None,
    scope: SeriesScope | None = None,
    target_id: UUID | None = None,
) -> ModelT:
    """Validate ``data`` against ``model``, raising the engine's ValidationError."""
    if isinstance(data, model):
        return data
    payload = data.model_dump(exclude_unset=True) if isinstance(data, BaseModel) else data
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__} payload",
            template_id=template_id,
            scope=scope.value if scope else None,
            target_id=target_id,
            details=exc.errors(include_url=False, include_context=False),
        ) from exc


def validate_rule(rule: RecurrenceRule, *, template_id: UUID | None = None) -> None:
    """Check the invariants of a recurrence rule.

    Raises:
        ValidationError: On a non-positive interval, an anchor day outside
            1-31, or an end date before the start date.
    """
    if rule.interval < 1:
        raise ValidationError(
            "Interval must be a positive integer",
            template_id=template_id,
            details={"interval": rule.interval},
        )
    if rule.day_of_month is not None and not 1 <= rule.day_of_month <= 31:
        raise ValidationError(
            "Day of month must be between 1 and 31",
            template_id=template_id,
            details={"day_of_month": rule.day_of_month},
        )
    if rule.max_occurrences is not None and rule.max_occurrences < 1:
        raise ValidationError(
            "Max occurrences must be a positive integer",
            template_id=template_id,
            details={"max_occurrences": rule.max_occurrences},
        )
    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise ValidationError(
            "End date must be on or after start date",
            code="INVALID_DATE_RANGE",
            template_id=template_id,
            details={
                "start_date": rule.start_date.isoformat(),
                "end_date": rule.end_date.isoformat(),
            },
        )
