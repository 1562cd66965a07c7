import datetime as dt
from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import TransactionType
from months import parse_month_key


class MonthKeyed(BaseModel):
    month_key: str

    @field_validator("month_key")
    @classmethod
    def _normalize_month(cls, value: str) -> str:
        return parse_month_key(value).key


class MonthIn(MonthKeyed):
    pass


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#08F850", max_length=9)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category name must not be blank")
        return value


class TransactionIn(MonthKeyed):
    category_id: int
    amount_cents: int = Field(..., gt=0)
    date: date
    note: Optional[str] = Field(default=None, max_length=200)


class BudgetIn(MonthKeyed):
    category_id: int
    amount_cents: int = Field(..., ge=0)


class BudgetCopyIn(BaseModel):
    """Copy budgets into `to_month`; the source defaults to the month before."""

    from_month: Optional[str] = None
    to_month: str

    @field_validator("from_month", "to_month")
    @classmethod
    def _normalize_months(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else parse_month_key(value).key

    @model_validator(mode="after")
    def _default_source(self) -> "BudgetCopyIn":
        if self.from_month is None:
            self.from_month = parse_month_key(self.to_month).previous().key
        return self


class GoalIn(MonthKeyed):
    savings_goal_cents: int = Field(..., ge=0)


class RecurringTemplateIn(BaseModel):
    category_id: int
    amount_cents: int = Field(default=0, ge=0)
    day_of_month: int = Field(..., ge=1, le=31)
    note: Optional[str] = Field(default=None, max_length=200)
    enabled: bool = True
    variable: bool = False

    @model_validator(mode="after")
    def _fixed_needs_amount(self) -> "RecurringTemplateIn":
        if not self.variable and self.amount_cents <= 0:
            raise ValueError("Fixed recurring templates need an amount above zero")
        return self


class RecurringTemplateUpdate(BaseModel):
    """Partial update; only the fields the caller sends are applied."""

    category_id: Optional[int] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    note: Optional[str] = Field(default=None, max_length=200)
    enabled: Optional[bool] = None
    variable: Optional[bool] = None


class RecurringApplyIn(BaseModel):
    month_key: str
    overrides: dict[str, Any] = Field(default_factory=dict)

    @field_validator("overrides", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class ExportCategory(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="#08F850", max_length=9)


class ExportTransaction(BaseModel):
    date: dt.date
    amount_cents: int = Field(..., gt=0)
    note: Optional[str] = Field(default=None, max_length=200)
    category: ExportCategory


class ExportBudget(BaseModel):
    amount_cents: int = Field(..., ge=0)
    category: ExportCategory


class MonthExport(MonthKeyed):
    model_config = ConfigDict(extra="ignore")

    savings_goal_cents: int = Field(default=0, ge=0)
    transactions: list[ExportTransaction] = Field(default_factory=list)
    budgets: list[ExportBudget] = Field(default_factory=list)


class MonthImportIn(BaseModel):
    payload: MonthExport
    overwrite: bool = False


ExportFormat = Literal["json", "csv"]
