import math
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import CATEGORY_NAMES, Category, InsightType, TransactionType


class ProfileIn(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=120)
    monthly_income: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    currency: str = Field(default="INR", min_length=3, max_length=3)
    fcm_token: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    display_name: Optional[str]
    monthly_income: float
    currency: str
    has_device_token: bool = False


class TransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    category: Optional[str] = Field(default=None, max_length=100)
    type: TransactionType = TransactionType.expense
    date: datetime


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    description: str
    amount: float
    category: Category
    type: TransactionType
    date: datetime
    created_at: datetime


def _check_limits(categories: dict) -> dict:
    unknown = [name for name in categories if name not in CATEGORY_NAMES]
    if unknown:
        raise ValueError(f"Unknown budget categories: {', '.join(sorted(unknown))}")
    not_finite = [
        name
        for name, limit in categories.items()
        if limit is not None and not math.isfinite(limit)
    ]
    if not_finite:
        raise ValueError(f"Budget limits must be finite: {', '.join(not_finite)}")
    negative = [
        name for name, limit in categories.items() if limit is not None and limit < 0
    ]
    if negative:
        raise ValueError(f"Budget limits must be non-negative: {', '.join(negative)}")
    return categories


class BudgetIn(BaseModel):
    categories: dict[str, float] = Field(default_factory=dict)

    @field_validator("categories")
    @classmethod
    def _known_categories(cls, value: dict[str, float]) -> dict[str, float]:
        return _check_limits(value)


class BudgetPatch(BaseModel):
    """Key-by-key merge; a null limit removes the category from the budget."""

    categories: dict[str, Optional[float]] = Field(default_factory=dict)

    @field_validator("categories")
    @classmethod
    def _known_categories(
        cls, value: dict[str, Optional[float]]
    ) -> dict[str, Optional[float]]:
        return _check_limits(value)


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    categories: dict[str, float]
    created_at: datetime
    updated_at: datetime


class CategoryProgress(BaseModel):
    category: str
    spent: float
    budget: float
    remaining: float
    percentage: Optional[int]
    status: Literal["ok", "warning", "critical", "untracked"]


class BudgetProgressOut(BaseModel):
    window_start: datetime
    window_end: datetime
    total_spent: float
    total_budget: float
    net_income: float
    categories: list[CategoryProgress]


class AlertOut(BaseModel):
    category: str
    spent: float
    budget: float
    percentage: int
    severity: Literal["warning", "critical"]


class InsightOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: InsightType
    summary: str
    total_spent: float
    transaction_count: int
    top_categories: list[str]
    concerns: list[str]
    recommendation: Optional[str]
    created_at: datetime


class LifeChangeIn(BaseModel):
    life_change: str = Field(..., min_length=1, max_length=500)


class UserOutcomeOut(BaseModel):
    user_id: str
    status: Literal["ok", "skipped", "failed"]
    reason: Optional[str] = None


class BatchReportOut(BaseModel):
    job: str
    ok: int
    skipped: int
    failed: int
    outcomes: list[UserOutcomeOut]
