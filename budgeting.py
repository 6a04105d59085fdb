"""Category aggregation, threshold classification and alert copy.

Everything in here is pure: functions take plain values (or objects exposing
``amount``/``category``/``type``/``date``) and return new values. Database
access and push delivery live in ``services`` and ``notifications``.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Mapping, Optional, Protocol

from models import CATEGORY_NAMES, Category, TransactionType
from periods import Window


WARNING_THRESHOLD = 80
CRITICAL_THRESHOLD = 100

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
    "INR": "₹",
}


class Severity(str, Enum):
    warning = "warning"
    critical = "critical"


class TransactionLike(Protocol):
    amount: float
    category: Optional[str]
    type: str
    date: object


@dataclass(frozen=True)
class Alert:
    category: str
    spent: float
    budget: float
    percentage: int
    severity: Severity

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


@dataclass(frozen=True)
class AlertMessage:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


def normalize_category(raw: Optional[str]) -> str:
    """Map free-form input onto the fixed category set, falling back to Other."""
    if isinstance(raw, Category):
        return raw.value
    value = (raw or "").strip()
    if not value:
        return Category.other.value
    lowered = value.lower()
    for name in CATEGORY_NAMES:
        if name.lower() == lowered:
            return name
    return Category.other.value


def _in_window(txn: TransactionLike, window: Optional[Window]) -> bool:
    return window is None or window.contains(txn.date)


def aggregate_by_category(
    transactions: Iterable[TransactionLike], window: Optional[Window] = None
) -> dict[str, float]:
    spending: dict[str, float] = {}
    for txn in transactions:
        if txn.type != TransactionType.expense:
            continue
        if not _in_window(txn, window):
            continue
        category = normalize_category(txn.category)
        spending[category] = spending.get(category, 0.0) + float(txn.amount or 0)
    return spending


def net_income(
    transactions: Iterable[TransactionLike], window: Optional[Window] = None
) -> float:
    net = 0.0
    for txn in transactions:
        if not _in_window(txn, window):
            continue
        if txn.type == TransactionType.income:
            net += float(txn.amount or 0)
        elif txn.type == TransactionType.expense:
            net -= float(txn.amount or 0)
    return net


def percentage_of(spent: float, limit: Optional[float]) -> Optional[int]:
    if not limit:
        return None
    # non-finite values never alert
    if not (math.isfinite(spent) and math.isfinite(limit)):
        return None
    ratio = Decimal(str(spent)) / Decimal(str(limit)) * Decimal("100")
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def classify(spent: float, limit: Optional[float]) -> Optional[Severity]:
    percentage = percentage_of(spent, limit)
    if percentage is None:
        return None
    if percentage >= CRITICAL_THRESHOLD:
        return Severity.critical
    if percentage >= WARNING_THRESHOLD:
        return Severity.warning
    return None


def alert_for(category: str, spent: float, limit: Optional[float]) -> Optional[Alert]:
    severity = classify(spent, limit)
    if severity is None:
        return None
    return Alert(
        category=category,
        spent=spent,
        budget=float(limit),
        percentage=percentage_of(spent, limit),
        severity=severity,
    )


def build_alerts(
    spending: Mapping[str, float], limits: Mapping[str, Optional[float]]
) -> list[Alert]:
    """Alerts for budgeted categories only, in budget order."""
    alerts: list[Alert] = []
    for category, limit in (limits or {}).items():
        alert = alert_for(category, spending.get(category, 0.0), limit)
        if alert is not None:
            alerts.append(alert)
    return alerts


def _categories_phrase(count: int) -> str:
    return f"{count} categor{'ies' if count > 1 else 'y'}"


def budget_alert_message(alerts: list[Alert]) -> Optional[AlertMessage]:
    if not alerts:
        return None
    critical = [a for a in alerts if a.severity == Severity.critical]
    warnings = [a for a in alerts if a.severity == Severity.warning]

    if critical:
        title = "🚨 Critical Budget Alert"
        body = f"You've exceeded your budget in {_categories_phrase(len(critical))}!"
    else:
        title = "💰 Budget Alert"
        body = (
            "You're approaching your budget limit in "
            f"{_categories_phrase(len(warnings))}."
        )
    return AlertMessage(
        title=title,
        body=body,
        data={
            "type": "budget_alert",
            "alerts": json.dumps([a.to_dict() for a in alerts]),
        },
    )


def format_currency(amount: float, currency: str = "INR") -> str:
    symbol = CURRENCY_SYMBOLS.get((currency or "").upper(), "")
    return f"{symbol}{amount:,.2f}"


def category_alert_message(alert: Alert, currency: str = "INR") -> AlertMessage:
    if alert.severity == Severity.critical:
        title = f"🚨 Budget Exceeded: {alert.category}"
    else:
        title = f"⚠️ Budget Alert: {alert.category}"
    body = (
        f"You've used {alert.percentage}% of your {alert.category} budget "
        f"({format_currency(alert.spent, currency)} of "
        f"{format_currency(alert.budget, currency)})"
    )
    return AlertMessage(
        title=title,
        body=body,
        data={"type": "category_alert", "category": alert.category},
    )


def truncate(text: str, max_length: int = 100) -> str:
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


# 50/30/20 split of monthly income used when there is no history to learn from
DEFAULT_ALLOCATION: dict[str, Decimal] = {
    Category.housing.value: Decimal("0.25"),
    Category.food.value: Decimal("0.10"),
    Category.transportation.value: Decimal("0.075"),
    Category.utilities.value: Decimal("0.075"),
    Category.entertainment.value: Decimal("0.10"),
    Category.shopping.value: Decimal("0.10"),
    Category.healthcare.value: Decimal("0.05"),
    Category.savings.value: Decimal("0.20"),
    Category.other.value: Decimal("0.05"),
}


def default_budget_for_income(monthly_income: float) -> dict[str, float]:
    income = Decimal(str(monthly_income))
    return {
        category: float((income * share).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        for category, share in DEFAULT_ALLOCATION.items()
    }
