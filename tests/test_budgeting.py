import json
from datetime import datetime

from budgeting import (
    Severity,
    aggregate_by_category,
    build_alerts,
    budget_alert_message,
    category_alert_message,
    classify,
    default_budget_for_income,
    net_income,
    normalize_category,
    percentage_of,
    truncate,
)
from models import CATEGORY_NAMES, Category, Transaction, TransactionType
from periods import Window


MARCH = Window("this_month", datetime(2025, 3, 1), datetime(2025, 4, 1))


def _txn(amount, category, when, txn_type=TransactionType.expense) -> Transaction:
    return Transaction(
        user_id="u1",
        description="test",
        amount=amount,
        category=category,
        type=txn_type,
        date=when,
    )


def test_aggregate_sums_expenses_per_category_in_window():
    transactions = [
        _txn(100.0, Category.food, datetime(2025, 3, 2)),
        _txn(50.5, Category.food, datetime(2025, 3, 15)),
        _txn(30.0, Category.shopping, datetime(2025, 3, 31, 23, 59)),
        _txn(999.0, Category.food, datetime(2025, 2, 28, 23, 59)),
        _txn(999.0, Category.food, datetime(2025, 4, 1)),
        _txn(4000.0, Category.other, datetime(2025, 3, 1), TransactionType.income),
    ]

    spending = aggregate_by_category(transactions, MARCH)

    assert spending == {"Food & Groceries": 150.5, "Shopping": 30.0}


def test_aggregate_coerces_missing_and_unknown_categories_to_other():
    transactions = [
        _txn(10.0, None, datetime(2025, 3, 2)),
        _txn(5.0, "  ", datetime(2025, 3, 3)),
        _txn(7.0, "Pets", datetime(2025, 3, 4)),
    ]

    spending = aggregate_by_category(transactions, MARCH)

    assert spending == {"Other": 22.0}


def test_aggregate_keys_are_known_and_total_matches_expenses():
    transactions = [
        _txn(12.0, Category.housing, datetime(2025, 3, 1)),
        _txn(8.0, "gadgets", datetime(2025, 3, 2)),
        _txn(3.5, Category.utilities, datetime(2025, 3, 3)),
        _txn(700.0, Category.savings, datetime(2025, 3, 4), TransactionType.income),
    ]

    spending = aggregate_by_category(transactions, MARCH)

    assert set(spending) <= set(CATEGORY_NAMES)
    assert sum(spending.values()) == 12.0 + 8.0 + 3.5


def test_aggregate_puts_misspelled_categories_under_other():
    transactions = [
        _txn(10.0, "Shoping", datetime(2025, 3, 2)),
        _txn(5.0, "Savngs", datetime(2025, 3, 3)),
    ]

    assert aggregate_by_category(transactions, MARCH) == {"Other": 15.0}


def test_aggregate_does_not_mutate_input():
    transactions = [_txn(10.0, None, datetime(2025, 3, 2))]

    first = aggregate_by_category(transactions, MARCH)
    first["Other"] = 0.0
    second = aggregate_by_category(transactions, MARCH)

    assert transactions[0].category is None
    assert second == {"Other": 10.0}


def test_net_income_subtracts_expenses_from_income():
    transactions = [
        _txn(1000.0, Category.other, datetime(2025, 3, 1), TransactionType.income),
        _txn(250.0, Category.food, datetime(2025, 3, 2)),
    ]
    assert net_income(transactions, MARCH) == 750.0


def test_normalize_category_matches_case_but_not_typos():
    assert normalize_category("food & groceries") == "Food & Groceries"
    assert normalize_category(" HOUSING ") == "Housing"
    assert normalize_category("Shoping") == "Other"
    assert normalize_category("Groceries") == "Other"
    assert normalize_category(None) == "Other"
    assert normalize_category(Category.healthcare) == "Healthcare"


def test_classify_examples():
    assert percentage_of(450, 500) == 90
    assert classify(450, 500) == Severity.warning
    assert percentage_of(520, 500) == 104
    assert classify(520, 500) == Severity.critical


def test_classify_thresholds_use_rounded_percentage():
    assert classify(397.5, 500) == Severity.warning  # 79.5 rounds up to 80
    assert classify(397.0, 500) is None  # 79.4
    assert classify(497.5, 500) == Severity.critical  # 99.5 rounds up to 100
    assert classify(497.0, 500) == Severity.warning
    assert classify(500, 500) == Severity.critical


def test_classify_ignores_zero_or_missing_limits():
    assert classify(100, 0) is None
    assert classify(100, None) is None
    assert percentage_of(100, 0) is None


def test_build_alerts_follows_budget_order_and_skips_unbudgeted():
    spending = {"Shopping": 90.0, "Food & Groceries": 520.0, "Entertainment": 1e6}
    limits = {"Shopping": 100.0, "Housing": 1000.0, "Food & Groceries": 500.0}

    alerts = build_alerts(spending, limits)

    assert [a.category for a in alerts] == ["Shopping", "Food & Groceries"]
    assert [a.severity for a in alerts] == [Severity.warning, Severity.critical]
    assert alerts[1].percentage == 104
    assert alerts[1].budget == 500.0


def test_build_alerts_is_idempotent():
    spending = {"Food & Groceries": 450.0}
    limits = {"Food & Groceries": 500.0}
    assert build_alerts(spending, limits) == build_alerts(spending, limits)


def test_budget_alert_message_critical_uses_singular():
    alerts = build_alerts(
        {"Food & Groceries": 520.0, "Shopping": 85.0},
        {"Food & Groceries": 500.0, "Shopping": 100.0},
    )

    message = budget_alert_message(alerts)

    assert message.title == "🚨 Critical Budget Alert"
    assert message.body == "You've exceeded your budget in 1 category!"
    assert message.data["type"] == "budget_alert"
    payload = json.loads(message.data["alerts"])
    assert [a["severity"] for a in payload] == ["critical", "warning"]


def test_budget_alert_message_warnings_use_plural():
    alerts = build_alerts(
        {"Food & Groceries": 450.0, "Shopping": 85.0},
        {"Food & Groceries": 500.0, "Shopping": 100.0},
    )

    message = budget_alert_message(alerts)

    assert message.title == "💰 Budget Alert"
    assert message.body == "You're approaching your budget limit in 2 categories."


def test_budget_alert_message_empty_is_none():
    assert budget_alert_message([]) is None


def test_category_alert_message_formats_amounts():
    alert = build_alerts({"Food & Groceries": 520.0}, {"Food & Groceries": 500.0})[0]

    message = category_alert_message(alert, "USD")

    assert message.title == "🚨 Budget Exceeded: Food & Groceries"
    assert message.body == (
        "You've used 104% of your Food & Groceries budget ($520.00 of $500.00)"
    )
    assert message.data == {"type": "category_alert", "category": "Food & Groceries"}


def test_truncate_adds_ellipsis_only_when_cut():
    assert truncate("short") == "short"
    assert truncate("x" * 150) == "x" * 100 + "..."


def test_default_budget_splits_income():
    budget = default_budget_for_income(50_000)
    assert budget["Housing"] == 12_500
    assert budget["Transportation"] == 3_750
    assert budget["Savings"] == 10_000
    assert list(budget) == list(CATEGORY_NAMES)


def test_non_finite_values_never_alert():
    assert percentage_of(float("inf"), 500) is None
    assert classify(float("inf"), 500) is None
    assert classify(10, float("nan")) is None

    alerts = build_alerts(
        {"Food & Groceries": 10.0, "Shopping": 95.0},
        {"Food & Groceries": float("nan"), "Shopping": 100.0},
    )

    assert [(a.category, a.severity) for a in alerts] == [("Shopping", Severity.warning)]
