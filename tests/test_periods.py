from datetime import datetime

import pytest

from periods import current_month, last_n_days, previous_month, resolve_window


def test_current_month_rolls_over_year_end() -> None:
    window = current_month(datetime(2024, 12, 31, 23, 59))
    assert window.start == datetime(2024, 12, 1)
    assert window.end == datetime(2025, 1, 1)
    assert window.contains(datetime(2024, 12, 31, 23, 59))
    assert not window.contains(datetime(2025, 1, 1))


def test_previous_month_from_january() -> None:
    window = previous_month(datetime(2025, 1, 15, 8, 0))
    assert window.slug == "last_month"
    assert window.start == datetime(2024, 12, 1)
    assert window.end == datetime(2025, 1, 1)


def test_last_n_days_includes_now() -> None:
    now = datetime(2025, 3, 20, 10, 0)
    window = last_n_days(7, now)
    assert window.contains(now)
    assert window.contains(datetime(2025, 3, 13, 10, 0))
    assert not window.contains(datetime(2025, 3, 13, 9, 59))


def test_last_n_days_rejects_non_positive_length() -> None:
    with pytest.raises(ValueError):
        last_n_days(0)


def test_resolve_window_slugs() -> None:
    now = datetime(2025, 3, 20, 10, 0)
    assert resolve_window(None, now=now) == current_month(now)
    assert resolve_window("last_month", now=now).start == datetime(2025, 2, 1)
    assert resolve_window("last_30_days", now=now).start == datetime(2025, 2, 18, 10, 0)
    with pytest.raises(ValueError, match="Unknown window"):
        resolve_window("fortnight", now=now)
