from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from dcabot.domain.cadence import (
    floor_to_boundary,
    next_boundary,
    parse_frequency,
)
from dcabot.domain.models import Frequency


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("minute", Frequency.MINUTE), (" Hour ", Frequency.HOUR), ("DAY", Frequency.DAY)],
)
def test_parse_frequency_accepts_known_units(raw: str, expected: Frequency) -> None:
    assert parse_frequency(raw) is expected


@pytest.mark.parametrize("raw", ["weekly", "", "*/5 * * * *"])
def test_parse_frequency_rejects_unknown_units(raw: str) -> None:
    with pytest.raises(ValueError, match="Invalid frequency"):
        parse_frequency(raw)


def test_next_boundary_is_top_of_unit() -> None:
    moment = datetime(2024, 3, 10, 13, 45, 30, 500, tzinfo=UTC)

    assert next_boundary(Frequency.MINUTE, moment) == datetime(2024, 3, 10, 13, 46, tzinfo=UTC)
    assert next_boundary(Frequency.HOUR, moment) == datetime(2024, 3, 10, 14, 0, tzinfo=UTC)
    assert next_boundary(Frequency.DAY, moment) == datetime(2024, 3, 11, 0, 0, tzinfo=UTC)


def test_next_boundary_is_strictly_after_an_exact_boundary() -> None:
    moment = datetime(2024, 3, 10, 0, 0, tzinfo=UTC)

    assert next_boundary(Frequency.MINUTE, moment) == moment + timedelta(minutes=1)
    assert next_boundary(Frequency.DAY, moment) == moment + timedelta(days=1)


def test_day_boundary_uses_utc_midnight() -> None:
    local = timezone(timedelta(hours=3))
    moment = datetime(2024, 3, 11, 1, 0, tzinfo=local)  # 22:00 UTC on the 10th

    assert floor_to_boundary(Frequency.DAY, moment) == datetime(2024, 3, 10, tzinfo=UTC)
    assert next_boundary(Frequency.DAY, moment) == datetime(2024, 3, 11, tzinfo=UTC)


def test_naive_datetimes_are_treated_as_utc() -> None:
    moment = datetime(2024, 3, 10, 13, 59, 30)

    assert next_boundary(Frequency.HOUR, moment) == datetime(2024, 3, 10, 14, 0, tzinfo=UTC)
