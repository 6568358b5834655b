from __future__ import annotations

from datetime import UTC, datetime, timedelta

from dcabot.domain.models import Frequency

_UNIT: dict[Frequency, timedelta] = {
    Frequency.MINUTE: timedelta(minutes=1),
    Frequency.HOUR: timedelta(hours=1),
    Frequency.DAY: timedelta(days=1),
}


def parse_frequency(value: str | Frequency) -> Frequency:
    if isinstance(value, Frequency):
        return value
    normalized = str(value).strip().lower()
    try:
        return Frequency(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid frequency: {value!r}") from exc


def cadence_unit(frequency: Frequency) -> timedelta:
    return _UNIT[frequency]


def floor_to_boundary(frequency: Frequency, moment: datetime) -> datetime:
    """Start of the cadence unit containing ``moment`` (UTC)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    moment = moment.astimezone(UTC)
    if frequency is Frequency.MINUTE:
        return moment.replace(second=0, microsecond=0)
    if frequency is Frequency.HOUR:
        return moment.replace(minute=0, second=0, microsecond=0)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def next_boundary(frequency: Frequency, moment: datetime) -> datetime:
    """First cadence boundary strictly after ``moment``."""
    return floor_to_boundary(frequency, moment) + _UNIT[frequency]
