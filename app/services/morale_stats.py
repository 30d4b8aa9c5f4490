from __future__ import annotations

import math
from datetime import date, datetime
from typing import Iterable

from app.models.record import MAX_MORALE_VALUE, MIN_MORALE_VALUE, MoraleStats, Record

DEFAULT_HIGH_MORALE_THRESHOLD = 7


def _round_one_decimal(value: float) -> float:
    # Half-up, not banker's rounding.
    return math.floor(value * 10 + 0.5) / 10


def _local_date(timestamp: int) -> date | None:
    try:
        return datetime.fromtimestamp(timestamp).date()
    except (OverflowError, OSError, ValueError):
        return None


def score_distribution(records: Iterable[Record]) -> list[int]:
    buckets = [0] * (MAX_MORALE_VALUE - MIN_MORALE_VALUE + 1)
    for record in records:
        if not record.is_verified:
            continue
        score = record.decrypted_value
        if MIN_MORALE_VALUE <= score <= MAX_MORALE_VALUE:
            buckets[score - MIN_MORALE_VALUE] += 1
    return buckets


def compute_stats(
    records: Iterable[Record],
    *,
    today: date | None = None,
    high_morale_threshold: int = DEFAULT_HIGH_MORALE_THRESHOLD,
) -> MoraleStats:
    """Aggregate the record set; averages only cover verified records."""
    all_records = list(records)
    verified = [record for record in all_records if record.is_verified]
    current_day = today or date.today()

    avg_morale = (
        sum(record.decrypted_value for record in verified) / len(verified) if verified else 0.0
    )
    return MoraleStats(
        total_entries=len(all_records),
        avg_morale=_round_one_decimal(avg_morale),
        verified_count=len(verified),
        today_entries=sum(1 for record in all_records if _local_date(record.timestamp) == current_day),
        high_morale_count=sum(1 for record in verified if record.decrypted_value >= high_morale_threshold),
        score_distribution=score_distribution(verified),
    )
