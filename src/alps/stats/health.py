from dataclasses import dataclass
from datetime import datetime
import math
from typing import Iterable, List, Optional, Protocol, Tuple

from alps.github.model import RunStatus
from alps.stats.types import DailyBucket, HealthBadge
from alps.stats.windows import daily_buckets, day_key, resolve_anchor

GREEN_THRESHOLD = 90
YELLOW_THRESHOLD = 70


class StatusRun(Protocol):
    status: RunStatus
    workflow_created_at: datetime


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def health_percentage(success: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(success / total * 100)


def health_badge(percentage: int, total: int) -> HealthBadge:
    if total == 0:
        return HealthBadge.inactive
    if percentage >= GREEN_THRESHOLD:
        return HealthBadge.green
    if percentage >= YELLOW_THRESHOLD:
        return HealthBadge.yellow
    return HealthBadge.red


def count_statuses(runs: Iterable[StatusRun]) -> Tuple[int, int, int]:
    """Return ``(total, success, failure)``.

    Cancelled, queued and in-progress runs only count toward the total.
    """
    total = success = failure = 0
    for run in runs:
        total += 1
        if run.status == RunStatus.success:
            success += 1
        elif run.status == RunStatus.failure:
            failure += 1
    return total, success, failure


@dataclass(frozen=True)
class HealthSummary:
    total: int
    success: int
    failure: int
    percentage: int
    daily: List[DailyBucket]

    @property
    def badge(self) -> HealthBadge:
        return health_badge(self.percentage, self.total)


def aggregate_health(
    runs: Iterable[StatusRun], anchor: Optional[datetime] = None, days: int = 7
) -> HealthSummary:
    anchor = resolve_anchor(anchor)
    runs = list(runs)
    total, success, failure = count_statuses(runs)

    buckets = {key: DailyBucket(date=key) for key in daily_buckets(anchor, days)}
    for run in runs:
        bucket = buckets.get(day_key(run.workflow_created_at, anchor))
        if bucket is None:
            continue
        if run.status == RunStatus.success:
            bucket.success_count += 1
        elif run.status == RunStatus.failure:
            bucket.failure_count += 1

    return HealthSummary(
        total=total,
        success=success,
        failure=failure,
        percentage=health_percentage(success, total),
        daily=list(buckets.values()),
    )
