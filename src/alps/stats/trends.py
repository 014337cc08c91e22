from datetime import datetime
from typing import Callable, Iterable, List, Optional, Protocol

from sanic.log import logger

from alps.github.model import RunStatus
from alps.model import MonthlyCommitBucket
from alps.stats.health import round_half_up
from alps.stats.types import DurationBucket, MonthlyBucket, TestTrendPoint
from alps.stats.windows import month_key, monthly_buckets, resolve_anchor
from alps.storage.types import TestResultRecord


class TrendRun(Protocol):
    id: str
    status: RunStatus
    duration_ms: Optional[int]
    workflow_created_at: datetime


def monthly_run_stats(
    runs: Iterable[TrendRun], anchor: Optional[datetime] = None, months: int = 12
) -> List[MonthlyBucket]:
    anchor = resolve_anchor(anchor)
    buckets = {key: MonthlyBucket(month=key) for key in monthly_buckets(anchor, months)}
    for run in runs:
        bucket = buckets.get(month_key(run.workflow_created_at, anchor))
        if bucket is None:
            continue
        bucket.total_count += 1
        if run.status == RunStatus.success:
            bucket.success_count += 1
        elif run.status == RunStatus.failure:
            bucket.failure_count += 1
    return list(buckets.values())


def monthly_duration_stats(
    runs: Iterable[TrendRun], anchor: Optional[datetime] = None, months: int = 12
) -> List[DurationBucket]:
    """Average, minimum and maximum run duration per month, in milliseconds.

    Runs without a duration, or with a duration of zero or less, are left out
    of the sample entirely.
    """
    anchor = resolve_anchor(anchor)
    samples = {key: [] for key in monthly_buckets(anchor, months)}
    for run in runs:
        if run.duration_ms is None or run.duration_ms <= 0:
            continue
        sample = samples.get(month_key(run.workflow_created_at, anchor))
        if sample is not None:
            sample.append(run.duration_ms)

    result = []
    for period, durations in samples.items():
        if not durations:
            result.append(DurationBucket(period=period))
            continue
        result.append(
            DurationBucket(
                period=period,
                avg_duration=round_half_up(sum(durations) / len(durations)),
                min_duration=min(durations),
                max_duration=max(durations),
                count=len(durations),
            )
        )
    return result


def monthly_commit_histogram(
    dates: Iterable[datetime], anchor: Optional[datetime] = None, months: int = 12
) -> List[MonthlyCommitBucket]:
    anchor = resolve_anchor(anchor)
    counts = {key: 0 for key in monthly_buckets(anchor, months)}
    for value in dates:
        key = month_key(value, anchor)
        if key in counts:
            counts[key] += 1
    return [
        MonthlyCommitBucket(month=key, commit_count=count)
        for key, count in counts.items()
    ]


def empty_commit_histogram(
    anchor: Optional[datetime] = None, months: int = 12
) -> List[MonthlyCommitBucket]:
    return monthly_commit_histogram([], anchor, months)


def reconstruct_test_trend(
    runs: Iterable[TrendRun],
    lookup: Callable[[TrendRun], Optional[TestResultRecord]],
) -> List[TestTrendPoint]:
    """Chronological test counts joined onto newest-first runs.

    Each point is dated by the run, since results are parsed after the run
    finished. Runs without a result are skipped.
    """
    points = []
    try:
        for run in runs:
            result = lookup(run)
            if result is None:
                continue
            points.append(
                TestTrendPoint(
                    date=run.workflow_created_at,
                    total_tests=result.total_tests,
                    passed_tests=result.passed_tests,
                    failed_tests=result.failed_tests,
                    skipped_tests=result.skipped_tests,
                )
            )
    except Exception:  # noqa: BLE001
        logger.error("Failed to reconstruct test trend", exc_info=True)
        return []

    points.reverse()
    return points
