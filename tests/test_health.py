from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from alps.github.model import RunStatus
from alps.stats.health import (
    aggregate_health,
    count_statuses,
    health_badge,
    health_percentage,
)
from alps.stats.types import HealthBadge

ANCHOR = datetime(2024, 3, 10, 12, tzinfo=timezone.utc)


def make_run(status: RunStatus, day: int, hour: int = 10):
    return SimpleNamespace(
        status=status,
        workflow_created_at=datetime(2024, 3, day, hour, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize(
    "success,total,expected",
    [
        (0, 0, 0),
        (1, 1, 100),
        (2, 3, 67),
        (1, 3, 33),
        (1, 8, 13),
        (0, 5, 0),
    ],
)
def test_health_percentage(success, total, expected):
    assert health_percentage(success, total) == expected


@pytest.mark.parametrize(
    "percentage,total,expected",
    [
        (0, 0, HealthBadge.inactive),
        (100, 0, HealthBadge.inactive),
        (100, 4, HealthBadge.green),
        (90, 10, HealthBadge.green),
        (89, 10, HealthBadge.yellow),
        (70, 10, HealthBadge.yellow),
        (69, 10, HealthBadge.red),
        (0, 3, HealthBadge.red),
    ],
)
def test_health_badge(percentage, total, expected):
    assert health_badge(percentage, total) == expected


def test_count_statuses_only_counts_success_and_failure():
    runs = [
        make_run(RunStatus.success, 10),
        make_run(RunStatus.failure, 10),
        make_run(RunStatus.cancelled, 9),
        make_run(RunStatus.in_progress, 9),
        make_run(RunStatus.queued, 9),
    ]
    assert count_statuses(runs) == (5, 1, 1)


def test_aggregate_health_fills_every_day():
    runs = [
        make_run(RunStatus.success, 10),
        make_run(RunStatus.failure, 10),
        make_run(RunStatus.success, 8),
        make_run(RunStatus.cancelled, 9),
    ]
    summary = aggregate_health(runs, ANCHOR)

    assert summary.total == 4
    assert summary.success == 2
    assert summary.failure == 1
    assert summary.percentage == 50
    assert summary.badge == HealthBadge.red

    assert [b.date for b in summary.daily] == [
        "2024-03-04",
        "2024-03-05",
        "2024-03-06",
        "2024-03-07",
        "2024-03-08",
        "2024-03-09",
        "2024-03-10",
    ]
    by_day = {b.date: (b.success_count, b.failure_count) for b in summary.daily}
    assert by_day["2024-03-10"] == (1, 1)
    assert by_day["2024-03-09"] == (0, 0)
    assert by_day["2024-03-08"] == (1, 0)
    assert by_day["2024-03-04"] == (0, 0)


def test_aggregate_health_no_runs():
    summary = aggregate_health([], ANCHOR)
    assert summary.total == 0
    assert summary.percentage == 0
    assert summary.badge == HealthBadge.inactive
    assert len(summary.daily) == 7
    assert all(b.success_count == 0 and b.failure_count == 0 for b in summary.daily)


def test_aggregate_health_ignores_runs_outside_buckets():
    runs = [make_run(RunStatus.success, 1)]
    summary = aggregate_health(runs, ANCHOR)
    assert summary.total == 1
    assert sum(b.success_count for b in summary.daily) == 0
