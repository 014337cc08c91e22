from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from alps.storage.types import AccessTokenRow, TestResultRecord, format_utc_datetime


def test_format_utc_datetime():
    aware = datetime(2024, 3, 1, 12, 30, tzinfo=timezone(timedelta(hours=2)))
    assert format_utc_datetime(aware) == "2024-03-01T10:30:00.000000Z"
    assert format_utc_datetime(datetime(2024, 3, 1, 12)) == "2024-03-01T12:00:00.000000Z"


@pytest.mark.parametrize(
    "value",
    [
        "2024-03-01T10:30:00Z",
        "2024-03-01T10:30:00.000000Z",
        "2024-03-01T12:30:00+02:00",
        "2024-03-01T10:30:00",
        datetime(2024, 3, 1, 10, 30),
    ],
)
def test_utc_datetime_fields_normalize_to_utc(value):
    row = AccessTokenRow(
        id="tok1", tenant_id="t1", name="ci", encrypted_token="x", last_used=value
    )
    assert row.last_used == datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
    assert row.last_used.tzinfo == timezone.utc


def test_utc_datetime_rejects_other_types():
    with pytest.raises(pydantic.ValidationError):
        TestResultRecord(
            id="tr1",
            workflow_run_id="b1:1",
            build_id="b1",
            tenant_id="t1",
            parsed_at=12345,
        )
