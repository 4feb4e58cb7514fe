"""
Unit tests for tablet_loans.utils – id validation and timezone helpers.
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from tablet_loans.utils.ids import is_valid_id
from tablet_loans.utils.timezone import as_utc, utcnow


class TestIsValidId:
    def test_uuid_string(self):
        assert is_valid_id(str(uuid4())) is True

    def test_rejects_garbage(self):
        assert is_valid_id("not-a-uuid") is False
        assert is_valid_id("") is False
        assert is_valid_id(None) is False


class TestTimezone:
    def test_utcnow_is_aware(self):
        assert utcnow().tzinfo is not None

    def test_naive_treated_as_utc(self):
        naive = datetime(2024, 1, 10, 9, 0)
        assert as_utc(naive) == datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)

    def test_aware_converted_to_utc(self):
        manila = timezone(timedelta(hours=8))
        value = as_utc(datetime(2024, 1, 10, 17, 0, tzinfo=manila))
        assert value == datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc)
        assert value.utcoffset() == timedelta(0)
