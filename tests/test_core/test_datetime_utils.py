"""Tests for datetime_utils."""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from accpublish.core.datetime_utils import (
    get_expiry,
    is_expired,
    is_valid_timezone,
    to_naive_utc,
    utc_now,
)


class TestIsValidTimezone:
    """Tests for is_valid_timezone."""

    def test_valid_iana_timezone(self):
        """Should return True for valid IANA timezone."""
        assert is_valid_timezone("America/New_York") is True
        assert is_valid_timezone("Europe/Paris") is True
        assert is_valid_timezone("UTC") is True

    def test_invalid_timezone(self):
        """Should return False for invalid timezone."""
        assert is_valid_timezone("Invalid/Timezone") is False
        assert is_valid_timezone("") is False
        assert is_valid_timezone("America/Atlantis") is False


class TestExpiry:
    """Tests for is_expired and get_expiry."""

    def test_none_is_expired(self):
        """A missing expiry counts as expired."""
        assert is_expired(None) is True

    def test_past_is_expired(self):
        assert is_expired(utc_now() - timedelta(seconds=1)) is True

    def test_future_is_not_expired(self):
        assert is_expired(get_expiry(minutes=5)) is False

    def test_leeway_expires_early(self):
        """Should treat an expiry inside the leeway as already expired."""
        expiry = get_expiry(seconds=30)
        assert is_expired(expiry) is False
        assert is_expired(expiry, leeway_seconds=60) is True

    def test_get_expiry_is_naive_and_in_the_future(self):
        expiry = get_expiry(seconds=3600)
        assert expiry.tzinfo is None
        assert expiry > utc_now()


class TestToNaiveUtc:
    """Tests for to_naive_utc."""

    def test_naive_is_unchanged(self):
        dt = datetime(2026, 1, 1, 12, 0)
        assert to_naive_utc(dt) == dt

    def test_aware_is_converted_to_utc(self):
        """Should convert an aware datetime to naive UTC."""
        paris = datetime(2026, 1, 1, 12, 0, tzinfo=ZoneInfo("Europe/Paris"))
        assert to_naive_utc(paris) == datetime(2026, 1, 1, 11, 0)

    def test_utc_now_is_naive(self):
        now = utc_now()
        assert now.tzinfo is None
        assert abs(datetime.now(UTC).replace(tzinfo=None) - now) < timedelta(seconds=5)
