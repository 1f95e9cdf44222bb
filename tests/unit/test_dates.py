"""Tests for the effective date function."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from daily_tally.services.dates import effective_date

IST = ZoneInfo("Europe/Istanbul")


class TestEffectiveDate:
    """Test effective_date."""

    def test_before_reset_hour_is_same_day(self):
        """Test 21:59 local stays on the civil date."""
        now = datetime(2024, 3, 10, 21, 59, tzinfo=IST)
        assert effective_date(22, "Europe/Istanbul", now) == "2024-03-10"

    def test_at_reset_hour_is_next_day(self):
        """Test 22:00 local rolls over to the following date."""
        now = datetime(2024, 3, 10, 22, 0, tzinfo=IST)
        assert effective_date(22, "Europe/Istanbul", now) == "2024-03-11"

    def test_boundary_maps_to_consecutive_dates(self):
        """Test the minute either side of the reset hour gives consecutive days."""
        before = effective_date(22, "Europe/Istanbul", datetime(2024, 12, 31, 21, 59, tzinfo=IST))
        after = effective_date(22, "Europe/Istanbul", datetime(2024, 12, 31, 22, 0, tzinfo=IST))
        assert before == "2024-12-31"
        assert after == "2025-01-01"

    def test_stable_within_minute(self):
        """Test repeated calls within the same minute agree."""
        first = effective_date(22, "Europe/Istanbul", datetime(2024, 3, 10, 12, 30, 1, tzinfo=IST))
        second = effective_date(22, "Europe/Istanbul", datetime(2024, 3, 10, 12, 30, 59, tzinfo=IST))
        assert first == second

    def test_utc_input_converted_to_civil_zone(self):
        """Test an aware UTC instant is judged in the civil timezone (UTC+3)."""
        # 19:30 UTC is 22:30 in Istanbul
        now = datetime(2024, 6, 1, 19, 30, tzinfo=timezone.utc)
        assert effective_date(22, "Europe/Istanbul", now) == "2024-06-02"

    def test_naive_input_treated_as_utc(self):
        """Test a naive datetime is interpreted as UTC."""
        assert effective_date(22, "Europe/Istanbul", datetime(2024, 6, 1, 19, 30)) == "2024-06-02"
        assert effective_date(22, "Europe/Istanbul", datetime(2024, 6, 1, 18, 59)) == "2024-06-01"

    def test_reset_hour_zero_always_next_day(self):
        """Test reset hour 0 shifts every moment to the next civil date."""
        now = datetime(2024, 3, 10, 0, 0, tzinfo=IST)
        assert effective_date(0, "Europe/Istanbul", now) == "2024-03-11"

    def test_default_now(self):
        """Test calling without ``now`` returns an ISO date string."""
        result = effective_date(22, "Europe/Istanbul")
        assert len(result) == 10
        assert result[4] == "-" and result[7] == "-"
