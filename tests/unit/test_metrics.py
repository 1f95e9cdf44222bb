"""Tests for tally metrics."""

from daily_tally.observability.metrics import (
    generate_metrics_text,
    record_correction,
    record_replay,
    record_submission,
    set_queue_depth,
)


class TestMetrics:
    """Test metric recording and exposition."""

    def test_metrics_exposed(self):
        """Test recorded metrics appear in the exposition text."""
        record_submission("fast")
        record_correction("accepted")
        record_replay("claim", 3)
        set_queue_depth(7)

        text = generate_metrics_text()

        assert "tally_submissions_total" in text
        assert 'path="fast"' in text
        assert "tally_corrections_total" in text
        assert "tally_replayed_readings_total" in text
        assert "tally_replay_queue_depth 7.0" in text
