"""Prometheus metrics for Daily Tally.

Cardinality rule: names and dates are NOT Prometheus labels (unbounded).
Write path, correction outcome and replay mode are labels (bounded).
"""

import logging

import prometheus_client

logger = logging.getLogger(__name__)

# --- Metric singletons (created on first access) ---

_metrics = {}


def _metric(name, metric_type, description, labelnames=()):
    """Get or create a Prometheus metric."""
    if name in _metrics:
        return _metrics[name]
    cls = getattr(prometheus_client, metric_type)
    m = cls(name, description, labelnames=labelnames)
    _metrics[name] = m
    return m


def submissions_total():
    return _metric(
        "tally_submissions_total",
        "Counter",
        "Accepted submissions by write path",
        labelnames=["path"],
    )


def corrections_total():
    return _metric(
        "tally_corrections_total",
        "Counter",
        "Negative submissions by correction outcome",
        labelnames=["outcome"],
    )


def upstream_fetches_total():
    return _metric(
        "tally_upstream_fetches_total",
        "Counter",
        "Aggregate reads issued against the backing store",
    )


def replayed_readings_total():
    return _metric(
        "tally_replayed_readings_total",
        "Counter",
        "Readings replayed from the queue into the backing store",
        labelnames=["mode"],
    )


def replay_failures_total():
    return _metric(
        "tally_replay_failures_total",
        "Counter",
        "Replay runs that failed to append their batch",
        labelnames=["mode"],
    )


def queue_depth():
    return _metric(
        "tally_replay_queue_depth",
        "Gauge",
        "Entries waiting in the replay queue after the last run",
    )


# --- Helper functions for recording metrics ---

def record_submission(path: str):
    submissions_total().labels(path=path).inc()


def record_correction(outcome: str):
    corrections_total().labels(outcome=outcome).inc()


def record_upstream_fetch():
    upstream_fetches_total().inc()


def record_replay(mode: str, synced: int):
    replayed_readings_total().labels(mode=mode).inc(synced)


def record_replay_failure(mode: str):
    replay_failures_total().labels(mode=mode).inc()


def set_queue_depth(count: int):
    queue_depth().set(count)


def generate_metrics_text() -> str:
    """Generate Prometheus metrics text output."""
    return prometheus_client.generate_latest().decode("utf-8")
