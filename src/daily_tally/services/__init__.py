"""Read, write, replay and seed services."""

from .aggregator import ReadAggregator, read_current
from .coordinator import SubmitResult, WriteCoordinator
from .dates import effective_date
from .replay import ReplayWorker, run_replay_loop
from .seed import seed_fast_cache
from .single_flight import SingleFlightCache

__all__ = [
    "ReadAggregator",
    "ReplayWorker",
    "SingleFlightCache",
    "SubmitResult",
    "WriteCoordinator",
    "effective_date",
    "read_current",
    "run_replay_loop",
    "seed_fast_cache",
]
