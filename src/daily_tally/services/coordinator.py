"""Write coordinator: validation, smart correction and commit.

Two reconciliation strategies, chosen once per deployment:

- ``queued``: increment the fast cache counters and push the reading onto
  the replay queue in one MULTI/EXEC; fall back to a synchronous backing
  store append when the fast cache is unreachable.
- ``direct``: append to the backing store, then patch the read
  aggregator's cached aggregate in place.

The credit check for corrections is a plain read followed by a write. Two
concurrent subtractions by the same name can both pass it.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..cache.exceptions import CacheUnavailableError
from ..cache.fast_cache import FastCache
from ..models import Reading
from ..observability.logging import set_log_context
from ..observability.metrics import record_correction, record_submission
from ..store.base import BackingStore
from ..store.exceptions import StoreError
from .aggregator import ReadAggregator
from .exceptions import AmountTooLargeError, InvalidInputError, NoCreditError

logger = logging.getLogger(__name__)

STRATEGY_QUEUED = "queued"
STRATEGY_DIRECT = "direct"

PATH_FAST = "fast"
PATH_FALLBACK = "fallback"
PATH_DIRECT = "direct"


@dataclass
class SubmitResult:
    """Outcome of a submission that passed validation."""

    success: bool
    count: int = 0
    adjusted: bool = False
    new_total: Optional[int] = None
    new_user_count: Optional[int] = None
    requires_confirmation: bool = False
    max_subtractable: Optional[int] = None
    message: Optional[str] = None
    path: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        """Response body in the client's camelCase shape, omitting absent totals."""
        if self.requires_confirmation:
            return {
                "success": False,
                "message": self.message,
                "requiresConfirmation": True,
                "maxSubtractable": self.max_subtractable,
            }
        body: Dict[str, Any] = {"success": self.success, "adjusted": self.adjusted}
        if self.new_total is not None:
            body["newTotal"] = self.new_total
        if self.new_user_count is not None:
            body["newUserCount"] = self.new_user_count
        return body


def parse_count(value: Any) -> int:
    """Accept an int, an integral float, or a string holding an integer."""
    if isinstance(value, bool):
        raise InvalidInputError("Count must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise InvalidInputError("Count must be an integer")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise InvalidInputError("Count must be an integer") from None
    raise InvalidInputError("Name and count are required")


class WriteCoordinator:
    """Validates submissions and commits them through the configured tier."""

    def __init__(
        self,
        store: BackingStore,
        aggregator: ReadAggregator,
        fast_cache: Optional[FastCache] = None,
        strategy: str = STRATEGY_DIRECT,
        max_amount: int = 10000,
    ):
        if strategy == STRATEGY_QUEUED and fast_cache is None:
            raise ValueError("The queued write strategy needs a fast cache")
        if strategy not in (STRATEGY_QUEUED, STRATEGY_DIRECT):
            raise ValueError(f"Unknown write strategy: {strategy}")
        self.store = store
        self.aggregator = aggregator
        self.fast_cache = fast_cache
        self.strategy = strategy
        self.max_amount = max_amount

    def validate(self, name: Any, count: Any) -> Tuple[str, int]:
        if not isinstance(name, str) or not name.strip():
            raise InvalidInputError("Name and count are required")
        if count is None:
            raise InvalidInputError("Name and count are required")
        amount = parse_count(count)
        if abs(amount) > self.max_amount:
            raise AmountTooLargeError(
                f"A single submission cannot exceed {self.max_amount}",
                max_amount=self.max_amount,
            )
        return name.strip(), amount

    async def current_credit(self, date: str, name: str) -> int:
        """Today's recorded amount for ``name`` from the fastest trustworthy tier.

        Order: fast cache counters, a fresh read-aggregator entry, then a
        direct backing store read that also restamps the aggregator. When
        none of these can answer the credit is 0, so an unverifiable
        subtraction is always refused.
        """
        if self.fast_cache is not None:
            try:
                credit = await self.fast_cache.get_user_count(date, name)
                if credit is not None:
                    return credit
                logger.debug("Fast cache has no counters for %s", date)
            except CacheUnavailableError as e:
                logger.warning("Fast cache unavailable for credit check: %s", e)

        cached = self.aggregator.peek()
        if cached is not None and cached.date == date:
            return cached.credit_for(name)

        try:
            aggregate = await self.aggregator.refresh()
        except StoreError as e:
            logger.warning("Credit check could not read backing store, treating credit as 0: %s", e)
            return 0
        if aggregate.date != date:
            return 0
        return aggregate.credit_for(name)

    async def submit(self, name: Any, count: Any, confirm_correction: bool = False) -> SubmitResult:
        """Validate, apply the correction protocol and commit one reading.

        Raises InvalidInputError, AmountTooLargeError or NoCreditError before
        anything is written. Backing store errors from the fallback or direct
        write propagate to the caller.
        """
        name, requested = self.validate(name, count)
        date = await self.aggregator.effective_date()
        set_log_context(effective_date=date)

        amount = requested
        if requested < 0:
            credit = await self.current_credit(date, name)
            if credit <= 0:
                record_correction("rejected_no_credit")
                raise NoCreditError(
                    f"No readings recorded today for {name}; nothing to subtract",
                    name=name,
                )
            if abs(requested) > credit:
                if not confirm_correction:
                    record_correction("confirmation_required")
                    return SubmitResult(
                        success=False,
                        requires_confirmation=True,
                        max_subtractable=credit,
                        message=(
                            f"You have {credit} recorded in total, "
                            f"but are trying to subtract {abs(requested)}."
                        ),
                    )
                amount = -credit
                record_correction("clamped")
            else:
                record_correction("accepted")

        reading = Reading(name=name, count=amount, date=date)
        if self.strategy == STRATEGY_QUEUED:
            result = await self._commit_queued(reading)
        else:
            result = await self._commit_direct(reading)
        result.adjusted = amount != requested
        return result

    async def _commit_queued(self, reading: Reading) -> SubmitResult:
        try:
            new_total, new_user_count = await self.fast_cache.commit(reading)
        except CacheUnavailableError as e:
            logger.warning("Fast path commit failed, writing to backing store: %s", e)
            await self.store.append_row(reading)
            self.fast_cache.record_fallback(reading)
            self.aggregator.invalidate_cache()
            record_submission(PATH_FALLBACK)
            return SubmitResult(success=True, count=reading.count, path=PATH_FALLBACK)

        record_submission(PATH_FAST)
        return SubmitResult(
            success=True,
            count=reading.count,
            new_total=new_total,
            new_user_count=new_user_count,
            path=PATH_FAST,
        )

    async def _commit_direct(self, reading: Reading) -> SubmitResult:
        await self.store.append_row(reading)
        record_submission(PATH_DIRECT)
        patched = self.aggregator.apply_delta(reading.date, reading.name, reading.count)
        if patched is None:
            return SubmitResult(success=True, count=reading.count, path=PATH_DIRECT)
        return SubmitResult(
            success=True,
            count=reading.count,
            new_total=patched.total,
            new_user_count=patched.credit_for(reading.name),
            path=PATH_DIRECT,
        )
