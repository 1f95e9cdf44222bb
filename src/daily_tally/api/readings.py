"""Readings API: today's aggregate and submissions."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..cache.exceptions import CacheUnavailableError
from ..cache.fast_cache import FastCache
from ..models import DynamicSettings
from ..observability.logging import set_log_context
from ..services.aggregator import ReadAggregator, read_current
from ..services.coordinator import WriteCoordinator
from ..services.dates import effective_date
from ..services.exceptions import (
    SETUP_REQUIRED,
    AmountTooLargeError,
    NoCreditError,
    SubmissionError,
    classify_failure,
)
from ..store.exceptions import StoreUnavailableError
from .deps import get_aggregator, get_coordinator, get_fast_cache

logger = logging.getLogger(__name__)

router = APIRouter()

OVERLOADED_MESSAGE = "The service is busy right now, please try again in a moment"


class ReadingsResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total: int
    date: str
    user_counts: Dict[str, int] = Field(default_factory=dict)
    settings: DynamicSettings
    error: Optional[str] = None


class SubmitRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Any = None
    count: Any = None
    confirm_correction: Optional[bool] = None


@router.get("/readings", response_model=ReadingsResponse, response_model_exclude_none=True)
async def get_readings(
    aggregator: ReadAggregator = Depends(get_aggregator),
    fast_cache: Optional[FastCache] = Depends(get_fast_cache),
):
    """Today's total, per-name counts and settings.

    Always answers 200. A failed read returns a zeroed aggregate with
    ``error`` set to "Setup Required" or "Overloaded".
    """
    settings = await aggregator.settings()
    date = effective_date(settings.reset_hour, aggregator.tz_name)
    set_log_context(effective_date=date)

    try:
        aggregate = await read_current(aggregator, fast_cache, date)
    except Exception as e:
        error = classify_failure(e) or SETUP_REQUIRED
        logger.warning("Aggregate read failed (%s): %s", error, e)
        return ReadingsResponse(total=0, date=date, settings=settings, error=error)

    return ReadingsResponse(
        total=aggregate.total,
        date=aggregate.date,
        user_counts=aggregate.user_counts,
        settings=settings,
    )


@router.post("/readings")
async def submit_reading(
    request: Request,
    coordinator: WriteCoordinator = Depends(get_coordinator),
):
    """Submit a signed amount for a name.

    200 on success, 400 on invalid input or a correction with no credit,
    409 when a correction needs confirmation, 429 when the backing tiers
    are overloaded, 500 otherwise.
    """
    try:
        payload = await request.json()
        body = SubmitRequest.model_validate(payload)
    except (ValueError, ValidationError):
        return JSONResponse(status_code=400, content={"error": "Name and count are required"})

    try:
        result = await coordinator.submit(body.name, body.count, bool(body.confirm_correction))
    except NoCreditError as e:
        return JSONResponse(status_code=400, content={"success": False, "message": e.message})
    except AmountTooLargeError as e:
        return JSONResponse(
            status_code=400,
            content={"error": e.message, "maxAmount": e.max_amount},
        )
    except SubmissionError as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except (StoreUnavailableError, CacheUnavailableError) as e:
        logger.warning("Submission rejected, backing tiers overloaded: %s", e)
        headers = {}
        retry_after = getattr(e, "retry_after", None)
        if retry_after:
            headers["Retry-After"] = str(int(retry_after) + 1)
        return JSONResponse(
            status_code=429,
            content={"success": False, "message": OVERLOADED_MESSAGE},
            headers=headers,
        )
    except Exception as e:
        logger.exception("Failed to add reading")
        content: Dict[str, Any] = {"error": "Failed to add reading"}
        kind = classify_failure(e)
        if kind:
            content["message"] = kind
        return JSONResponse(status_code=500, content=content)

    if result.requires_confirmation:
        return JSONResponse(status_code=409, content=result.to_response())

    logger.info(
        "Accepted %d for %s via %s path%s",
        result.count,
        body.name.strip(),
        result.path,
        " (clamped)" if result.adjusted else "",
    )
    return result.to_response()
