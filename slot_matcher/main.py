"""FastAPI application for natural-language appointment matching."""

import json
import logging
import time
from functools import lru_cache
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from slot_matcher.cache import AvailabilityCache
from slot_matcher.config import Settings, get_settings
from slot_matcher.formatter import format_slots
from slot_matcher.llm import LLMClient
from slot_matcher.matcher import match_availability
from slot_matcher.ratelimit import RateLimiter
from slot_matcher.schema import (
    CacheMetadata,
    InterpretRequest,
    InterpretResponse,
    MatchRequest,
    MatchResponse,
)
from slot_matcher.store import AvailabilityStoreError, build_store

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Slot Matcher", version="0.1.0")


@lru_cache
def get_availability_cache() -> AvailabilityCache:
    settings = get_settings()
    return AvailabilityCache(build_store(settings), settings)


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return RateLimiter(max_requests=get_settings().rate_limit_per_minute)


def _error(status_code: int, message: str, code: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": message, "code": code})


def _client_ip(request: Request, trust_proxy_headers: bool = False) -> str:
    # Forwarding headers are client-controlled unless a proxy overwrites them
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(
    request: Request,
    settings: Settings = Depends(get_settings),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    if not limiter.allow(_client_ip(request, settings.trust_proxy_headers)):
        raise _error(
            503,
            "Service temporarily unavailable. Please try again in a moment.",
            "RATE_LIMIT_EXCEEDED",
        )


@app.exception_handler(AvailabilityStoreError)
async def store_error_handler(request: Request, exc: AvailabilityStoreError) -> JSONResponse:
    logger.error("Error loading availability data: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "detail": {
                "error": "Unable to load availability data. Please try again later.",
                "code": "DATA_LOAD_ERROR",
            }
        },
    )


@app.post(
    "/interpret-scheduling",
    response_model=InterpretResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
def interpret_scheduling(
    request: InterpretRequest,
    settings: Settings = Depends(get_settings),
) -> InterpretResponse:
    """Turn free-text availability into structured preferences via the LLM."""
    started = time.perf_counter()
    try:
        llm = LLMClient(
            api_key=settings.openai_api_key or None,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
        )
        preferences = llm.interpret_preferences(request.user_input, request.user_timezone)
    except (json.JSONDecodeError, ValidationError):
        raise _error(
            400,
            "Unable to process input. Please try rephrasing your availability.",
            "PARSE_ERROR",
        )
    except ValueError as e:
        raise _error(503, str(e), "SERVICE_UNAVAILABLE")
    except httpx.TimeoutException:
        raise _error(504, "Request took too long. Please try again.", "TIMEOUT")
    except httpx.RequestError:
        raise _error(502, "Unable to reach the language model service.", "NETWORK_ERROR")
    except httpx.HTTPStatusError as e:
        msg = f"LLM API error ({e.response.status_code}): "
        if e.response.status_code == 401:
            msg += "Invalid or missing API key. Set OPENAI_API_KEY in your environment."
        else:
            msg += str(e)
        raise _error(502, msg, "LLM_ERROR")

    logger.info(
        "interpretation_success duration_ms=%d input_length=%d",
        (time.perf_counter() - started) * 1000,
        len(request.user_input),
    )
    return InterpretResponse(interpreted_preferences=preferences)


@app.post(
    "/match-availability",
    response_model=MatchResponse,
    dependencies=[Depends(enforce_rate_limit)],
)
async def match(
    request: MatchRequest,
    settings: Settings = Depends(get_settings),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> MatchResponse:
    """
    Rank up to 5 thirty-minute slots for the interpreted preferences.
    An empty list means no availability matched.
    """
    started = time.perf_counter()
    organization_id = (
        request.organization_id if request.organization_id is not None else settings.organization_id
    )
    availability = await cache.get(organization_id)

    preferences = request.interpreted_preferences
    display_timezone = (
        request.display_timezone
        or next((tr.timezone for tr in preferences.time_ranges if tr.timezone), None)
        or settings.default_timezone
    )

    slots = match_availability(preferences, availability, settings.default_timezone)
    formatted = format_slots(slots, display_timezone)

    logger.info(
        "matching_success duration_ms=%d matches_found=%d organization_id=%s",
        (time.perf_counter() - started) * 1000,
        len(formatted),
        organization_id,
    )
    return MatchResponse(matched_slots=formatted)


@app.post("/availability/refresh", response_model=CacheMetadata)
async def refresh_availability(
    organization_id: Optional[int] = None,
    settings: Settings = Depends(get_settings),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> CacheMetadata:
    """Force a reload of the cached availability."""
    org = organization_id if organization_id is not None else settings.organization_id
    await cache.refresh(org)
    return cache.metadata(org)


@app.get("/availability/cache", response_model=CacheMetadata)
def cache_metadata(
    organization_id: Optional[int] = None,
    settings: Settings = Depends(get_settings),
    cache: AvailabilityCache = Depends(get_availability_cache),
) -> CacheMetadata:
    """Load time and instance count of the cached availability."""
    org = organization_id if organization_id is not None else settings.organization_id
    return cache.metadata(org)


@app.get("/health")
def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
