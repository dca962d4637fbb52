from __future__ import annotations

import asyncio
from typing import Any, Literal, Optional, Union

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from adapters.supabase.webhooks import WebhookPayloadError, change_event_from_webhook
from common.metrics_engine.filters import FilterMode, SeriesFilter, SeriesId
from common.metrics_engine.snapshot import DashboardSnapshot
from pipelines.change_feed import LocalChangeFeed
from pipelines.sync import ChangeSyncCoordinator


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


class FilterModeRequest(BaseModel):
    mode: FilterMode


class FilterPeriodRequest(BaseModel):
    month: Union[int, Literal["all"]]
    year: Optional[int] = None


class DisplayCurrencyRequest(BaseModel):
    currency: str = Field(..., min_length=3, max_length=3)


def get_coordinator(request: Request) -> ChangeSyncCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Dashboard coordinator is not running.")
    return coordinator


def get_change_feed(request: Request) -> LocalChangeFeed:
    feed = getattr(request.app.state, "change_feed", None)
    if feed is None:
        raise HTTPException(status_code=503, detail="Change feed is not configured.")
    return feed


async def _run(coordinator: ChangeSyncCoordinator, task: asyncio.Task) -> DashboardSnapshot:
    # A superseded cycle returns None; the latest published snapshot is still the answer.
    await task
    return coordinator.get_snapshot()


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


@router.get("/snapshot", response_model=DashboardSnapshot)
def get_snapshot(coordinator: ChangeSyncCoordinator = Depends(get_coordinator)):
    return coordinator.get_snapshot()


@router.post("/refresh", response_model=DashboardSnapshot)
async def refresh(coordinator: ChangeSyncCoordinator = Depends(get_coordinator)):
    return await _run(coordinator, coordinator.refresh_now())


@router.post("/filter/mode", response_model=DashboardSnapshot)
async def set_filter_mode(
    body: FilterModeRequest,
    coordinator: ChangeSyncCoordinator = Depends(get_coordinator),
):
    try:
        task = coordinator.set_filter_mode(body.mode)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return await _run(coordinator, task)


@router.post("/filter/period", response_model=DashboardSnapshot)
async def set_filter_period(
    body: FilterPeriodRequest,
    coordinator: ChangeSyncCoordinator = Depends(get_coordinator),
):
    try:
        task = coordinator.set_filter_period(body.month, body.year)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return await _run(coordinator, task)


@router.post("/filter/currency", response_model=DashboardSnapshot)
async def set_display_currency(
    body: DisplayCurrencyRequest,
    coordinator: ChangeSyncCoordinator = Depends(get_coordinator),
):
    try:
        task = coordinator.set_display_currency(body.currency)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return await _run(coordinator, task)


@router.post("/series/{series_id}", response_model=DashboardSnapshot)
async def set_series_filter(
    series_id: SeriesId,
    body: SeriesFilter,
    coordinator: ChangeSyncCoordinator = Depends(get_coordinator),
):
    return await _run(coordinator, coordinator.set_series_filter(series_id, body))


@router.post("/changes", status_code=202)
async def receive_change(
    payload: dict[str, Any] = Body(...),
    feed: LocalChangeFeed = Depends(get_change_feed),
):
    """Supabase database webhook endpoint; runs on the event loop so the coordinator can arm its timer."""
    try:
        event = change_event_from_webhook(payload)
    except WebhookPayloadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    delivered = feed.publish(event)
    return {"status": "accepted", "collection": event.collection, "subscribers": delivered}
