"""API endpoints for submitting and reviewing product listings."""

from __future__ import annotations

from typing import NoReturn, Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request, status

from schemas import (
    AssessmentEventResponse,
    ListingHistoryResponse,
    ListingResponse,
    ListingsResponse,
    LogisticsNoteRequest,
    ResubmitListingRequest,
    ReviewDecisionRequest,
    SampleReceivedRequest,
    SubmitListingRequest,
)
from services.assessment import SYSTEM_ACTOR, AssessmentEngine, ListingState
from utils.error_handling import (
    AssessmentError,
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from workflow import ListingStatus

router = APIRouter(prefix="/listings", tags=["listings"])

_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConcurrencyConflictError, status.HTTP_409_CONFLICT),
)


def raise_http(exc: AssessmentError) -> NoReturn:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=exc.to_dict()) from exc
    raise HTTPException(status_code=400, detail=exc.to_dict()) from exc


def _get_engine(request: Request) -> AssessmentEngine:
    engine = getattr(request.app.state, "assessment_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Assessment engine is not available")
    return engine


def _state_to_response(state: ListingState) -> ListingResponse:
    return ListingResponse.model_validate(state, from_attributes=True)


@router.post("", response_model=ListingResponse, status_code=status.HTTP_201_CREATED)
async def submit_listing(
    request: Request,
    payload: SubmitListingRequest,
    actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> ListingResponse:
    engine = _get_engine(request)
    try:
        state = await engine.submit(payload.seller_id, payload.listing, actor_id=actor_id)
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)


@router.get("", response_model=ListingsResponse)
async def list_listings(
    request: Request,
    seller_id: Optional[str] = Query(None, min_length=1),
    listing_status: Optional[ListingStatus] = Query(None, alias="status"),
) -> ListingsResponse:
    engine = _get_engine(request)
    states = await engine.load_all(seller_id, status=listing_status)
    items = [_state_to_response(state) for state in states]
    return ListingsResponse(total=len(items), items=items)


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(request: Request, listing_id: str) -> ListingResponse:
    engine = _get_engine(request)
    try:
        state = await engine.get_listing(listing_id)
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)


@router.get("/{listing_id}/history", response_model=ListingHistoryResponse)
async def get_listing_history(request: Request, listing_id: str) -> ListingHistoryResponse:
    engine = _get_engine(request)
    try:
        history = await engine.history(listing_id)
    except AssessmentError as exc:
        raise_http(exc)
    events = [
        AssessmentEventResponse.model_validate(entry, from_attributes=True)
        async for entry in history
    ]
    return ListingHistoryResponse(listing_id=listing_id, events=events)


@router.post("/{listing_id}/approve-for-sample", response_model=ListingResponse)
async def approve_for_sample(
    request: Request,
    listing_id: str,
    actor_id: str = Header(SYSTEM_ACTOR, alias="X-Actor-Id"),
) -> ListingResponse:
    engine = _get_engine(request)
    try:
        state = await engine.approve_for_sample_submission(listing_id, actor_id=actor_id)
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)


@router.post("/{listing_id}/sample-received", response_model=ListingResponse)
async def sample_received(
    request: Request,
    listing_id: str,
    payload: Optional[SampleReceivedRequest] = None,
    actor_id: str = Header(SYSTEM_ACTOR, alias="X-Actor-Id"),
) -> ListingResponse:
    engine = _get_engine(request)
    note = payload.logistics_note if payload else None
    try:
        state = await engine.record_sample_received(
            listing_id, logistics_note=note, actor_id=actor_id
        )
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)


@router.put("/{listing_id}/logistics-note", response_model=ListingResponse)
async def set_logistics_note(
    request: Request,
    listing_id: str,
    payload: LogisticsNoteRequest,
    actor_id: str = Header(SYSTEM_ACTOR, alias="X-Actor-Id"),
) -> ListingResponse:
    engine = _get_engine(request)
    try:
        state = await engine.set_logistics_note(listing_id, payload.note, actor_id=actor_id)
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)


@router.post("/{listing_id}/pass-quality-check", response_model=ListingResponse)
async def pass_quality_check(
    request: Request,
    listing_id: str,
    actor_id: str = Header(SYSTEM_ACTOR, alias="X-Actor-Id"),
) -> ListingResponse:
    engine = _get_engine(request)
    try:
        state = await engine.pass_quality_check(listing_id, actor_id=actor_id)
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)


@router.post("/{listing_id}/reject", response_model=ListingResponse)
async def reject_listing(
    request: Request,
    listing_id: str,
    payload: ReviewDecisionRequest,
    actor_id: str = Header(SYSTEM_ACTOR, alias="X-Actor-Id"),
) -> ListingResponse:
    engine = _get_engine(request)
    try:
        state = await engine.reject_listing(
            listing_id, payload.reason, payload.stage, actor_id=actor_id
        )
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)


@router.post("/{listing_id}/request-revision", response_model=ListingResponse)
async def request_revision(
    request: Request,
    listing_id: str,
    payload: ReviewDecisionRequest,
    actor_id: str = Header(SYSTEM_ACTOR, alias="X-Actor-Id"),
) -> ListingResponse:
    engine = _get_engine(request)
    try:
        state = await engine.request_revision(
            listing_id, payload.reason, payload.stage, actor_id=actor_id
        )
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)


@router.post("/{listing_id}/resubmit", response_model=ListingResponse)
async def resubmit_listing(
    request: Request,
    listing_id: str,
    payload: ResubmitListingRequest,
    actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> ListingResponse:
    engine = _get_engine(request)
    try:
        state = await engine.resubmit(
            listing_id, payload.seller_id, payload.listing, actor_id=actor_id
        )
    except AssessmentError as exc:
        raise_http(exc)
    return _state_to_response(state)
