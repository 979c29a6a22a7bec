"""Assessment engine: moves product listings through digital and physical review.

Each command loads the listing, checks the command against the listing's
current status, then writes the new status with an optimistic
compare-and-set together with one ledger entry in a single transaction.
Losing a race surfaces as ConcurrencyConflictError; the engine never
retries on its own.
"""

from __future__ import annotations

import enum
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Mapping, Optional, Union

from loguru import logger
from prometheus_client import Counter, Histogram
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import ProductListing
from events import ListingStatusChanged
from repositories import ListingRepository
from schemas.listings import ListingPayload
from services.event_bus import EventBus
from services.ledger import LedgerEntry, LedgerHistory, ReasonLedger
from services.tier_policy import TierPolicy
from utils.error_handling import (
    AssessmentError,
    ConcurrencyConflictError,
    ErrorContext,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    pydantic_errors_to_list,
)
from workflow import ListingStatus, ReviewStage, is_allowed, is_terminal, stage_for_status


ASSESSMENT_COMMANDS = Counter(
    "assessment_commands_total",
    "Assessment commands by outcome",
    labelnames=["command", "outcome"],
)
ASSESSMENT_TRANSITIONS = Counter(
    "assessment_transitions_total",
    "Committed listing status transitions",
    labelnames=["from_state", "to_state"],
)
ASSESSMENT_COMMAND_DURATION = Histogram(
    "assessment_command_duration_seconds",
    "Latency of assessment commands",
    labelnames=["command"],
)

SYSTEM_ACTOR = "system"

PayloadInput = Union[ListingPayload, Mapping[str, Any]]


class ResubmissionPolicy(str, enum.Enum):
    """Where a listing re-enters the pipeline after FOR_REVISION."""

    RESTART = "restart"
    RESUME_AT_STAGE = "resume_at_stage"

    @classmethod
    def from_env(cls) -> "ResubmissionPolicy":
        raw = os.getenv("RESUBMISSION_POLICY", cls.RESTART.value)
        try:
            return cls(raw.strip().lower())
        except ValueError:
            logger.warning("Unknown RESUBMISSION_POLICY; using restart", value=raw)
            return cls.RESTART


@dataclass(slots=True, frozen=True)
class CommandRule:
    name: str
    sources: FrozenSet[ListingStatus]
    target: Optional[ListingStatus]


_REVIEWABLE = frozenset(
    {ListingStatus.PENDING_DIGITAL_REVIEW, ListingStatus.IN_QUALITY_REVIEW}
)

COMMAND_RULES: Dict[str, CommandRule] = {
    rule.name: rule
    for rule in (
        CommandRule(
            "approve_for_sample_submission",
            frozenset({ListingStatus.PENDING_DIGITAL_REVIEW}),
            ListingStatus.WAITING_FOR_SAMPLE,
        ),
        CommandRule(
            "record_sample_received",
            frozenset({ListingStatus.WAITING_FOR_SAMPLE}),
            ListingStatus.IN_QUALITY_REVIEW,
        ),
        CommandRule(
            "pass_quality_check",
            frozenset({ListingStatus.IN_QUALITY_REVIEW}),
            ListingStatus.ACTIVE_VERIFIED,
        ),
        CommandRule("reject_listing", _REVIEWABLE, ListingStatus.REJECTED),
        CommandRule("request_revision", _REVIEWABLE, ListingStatus.FOR_REVISION),
        # Target depends on the resubmission policy and the seller's tier
        CommandRule("resubmit", frozenset({ListingStatus.FOR_REVISION}), None),
    )
}


def allowed_commands(status: ListingStatus) -> List[str]:
    """Names of the engine commands that may be issued for ``status``."""
    return [name for name, rule in COMMAND_RULES.items() if status in rule.sources]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class ListingState:
    """Snapshot of a listing returned by every engine command and query."""

    id: str
    seller_id: str
    name: str
    category: str
    base_price: str
    status: ListingStatus
    version: int
    submitted_at: datetime
    category_id: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = field(default_factory=list)
    variants: List[Dict[str, Any]] = field(default_factory=list)
    approved_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    revision_requested_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    rejection_stage: Optional[ReviewStage] = None
    logistics_note: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def allowed_commands(self) -> List[str]:
        return allowed_commands(self.status)


def build_listing_state(listing: ProductListing) -> ListingState:
    return ListingState(
        id=listing.id,
        seller_id=listing.seller_id,
        name=listing.name,
        category=listing.category,
        category_id=listing.category_id,
        base_price=listing.base_price,
        description=listing.description,
        images=list(listing.images or []),
        variants=[dict(variant) for variant in (listing.variants or [])],
        status=listing.status,
        version=listing.version,
        submitted_at=_as_utc(listing.submitted_at),
        approved_at=_as_utc(listing.approved_at),
        verified_at=_as_utc(listing.verified_at),
        revision_requested_at=_as_utc(listing.revision_requested_at),
        rejected_at=_as_utc(listing.rejected_at),
        rejection_reason=listing.rejection_reason,
        rejection_stage=listing.rejection_stage,
        logistics_note=listing.logistics_note,
    )


def resolve_resubmission_entry(
    listing: ProductListing | ListingState,
    policy: ResubmissionPolicy,
    *,
    bypassed: bool,
) -> ListingStatus:
    """Decide the status a revised listing re-enters the pipeline at."""

    if bypassed:
        return ListingStatus.ACTIVE_VERIFIED
    if policy is ResubmissionPolicy.RESUME_AT_STAGE and listing.rejection_stage is ReviewStage.PHYSICAL:
        # The bounced sample has to be sent again
        return ListingStatus.WAITING_FOR_SAMPLE
    return ListingStatus.PENDING_DIGITAL_REVIEW


@dataclass(slots=True)
class _Plan:
    target: ListingStatus
    stage: Optional[ReviewStage] = None
    reason: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)


PlanBuilder = Callable[[AsyncSession, ProductListing, datetime], Awaitable[_Plan]]


class AssessmentEngine:
    """State machine for the product listing approval pipeline."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker,
        tier_policy: Optional[TierPolicy] = None,
        ledger: Optional[ReasonLedger] = None,
        event_bus: EventBus | None = None,
        resubmission_policy: Optional[ResubmissionPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._tier_policy = tier_policy or TierPolicy(session_factory=session_factory)
        self._ledger = ledger or ReasonLedger(session_factory=session_factory)
        self._event_bus = event_bus
        self._resubmission_policy = resubmission_policy or ResubmissionPolicy.from_env()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def resubmission_policy(self) -> ResubmissionPolicy:
        return self._resubmission_policy

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        seller_id: str,
        payload: PayloadInput,
        *,
        actor_id: Optional[str] = None,
    ) -> ListingState:
        """Create a listing; trusted sellers land directly in ACTIVE_VERIFIED."""

        context = ErrorContext(operation="submit", seller_id=seller_id)
        started = time.perf_counter()
        outcome = "success"
        actor = actor_id or seller_id
        try:
            if not seller_id:
                raise ValidationError("seller_id is required", context)
            data = self._coerce_payload(payload, context)
            listing_id = data.id or uuid.uuid4().hex
            context.listing_id = listing_id

            async with self._session_factory() as session:
                repo = ListingRepository(session)
                if await repo.exists(listing_id):
                    raise ValidationError(
                        f"Listing {listing_id} already exists",
                        context,
                        recovery_suggestions=["Use resubmit for listings returned for revision"],
                    )

                # Evaluated once, inside this submission's transaction
                bypassed = await self._tier_policy.is_bypassed(seller_id, session=session)
                now = self._clock()
                target = (
                    ListingStatus.ACTIVE_VERIFIED if bypassed else ListingStatus.PENDING_DIGITAL_REVIEW
                )
                try:
                    listing = await repo.create_listing(
                        listing_id=listing_id,
                        seller_id=seller_id,
                        content=data.content(),
                        status=target,
                        submitted_at=now,
                        verified_at=now if bypassed else None,
                    )
                    entry = await self._ledger.append(
                        LedgerEntry(
                            listing_id=listing_id,
                            from_state=None,
                            to_state=target,
                            stage=None,
                            actor_id=actor,
                            reason=None,
                            occurred_at=now,
                        ),
                        session=session,
                    )
                    await session.commit()
                except IntegrityError as exc:
                    # Another submission with the same id won the insert
                    await session.rollback()
                    raise ConcurrencyConflictError(
                        f"Listing {listing_id} was created concurrently", context
                    ) from exc
                state = build_listing_state(listing)
        except AssessmentError as exc:
            outcome = exc.category.value
            self._log_rejection("submit", exc)
            raise
        except Exception:
            outcome = "error"
            raise
        finally:
            self._observe("submit", outcome, started)

        logger.info(
            "Listing submitted",
            listing_id=state.id,
            seller_id=seller_id,
            status=state.status.value,
            bypassed=bypassed,
        )
        await self._record_transition(entry, state)
        return state

    async def resubmit(
        self,
        listing_id: str,
        seller_id: str,
        payload: PayloadInput,
        *,
        actor_id: Optional[str] = None,
    ) -> ListingState:
        """Seller resubmission of a listing returned for revision.

        The entry state is chosen by ``resolve_resubmission_entry``; the tier
        is consulted again because a resubmission is a new submission.
        """

        context = ErrorContext(operation="resubmit", listing_id=listing_id, seller_id=seller_id)
        try:
            data = self._coerce_payload(payload, context)
            if data.id is not None and data.id != listing_id:
                raise ValidationError(
                    f"Payload id {data.id} does not match listing {listing_id}", context
                )
        except AssessmentError as exc:
            self._observe("resubmit", exc.category.value, None)
            self._log_rejection("resubmit", exc)
            raise

        async def plan(session: AsyncSession, listing: ProductListing, now: datetime) -> _Plan:
            if listing.seller_id != seller_id:
                raise ValidationError(
                    f"Listing {listing_id} belongs to another seller",
                    ErrorContext(
                        operation="resubmit",
                        listing_id=listing_id,
                        seller_id=seller_id,
                        current_status=listing.status.value,
                    ),
                )
            bypassed = await self._tier_policy.is_bypassed(seller_id, session=session)
            target = resolve_resubmission_entry(
                listing, self._resubmission_policy, bypassed=bypassed
            )
            values: Dict[str, Any] = {
                **data.content(),
                "submitted_at": now,
                "rejection_reason": None,
                "logistics_note": None,
            }
            if target is ListingStatus.PENDING_DIGITAL_REVIEW:
                values["approved_at"] = None
            if target is ListingStatus.ACTIVE_VERIFIED:
                values["verified_at"] = now
            return _Plan(target=target, values=values)

        return await self._transition(
            "resubmit", listing_id, actor_id=actor_id or seller_id, plan=plan
        )

    # ------------------------------------------------------------------
    # Review commands
    # ------------------------------------------------------------------

    async def approve_for_sample_submission(
        self, listing_id: str, *, actor_id: str = SYSTEM_ACTOR
    ) -> ListingState:
        """Digital review passed; the seller must now send a physical sample."""

        async def plan(session: AsyncSession, listing: ProductListing, now: datetime) -> _Plan:
            return _Plan(
                target=ListingStatus.WAITING_FOR_SAMPLE,
                stage=ReviewStage.DIGITAL,
                values={"approved_at": now},
            )

        return await self._transition(
            "approve_for_sample_submission", listing_id, actor_id=actor_id, plan=plan
        )

    async def record_sample_received(
        self,
        listing_id: str,
        *,
        logistics_note: Optional[str] = None,
        actor_id: str = SYSTEM_ACTOR,
    ) -> ListingState:
        """Receiving-side signal that the physical sample arrived.

        Issued by the logistics process; the engine accepts it but never
        originates it.
        """

        note = logistics_note.strip() if logistics_note else None

        async def plan(session: AsyncSession, listing: ProductListing, now: datetime) -> _Plan:
            values: Dict[str, Any] = {}
            if note:
                values["logistics_note"] = note
            return _Plan(
                target=ListingStatus.IN_QUALITY_REVIEW,
                stage=ReviewStage.PHYSICAL,
                values=values,
            )

        return await self._transition(
            "record_sample_received", listing_id, actor_id=actor_id, plan=plan
        )

    async def pass_quality_check(
        self, listing_id: str, *, actor_id: str = SYSTEM_ACTOR
    ) -> ListingState:
        """Physical QA passed; the listing becomes purchasable."""

        async def plan(session: AsyncSession, listing: ProductListing, now: datetime) -> _Plan:
            return _Plan(
                target=ListingStatus.ACTIVE_VERIFIED,
                stage=ReviewStage.PHYSICAL,
                values={"verified_at": now},
            )

        return await self._transition(
            "pass_quality_check", listing_id, actor_id=actor_id, plan=plan
        )

    async def reject_listing(
        self,
        listing_id: str,
        reason: str,
        stage: ReviewStage | str | None = None,
        *,
        actor_id: str = SYSTEM_ACTOR,
    ) -> ListingState:
        """Terminal rejection from digital or quality review."""

        return await self._bounce(
            "reject_listing",
            listing_id,
            reason,
            stage,
            actor_id=actor_id,
            timestamp_field="rejected_at",
        )

    async def request_revision(
        self,
        listing_id: str,
        reason: str,
        stage: ReviewStage | str | None = None,
        *,
        actor_id: str = SYSTEM_ACTOR,
    ) -> ListingState:
        """Return the listing to the seller for correction and resubmission."""

        return await self._bounce(
            "request_revision",
            listing_id,
            reason,
            stage,
            actor_id=actor_id,
            timestamp_field="revision_requested_at",
        )

    async def set_logistics_note(
        self, listing_id: str, note: str, *, actor_id: str = SYSTEM_ACTOR
    ) -> ListingState:
        """Advisory note while the sample is awaited. Not a transition."""

        context = ErrorContext(operation="set_logistics_note", listing_id=listing_id)
        started = time.perf_counter()
        outcome = "success"
        try:
            text = (note or "").strip()
            if not text:
                raise ValidationError("Logistics note must not be empty", context)

            async with self._session_factory() as session:
                repo = ListingRepository(session)
                listing = await self._load_listing(repo, listing_id, "set_logistics_note")
                context.current_status = listing.status.value
                if listing.status is not ListingStatus.WAITING_FOR_SAMPLE:
                    raise InvalidTransitionError(
                        f"Logistics notes can only be set while waiting for a sample, "
                        f"listing {listing_id} is {listing.status.value}",
                        context,
                    )
                if not await repo.set_logistics_note(
                    listing, note=text, expected_status=ListingStatus.WAITING_FOR_SAMPLE
                ):
                    await session.rollback()
                    raise ConcurrencyConflictError(
                        f"Listing {listing_id} changed while setting the logistics note",
                        context,
                    )
                await session.commit()
                state = build_listing_state(listing)
        except AssessmentError as exc:
            outcome = exc.category.value
            self._log_rejection("set_logistics_note", exc)
            raise
        except Exception:
            outcome = "error"
            raise
        finally:
            self._observe("set_logistics_note", outcome, started)

        logger.info("Logistics note updated", listing_id=listing_id, actor_id=actor_id)
        return state

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def valid_commands(self, listing: ListingState) -> List[str]:
        """Commands currently permitted for ``listing``."""
        return allowed_commands(listing.status)

    async def get_listing(self, listing_id: str) -> ListingState:
        async with self._session_factory() as session:
            listing = await self._load_listing(ListingRepository(session), listing_id, "get_listing")
            return build_listing_state(listing)

    async def load_all(
        self,
        seller_id: Optional[str] = None,
        *,
        status: ListingStatus | str | None = None,
    ) -> List[ListingState]:
        """Every listing (admin view) or the listings of one seller."""

        status_filter: Optional[ListingStatus] = None
        if status is not None:
            try:
                status_filter = ListingStatus(status)
            except ValueError as exc:
                raise ValidationError(
                    f"Unknown status {status!r}", ErrorContext(operation="load_all")
                ) from exc

        async with self._session_factory() as session:
            listings = await ListingRepository(session).list_listings(
                seller_id=seller_id, status=status_filter
            )
            return [build_listing_state(listing) for listing in listings]

    async def history(self, listing_id: str) -> LedgerHistory:
        """Ledger history of an existing listing."""

        await self.get_listing(listing_id)
        return self._ledger.history(listing_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _bounce(
        self,
        command: str,
        listing_id: str,
        reason: str,
        stage: ReviewStage | str | None,
        *,
        actor_id: str,
        timestamp_field: str,
    ) -> ListingState:
        context = ErrorContext(operation=command, listing_id=listing_id)
        text = (reason or "").strip()
        if not text:
            self._observe(command, "validation", None)
            error = ValidationError(
                "A reason is required", context, recovery_suggestions=["Provide a non-empty reason"]
            )
            self._log_rejection(command, error)
            raise error
        try:
            requested = ReviewStage(stage) if stage is not None else None
        except ValueError as exc:
            self._observe(command, "validation", None)
            error = ValidationError(f"Unknown review stage {stage!r}", context)
            self._log_rejection(command, error)
            raise error from exc

        rule = COMMAND_RULES[command]

        async def plan(session: AsyncSession, listing: ProductListing, now: datetime) -> _Plan:
            owning_stage = stage_for_status(listing.status)
            if requested is not None and requested is not owning_stage:
                raise ValidationError(
                    f"Stage {requested.value} does not match {listing.status.value}",
                    ErrorContext(
                        operation=command,
                        listing_id=listing_id,
                        current_status=listing.status.value,
                    ),
                    recovery_suggestions=[f"Use stage {owning_stage.value}"] if owning_stage else None,
                )
            return _Plan(
                target=rule.target,
                stage=owning_stage,
                reason=text,
                values={
                    timestamp_field: now,
                    "rejection_reason": text,
                    "rejection_stage": owning_stage,
                },
            )

        return await self._transition(command, listing_id, actor_id=actor_id, plan=plan)

    async def _transition(
        self,
        command: str,
        listing_id: str,
        *,
        actor_id: str,
        plan: PlanBuilder,
    ) -> ListingState:
        rule = COMMAND_RULES[command]
        context = ErrorContext(operation=command, listing_id=listing_id)
        started = time.perf_counter()
        outcome = "success"
        try:
            async with self._session_factory() as session:
                repo = ListingRepository(session)
                listing = await self._load_listing(repo, listing_id, command)
                source = listing.status
                expected_version = listing.version
                context.seller_id = listing.seller_id
                context.current_status = source.value

                if source not in rule.sources:
                    raise InvalidTransitionError(
                        f"Cannot {command.replace('_', ' ')}: listing {listing_id} is {source.value}",
                        context,
                    )

                now = self._now_after(listing)
                step = await plan(session, listing, now)
                context.target_status = step.target.value
                if not is_allowed(source, step.target):
                    raise InvalidTransitionError(
                        f"Illegal transition {source.value} -> {step.target.value}", context
                    )

                applied = await repo.compare_and_set(
                    listing,
                    expected_status=source,
                    expected_version=expected_version,
                    values={"status": step.target, **step.values},
                )
                if not applied:
                    await session.rollback()
                    raise ConcurrencyConflictError(
                        f"Listing {listing_id} was changed by another reviewer", context
                    )

                entry = await self._ledger.append(
                    LedgerEntry(
                        listing_id=listing_id,
                        from_state=source,
                        to_state=step.target,
                        stage=step.stage,
                        actor_id=actor_id,
                        reason=step.reason,
                        occurred_at=now,
                    ),
                    session=session,
                )
                await session.commit()
                state = build_listing_state(listing)
        except AssessmentError as exc:
            outcome = exc.category.value
            self._log_rejection(command, exc)
            raise
        except Exception:
            outcome = "error"
            raise
        finally:
            self._observe(command, outcome, started)

        logger.info(
            "Listing transitioned",
            command=command,
            listing_id=listing_id,
            from_state=entry.from_state.value if entry.from_state else None,
            to_state=entry.to_state.value,
            actor_id=actor_id,
        )
        await self._record_transition(entry, state)
        return state

    async def _load_listing(
        self, repo: ListingRepository, listing_id: str, command: str
    ) -> ProductListing:
        listing = await repo.get_by_id(listing_id)
        if listing is None:
            raise NotFoundError(
                f"Listing {listing_id} not found",
                ErrorContext(operation=command, listing_id=listing_id),
            )
        return listing

    def _coerce_payload(self, payload: PayloadInput, context: ErrorContext) -> ListingPayload:
        if isinstance(payload, ListingPayload):
            return payload
        if not isinstance(payload, Mapping):
            raise ValidationError("Listing payload must be an object", context)
        try:
            return ListingPayload.model_validate(dict(payload))
        except PydanticValidationError as exc:
            raise ValidationError(
                "Listing payload is invalid",
                context,
                errors=pydantic_errors_to_list(exc.errors()),
            ) from exc

    def _now_after(self, listing: ProductListing) -> datetime:
        # Keep workflow timestamps non-decreasing even if the clock steps back
        now = self._clock()
        stamps = [
            _as_utc(value)
            for value in (
                listing.submitted_at,
                listing.approved_at,
                listing.verified_at,
                listing.revision_requested_at,
                listing.rejected_at,
            )
            if value is not None
        ]
        if stamps:
            return max([now, *stamps])
        return now

    async def _record_transition(self, entry: LedgerEntry, state: ListingState) -> None:
        ASSESSMENT_TRANSITIONS.labels(
            from_state=entry.from_state.value if entry.from_state else "NONE",
            to_state=entry.to_state.value,
        ).inc()
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            ListingStatusChanged(
                listing_id=state.id,
                seller_id=state.seller_id,
                from_status=entry.from_state,
                to_status=entry.to_state,
                stage=entry.stage,
                actor_id=entry.actor_id,
                reason=entry.reason,
                occurred_at=entry.occurred_at,
            )
        )

    @staticmethod
    def _observe(command: str, outcome: str, started: Optional[float]) -> None:
        ASSESSMENT_COMMANDS.labels(command=command, outcome=outcome).inc()
        if started is not None:
            ASSESSMENT_COMMAND_DURATION.labels(command=command).observe(
                time.perf_counter() - started
            )

    @staticmethod
    def _log_rejection(command: str, exc: AssessmentError) -> None:
        logger.warning(
            "Assessment command rejected",
            command=command,
            error=type(exc).__name__,
            listing_id=exc.context.listing_id,
            current_status=exc.context.current_status,
            detail=exc.message,
        )
