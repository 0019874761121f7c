"""
DocDigest Backend: Entitlement Gate
====================================

What:  Decides whether a processing request may reach the summarizer and at
       which summary tier.
Why:   Keeps every plan decision in one place with one result type the
       routes render, instead of feature checks scattered across handlers.
How:   Pure policy over (AuthContext, requested tier, page count) plus one
       UsageLedger read for authenticated callers.
Who:   ProcessingOrchestrator, after extraction and before summarization.

Decision lifecycle:
    UNCHECKED → EVALUATED → APPROVED | DENIED

    A decision starts UNCHECKED, becomes EVALUATED once the facts it depends
    on (ledger usage, or the guest page ceiling) have been read, and ends in
    exactly one terminal state. EntitlementDecision.advance() rejects any
    other transition.

    Authenticated:  ledger limits exceeded → DENIED (document_limit | page_limit)
                    otherwise APPROVED at min(requested, plan max tier);
                    a lowered tier is a silent downgrade flagged `downgraded`
    Guest:          always the short tier; more pages than the guest ceiling
                    → DENIED (document_too_large). The ledger is never read.

A denial is a normal result, not an exception. It is logged at INFO and
rendered by the route as an upgrade prompt.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union

from app.config import settings
from app.plans import DEFAULT_PLAN, Plan, SummaryTier, clamp_tier
from app.services.usage_ledger import LimitReason, UsageLedger, usage_ledger

logger = logging.getLogger(__name__)


# ── Caller identity ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class AuthenticatedContext:
    user_id: str
    plan: Plan = DEFAULT_PLAN


@dataclass(frozen=True)
class GuestContext:
    max_pages: int = field(default_factory=lambda: settings.guest_max_pages)


AuthContext = Union[AuthenticatedContext, GuestContext]


# ── Decision types ────────────────────────────────────────────────────────

class EntitlementState(str, Enum):
    UNCHECKED = "unchecked"
    EVALUATED = "evaluated"
    APPROVED = "approved"
    DENIED = "denied"


_TRANSITIONS = {
    EntitlementState.UNCHECKED: {EntitlementState.EVALUATED},
    EntitlementState.EVALUATED: {EntitlementState.APPROVED, EntitlementState.DENIED},
    EntitlementState.APPROVED: set(),
    EntitlementState.DENIED: set(),
}


class DenialReason(str, Enum):
    DOCUMENT_LIMIT = "document_limit"
    PAGE_LIMIT = "page_limit"
    DOCUMENT_TOO_LARGE = "document_too_large"


@dataclass(frozen=True)
class EntitlementDenial:
    """Everything a client needs to render a specific upgrade prompt."""

    reason: DenialReason
    message: str
    current: Optional[int] = None
    limit: Optional[int] = None
    page_count: Optional[int] = None
    max_pages: Optional[int] = None
    plan: Optional[str] = None


@dataclass(frozen=True)
class EntitlementDecision:
    requested_tier: SummaryTier
    state: EntitlementState = EntitlementState.UNCHECKED
    effective_tier: Optional[SummaryTier] = None
    downgraded: bool = False
    denial: Optional[EntitlementDenial] = None

    @property
    def approved(self) -> bool:
        return self.state == EntitlementState.APPROVED

    def advance(self, state: EntitlementState, **changes) -> "EntitlementDecision":
        """Move to `state`; raises ValueError for a transition the lifecycle forbids."""
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal entitlement transition {self.state.value} → {state.value}")
        return replace(self, state=state, **changes)

    def approve(self, effective_tier: SummaryTier) -> "EntitlementDecision":
        return self.advance(
            EntitlementState.APPROVED,
            effective_tier=effective_tier,
            downgraded=effective_tier != self.requested_tier,
        )

    def deny(self, denial: EntitlementDenial) -> "EntitlementDecision":
        return self.advance(EntitlementState.DENIED, denial=denial)


def _limit_message(reason: LimitReason, current: int, limit: int) -> str:
    if reason == LimitReason.DOCUMENT_LIMIT:
        return (
            f"You have reached your monthly limit of {limit} documents "
            f"({current} processed). Upgrade your plan to process more documents."
        )
    return (
        f"You have reached your monthly limit of {limit} pages "
        f"({current} processed). Upgrade your plan to process more pages."
    )


def _guest_message(page_count: int, max_pages: int) -> str:
    return (
        f"Guest uploads are limited to {max_pages} pages; this document has "
        f"{page_count}. Sign in to process larger documents."
    )


class EntitlementGate:
    """Approves or denies a request; never mutates usage."""

    def __init__(self, ledger: UsageLedger = usage_ledger):
        self.ledger = ledger

    async def evaluate(
        self,
        auth: AuthContext,
        requested_tier: SummaryTier,
        page_count: int,
    ) -> EntitlementDecision:
        decision = EntitlementDecision(requested_tier=requested_tier)
        if isinstance(auth, GuestContext):
            decision = self._evaluate_guest(decision, auth, page_count)
        else:
            decision = await self._evaluate_authenticated(decision, auth)

        if decision.denial is not None:
            logger.info(
                "Entitlement denied (%s): plan=%s current=%s limit=%s pages=%s",
                decision.denial.reason.value,
                decision.denial.plan,
                decision.denial.current,
                decision.denial.limit,
                decision.denial.page_count,
            )
        elif decision.downgraded:
            logger.info(
                "Summary tier downgraded %s → %s",
                requested_tier.value,
                decision.effective_tier.value,
            )
        return decision

    def _evaluate_guest(
        self,
        decision: EntitlementDecision,
        auth: GuestContext,
        page_count: int,
    ) -> EntitlementDecision:
        decision = decision.advance(EntitlementState.EVALUATED)
        if page_count > auth.max_pages:
            return decision.deny(EntitlementDenial(
                reason=DenialReason.DOCUMENT_TOO_LARGE,
                message=_guest_message(page_count, auth.max_pages),
                page_count=page_count,
                max_pages=auth.max_pages,
                plan="guest",
            ))
        return decision.approve(SummaryTier.SHORT)

    async def _evaluate_authenticated(
        self,
        decision: EntitlementDecision,
        auth: AuthenticatedContext,
    ) -> EntitlementDecision:
        check = await self.ledger.has_exceeded_limit(auth.user_id, auth.plan)
        decision = decision.advance(EntitlementState.EVALUATED)
        if check.exceeded:
            return decision.deny(EntitlementDenial(
                reason=DenialReason(check.reason.value),
                message=_limit_message(check.reason, check.current, check.limit),
                current=check.current,
                limit=check.limit,
                plan=auth.plan.name.value,
            ))
        return decision.approve(clamp_tier(decision.requested_tier, auth.plan.max_summary_tier))


# ── Singleton Instance ────────────────────────────────────────────────────
entitlement_gate = EntitlementGate()
