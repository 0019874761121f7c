"""
DocDigest Backend: Plans, Summary Tiers and Capabilities
==========================================================

What:  The typed entitlement tables: which summary tiers exist, what each
       subscription plan allows, and which optional features it unlocks.
How:   Frozen dataclasses and enums. Feature access goes through
       has_capability(); there are no string-keyed feature lookups. The max
       summary tier, history size and export watermark are derived from
       capabilities, so each plan states its features once.
Who:   Read by the EntitlementGate, UsageLedger, summary history and the
       /api/plans and /api/usage routes. Nothing here is ever mutated.

Plan table:
    plan     docs/month  pages/month  max tier  history
    free     5           100          medium    5
    premium  50          1000         long      50
    pro      unbounded   unbounded    long      50
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class SummaryTier(str, Enum):
    """Summary verbosity, ordered short < medium < long."""

    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    @classmethod
    def parse(cls, value: str) -> "SummaryTier":
        """Case-insensitive lookup; raises ValueError for unknown tiers."""
        return cls(value.strip().lower())


_TIER_ORDER = (SummaryTier.SHORT, SummaryTier.MEDIUM, SummaryTier.LONG)


def clamp_tier(requested: SummaryTier, maximum: SummaryTier) -> SummaryTier:
    """Return `requested`, or `maximum` if the request is richer than allowed."""
    return maximum if requested.rank > maximum.rank else requested


class Capability(str, Enum):
    """Optional features gated by plan."""

    LONG_SUMMARY = "long_summary"
    DOCUMENT_HISTORY = "document_history"
    NO_WATERMARK = "no_watermark"
    ADVANCED_ANALYTICS = "advanced_analytics"
    WHITE_LABEL = "white_label"


class PlanName(str, Enum):
    FREE = "free"
    PREMIUM = "premium"
    PRO = "pro"


@dataclass(frozen=True)
class PlanLimits:
    """Per-period limits; None means unbounded."""

    documents: Optional[int]
    pages: Optional[int]


_BASIC_HISTORY = 5
_EXTENDED_HISTORY = 50


@dataclass(frozen=True)
class Plan:
    name: PlanName
    max_documents_per_period: Optional[int]
    max_pages_per_period: Optional[int]
    capabilities: FrozenSet[Capability] = frozenset()

    @property
    def limits(self) -> PlanLimits:
        return PlanLimits(
            documents=self.max_documents_per_period,
            pages=self.max_pages_per_period,
        )

    @property
    def max_summary_tier(self) -> SummaryTier:
        if has_capability(self, Capability.LONG_SUMMARY):
            return SummaryTier.LONG
        return SummaryTier.MEDIUM

    @property
    def history_limit(self) -> int:
        """How many of the newest summaries GET /api/summaries returns."""
        if has_capability(self, Capability.DOCUMENT_HISTORY):
            return _EXTENDED_HISTORY
        return _BASIC_HISTORY

    @property
    def export_watermark(self) -> bool:
        """Exports for this plan carry a visible marker."""
        return not has_capability(self, Capability.NO_WATERMARK)

    @property
    def granted_capabilities(self) -> List[Capability]:
        return [capability for capability in Capability if has_capability(self, capability)]


_PREMIUM_CAPABILITIES = frozenset({
    Capability.LONG_SUMMARY,
    Capability.DOCUMENT_HISTORY,
    Capability.NO_WATERMARK,
})

PLANS: Dict[PlanName, Plan] = {
    PlanName.FREE: Plan(
        name=PlanName.FREE,
        max_documents_per_period=5,
        max_pages_per_period=100,
    ),
    PlanName.PREMIUM: Plan(
        name=PlanName.PREMIUM,
        max_documents_per_period=50,
        max_pages_per_period=1000,
        capabilities=_PREMIUM_CAPABILITIES,
    ),
    PlanName.PRO: Plan(
        name=PlanName.PRO,
        max_documents_per_period=None,
        max_pages_per_period=None,
        capabilities=_PREMIUM_CAPABILITIES | {
            Capability.ADVANCED_ANALYTICS,
            Capability.WHITE_LABEL,
        },
    ),
}

DEFAULT_PLAN = PLANS[PlanName.FREE]


def get_plan(name: Optional[str]) -> Plan:
    """Resolve a stored plan name; unknown or missing names fall back to free."""
    if not name:
        return DEFAULT_PLAN
    try:
        return PLANS[PlanName(name.strip().lower())]
    except ValueError:
        return DEFAULT_PLAN


def has_capability(plan: Plan, capability: Capability) -> bool:
    """Single feature-access check used across the codebase."""
    return capability in plan.capabilities
