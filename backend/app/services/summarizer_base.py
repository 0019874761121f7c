"""
DocDigest Backend: Abstract Summarizer Interface
==================================================

What:  The contract every summarization provider implements, plus the
       structured result it returns.
Why:   Swapping the provider, or mocking it in tests, never touches the
       orchestration code.
How:   Concrete providers inherit from Summarizer and implement summarize()
       and health_check(). The orchestrator only ever sees this interface.
Who:   GeminiSummarizer implements it; tests substitute AsyncMock instances.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from app.plans import SummaryTier


@dataclass
class SummaryContent:
    """Sectioned summary parsed from the provider's reply."""

    executive_summary: str
    key_points: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    important_dates: List[str] = field(default_factory=list)
    relevant_names: List[str] = field(default_factory=list)
    places: List[str] = field(default_factory=list)
    raw_response: str = ""


class Summarizer(ABC):
    """
    Abstract interface for document summarization.

    Contract:
        - summarize() returns a SummaryContent with a non-empty executive summary
        - Every provider failure is raised as UpstreamSummarizationError with
          its reason preserved (quota, rate limit, credential, malformed, timeout,
          unavailable)
        - Implementations never retry on their own; retrying is a client decision
        - The call is bounded by settings.summarizer_timeout_seconds
    """

    @abstractmethod
    async def summarize(self, text: str, tier: SummaryTier) -> SummaryContent:
        """
        Summarize extracted document text at the given tier.

        Args:
            text: Normalized, non-empty document text. Providers may truncate it.
            tier: The effective tier decided by the EntitlementGate. It controls
                  summary length only, never which sections are produced.

        Raises:
            UpstreamSummarizationError: Provider failed or its reply was unusable
            CircuitBreakerOpenError: Too many recent transient failures
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the provider is reachable without consuming generation quota.

        Returns: True if reachable, False otherwise.
        """
        ...
