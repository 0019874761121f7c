"""
DocDigest Backend: Google Gemini Summarizer
=============================================

What:  Summarizer implementation backed by Google Gemini (google-generativeai).
Why:   Callers only see SummaryContent or a reason-coded failure, never
       SDK types, so the provider can change without touching them.
How:   Builds a tier-specific prompt, sends it with generate_content_async under
       a hard timeout, parses the sectioned plain-text reply into SummaryContent,
       and translates every SDK failure into an UpstreamSummarizationError.
Who:   Instantiated once at import; called by the ProcessingOrchestrator.
When:  After the EntitlementGate approved the request, before persistence.

Resilience Strategy:
    1. One attempt per request. Summarization is never retried here; a failed
       call costs the user nothing and the client decides whether to retry.
    2. asyncio.wait_for bounds the call at settings.summarizer_timeout_seconds.
    3. A circuit breaker fails fast after repeated *transient* failures
       (rate limited, timeout, unavailable). Quota, credential and malformed
       input failures do not trip it.

Failure mapping (google.api_core.exceptions → UpstreamFailureReason):
    ResourceExhausted (billing / daily quota)     → quota_exceeded
    ResourceExhausted (anything else)             → rate_limited
    PermissionDenied, Unauthenticated, bad key    → invalid_credential
    InvalidArgument, FailedPrecondition, blocked
    or unparseable reply                          → malformed_input
    DeadlineExceeded, asyncio timeout             → timeout
    everything else                               → unavailable
"""

import asyncio
import logging
import re
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from app.config import settings
from app.exceptions import (
    CircuitBreakerOpenError,
    UpstreamFailureReason,
    UpstreamSummarizationError,
)
from app.plans import SummaryTier
from app.services.summarizer_base import Summarizer, SummaryContent

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Fails fast while the summarizer is known to be unhealthy.

    State Machine:
        CLOSED     every call allowed; transient failures are counted
                   → threshold reached: OPEN
        OPEN       calls rejected with CircuitBreakerOpenError
                   → recovery_timeout elapsed: HALF_OPEN
        HALF_OPEN  one probe call allowed
                   → success: CLOSED, transient failure: OPEN with a fresh timer,
                     non-transient failure (quota, credential, bad input): CLOSED,
                     since the upstream did answer

    Process-local and not thread-safe; uvicorn workers each keep their own.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.opened_at: Optional[float] = None

    def seconds_until_probe(self) -> int:
        if self.opened_at is None:
            return 0
        remaining = self.recovery_timeout - (time.monotonic() - self.opened_at)
        return max(0, int(remaining))

    def can_execute(self) -> bool:
        """
        Returns True when a call may proceed.

        Raises:
            CircuitBreakerOpenError: OPEN and still inside the recovery window.
        """
        if self.state != CircuitState.OPEN:
            return True

        if self.seconds_until_probe() > 0:
            raise CircuitBreakerOpenError(recovery_time=self.seconds_until_probe())

        logger.info("Summarizer circuit HALF_OPEN, allowing a probe call")
        self.state = CircuitState.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info("Summarizer circuit CLOSED, upstream recovered")
        self.failure_count = 0
        self.state = CircuitState.CLOSED
        self.opened_at = None

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.state == CircuitState.HALF_OPEN:
            logger.warning("Summarizer circuit re-OPENED, probe call failed")
            self._open()
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Summarizer circuit OPENED after %d consecutive transient failures",
                self.failure_count,
            )
            self._open()

    def record_non_transient_failure(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            logger.info("Summarizer circuit CLOSED, upstream answered with a refusal")
            self.failure_count = 0
            self.state = CircuitState.CLOSED
            self.opened_at = None

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = time.monotonic()


# ══════════════════════════════════════════════════════════════════════════
# Prompt and reply format
# ══════════════════════════════════════════════════════════════════════════

SYSTEM_INSTRUCTION = (
    "You are a professional document analyst. Provide clear, concise, and "
    "well-structured summaries and information extraction."
)

# Length guidance and output budget per tier. Sections never change.
TIER_PROFILES: Dict[SummaryTier, Dict[str, object]] = {
    SummaryTier.SHORT: {
        "length": "one short paragraph of 3-4 sentences",
        "max_items": 3,
        "max_output_tokens": 512,
    },
    SummaryTier.MEDIUM: {
        "length": "2-3 paragraphs",
        "max_items": 6,
        "max_output_tokens": 1024,
    },
    SummaryTier.LONG: {
        "length": "4-6 detailed paragraphs covering every major section of the document",
        "max_items": 12,
        "max_output_tokens": 2048,
    },
}

PROMPT_TEMPLATE = """Please analyze the following document and provide:

1. EXECUTIVE SUMMARY: {length}
2. KEY POINTS: the main ideas and concepts (at most {max_items} bullet points)
3. ACTION ITEMS: tasks, to-dos, or actionable content
4. IMPORTANT DATES: dates, deadlines, or timelines mentioned
5. RELEVANT NAMES: people, organizations, companies, or entities
6. PLACES: locations, addresses, or geographical references

Document content:
{text}

Format your response exactly as follows, writing "None" under any empty section:

EXECUTIVE SUMMARY:
[Your executive summary here]

KEY POINTS:
• [Key point 1]
• [Key point 2]

ACTION ITEMS:
• [Action item 1]

IMPORTANT DATES:
• [Date 1]

RELEVANT NAMES:
• [Name/Entity 1]

PLACES:
• [Place 1]
"""

_SECTION_FIELDS = {
    "EXECUTIVE SUMMARY": "executive_summary",
    "KEY POINTS": "key_points",
    "ACTION ITEMS": "action_items",
    "IMPORTANT DATES": "important_dates",
    "RELEVANT NAMES": "relevant_names",
    "PLACES": "places",
}

# "EXECUTIVE SUMMARY:", "**Key Points**", "3. ACTION ITEMS: ...", "## Places"
_SECTION_HEADER = re.compile(
    r"^(?:#+\s*)?(?:\d+\.\s*)?\**\s*(" + "|".join(_SECTION_FIELDS) + r")\s*\**\s*(?::\s*\**\s*(.*))?$",
    re.IGNORECASE,
)
_BULLET = re.compile(r"^(?:[•\-*]|\d+[.)])\s*(.*)$")
_EMPTY_ITEMS = {"none", "n/a", "na", "none.", "none mentioned", "none identified", "not applicable"}


def truncate_input(text: str, max_chars: Optional[int] = None) -> str:
    """Cut `text` to the upstream input budget, marking the cut with '...'."""
    limit = max_chars or settings.summarizer_max_input_chars
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_prompt(text: str, tier: SummaryTier) -> str:
    profile = TIER_PROFILES[tier]
    return PROMPT_TEMPLATE.format(
        length=profile["length"],
        max_items=profile["max_items"],
        text=truncate_input(text),
    )


def parse_summary_response(raw: str) -> SummaryContent:
    """
    Split the sectioned plain-text reply into SummaryContent.

    Executive summary lines are joined with spaces. In list sections only
    bullet lines ('•', '-', '*', '1.') count, and placeholder entries like
    "None" are dropped. Text before the first header is ignored.

    Raises:
        UpstreamSummarizationError(malformed_input): no executive summary found
    """
    sections: Dict[str, List[str]] = {name: [] for name in _SECTION_FIELDS.values()}
    current: Optional[str] = None

    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        header = _SECTION_HEADER.match(stripped)
        if header:
            current = _SECTION_FIELDS[header.group(1).upper()]
            stripped = (header.group(2) or "").strip().strip("*").strip()
            if not stripped:
                continue

        if current is None:
            continue
        if current == "executive_summary":
            sections[current].append(stripped)
            continue

        bullet = _BULLET.match(stripped)
        if bullet:
            item = bullet.group(1).strip()
            if item and item.lower() not in _EMPTY_ITEMS:
                sections[current].append(item)

    executive_summary = " ".join(sections.pop("executive_summary")).strip()
    if not executive_summary:
        raise UpstreamSummarizationError(
            UpstreamFailureReason.MALFORMED_INPUT,
            context={"detail": "reply had no executive summary", "reply_chars": len(raw)},
        )

    return SummaryContent(executive_summary=executive_summary, raw_response=raw, **sections)


# ══════════════════════════════════════════════════════════════════════════
# Failure classification
# ══════════════════════════════════════════════════════════════════════════

_QUOTA_MARKERS = ("billing", "per day", "perday", "insufficient")


def classify_upstream_error(error: BaseException) -> UpstreamFailureReason:
    """Map a google-generativeai / google-api-core exception to a reason."""
    message = str(error).lower()

    if isinstance(error, asyncio.TimeoutError):
        return UpstreamFailureReason.TIMEOUT
    if isinstance(error, google_exceptions.DeadlineExceeded):
        return UpstreamFailureReason.TIMEOUT
    if isinstance(error, google_exceptions.ResourceExhausted):
        if any(marker in message for marker in _QUOTA_MARKERS):
            return UpstreamFailureReason.QUOTA_EXCEEDED
        return UpstreamFailureReason.RATE_LIMITED
    if isinstance(error, (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated)):
        return UpstreamFailureReason.INVALID_CREDENTIAL
    if isinstance(error, (google_exceptions.InvalidArgument, google_exceptions.FailedPrecondition)):
        # Gemini reports a bad key as a 400 rather than a 401
        if "api key" in message or "api_key" in message:
            return UpstreamFailureReason.INVALID_CREDENTIAL
        return UpstreamFailureReason.MALFORMED_INPUT
    return UpstreamFailureReason.UNAVAILABLE


# ══════════════════════════════════════════════════════════════════════════
# Gemini Summarizer
# ══════════════════════════════════════════════════════════════════════════

class GeminiSummarizer(Summarizer):
    """
    Google Gemini implementation of the Summarizer contract.

    Error Handling Chain:
        circuit open → CircuitBreakerOpenError (no upstream call)
        SDK exception / timeout → classify → UpstreamSummarizationError(reason)
        transient reason → circuit breaker failure recorded
        reply without executive summary → malformed_input
    """

    def __init__(self):
        if settings.gemini_api_key and settings.gemini_api_key != "your_gemini_api_key_here":
            genai.configure(api_key=settings.gemini_api_key)

        self.model = genai.GenerativeModel(
            settings.gemini_model,
            system_instruction=SYSTEM_INSTRUCTION,
        )
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "GeminiSummarizer initialized with model=%s, timeout=%.0fs, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.gemini_model,
            settings.summarizer_timeout_seconds,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    async def summarize(self, text: str, tier: SummaryTier) -> SummaryContent:
        call_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        prompt = build_prompt(text, tier)
        timeout = settings.summarizer_timeout_seconds
        logger.info(
            "[%s] Gemini summarize: tier=%s, input=%d chars%s",
            call_id,
            tier.value,
            len(text),
            " (truncated)" if len(text) > settings.summarizer_max_input_chars else "",
        )

        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                self.model.generate_content_async(
                    prompt,
                    generation_config={
                        "max_output_tokens": TIER_PROFILES[tier]["max_output_tokens"],
                        "temperature": 0.3,
                    },
                    request_options={"timeout": timeout},
                ),
                timeout=timeout,
            )
            raw = response.text or ""
        except ValueError as e:
            # response.text raises ValueError when the reply was blocked / empty
            raise self._failure(call_id, UpstreamFailureReason.MALFORMED_INPUT, e) from e
        except Exception as e:
            raise self._failure(call_id, classify_upstream_error(e), e) from e

        duration_ms = (time.time() - start_time) * 1000
        self.circuit_breaker.record_success()
        try:
            summary = parse_summary_response(raw)
        except UpstreamSummarizationError:
            logger.error("[%s] Gemini reply could not be parsed (%d chars)", call_id, len(raw))
            raise

        logger.info(
            "[%s] Gemini summarize completed in %.0fms: %d chars, %d key points",
            call_id,
            duration_ms,
            len(raw),
            len(summary.key_points),
        )
        return summary

    def _failure(
        self,
        call_id: str,
        reason: UpstreamFailureReason,
        error: BaseException,
    ) -> UpstreamSummarizationError:
        failure = UpstreamSummarizationError(
            reason,
            context={"call_id": call_id, "error_type": type(error).__name__},
        )
        if failure.retryable:
            self.circuit_breaker.record_failure()
            logger.warning("[%s] Gemini call failed (%s): %s", call_id, reason.value, str(error))
        else:
            self.circuit_breaker.record_non_transient_failure()
            logger.error("[%s] Gemini call failed (%s): %s", call_id, reason.value, str(error))
        return failure

    async def health_check(self) -> bool:
        """
        Lists models (no token cost) to verify the key and connectivity.
        """
        try:
            model_names = await asyncio.to_thread(
                lambda: [m.name for m in genai.list_models()]
            )
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False

        target = f"models/{settings.gemini_model}"
        if target not in model_names:
            logger.warning("Configured model %s not found in available models", target)
        return True


# ── Singleton Instance ────────────────────────────────────────────────────
# Holds the circuit breaker, which must be shared by every request.
gemini_summarizer = GeminiSummarizer()
