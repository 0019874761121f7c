"""
DocDigest Backend: Usage Ledger
================================

What:  Per-user, per-month counters of processed documents and pages, with an
       atomic increment and the limit checks the EntitlementGate relies on.
Why:   Usage is billing data: a lost update lets a user exceed their plan,
       and a double count charges them for work they never received.
How:   One `usage_records` row per (user_id, period). The increment is a single
       INSERT ... ON CONFLICT DO UPDATE statement, so concurrent increments for
       the same user can never lose an update.
Who:   EntitlementGate (reads), ProcessingOrchestrator (the only writer),
       GET /api/usage (reads).

Periods:
    "YYYY-MM" in UTC. Keys sort lexically in calendar order, and a new month
    starts with no row at all, which reads as zero usage.

Upsert by dialect:
    postgresql, sqlite   native ON CONFLICT (user_id, period) DO UPDATE
    anything else        read-modify-write serialized by UserLocks
                         (single process only)

Transient failures (OperationalError, and the IntegrityError of a lost
first-insert race on the fallback path) are retried by tenacity a bounded
number of times. After the last attempt LedgerWriteError is raised.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from app.config import settings
from app.database import async_session_factory
from app.exceptions import LedgerWriteError
from app.models.usage import UsageRecord
from app.plans import Plan, PlanLimits

logger = logging.getLogger(__name__)

_NATIVE_UPSERT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def current_period(now: Optional[datetime] = None) -> str:
    """UTC calendar month of `now` (default: the current time) as 'YYYY-MM'."""
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m")


@dataclass(frozen=True)
class UsageSnapshot:
    """Point-in-time read of one period's counters. Not authoritative for writes."""

    period: str
    document_count: int = 0
    page_count: int = 0


class LimitReason(str, Enum):
    NONE = "none"
    DOCUMENT_LIMIT = "document_limit"
    PAGE_LIMIT = "page_limit"


@dataclass(frozen=True)
class LimitCheck:
    exceeded: bool
    reason: LimitReason = LimitReason.NONE
    current: Optional[int] = None
    limit: Optional[int] = None


class UserLocks:
    """
    One asyncio.Lock per user id, created on first use.

    Entries are weak: a lock disappears once no coroutine holds or waits on
    it, so the registry stays as small as the set of users currently active.
    Serializes within one process only.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __call__(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class UsageLedger:
    """
    Reads and atomically increments usage counters.

    Every call opens its own short transaction from `session_factory`, so a
    ledger write is never tied to the request's session.
    """

    def __init__(self, session_factory: async_sessionmaker = async_session_factory):
        self.session_factory = session_factory
        # Only used on dialects without native upsert
        self._user_locks = UserLocks()

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_current_usage(self, user_id: str, now: Optional[datetime] = None) -> UsageSnapshot:
        """Counters for the current period; zeros when no row exists yet."""
        period = current_period(now)
        async with self.session_factory() as session:
            result = await session.execute(
                select(UsageRecord.document_count, UsageRecord.page_count).where(
                    UsageRecord.user_id == user_id,
                    UsageRecord.period == period,
                )
            )
            row = result.first()

        if row is None:
            return UsageSnapshot(period=period)
        return UsageSnapshot(period=period, document_count=row.document_count, page_count=row.page_count)

    async def has_exceeded_limit(
        self,
        user_id: str,
        plan: Plan,
        now: Optional[datetime] = None,
    ) -> LimitCheck:
        """
        Compare current usage with the plan's limits.

        Documents are checked before pages, so when both are exhausted the
        reason is document_limit. A limit is exceeded once current >= limit;
        unbounded (None) limits never trip.
        """
        limits = self.get_limits(plan)
        if limits.documents is None and limits.pages is None:
            return LimitCheck(exceeded=False)

        usage = await self.get_current_usage(user_id, now)
        if limits.documents is not None and usage.document_count >= limits.documents:
            return LimitCheck(
                exceeded=True,
                reason=LimitReason.DOCUMENT_LIMIT,
                current=usage.document_count,
                limit=limits.documents,
            )
        if limits.pages is not None and usage.page_count >= limits.pages:
            return LimitCheck(
                exceeded=True,
                reason=LimitReason.PAGE_LIMIT,
                current=usage.page_count,
                limit=limits.pages,
            )
        return LimitCheck(exceeded=False)

    @staticmethod
    def get_limits(plan: Plan) -> PlanLimits:
        return plan.limits

    # ── Writes ────────────────────────────────────────────────────────────

    async def increment_usage(
        self,
        user_id: str,
        page_count: int,
        now: Optional[datetime] = None,
    ) -> UsageRecord:
        """
        Add one document and `page_count` pages to the current period.

        Returns the row as it stands right after this increment (detached
        from its session).

        Raises:
            ValueError: page_count is negative
            LedgerWriteError: the write still failed after all retries
        """
        if page_count < 0:
            raise ValueError("page_count must be >= 0")
        period = current_period(now)

        retrying = AsyncRetrying(
            retry=retry_if_exception_type((OperationalError, IntegrityError)),
            stop=stop_after_attempt(settings.ledger_retry_attempts),
            wait=wait_fixed(settings.ledger_retry_wait),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._increment_once(user_id, period, page_count)
        except SQLAlchemyError as e:
            logger.error(
                "Usage increment failed for user=%s period=%s pages=%d: %s",
                user_id,
                period,
                page_count,
                str(e),
            )
            raise LedgerWriteError(
                user_id=user_id,
                page_count=page_count,
                context={"period": period, "error_type": type(e).__name__},
            ) from e

    async def _increment_once(self, user_id: str, period: str, page_count: int) -> UsageRecord:
        async with self.session_factory() as session:
            insert = _NATIVE_UPSERT.get(session.get_bind().dialect.name)
            if insert is None:
                async with self._user_locks(user_id):
                    return await self._increment_serialized(session, user_id, period, page_count)

            stmt = insert(UsageRecord).values(
                user_id=user_id,
                period=period,
                document_count=1,
                page_count=page_count,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[UsageRecord.user_id, UsageRecord.period],
                set_={
                    "document_count": UsageRecord.document_count + 1,
                    "page_count": UsageRecord.page_count + page_count,
                    "updated_at": func.now(),
                },
            )
            try:
                await session.execute(stmt)
                record = await self._load(session, user_id, period)
                await session.commit()
            except SQLAlchemyError:
                await session.rollback()
                raise

        logger.debug(
            "Usage incremented user=%s period=%s → docs=%d pages=%d",
            user_id,
            period,
            record.document_count,
            record.page_count,
        )
        return record

    async def _increment_serialized(
        self,
        session: AsyncSession,
        user_id: str,
        period: str,
        page_count: int,
    ) -> UsageRecord:
        try:
            result = await session.execute(
                select(UsageRecord).where(
                    UsageRecord.user_id == user_id,
                    UsageRecord.period == period,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                session.add(UsageRecord(
                    user_id=user_id,
                    period=period,
                    document_count=1,
                    page_count=page_count,
                ))
            else:
                record.document_count += 1
                record.page_count += page_count
            await session.flush()
            record = await self._load(session, user_id, period)
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            raise
        return record

    @staticmethod
    async def _load(session: AsyncSession, user_id: str, period: str) -> UsageRecord:
        # Read back inside the writing transaction, then detach so the values
        # survive commit regardless of the factory's expire_on_commit.
        result = await session.execute(
            select(UsageRecord)
            .where(UsageRecord.user_id == user_id, UsageRecord.period == period)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one()
        session.expunge(record)
        return record


# ── Singleton Instance ────────────────────────────────────────────────────
usage_ledger = UsageLedger()
