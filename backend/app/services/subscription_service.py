"""
DocDigest Backend: Subscription Lookup
========================================

What:  Resolves a user id to the Plan that governs it.
How:   Reads the `subscriptions` row. No row, a non-active status, or an
       unknown plan name all mean the free plan.
Who:   Request dependencies building the AuthContext; read-only here.
       Billing webhooks (out of this service) own the writes.
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import DatabaseError
from app.models.subscription import Subscription
from app.plans import DEFAULT_PLAN, Plan, get_plan

logger = logging.getLogger(__name__)

ACTIVE_STATUS = "active"


class SubscriptionService:

    async def get_plan(self, db: AsyncSession, user_id: str) -> Plan:
        try:
            result = await db.execute(
                select(Subscription.plan, Subscription.status).where(Subscription.user_id == user_id)
            )
            row = result.first()
        except SQLAlchemyError as e:
            logger.error("Database error loading subscription for user=%s: %s", user_id, str(e))
            raise DatabaseError(context={"error_type": type(e).__name__}) from e

        if row is None:
            return DEFAULT_PLAN
        if row.status != ACTIVE_STATUS:
            logger.debug("Subscription for user=%s is %s, using free plan", user_id, row.status)
            return DEFAULT_PLAN
        return get_plan(row.plan)


# ── Singleton Instance ────────────────────────────────────────────────────
subscription_service = SubscriptionService()
