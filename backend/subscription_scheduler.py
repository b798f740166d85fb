"""
Subscription Scheduler - Background tasks for subscription management

This module handles:
1. Expiring trials whose trial_ends_at has passed
2. Expiring paid subscriptions whose current_period_end has passed

Run as a background task using APScheduler or as a cron job.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from database import async_session_maker
from models import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


async def expire_subscriptions(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """
    Mark lapsed trials and paid periods as expired.

    Returns the number of subscriptions that changed status.
    """
    now = now or datetime.utcnow()

    result = await db.execute(
        update(Subscription)
        .where(
            or_(
                and_(
                    Subscription.status == SubscriptionStatus.TRIAL.value,
                    Subscription.trial_ends_at.isnot(None),
                    Subscription.trial_ends_at < now,
                ),
                and_(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    Subscription.current_period_end.isnot(None),
                    Subscription.current_period_end < now,
                ),
            )
        )
        .values(status=SubscriptionStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    expired = result.rowcount or 0
    logger.info(f"📊 Expired {expired} subscription(s)")
    return expired


async def run_daily_subscription_checks():
    """
    Main entry point for the daily subscription maintenance job.
    """
    logger.info("🚀 Starting daily subscription maintenance tasks...")

    try:
        async with async_session_maker() as db:
            await expire_subscriptions(db)
        logger.info("✅ Subscription maintenance completed")
    except Exception as e:
        logger.error(f"❌ Error in subscription maintenance: {str(e)}", exc_info=True)


# ============================================================================
# Scheduler Setup (APScheduler)
# ============================================================================

def start_subscription_scheduler():
    """
    Start the APScheduler background scheduler.
    This runs the daily subscription checks at 00:05 UTC every day.
    """
    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from apscheduler.triggers.cron import CronTrigger

    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        run_daily_subscription_checks,
        CronTrigger(hour=0, minute=5),
        id='daily_subscription_checks',
        name='Daily Subscription Expiry Checks',
        replace_existing=True
    )

    scheduler.start()
    logger.info("📅 Subscription scheduler started - daily checks at 00:05 UTC")

    return scheduler


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_daily_subscription_checks())
