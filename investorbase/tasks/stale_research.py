"""Stale research sweep - fails records stuck in pending past the provider timeout."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from investorbase.config import get_settings
from investorbase.database import task_session
from investorbase.models.research import STATUS_PENDING, ResearchRecord

logger = logging.getLogger(__name__)


async def fail_stale_research(
    db: AsyncSession, older_than: timedelta, now: Optional[datetime] = None
) -> int:
    """Mark pending records requested before now - older_than as failed. Returns the count."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - older_than
    result = await db.execute(
        select(ResearchRecord).where(
            ResearchRecord.status == STATUS_PENDING,
            ResearchRecord.requested_at < cutoff,
        )
    )
    stale = result.scalars().all()
    for research in stale:
        research.mark_failed(
            f"Research did not complete within {int(older_than.total_seconds())} seconds"
        )
    if stale:
        await db.commit()
    return len(stale)


async def fail_stale_research_task() -> None:
    """
    Runs every STALE_RESEARCH_SWEEP_MINUTES.

    A worker that died mid-request leaves its record pending forever; this
    closes such records once the provider timeout plus a grace period passed.
    """
    settings = get_settings()
    older_than = timedelta(
        seconds=settings.research_timeout_seconds + settings.stale_research_grace_seconds
    )
    try:
        async with task_session() as db:
            count = await fail_stale_research(db, older_than)
        if count:
            logger.info(f"Stale research sweep: failed {count} pending record(s)")
    except Exception as e:
        logger.error(f"Stale research sweep failed: {e}")
