"""Stale research sweep tests."""
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from investorbase.models.company import Company
from investorbase.models.research import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING, ResearchRecord
from investorbase.tasks import stale_research
from investorbase.tasks.stale_research import fail_stale_research, fail_stale_research_task


async def _seed(db: AsyncSession, company: Company, now: datetime) -> dict:
    old_pending = ResearchRecord(company_id=company.id, requested_at=now - timedelta(hours=1))
    fresh_pending = ResearchRecord(company_id=company.id, requested_at=now - timedelta(seconds=30))
    old_completed = ResearchRecord(company_id=company.id, requested_at=now - timedelta(hours=2))
    old_completed.mark_completed("## LATEST NEWS\nDone.", sources=[], structured_items=[])
    db.add_all([old_pending, fresh_pending, old_completed])
    await db.commit()
    return {"old_pending": old_pending, "fresh_pending": fresh_pending, "old_completed": old_completed}


async def test_fails_only_old_pending_records(db_session: AsyncSession, company: Company):
    now = datetime.now(timezone.utc)
    records = await _seed(db_session, company, now)

    count = await fail_stale_research(db_session, timedelta(minutes=10), now=now)

    assert count == 1
    assert records["old_pending"].status == STATUS_FAILED
    assert records["old_pending"].error_message == "Research did not complete within 600 seconds"
    assert records["fresh_pending"].status == STATUS_PENDING
    assert records["old_completed"].status == STATUS_COMPLETED


async def test_nothing_stale(db_session: AsyncSession, company: Company):
    now = datetime.now(timezone.utc)
    db_session.add(ResearchRecord(company_id=company.id, requested_at=now))
    await db_session.commit()

    assert await fail_stale_research(db_session, timedelta(minutes=10), now=now) == 0


async def test_scheduled_task_uses_task_session(db_session: AsyncSession, company: Company, monkeypatch):
    now = datetime.now(timezone.utc)
    records = await _seed(db_session, company, now)

    @asynccontextmanager
    async def fake_task_session():
        yield db_session

    monkeypatch.setattr(stale_research, "task_session", fake_task_session)

    await fail_stale_research_task()

    assert records["old_pending"].status == STATUS_FAILED
    assert records["fresh_pending"].status == STATUS_PENDING
