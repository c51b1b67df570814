"""Research orchestration tests: validation, provider outcomes and record state."""
import asyncio
import uuid

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from investorbase.config import Settings
from investorbase.exceptions import (
    CompanyNotFoundError,
    ProviderShapeError,
    ProviderTransportError,
    ResearchStateError,
    ResearchValidationError,
)
from investorbase.models.company import Company
from investorbase.models.research import (
    KIND_INSIGHT,
    KIND_NEWS,
    RESEARCH_INVESTOR,
    RESEARCH_MARKET,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    ResearchRecord,
)
from investorbase.services import company_research
from investorbase.services.company_research import (
    INVESTOR_LAYOUT,
    derive_research,
    extract_sources,
    request_investor_research,
    request_research,
)
from investorbase.services.field_extractor import StructuredItem

from tests.samples import SAMPLE_INVESTOR_RESEARCH, SAMPLE_RESEARCH, FakeProvider

POINTS = ["Strong founding team with logistics background", "Early revenue from two enterprise pilots"]


async def _all_records(db: AsyncSession) -> list:
    return list((await db.execute(select(ResearchRecord))).scalars().all())


class TestValidation:
    async def test_empty_assessment_points(self, db_session: AsyncSession):
        provider = FakeProvider()

        with pytest.raises(ResearchValidationError):
            await request_research(db_session, "co-1", [], provider=provider)

        assert provider.calls == []
        assert await _all_records(db_session) == []

    async def test_blank_points_and_company(self, db_session: AsyncSession, company: Company):
        provider = FakeProvider()

        with pytest.raises(ResearchValidationError):
            await request_research(db_session, company.id, ["  ", ""], provider=provider)
        with pytest.raises(ResearchValidationError):
            await request_research(db_session, "  ", POINTS, provider=provider)

        assert provider.calls == []

    async def test_unknown_company(self, db_session: AsyncSession):
        provider = FakeProvider()

        with pytest.raises(CompanyNotFoundError):
            await request_research(db_session, uuid.uuid4(), POINTS, provider=provider)
        with pytest.raises(CompanyNotFoundError):
            await request_research(db_session, "co-1", POINTS, provider=provider)

        assert provider.calls == []
        assert await _all_records(db_session) == []


class TestRequestResearch:
    async def test_completed_research(self, db_session: AsyncSession, company: Company):
        provider = FakeProvider()

        record = await request_research(db_session, str(company.id), POINTS, provider=provider)

        assert len(provider.calls) == 1
        assert company.name in provider.calls[0]
        assert POINTS[0] in provider.calls[0]
        assert record.research_type == RESEARCH_MARKET
        assert record.status == STATUS_COMPLETED
        assert record.completed_at is not None
        assert record.raw_text == SAMPLE_RESEARCH
        assert record.error_message is None
        assert record.assessment_points == POINTS
        assert record.prompt == provider.calls[0]
        assert [i["headline"] for i in record.news_highlights] == [
            "Acme raises $10M Series A",
            "Acme opens Berlin office",
        ]
        assert [i["kind"] for i in record.market_insights] == [KIND_INSIGHT]
        assert record.research_summary == (
            "Acme is well funded and expanding into Europe.\n\n"
            "Competition from incumbents remains the main risk."
        )
        assert record.sources == [
            {"name": "TechCrunch, 2024-01-05", "url": "https://example.com/a"},
            {"name": "Reuters", "url": "https://example.com/b"},
            {"name": "Gartner", "url": "https://example.com/c"},
            {"name": "Industry Weekly", "url": "https://example.com/d/"},
        ]

    async def test_timeout_fails_record(self, db_session: AsyncSession, company: Company):
        provider = FakeProvider(delay=1.0)

        record = await request_research(db_session, company.id, POINTS, provider=provider, timeout=0.05)

        assert record.status == STATUS_FAILED
        assert record.error_message == "Research timed out after 0.05 seconds"
        assert record.raw_text is None
        assert record.completed_at is None
        assert len(provider.calls) == 1

    @pytest.mark.parametrize(
        "error, message",
        [
            (ProviderTransportError("Perplexity API error: 500 - down"), "Perplexity API error: 500 - down"),
            (ProviderShapeError("Invalid response format from Perplexity API"), "Invalid response format from Perplexity API"),
            (RuntimeError("boom"), "Research failed unexpectedly: boom"),
        ],
    )
    async def test_provider_errors_fail_record(
        self, db_session: AsyncSession, company: Company, error: Exception, message: str
    ):
        provider = FakeProvider(error=error)

        record = await request_research(db_session, company.id, POINTS, provider=provider)

        assert record.status == STATUS_FAILED
        assert record.error_message == message
        assert record.raw_text is None
        assert record.sources == []
        assert record.structured_items == []
        assert len(provider.calls) == 1

    async def test_late_result_does_not_reopen_swept_record(self, db_session: AsyncSession, company: Company):
        async def provider(prompt: str) -> str:
            # the stale sweep closes the record behind this session's back
            await db_session.execute(
                update(ResearchRecord)
                .where(ResearchRecord.status == STATUS_PENDING)
                .values(status=STATUS_FAILED, error_message="Research did not complete within 420 seconds")
                .execution_options(synchronize_session=False)
            )
            await db_session.commit()
            return SAMPLE_RESEARCH

        record = await request_research(db_session, company.id, POINTS, provider=provider)

        assert record.status == STATUS_FAILED
        assert record.error_message == "Research did not complete within 420 seconds"
        assert record.raw_text is None
        assert record.structured_items == []

    async def test_retry_creates_new_record(self, db_session: AsyncSession, company: Company):
        failed = await request_research(
            db_session, company.id, POINTS, provider=FakeProvider(error=ProviderTransportError("down"))
        )
        completed = await request_research(db_session, company.id, POINTS, provider=FakeProvider())

        assert failed.id != completed.id
        assert failed.status == STATUS_FAILED
        assert completed.status == STATUS_COMPLETED
        assert len(await _all_records(db_session)) == 2

    async def test_cancellation_fails_record(self, db_session: AsyncSession, company: Company):
        provider = FakeProvider(delay=10.0)
        task = asyncio.create_task(request_research(db_session, company.id, POINTS, provider=provider))
        for _ in range(200):
            if provider.calls:
                break
            await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        records = await _all_records(db_session)
        assert len(records) == 1
        assert records[0].status == STATUS_FAILED
        assert records[0].error_message == "Research request was cancelled"

    @pytest.mark.parametrize("serialize, expected_peak", [(True, 1), (False, 2)])
    async def test_per_company_lock(
        self, db_session: AsyncSession, company: Company, monkeypatch, serialize: bool, expected_peak: int
    ):
        monkeypatch.setattr(
            company_research,
            "get_settings",
            lambda: Settings(
                database_url="sqlite+aiosqlite:///:memory:", serialize_research_per_company=serialize
            ),
        )
        active = 0
        peak = 0

        async def fake_run(db, company, points, provider, timeout, mode):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return company.id

        monkeypatch.setattr(company_research, "_run_research", fake_run)

        results = await asyncio.gather(
            request_research(db_session, company.id, POINTS),
            request_research(db_session, company.id, POINTS),
        )

        assert peak == expected_peak
        assert results == [company.id, company.id]


class TestTerminalState:
    async def test_completed_record_is_final(self, db_session: AsyncSession, company: Company):
        record = await request_research(db_session, company.id, POINTS, provider=FakeProvider())

        with pytest.raises(ResearchStateError):
            record.mark_failed("late failure")
        with pytest.raises(ResearchStateError):
            record.mark_completed("other text", sources=[], structured_items=[])
        assert record.status == STATUS_COMPLETED
        assert record.raw_text == SAMPLE_RESEARCH

    async def test_failed_record_is_final(self, db_session: AsyncSession, company: Company):
        record = await request_research(
            db_session, company.id, POINTS, provider=FakeProvider(error=ProviderTransportError("down"))
        )

        with pytest.raises(ResearchStateError):
            record.mark_completed(SAMPLE_RESEARCH, sources=[], structured_items=[])
        assert record.status == STATUS_FAILED
        assert record.raw_text is None


class TestDerivation:
    def test_derive_research(self):
        derived = derive_research(SAMPLE_RESEARCH)

        assert [i.kind for i in derived.items] == [KIND_NEWS, KIND_NEWS, KIND_INSIGHT]
        assert derived.research_summary.startswith("Acme is well funded")
        assert len(derived.sources) == 4

    def test_derive_research_without_sections(self):
        derived = derive_research("Nothing structured here.")
        assert derived.research_summary == ""
        assert derived.sources == []

    def test_sources_deduplicated_by_normalized_url(self):
        items = [StructuredItem(headline="A", source="Reuters", url="https://example.com/x")]
        text = (
            "See https://Example.com/x/ and https://www.bloomberg.com/story.\n"
            "## SOURCES\n"
            "- Reuters: https://example.com/x\n"
            "- https://www.ft.com/content/1\n"
        )

        sources = extract_sources(text, items)

        assert sources == [
            {"name": "Reuters", "url": "https://example.com/x"},
            {"name": "ft.com", "url": "https://www.ft.com/content/1"},
            {"name": "bloomberg.com", "url": "https://www.bloomberg.com/story"},
        ]

    def test_inline_summary_keeps_text_after_its_name(self):
        derived = derive_research("RESEARCH SUMMARY: Acme is well funded and expanding into Europe.")
        assert derived.research_summary == "Acme is well funded and expanding into Europe."

    def test_loosely_located_news_line_becomes_an_item(self):
        derived = derive_research(
            "LATEST NEWS: Acme raised $10M from XYZ Capital in January 2024, per TechCrunch."
        )

        assert len(derived.items) == 1
        assert derived.items[0].kind == KIND_NEWS
        assert derived.items[0].headline.startswith("Acme raised $10M from XYZ Capital")


class TestInvestorResearch:
    async def test_completed_investor_research(self, db_session: AsyncSession, company: Company):
        company.stage = "Series A"
        await db_session.commit()
        provider = FakeProvider(text=SAMPLE_INVESTOR_RESEARCH)

        record = await request_investor_research(db_session, company.id, POINTS, provider=provider)

        assert len(provider.calls) == 1
        assert "Acme Logistics - Series A" in provider.calls[0]
        assert "## 4. INVESTOR INSIGHTS" in provider.calls[0]
        assert record.research_type == RESEARCH_INVESTOR
        assert record.status == STATUS_COMPLETED
        assert [i["headline"] for i in record.news_highlights] == ["Acme signs a national retail carrier"]
        assert [i["headline"] for i in record.market_insights] == ["Integrations are the moat"]
        assert record.research_summary == (
            "Freight software is a $20B market growing 12% a year.\n\n"
            "Seed-stage entrants compete on integrations."
        )
        assert record.sources == [
            {"name": "Logistics Today, 2024-02-10", "url": "https://example.com/news/carrier"},
            {"name": "PitchBook", "url": "https://example.com/insight/moat"},
            {"name": "Freight Index", "url": "https://example.com/index"},
        ]

    async def test_stage_defaults_to_seed(self, db_session: AsyncSession, company: Company):
        provider = FakeProvider(text=SAMPLE_INVESTOR_RESEARCH)

        await request_investor_research(db_session, company.id, POINTS, provider=provider)

        assert "Acme Logistics - Seed" in provider.calls[0]

    async def test_provider_error_fails_investor_record(self, db_session: AsyncSession, company: Company):
        provider = FakeProvider(error=ProviderTransportError("Perplexity API error: 429 - slow down"))

        record = await request_investor_research(db_session, company.id, POINTS, provider=provider)

        assert record.research_type == RESEARCH_INVESTOR
        assert record.status == STATUS_FAILED
        assert record.error_message == "Perplexity API error: 429 - slow down"

    async def test_validation_happens_before_any_record(self, db_session: AsyncSession, company: Company):
        provider = FakeProvider(text=SAMPLE_INVESTOR_RESEARCH)

        with pytest.raises(ResearchValidationError):
            await request_investor_research(db_session, company.id, [], provider=provider)

        assert provider.calls == []
        assert await _all_records(db_session) == []

    def test_market_layout_ignores_investor_sections(self):
        derived = derive_research(SAMPLE_INVESTOR_RESEARCH)

        assert [i.kind for i in derived.items] == [KIND_NEWS]
        assert derived.research_summary == ""

    def test_investor_layout(self):
        derived = derive_research(SAMPLE_INVESTOR_RESEARCH, INVESTOR_LAYOUT)

        assert [i.kind for i in derived.items] == [KIND_NEWS, KIND_INSIGHT]
        assert derived.research_summary.startswith("Freight software")
