"""Company research: one provider call, parsed into sections and persisted.

Two modes share the pipeline. Market research asks for LATEST NEWS, MARKET
INSIGHTS, RESEARCH SUMMARY and SOURCES; investor research asks an
investor-partner prompt for numbered sections and takes its summary from
MARKET OVERVIEW and its insights from INVESTOR INSIGHTS.
"""
import asyncio
import logging
import re
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from investorbase.config import get_settings
from investorbase.exceptions import (
    CompanyNotFoundError,
    ProviderError,
    ResearchValidationError,
)
from investorbase.models.company import Company
from investorbase.models.research import (
    KIND_INSIGHT,
    KIND_NEWS,
    RESEARCH_INVESTOR,
    RESEARCH_MARKET,
    ResearchRecord,
)
from investorbase.services.ai_service import (
    build_investor_research_prompt,
    build_research_prompt,
    call_perplexity,
    investor_research_provider,
)
from investorbase.services.field_extractor import StructuredItem, drop_section_title, extract_fields
from investorbase.services.section_locator import locate_section
from investorbase.utils.text_cleaning import (
    clean_research_text,
    find_urls,
    normalize_url,
    url_host,
)

logger = logging.getLogger(__name__)

NEWS_SECTION = "LATEST NEWS"
INSIGHTS_SECTION = "MARKET INSIGHTS"
SUMMARY_SECTION = "RESEARCH SUMMARY"
SOURCES_SECTION = "SOURCES"
MARKET_OVERVIEW_SECTION = "MARKET OVERVIEW"
INVESTOR_INSIGHTS_SECTION = "INVESTOR INSIGHTS"

SOURCE_LINE_PREFIX_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])?\s*")

ResearchProvider = Callable[[str], Awaitable[str]]

_company_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)


@dataclass(frozen=True)
class SectionLayout:
    """Which sections hold items (and of what kind), the summary and the sources."""

    item_sections: Mapping[str, str]
    summary_section: str
    sources_section: str = SOURCES_SECTION


MARKET_LAYOUT = SectionLayout(
    item_sections={NEWS_SECTION: KIND_NEWS, INSIGHTS_SECTION: KIND_INSIGHT},
    summary_section=SUMMARY_SECTION,
)
INVESTOR_LAYOUT = SectionLayout(
    item_sections={NEWS_SECTION: KIND_NEWS, INVESTOR_INSIGHTS_SECTION: KIND_INSIGHT},
    summary_section=MARKET_OVERVIEW_SECTION,
)

# every item-bearing section name -> item kind, for ad-hoc section lookups
SECTION_KINDS: Dict[str, str] = {
    **MARKET_LAYOUT.item_sections,
    **INVESTOR_LAYOUT.item_sections,
}


@dataclass(frozen=True)
class ResearchMode:
    research_type: str
    layout: SectionLayout
    build_prompt: Callable[[Company, Sequence[str]], str]
    default_provider: Callable[[], ResearchProvider]


def _market_prompt(company: Company, points: Sequence[str]) -> str:
    return build_research_prompt(company.name, points)


def _investor_prompt(company: Company, points: Sequence[str]) -> str:
    stage = company.stage or get_settings().default_company_stage
    return build_investor_research_prompt(company.name, stage, points)


MARKET_RESEARCH = ResearchMode(RESEARCH_MARKET, MARKET_LAYOUT, _market_prompt, lambda: call_perplexity)
INVESTOR_RESEARCH = ResearchMode(
    RESEARCH_INVESTOR, INVESTOR_LAYOUT, _investor_prompt, investor_research_provider
)
RESEARCH_MODES: Dict[str, ResearchMode] = {
    mode.research_type: mode for mode in (MARKET_RESEARCH, INVESTOR_RESEARCH)
}


@dataclass
class DerivedResearch:
    research_summary: str = ""
    items: List[StructuredItem] = field(default_factory=list)
    sources: List[Dict[str, str]] = field(default_factory=list)


def _source_name_from_line(line: str, url: str) -> str:
    name = SOURCE_LINE_PREFIX_RE.sub("", line.replace(url, ""))
    name = re.sub(r"\[([^\]]*)\]\(\s*\)", r"\1", name)
    name = name.replace("**", "").strip(" \t:-–—()<>[]")
    return name or url_host(url)


def extract_sources(
    raw_text: str,
    items: Sequence[StructuredItem] = (),
    sources_section: str = SOURCES_SECTION,
) -> List[Dict[str, str]]:
    """Collect {name, url} pairs, deduplicated by URL, first occurrence wins.

    Item URLs come first (named after their source label), then lines of the
    sources section, then any other URL in the text.
    """
    text = clean_research_text(raw_text)
    sources: List[Dict[str, str]] = []
    seen: set[str] = set()

    def add(name: str, url: str) -> None:
        key = normalize_url(url)
        if not url or key in seen:
            return
        seen.add(key)
        sources.append({"name": name or url_host(url), "url": url})

    for item in items:
        if item.url:
            add(item.source, item.url)

    for line in locate_section(text, sources_section).splitlines()[1:]:
        for url in find_urls(line):
            add(_source_name_from_line(line, url), url)

    for url in find_urls(text):
        add("", url)
    return sources


def derive_research(raw_text: str, layout: SectionLayout = MARKET_LAYOUT) -> DerivedResearch:
    """Run the section locator and field extractor for every section in the layout.

    Sections are independent spans of the same immutable text, so the order
    they are processed in does not matter.
    """
    text = clean_research_text(raw_text)
    items: List[StructuredItem] = []
    for section_name, kind in layout.item_sections.items():
        span = locate_section(text, section_name)
        items.extend(extract_fields(span, kind=kind, section_name=section_name))

    summary_span = locate_section(text, layout.summary_section)
    research_summary = drop_section_title(summary_span, layout.summary_section).strip()

    return DerivedResearch(
        research_summary=research_summary,
        items=items,
        sources=extract_sources(text, items, layout.sources_section),
    )


def _validate_request(company_id: Any, assessment_points: Any) -> List[str]:
    if not company_id or not str(company_id).strip():
        raise ResearchValidationError("company_id is required")
    if not assessment_points or isinstance(assessment_points, str):
        raise ResearchValidationError("assessment_points must be a non-empty list")
    points = [p.strip() for p in assessment_points if isinstance(p, str) and p.strip()]
    if not points:
        raise ResearchValidationError("assessment_points must contain at least one non-empty point")
    return points


async def _get_company(db: AsyncSession, company_id: Any) -> Company:
    try:
        company_uuid = company_id if isinstance(company_id, uuid.UUID) else uuid.UUID(str(company_id).strip())
    except ValueError as e:
        raise CompanyNotFoundError(f"Company {company_id} not found", cause=e) from e
    company = await db.get(Company, company_uuid)
    if company is None:
        raise CompanyNotFoundError(f"Company {company_id} not found")
    return company


async def request_research(
    db: AsyncSession,
    company_id: Any,
    assessment_points: Sequence[str],
    *,
    provider: Optional[ResearchProvider] = None,
    timeout: Optional[float] = None,
    mode: ResearchMode = MARKET_RESEARCH,
) -> ResearchRecord:
    """Create a research record, query the provider once and persist the result.

    Provider failures, timeouts and malformed responses end in a failed record
    with an error_message; they are never raised to the caller. Each call
    creates a new record, so a retry never mutates a finished one.
    """
    points = _validate_request(company_id, assessment_points)
    company = await _get_company(db, company_id)

    settings = get_settings()
    if settings.serialize_research_per_company:
        async with _company_locks[str(company.id)]:
            return await _run_research(db, company, points, provider, timeout, mode)
    return await _run_research(db, company, points, provider, timeout, mode)


async def request_investor_research(
    db: AsyncSession,
    company_id: Any,
    assessment_points: Sequence[str],
    *,
    provider: Optional[ResearchProvider] = None,
    timeout: Optional[float] = None,
) -> ResearchRecord:
    """Investor-partner research: same lifecycle as request_research, investor sections."""
    return await request_research(
        db, company_id, assessment_points, provider=provider, timeout=timeout, mode=INVESTOR_RESEARCH
    )


async def _finish(
    db: AsyncSession,
    record: ResearchRecord,
    layout: SectionLayout,
    *,
    raw_text: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    # the stale sweep may have closed the record while the provider was running
    await db.refresh(record)
    if record.is_terminal:
        logger.warning(f"Research {record.id} already {record.status}; discarding late result")
        return

    if error is not None:
        record.mark_failed(error)
    else:
        derived = derive_research(raw_text, layout)
        record.mark_completed(
            raw_text,
            sources=derived.sources,
            structured_items=[item.to_dict() for item in derived.items],
            research_summary=derived.research_summary,
        )
    await db.commit()
    await db.refresh(record)


async def _run_research(
    db: AsyncSession,
    company: Company,
    points: List[str],
    provider: Optional[ResearchProvider],
    timeout: Optional[float],
    mode: ResearchMode,
) -> ResearchRecord:
    settings = get_settings()
    provider = provider or mode.default_provider()
    timeout = timeout if timeout is not None else settings.research_timeout_seconds

    prompt = mode.build_prompt(company, points)
    record = ResearchRecord(
        company_id=company.id,
        research_type=mode.research_type,
        assessment_points=points,
        prompt=prompt,
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    logger.info(f"Research {record.id} ({mode.research_type}) started for {company.name}")

    raw_text: Optional[str] = None
    error: Optional[str] = None
    try:
        raw_text = await asyncio.wait_for(provider(prompt), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Research {record.id} timed out after {timeout:g}s")
        error = f"Research timed out after {timeout:g} seconds"
    except asyncio.CancelledError:
        logger.warning(f"Research {record.id} cancelled")
        await _finish(db, record, mode.layout, error="Research request was cancelled")
        raise
    except ProviderError as e:
        logger.error(f"Research {record.id} failed: {e}")
        error = str(e)
    except Exception as e:
        logger.exception(f"Research {record.id} failed unexpectedly: {e}")
        error = f"Research failed unexpectedly: {e}"

    await _finish(db, record, mode.layout, raw_text=raw_text, error=error)
    logger.info(f"Research {record.id} finished with status {record.status}")
    return record
