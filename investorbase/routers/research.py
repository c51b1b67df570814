"""Market Research API: AI-generated research on a company, parsed into sections."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from investorbase.config import get_settings
from investorbase.database import get_db
from investorbase.dependencies import get_investor_research_provider, get_research_provider, limiter
from investorbase.models.research import KIND_NEWS, RESEARCH_TYPES, ResearchRecord
from investorbase.schemas.markup import MarkupNode, RenderRequest
from investorbase.schemas.research import (
    ResearchCreate,
    ResearchResponse,
    SectionResponse,
    StructuredItemOut,
)
from investorbase.services.company_research import (
    SECTION_KINDS,
    ResearchProvider,
    request_investor_research,
    request_research,
)
from investorbase.services.field_extractor import extract_fields
from investorbase.services.markup_renderer import render
from investorbase.services.section_locator import locate_section

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_record(db: AsyncSession, research_id: UUID) -> ResearchRecord:
    research = await db.get(ResearchRecord, research_id)
    if research is None:
        raise HTTPException(status_code=404, detail="Research not found")
    return research


@router.post("", response_model=ResearchResponse, status_code=201)
@limiter.limit(lambda: get_settings().research_rate_limit)
async def start_research(
    request: Request,
    payload: ResearchCreate,
    db: AsyncSession = Depends(get_db),
    provider: ResearchProvider = Depends(get_research_provider),
) -> ResearchResponse:
    """
    Run market research for a company and return the finished record.

    Provider failures do not raise: the record comes back with status=failed
    and an error_message, and a retry is simply another POST.

    **Request:** ResearchCreate (company_id, assessment_points)
    **Response:** ResearchResponse with status completed or failed
    **Errors:** 422 (invalid request), 404 (company not found), 429 (rate limited)
    """
    research = await request_research(
        db, payload.company_id, payload.assessment_points, provider=provider
    )
    return ResearchResponse.model_validate(research)


@router.post("/investor", response_model=ResearchResponse, status_code=201)
@limiter.limit(lambda: get_settings().research_rate_limit)
async def start_investor_research(
    request: Request,
    payload: ResearchCreate,
    db: AsyncSession = Depends(get_db),
    provider: ResearchProvider = Depends(get_investor_research_provider),
) -> ResearchResponse:
    """
    Run investor-partner research for a company and return the finished record.

    The prompt carries the company stage (Seed when unset) and asks for numbered
    sections; the summary comes from MARKET OVERVIEW and the insights from
    INVESTOR INSIGHTS. Failures behave as for market research.

    **Request:** ResearchCreate (company_id, assessment_points)
    **Response:** ResearchResponse with research_type=investor
    **Errors:** 422 (invalid request), 404 (company not found), 429 (rate limited)
    """
    research = await request_investor_research(
        db, payload.company_id, payload.assessment_points, provider=provider
    )
    return ResearchResponse.model_validate(research)


@router.post("/render", response_model=MarkupNode, status_code=200)
async def render_text(payload: RenderRequest) -> MarkupNode:
    """
    Render arbitrary research text with a section theme.

    **Request:** RenderRequest (text, theme)
    **Response:** MarkupNode fragment
    """
    return render(payload.text, payload.theme)


def _company_research_query(company_id: UUID, research_type: Optional[str]):
    query = select(ResearchRecord).where(ResearchRecord.company_id == company_id)
    if research_type:
        query = query.where(ResearchRecord.research_type == research_type)
    return query.order_by(ResearchRecord.requested_at.desc())


def _check_research_type(research_type: Optional[str]) -> None:
    if research_type and research_type not in RESEARCH_TYPES:
        raise HTTPException(
            status_code=422, detail=f"research_type must be one of: {', '.join(RESEARCH_TYPES)}"
        )


@router.get("", response_model=list[ResearchResponse], status_code=200)
async def list_research(
    company_id: UUID = Query(...),
    research_type: Optional[str] = Query(None, max_length=20),
    db: AsyncSession = Depends(get_db),
) -> list[ResearchResponse]:
    """
    List research records for a company, newest first.

    **Query params:** company_id, research_type (market | investor, optional)
    **Response:** list[ResearchResponse]
    """
    _check_research_type(research_type)
    result = await db.execute(_company_research_query(company_id, research_type))
    return [ResearchResponse.model_validate(r) for r in result.scalars().all()]


@router.get("/latest", response_model=ResearchResponse, status_code=200)
async def latest_research(
    company_id: UUID = Query(...),
    research_type: Optional[str] = Query(None, max_length=20),
    db: AsyncSession = Depends(get_db),
) -> ResearchResponse:
    """
    Most recent research record for a company, optionally of one type.

    **Errors:** 404 (no research yet), 422 (unknown research_type)
    """
    _check_research_type(research_type)
    result = await db.execute(_company_research_query(company_id, research_type).limit(1))
    research = result.scalar_one_or_none()
    if research is None:
        raise HTTPException(status_code=404, detail="No research found for this company")
    return ResearchResponse.model_validate(research)


@router.get("/{research_id}", response_model=ResearchResponse, status_code=200)
async def get_research(
    research_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ResearchResponse:
    """
    Get a single research record by ID.

    **Errors:** 404 (not found)
    """
    return ResearchResponse.model_validate(await _get_record(db, research_id))


@router.get("/{research_id}/sections/{section_name}", response_model=SectionResponse, status_code=200)
async def get_section(
    research_id: UUID,
    section_name: str,
    theme: Optional[str] = Query(None, max_length=100),
    db: AsyncSession = Depends(get_db),
) -> SectionResponse:
    """
    Locate a section in the stored research text, extract its items and render it.

    A section that is not present returns an empty span, no items and a
    "No data available" fragment, not an error.

    **Query params:** theme (defaults to the section name)
    **Errors:** 404 (research not found)
    """
    research = await _get_record(db, research_id)
    span = locate_section(research.raw_text, section_name)
    kind = SECTION_KINDS.get(section_name.strip().upper(), KIND_NEWS)
    items = extract_fields(span, kind=kind, section_name=section_name)
    return SectionResponse(
        research_id=research.id,
        name=section_name,
        raw_span=span,
        items=[StructuredItemOut(**item.to_dict()) for item in items],
        markup=render(span, theme or section_name),
    )


@router.delete("/{research_id}", status_code=200)
async def delete_research(
    research_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """
    Delete a research record.

    **Response:** {status: "deleted"}
    **Errors:** 404 (not found)
    """
    research = await _get_record(db, research_id)
    await db.delete(research)
    await db.commit()
    logger.info(f"Research {research_id} deleted")
    return {"status": "deleted"}
