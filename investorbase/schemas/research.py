from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .markup import MarkupNode


class ResearchCreate(BaseModel):
    """Request body for starting market research on a company."""

    company_id: str = Field(..., max_length=64)
    assessment_points: List[str] = Field(..., max_length=50)


class SourceOut(BaseModel):
    name: str
    url: str


class StructuredItemOut(BaseModel):
    kind: str
    headline: str
    content: str = ""
    source: str = ""
    url: str = ""


class ResearchResponse(BaseModel):
    """Response model for a research record."""

    id: UUID
    company_id: UUID
    research_type: str
    status: str
    requested_at: datetime
    completed_at: Optional[datetime] = None
    assessment_points: Optional[List[str]] = None
    raw_text: Optional[str] = None
    research_summary: Optional[str] = None
    sources: List[SourceOut] = Field(default_factory=list)
    news_highlights: List[StructuredItemOut] = Field(default_factory=list)
    market_insights: List[StructuredItemOut] = Field(default_factory=list)
    error_message: Optional[str] = None

    class Config:
        from_attributes = True


class SectionResponse(BaseModel):
    """A section located in a stored research text, with its items and markup."""

    research_id: UUID
    name: str
    raw_span: str
    items: List[StructuredItemOut]
    markup: MarkupNode
