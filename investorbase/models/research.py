from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..exceptions import ResearchStateError
from .base import Base, IDMixin, TimestampMixin
from .types import JSONObjectList, StringArray

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})

KIND_NEWS = "news"
KIND_INSIGHT = "insight"

RESEARCH_MARKET = "market"
RESEARCH_INVESTOR = "investor"
RESEARCH_TYPES = (RESEARCH_MARKET, RESEARCH_INVESTOR)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResearchRecord(Base, IDMixin, TimestampMixin):
    """Outcome of one AI-backed research request (market or investor) for a company.

    Only the orchestrator mutates a record, and only through mark_completed /
    mark_failed. Both refuse to touch a record that already left pending.
    """

    __tablename__ = "market_research"
    __table_args__ = (
        Index("ix_market_research_status_requested_at", "status", "requested_at"),
        Index("ix_market_research_company_id_research_type", "company_id", "research_type"),
    )

    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    research_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RESEARCH_MARKET, server_default=RESEARCH_MARKET
    )
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=STATUS_PENDING, server_default=STATUS_PENDING
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    assessment_points: Mapped[Optional[List[str]]] = mapped_column(StringArray)
    prompt: Mapped[Optional[str]] = mapped_column(Text)
    raw_text: Mapped[Optional[str]] = mapped_column(Text)
    research_summary: Mapped[Optional[str]] = mapped_column(Text)
    sources: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSONObjectList, default=list)
    structured_items: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSONObjectList, default=list)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def news_highlights(self) -> List[Dict[str, Any]]:
        return [i for i in (self.structured_items or []) if i.get("kind") == KIND_NEWS]

    @property
    def market_insights(self) -> List[Dict[str, Any]]:
        return [i for i in (self.structured_items or []) if i.get("kind") == KIND_INSIGHT]

    def _ensure_pending(self, target: str) -> None:
        if self.is_terminal:
            raise ResearchStateError(
                f"Research {self.id} is already {self.status}; cannot mark it {target}"
            )

    def mark_completed(
        self,
        raw_text: str,
        *,
        sources: List[Dict[str, Any]],
        structured_items: List[Dict[str, Any]],
        research_summary: Optional[str] = None,
    ) -> None:
        self._ensure_pending(STATUS_COMPLETED)
        if not raw_text:
            raise ResearchStateError("A completed research record needs provider text")
        self.raw_text = raw_text
        self.sources = sources
        self.structured_items = structured_items
        self.research_summary = research_summary or None
        self.error_message = None
        self.status = STATUS_COMPLETED
        self.completed_at = _utcnow()

    def mark_failed(self, error_message: str) -> None:
        self._ensure_pending(STATUS_FAILED)
        self.raw_text = None
        self.sources = []
        self.structured_items = []
        self.research_summary = None
        self.completed_at = None
        self.error_message = error_message or "Research failed, please try again"
        self.status = STATUS_FAILED
