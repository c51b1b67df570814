from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .services.ai_service import call_perplexity, investor_research_provider
from .services.company_research import ResearchProvider


limiter = Limiter(key_func=get_remote_address, enabled=get_settings().rate_limit_enabled)


def get_research_provider() -> ResearchProvider:
    """The provider used by POST /research. Overridden in tests."""
    return call_perplexity


def get_investor_research_provider() -> ResearchProvider:
    """The provider used by POST /research/investor. Overridden in tests."""
    return investor_research_provider()
