import functools
import json
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx

from investorbase.config import get_settings
from investorbase.exceptions import ProviderShapeError, ProviderTransportError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a venture capital research analyst providing factual, in-depth market research "
    "with specific data points and proper citations. Use only recent data and cite a URL for "
    "every source."
)


def build_research_prompt(company_name: str, assessment_points: Sequence[str]) -> str:
    assessment_text = "\n\n".join(p.strip() for p in assessment_points if p and p.strip())
    company_name = company_name or "the company"

    return f"""You are a top-tier venture capital (VC) analyst providing comprehensive research about {company_name}. Based on the following assessment of the company, conduct deep market research and provide detailed, actionable insights in a structured format.

COMPANY ASSESSMENT:
{assessment_text}

Organize your response into these sections, each with a "##" Markdown header:

## LATEST NEWS
Provide 3-5 recent, relevant news items about this company's industry or market. Format each item as:
### Headline
**Source:** Publication name, date
**Summary:** 2-3 sentences with specific numbers and facts relevant to {company_name}'s business
**URL:** link to the original article

## MARKET INSIGHTS
Provide 3-5 strategic market insights covering market size and growth projections, the competitive landscape relevant to {company_name}, and emerging trends that could affect its business model. Format each insight as:
### Insight title
**Source:** Research firm or publication
**Summary:** The insight, with specific percentages, figures and data points
**URL:** link to the source

## RESEARCH SUMMARY
A 3-paragraph executive summary that synthesizes the findings, highlights the key risks and opportunities for {company_name}, and gives specific actionable advice.

## SOURCES
One source per line as "- Name: URL".

Ensure all data is accurate, recent and from reputable sources. Include URLs for ALL sources cited."""


INVESTOR_SYSTEM_PROMPT = (
    "You are a specialized investment analyst with expertise in financial markets and "
    "industry trends. Cite a URL for every source."
)


def build_investor_research_prompt(
    company_name: str, company_stage: str, assessment_points: Sequence[str]
) -> str:
    assessment_text = "\n\n".join(p.strip() for p in assessment_points if p and p.strip())
    company_name = company_name or "the company"
    company_stage = company_stage or "Seed"

    return f"""You are a top-tier venture capital (VC) Investor and Partner providing comprehensive research about {company_name} - {company_stage}. Based on the following assessment of the company, conduct deep market research like a professional investor, and provide investor-focused insights:

Assessment Points:
{assessment_text}

Organize your response into these numbered sections, each with a "##" Markdown header:

## 1. LATEST NEWS
3-5 recent news items relevant to {company_name} or its market. Format each item as:
### Headline
**Source:** Publication name, date
**Summary:** 2-3 sentences with specific facts
**URL:** link to the original article

## 2. MARKET OVERVIEW
Two or three paragraphs on market size, growth and where a {company_stage} company like {company_name} fits.

## 3. FINANCIAL & TRACTION
Benchmarks for revenue, growth and fundraising at the {company_stage} stage in this market.

## 4. INVESTOR INSIGHTS
3-5 insights an investment committee would weigh, each formatted like the news items.

## 5. KEY INVESTOR CONCERNS
The main risks and open diligence questions, one per "- " bullet.

## 6. SOURCES
One source per line as "- Name: URL".

Please only respond with the text that will be shown on the UI screen to real-life investors.

Be specific, precise, and factual. Focus on providing high-quality, actionable intelligence for investment decision-making."""


def _extract_message_content(data: Any) -> str:
    """Return choices[0].message.content or raise ProviderShapeError."""
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise ProviderShapeError("Invalid response format from Perplexity API", cause=e) from e
    if not isinstance(content, str) or not content.strip():
        raise ProviderShapeError("Perplexity API returned no research text")
    return content


async def call_perplexity(
    prompt: str,
    *,
    model: Optional[str] = None,
    system_prompt: str = SYSTEM_PROMPT,
    max_tokens: Optional[int] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Send one chat-completion request to Perplexity and return the message text.

    model and max_tokens default to the market research settings. No retries:
    every failure surfaces as ProviderTransportError or ProviderShapeError for
    the caller to record.
    """
    settings = get_settings()
    if not settings.perplexity_api_key:
        raise ProviderTransportError("PERPLEXITY_API_KEY is not configured")

    payload = {
        "model": model or settings.perplexity_model,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ],
        "temperature": settings.research_temperature,
        "top_p": 0.9,
        "max_tokens": max_tokens or settings.research_max_tokens,
        "search_recency_filter": settings.research_recency_filter,
        "search_domain_filter": settings.research_domain_list,
        "frequency_penalty": 1,
        "presence_penalty": 0,
        "return_images": False,
        "return_related_questions": False,
    }
    headers = {
        "Authorization": f"Bearer {settings.perplexity_api_key}",
        "Content-Type": "application/json",
    }
    timeout = timeout if timeout is not None else settings.research_timeout_seconds

    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(settings.perplexity_api_url, json=payload, headers=headers)
            resp.raise_for_status()
    except httpx.TimeoutException as e:
        logger.warning("Perplexity request timed out after %gs", timeout)
        raise ProviderTransportError(f"Research timed out after {timeout:g} seconds", cause=e) from e
    except httpx.HTTPStatusError as e:
        body = e.response.text[:500]
        logger.error("Perplexity API error (%s): %s", e.response.status_code, body)
        raise ProviderTransportError(
            f"Perplexity API error: {e.response.status_code} - {body}", cause=e
        ) from e
    except httpx.HTTPError as e:
        logger.error("Perplexity request failed: %s", e)
        raise ProviderTransportError(f"Could not reach Perplexity API: {e}", cause=e) from e

    try:
        data = resp.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise ProviderShapeError("Perplexity API returned a non-JSON response", cause=e) from e

    content = _extract_message_content(data)
    usage = data.get("usage") or {}
    logger.info(
        "Perplexity call: model=%s duration_ms=%d prompt_tokens=%s completion_tokens=%s",
        payload["model"],
        int((time.monotonic() - start) * 1000),
        usage.get("prompt_tokens"),
        usage.get("completion_tokens"),
    )
    return content


def investor_research_provider() -> Callable[[str], Awaitable[str]]:
    """call_perplexity bound to the investor research model, system prompt and token limit."""
    settings = get_settings()
    return functools.partial(
        call_perplexity,
        model=settings.investor_research_model,
        system_prompt=INVESTOR_SYSTEM_PROMPT,
        max_tokens=settings.investor_research_max_tokens,
    )
