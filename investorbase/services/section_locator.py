"""Locate a named section inside free-form research text."""
import logging
import re
from typing import NamedTuple, Optional

from investorbase.utils.text_cleaning import clean_research_text

logger = logging.getLogger(__name__)

HEADING_RE = re.compile(r"^[ \t]*(#+)[ \t]+(.*?)[ \t]*$", re.MULTILINE)
ORDINAL_PREFIX_RE = re.compile(r"^\d+[.)]\s*")
EMPHASIS_RE = re.compile(r"\*\*|__")


class Heading(NamedTuple):
    start: int
    end: int
    level: int
    title: str


def normalize_heading_title(title: str) -> str:
    """'**1. Latest News (2024)**' -> 'latest news (2024)'."""
    title = EMPHASIS_RE.sub("", title).strip()
    title = ORDINAL_PREFIX_RE.sub("", title)
    return title.rstrip("#").strip().lower()


def find_headings(text: str) -> list[Heading]:
    return [
        Heading(m.start(), m.end(), len(m.group(1)), m.group(2))
        for m in HEADING_RE.finditer(text)
    ]


def _locate_by_heading(text: str, section_name: str) -> str:
    target = section_name.lower()
    headings = find_headings(text)
    for idx, heading in enumerate(headings):
        if not normalize_heading_title(heading.title).startswith(target):
            continue
        end = len(text)
        for following in headings[idx + 1:]:
            if following.level <= heading.level:
                end = following.start
                break
        return text[heading.start:end].strip()
    return ""


def _locate_by_containment(text: str, section_name: str) -> str:
    match = re.search(re.escape(section_name), text, re.IGNORECASE)
    if not match:
        return ""
    next_heading = HEADING_RE.search(text, match.end())
    end = next_heading.start() if next_heading else len(text)
    return text[match.start():end].strip()


def locate_section(raw_text: Optional[str], section_name: Optional[str]) -> str:
    """Return the span of raw_text belonging to section_name, or "" when absent.

    Reasoning blocks and reference markers are removed first. Then a heading
    match is tried (the section runs until the next heading of the same or a
    higher level; the first matching heading wins), then a loose
    case-insensitive match anywhere in the text running to the next heading
    marker.
    """
    if not raw_text or not isinstance(raw_text, str):
        return ""
    if not section_name or not isinstance(section_name, str) or not section_name.strip():
        return ""
    name = section_name.strip()
    text = clean_research_text(raw_text)

    span = _locate_by_heading(text, name)
    if span:
        return span

    span = _locate_by_containment(text, name)
    if span:
        logger.debug("Section '%s' located by loose match", name)
    return span
