"""Pull structured items (headline, source, content, url) out of a research section.

Strategies are tried strict to loose; the first one producing at least one
item wins:

1. labeled_heading    ### Headline / **Source:** / **Summary:** / **URL:**
2. numbered_bold      1. **Headline** followed by the same labeled lines
3. paragraph_fallback blank-line separated prose, headline from the first sentence
"""
import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, NamedTuple, Optional

from investorbase.models.research import KIND_NEWS
from investorbase.services.section_locator import HEADING_RE, find_headings, normalize_heading_title
from investorbase.utils.text_cleaning import clean_research_text, find_first_url

logger = logging.getLogger(__name__)

HEADLINE_MAX_CHARS = 60
MIN_PARAGRAPH_CHARS = 20

SOURCE_LABELS = {"source", "sources"}
URL_LABELS = {"url", "link"}
CONTENT_LABELS = {"summary", "content"}
LABEL_NAMES = SOURCE_LABELS | URL_LABELS | CONTENT_LABELS

LABEL_RE = re.compile(
    r"^[ \t]*(?:[-*+][ \t]+)?(?:\*\*|__)?(?P<label>sources?|summary|content|url|link)"
    r"(?:\*\*|__)?[ \t]*:[ \t]*(?:\*\*|__)?[ \t]*",
    re.IGNORECASE | re.MULTILINE,
)
INLINE_SOURCE_RE = re.compile(r"\(?\bsources?\s*:\s*([^\n)]*)\)?", re.IGNORECASE)
NUMBERED_BOLD_RE = re.compile(
    r"^[ \t]*\d+[.)][ \t]+(?:\*\*|__)(?P<title>.+?)(?:\*\*|__)[ \t]*(?P<rest>.*)$",
    re.MULTILINE,
)
MARKDOWN_LINK_RE = re.compile(r"\[([^\]]*)\]\(\s*<?(https?://[^\s)>]+)>?\s*\)")
PARAGRAPH_SPLIT_RE = re.compile(r"\n[ \t]*\n")
LEADING_SENTENCE_RE = re.compile(r"(.+?[.!?])(?=\s|$)")
LIST_PREFIX_RE = re.compile(r"^(?:[-*+]|\d+[.)])\s+")
HEADING_PREFIX_RE = re.compile(r"^[ \t]*#+[ \t]+", re.MULTILINE)


@dataclass(frozen=True)
class StructuredItem:
    headline: str
    content: str = ""
    source: str = ""
    url: str = ""
    kind: str = KIND_NEWS

    def to_dict(self) -> dict:
        return asdict(self)


class ExtractionStrategy(NamedTuple):
    name: str
    extract: Callable[[str, str], Optional[list[StructuredItem]]]


def _collapse(text: str) -> str:
    text = text.replace("**", "").replace("__", "")
    text = " ".join(text.split())
    text = re.sub(r"\(\s*\)|\[\s*\]|<\s*>", "", text)
    text = re.sub(r"\s+([.,;:!?])", r"\1", text)
    return text.strip().lstrip(":-–— ").strip()


def _clean_headline(title: str) -> tuple[str, str]:
    """Return (headline, url) where url comes from a markdown link in the title."""
    url = ""
    link = MARKDOWN_LINK_RE.search(title)
    if link:
        url = link.group(2)
        title = MARKDOWN_LINK_RE.sub(r"\1", title)
    title = title.replace("**", "").replace("__", "").strip()
    title = LIST_PREFIX_RE.sub("", title)
    title = " ".join(title.rstrip("#").split())
    return title.rstrip(":").strip(), url


def _excise_url(text: str, url: str) -> str:
    text = MARKDOWN_LINK_RE.sub(lambda m: m.group(1) if m.group(2).rstrip(".,;:!?*") == url else m.group(0), text)
    return text.replace(url, "")


def _split_fields(block: str) -> tuple[str, str, str]:
    """Split a block into (source, url, content).

    Labeled values run until the next label; a labeled URL beats a bare one.
    Whatever is left once source and url are cut out is the content.
    """
    labels = list(LABEL_RE.finditer(block))
    content_parts = [block[: labels[0].start()] if labels else block]
    source = ""
    url = ""

    for idx, match in enumerate(labels):
        end = labels[idx + 1].start() if idx + 1 < len(labels) else len(block)
        value = block[match.end():end].strip()
        label = match.group("label").lower()
        if label in SOURCE_LABELS:
            first_line, _, rest = value.partition("\n")
            if not source:
                source = first_line.strip()
            content_parts.append(rest)
        elif label in URL_LABELS:
            if not url:
                url = find_first_url(value)
        else:
            content_parts.append(value)

    content = "\n".join(part for part in content_parts if part and part.strip())

    if not source:
        inline = INLINE_SOURCE_RE.search(content)
        if inline and inline.group(1).strip():
            source = inline.group(1).strip()
            content = content[: inline.start()] + content[inline.end():]

    source_url = find_first_url(source)
    if source_url:
        source = _collapse(_excise_url(source, source_url))
        url = url or source_url
    else:
        source = _collapse(source)

    if not url:
        url = find_first_url(content)
    if url:
        content = _excise_url(content, url)

    return source, url, _collapse(content)


def _build_item(title: str, block: str, kind: str) -> Optional[StructuredItem]:
    headline, link_url = _clean_headline(title)
    if not headline:
        return None
    source, url, content = _split_fields(block)
    return StructuredItem(
        headline=headline, content=content, source=source, url=url or link_url, kind=kind
    )


def _name_prefix_re(section_name: str) -> re.Pattern:
    # "LATEST NEWS:", "**1. Latest News** -", ... followed by the rest of the line
    return re.compile(
        r"^[ \t]*(?:\*\*|__)?[ \t]*(?:\d+[.)][ \t]*)?" + re.escape(section_name)
        + r"(?![a-z0-9])[ \t]*(?:\*\*|__)?[ \t]*[:\-–—]?[ \t]*(?:\*\*|__)?[ \t]*",
        re.IGNORECASE,
    )


def drop_section_title(text: str, section_name: Optional[str] = None) -> str:
    """Remove the section's own title so it is not mistaken for an item.

    A heading line naming the section is dropped. A plain line that opens with
    the name loses the name and keeps whatever follows it on the line.
    """
    text = text.strip()
    first_line, _, rest = text.partition("\n")
    heading = HEADING_RE.match(first_line)
    name = (section_name or "").strip()
    if name:
        if heading and normalize_heading_title(heading.group(2)).startswith(name.lower()):
            return rest
        prefix = None if heading else _name_prefix_re(name).match(first_line)
        if prefix:
            remainder = first_line[prefix.end():].strip()
            return f"{remainder}\n{rest}" if remainder else rest
    # an unnamed title only counts as one when deeper headings sit under it
    if heading and any(h.level > len(heading.group(1)) for h in find_headings(rest)):
        return rest
    return text


def _labeled_heading_items(text: str, kind: str) -> Optional[list[StructuredItem]]:
    headings = find_headings(text)
    if not headings:
        return None
    items = []
    for idx, heading in enumerate(headings):
        end = headings[idx + 1].start if idx + 1 < len(headings) else len(text)
        item = _build_item(heading.title, text[heading.end:end], kind)
        if item:
            items.append(item)
    return items


def _numbered_bold_items(text: str, kind: str) -> Optional[list[StructuredItem]]:
    markers = [
        m for m in NUMBERED_BOLD_RE.finditer(text)
        if m.group("title").strip().rstrip(":").strip().lower() not in LABEL_NAMES
    ]
    if not markers:
        return None
    items = []
    for idx, marker in enumerate(markers):
        end = markers[idx + 1].start() if idx + 1 < len(markers) else len(text)
        block = marker.group("rest") + "\n" + text[marker.end():end]
        item = _build_item(marker.group("title"), block, kind)
        if item:
            items.append(item)
    return items


def _truncate_headline(sentence: str) -> tuple[str, bool]:
    if len(sentence) <= HEADLINE_MAX_CHARS:
        return sentence, False
    cut = sentence[:HEADLINE_MAX_CHARS]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,;:-") + "...", True


def _paragraph_items(text: str, kind: str) -> Optional[list[StructuredItem]]:
    items = []
    for paragraph in PARAGRAPH_SPLIT_RE.split(text):
        paragraph = HEADING_PREFIX_RE.sub("", paragraph).strip()
        if len(paragraph) < MIN_PARAGRAPH_CHARS:
            continue
        source, url, remainder = _split_fields(paragraph)
        remainder = LIST_PREFIX_RE.sub("", remainder)
        if not remainder:
            continue
        match = LEADING_SENTENCE_RE.match(remainder)
        sentence = match.group(1) if match else remainder
        headline, truncated = _truncate_headline(sentence.strip())
        # An untruncated headline is cut from the content like any other field
        content = remainder if truncated else remainder[len(sentence):].strip()
        items.append(
            StructuredItem(headline=headline, content=content, source=source, url=url, kind=kind)
        )
    return items


EXTRACTION_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    ExtractionStrategy("labeled_heading", _labeled_heading_items),
    ExtractionStrategy("numbered_bold", _numbered_bold_items),
    ExtractionStrategy("paragraph_fallback", _paragraph_items),
)


def extract_fields(
    section_text: Optional[str],
    kind: str = KIND_NEWS,
    section_name: Optional[str] = None,
    strategies: tuple[ExtractionStrategy, ...] = EXTRACTION_STRATEGIES,
) -> list[StructuredItem]:
    """Extract structured items from a located section. Never raises.

    An empty list means the section held nothing parseable, which callers
    render as "no data" rather than treat as an error.
    """
    if not section_text or not isinstance(section_text, str):
        return []
    text = drop_section_title(clean_research_text(section_text), section_name)
    if not text.strip():
        return []

    for strategy in strategies:
        items = [item for item in (strategy.extract(text, kind) or []) if item.headline]
        if items:
            logger.debug("Extracted %d %s items with %s", len(items), kind, strategy.name)
            return items
    return []
