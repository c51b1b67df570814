"""Convert research markdown into a themed MarkupNode tree."""
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from investorbase.schemas.markup import MarkupNode
from investorbase.services.section_locator import normalize_heading_title
from investorbase.utils.text_cleaning import clean_research_text

NO_DATA_TEXT = "No data available"
LINK_TARGET = "_blank"
LINK_REL = "noopener noreferrer"

HEADING_LINE_RE = re.compile(r"^(#+)\s+(.*?)\s*#*$")
INLINE_RE = re.compile(
    r"\[(?P<label>[^\]]+)\]\((?P<href>[^)\s]+)\)"
    r"|\*\*(?P<strong>.+?)\*\*"
    r"|\*(?P<em>[^*\s](?:[^*]*?[^*\s])?)\*"
)

# level -> (size, weight)
HEADING_STYLES = {
    1: ("2xl", "bold"),
    2: ("xl", "bold"),
    3: ("lg", "semibold"),
    4: ("base", "semibold"),
    5: ("sm", "medium"),
}


@dataclass(frozen=True)
class SectionTheme:
    key: str
    label: str
    tone: str
    icon: str


NEUTRAL_THEME = SectionTheme(key="default", label="", tone="slate", icon="file-text")

DEFAULT_THEMES: dict[str, SectionTheme] = {
    theme.key: theme
    for theme in (
        SectionTheme("latest_news", "Latest News", "green", "newspaper"),
        SectionTheme("market_insights", "Market Insights", "amber", "trending-up"),
        SectionTheme("research_summary", "Research Summary", "blue", "book-open"),
        SectionTheme("sources", "Sources", "sky", "globe"),
        SectionTheme("market_overview", "Market Overview", "blue", "globe-2"),
        SectionTheme("investor_insights", "Investor Insights", "amber", "lightbulb"),
        SectionTheme("market_opportunity", "Market Opportunity", "emerald", "bar-chart"),
        SectionTheme("key_investor_concerns", "Key Investor Concerns", "rose", "alert-triangle"),
        SectionTheme("financial_traction", "Financial & Traction", "violet", "dollar-sign"),
        SectionTheme("competitive_landscape", "Competitive Landscape", "orange", "swords"),
        SectionTheme("team", "Team", "indigo", "users"),
    )
}


def _theme_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


def resolve_theme(name: Optional[str], themes: Mapping[str, SectionTheme] = DEFAULT_THEMES) -> SectionTheme:
    """Find a theme by key or label; unknown names get the neutral theme under their own label."""
    name = (name or "").strip()
    key = _theme_key(name)
    for theme in themes.values():
        if key in (theme.key, _theme_key(theme.label)):
            return theme
    return SectionTheme(NEUTRAL_THEME.key, name or "Research", NEUTRAL_THEME.tone, NEUTRAL_THEME.icon)


def no_data_fragment() -> MarkupNode:
    return MarkupNode(type="fragment", children=[MarkupNode(type="notice", text=NO_DATA_TEXT)])


def render_inline(text: str) -> list[MarkupNode]:
    nodes: list[MarkupNode] = []
    pos = 0
    for match in INLINE_RE.finditer(text):
        if match.start() > pos:
            nodes.append(MarkupNode(type="text", text=text[pos:match.start()]))
        if match.group("label") is not None:
            href = match.group("href")
            if href.startswith(("http://", "https://")):
                nodes.append(
                    MarkupNode(
                        type="link",
                        href=href,
                        target=LINK_TARGET,
                        rel=LINK_REL,
                        children=render_inline(match.group("label")),
                    )
                )
            else:
                nodes.extend(render_inline(match.group("label")))
        elif match.group("strong") is not None:
            nodes.append(MarkupNode(type="strong", children=render_inline(match.group("strong"))))
        else:
            nodes.append(MarkupNode(type="emphasis", children=[MarkupNode(type="text", text=match.group("em"))]))
        pos = match.end()
    if pos < len(text):
        nodes.append(MarkupNode(type="text", text=text[pos:]))
    return nodes


def _heading_node(level: int, title: str, theme: SectionTheme) -> MarkupNode:
    level = min(level, 5)
    size, weight = HEADING_STYLES[level]
    return MarkupNode(
        type="heading", level=level, size=size, weight=weight, tone=theme.tone,
        children=render_inline(title),
    )


def render_blocks(body: str, theme: SectionTheme) -> list[MarkupNode]:
    blocks: list[MarkupNode] = []
    paragraph: list[str] = []
    list_items: list[MarkupNode] = []

    def flush_paragraph() -> None:
        if paragraph:
            blocks.append(MarkupNode(type="paragraph", children=render_inline(" ".join(paragraph))))
            paragraph.clear()

    def close_list() -> None:
        if list_items:
            blocks.append(MarkupNode(type="list", children=list(list_items)))
            list_items.clear()

    for raw_line in body.split("\n"):
        line = raw_line.strip()
        if not line:
            flush_paragraph()
            close_list()
            continue
        heading = HEADING_LINE_RE.match(line)
        if heading:
            flush_paragraph()
            close_list()
            blocks.append(_heading_node(len(heading.group(1)), heading.group(2), theme))
            continue
        if line.startswith("- "):
            flush_paragraph()
            list_items.append(MarkupNode(type="list_item", children=render_inline(line[2:].strip())))
            continue
        close_list()
        paragraph.append(line)

    flush_paragraph()
    close_list()
    return blocks


def _title_key(line: str) -> str:
    return normalize_heading_title(line).rstrip(":").strip()


def _strip_own_heading(text: str, theme: SectionTheme, requested: str) -> str:
    """Drop a leading heading line, or a bare title line equal to the theme label or name."""
    first_line, _, rest = text.strip().partition("\n")
    if HEADING_LINE_RE.match(first_line.strip()):
        return rest
    candidates = [requested] if theme.key == NEUTRAL_THEME.key else [theme.label, requested]
    names = {_title_key(n) for n in candidates if n and n.strip()}
    if _title_key(first_line) in names:
        return rest
    return text


def render(
    text: Optional[str],
    theme: Optional[str],
    themes: Optional[Mapping[str, SectionTheme]] = None,
) -> MarkupNode:
    """Render research text into a themed fragment. Pure; never raises.

    Empty input (or a section holding only its own heading) yields a fragment
    with a single "No data available" notice.
    """
    registry = DEFAULT_THEMES if themes is None else themes
    section_theme = resolve_theme(theme, registry)
    cleaned = clean_research_text(text)
    if not cleaned.strip():
        return no_data_fragment()

    blocks = render_blocks(_strip_own_heading(cleaned, section_theme, theme or ""), section_theme)
    if not blocks:
        return no_data_fragment()

    header = MarkupNode(
        type="header", icon=section_theme.icon, label=section_theme.label, tone=section_theme.tone
    )
    container = MarkupNode(
        type="container",
        theme=section_theme.key,
        tone=section_theme.tone,
        children=[header, *blocks],
    )
    return MarkupNode(type="fragment", children=[container])
