"""Section locator unit tests."""
from investorbase.services.section_locator import locate_section, normalize_heading_title

from tests.samples import SAMPLE_RESEARCH


class TestLocateSection:
    def test_locates_section_until_next_heading_of_same_level(self):
        span = locate_section(SAMPLE_RESEARCH, "LATEST NEWS")
        assert span.startswith("## LATEST NEWS")
        assert "### Acme raises $10M Series A" in span
        assert "### Acme opens Berlin office" in span
        assert "MARKET INSIGHTS" not in span

    def test_case_insensitive(self):
        assert locate_section(SAMPLE_RESEARCH, "market insights").startswith("## MARKET INSIGHTS")

    def test_last_section_runs_to_end(self):
        span = locate_section(SAMPLE_RESEARCH, "SOURCES")
        assert span.endswith("https://example.com/d/")

    def test_heading_with_ordinal_and_emphasis(self):
        text = "## 1. **Latest News**\nItem one\n## 2. **Market Insights**\nItem two"
        assert locate_section(text, "LATEST NEWS") == "## 1. **Latest News**\nItem one"

    def test_loose_match_without_heading(self):
        text = "Intro\nLATEST NEWS:\nAcme raised money\n## Other\nignored"
        assert locate_section(text, "Latest News") == "LATEST NEWS:\nAcme raised money"

    def test_first_matching_heading_wins(self):
        text = "## Latest News\nFirst item\n## Market\nOther\n## Latest News\nSecond item"
        assert locate_section(text, "Latest News") == "## Latest News\nFirst item"

    def test_reasoning_block_is_never_located(self):
        text = "<think>\n## Latest News\ndraft plan\n</think>\n## Latest News\nReal news item here"
        assert locate_section(text, "Latest News") == "## Latest News\nReal news item here"

    def test_unterminated_reasoning_block_hides_its_headings(self):
        assert locate_section("Intro\n<think>\n## Latest News\nstill thinking", "Latest News") == ""

    def test_missing_section_is_empty(self):
        assert locate_section(SAMPLE_RESEARCH, "TEAM") == ""

    def test_total_on_empty_inputs(self):
        assert locate_section(None, "LATEST NEWS") == ""
        assert locate_section("", "LATEST NEWS") == ""
        assert locate_section(SAMPLE_RESEARCH, "") == ""
        assert locate_section(SAMPLE_RESEARCH, "   ") == ""
        assert locate_section(SAMPLE_RESEARCH, None) == ""


def test_normalize_heading_title():
    assert normalize_heading_title("**1. Latest News (2024)** ##") == "latest news (2024)"
