"""Cleanup helpers for provider-generated research text."""
import re
from typing import Optional
from urllib.parse import urlparse

# Unterminated <think> blocks (model cut off mid-reasoning) run to end of text
THINK_BLOCK_RE = re.compile(r"<think>.*?(?:</think>|\Z)", re.DOTALL | re.IGNORECASE)
# [3] citation markers, but not markdown link labels like [3](https://...)
REFERENCE_MARKER_RE = re.compile(r"\[\d+\](?!\()")
URL_RE = re.compile(r"https?://[^\s<>()\[\]\"'`]+")

URL_TRAILING_PUNCTUATION = ".,;:!?*"


def _until_stable(func, text: str) -> str:
    while True:
        cleaned = func(text)
        if cleaned == text:
            return cleaned
        text = cleaned


def strip_think_blocks(text: Optional[str]) -> str:
    """Remove <think>...</think> blocks, contents included."""
    if not text:
        return ""
    return _until_stable(lambda t: THINK_BLOCK_RE.sub("", t), text)


def strip_reference_markers(text: Optional[str]) -> str:
    """Remove [n] citation markers."""
    if not text:
        return ""
    return _until_stable(lambda t: REFERENCE_MARKER_RE.sub("", t), text)


def clean_research_text(text: Optional[str]) -> str:
    """Normalize newlines and strip reasoning blocks and citation markers.

    Applied until nothing changes, so cleaning cleaned text is a no-op.
    """
    if not text or not isinstance(text, str):
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _until_stable(lambda t: strip_reference_markers(strip_think_blocks(t)), text)


def clean_url(url: str) -> str:
    return url.strip().rstrip(URL_TRAILING_PUNCTUATION)


def find_urls(text: Optional[str]) -> list[str]:
    if not text:
        return []
    urls = []
    for match in URL_RE.finditer(text):
        url = clean_url(match.group(0))
        if len(url) > len("https://"):
            urls.append(url)
    return urls


def find_first_url(text: Optional[str]) -> str:
    urls = find_urls(text)
    return urls[0] if urls else ""


def normalize_url(url: str) -> str:
    """Key used to deduplicate sources: scheme and host lowercased, trailing slash dropped."""
    url = clean_url(url)
    parsed = urlparse(url)
    if not parsed.netloc:
        return url.lower()
    path = parsed.path.rstrip("/")
    key = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{path}"
    if parsed.query:
        key += f"?{parsed.query}"
    return key


def url_host(url: str) -> str:
    """Display name for a bare URL: its host without a leading www."""
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host
