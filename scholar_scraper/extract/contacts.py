"""
HTML contact extractor.

Given a rendered article/profile page, find:
  - email-shaped strings in the visible text and in mailto: links
  - a best-effort author name, journal name and topic (page title)

and return one RawContact per distinct address. Metadata is opportunistic:
each field walks an ordered list of selectors/heuristics and the first
non-empty hit wins; nothing found means an empty field, never an error.

Only content that is empty or not text at all raises ExtractionFailure.
"""

# scholar_scraper/extract/contacts.py
from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup, Tag

from scholar_scraper.exceptions import ExtractionFailure
from scholar_scraper.models import RawContact

log = logging.getLogger(__name__)

# --- Heuristics & regexes ----------------------------------------------------

EMAIL_RE = re.compile(
    r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
)

# Tried in order; first element with non-empty text (or attribute) wins.
JOURNAL_SELECTORS: tuple[str, ...] = (
    ".journal-title",
    ".publication-title",
    "[data-journal]",
    ".journal-name",
)
AUTHOR_SELECTORS: tuple[str, ...] = (
    ".author-name",
    ".author",
    "[data-author]",
    ".contributor",
)

# Highwire Press tags used by most publisher platforms
_JOURNAL_META: tuple[str, ...] = ("citation_journal_title", "citation_publisher")
_AUTHOR_META: tuple[str, ...] = ("citation_author", "dc.creator")
_TOPIC_META: tuple[str, ...] = ("citation_title", "og:title", "dc.title")

# Last resort for journal: well-known publisher hosts.
PUBLISHER_HOSTS: dict[str, str] = {
    "pubs.acs.org": "ACS Publications",
    "hindawi.com": "Hindawi",
    "researchsquare.com": "Research Square",
    "academic.oup.com": "Oxford Academic",
    "journals.sagepub.com": "SAGE Journals",
    "cureus.com": "Cureus",
    "onlinelibrary.wiley.com": "Wiley Online Library",
    "tandfonline.com": "Taylor & Francis",
    "link.springer.com": "Springer",
    "journals.plos.org": "PLOS ONE",
    "sciencedirect.com": "ScienceDirect",
}

_NAME_SHAPE_RE = re.compile(r"^[A-Z][\w'.-]+(?:\s+[A-Z][\w'.-]*){1,4}$", re.UNICODE)

# Share of control characters above which we refuse to treat content as text
_MAX_CONTROL_RATIO = 0.10


# --- Internal helpers --------------------------------------------------------


def _normalize_space(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _to_text(page_content: str | bytes | None, source_url: str) -> str:
    if page_content is None:
        raise ExtractionFailure(source_url, "no content")
    if isinstance(page_content, (bytes, bytearray)):
        page_content = bytes(page_content).decode("utf-8", "replace")
    if not isinstance(page_content, str):
        raise ExtractionFailure(source_url, f"unsupported content type {type(page_content).__name__}")
    if not page_content.strip():
        raise ExtractionFailure(source_url, "empty content")

    sample = page_content[:4096]
    controls = sum(1 for ch in sample if ord(ch) < 32 and ch not in "\t\r\n\f")
    if controls / len(sample) > _MAX_CONTROL_RATIO:
        raise ExtractionFailure(source_url, "content is not text")
    return page_content


def _element_value(el: Tag, attr: str | None = None) -> str:
    txt = _normalize_space(el.get_text(" "))
    if txt:
        return txt
    if attr:
        raw = el.get(attr)
        if isinstance(raw, str):
            return _normalize_space(raw)
    return ""


def _attr_for(selector: str) -> str | None:
    m = re.fullmatch(r"\[([\w-]+)\]", selector)
    return m.group(1) if m else None


def _meta_content(soup: BeautifulSoup, names: tuple[str, ...]) -> Iterator[str]:
    for name in names:
        for el in soup.find_all("meta"):
            key = el.get("name") or el.get("property") or ""
            if str(key).lower() != name:
                continue
            content = _normalize_space(str(el.get("content") or ""))
            if content:
                yield content


def _first_selector_text(soup: BeautifulSoup, selectors: tuple[str, ...]) -> str:
    for sel in selectors:
        el = soup.select_one(sel)
        if el is None:
            continue
        val = _element_value(el, _attr_for(sel))
        if val:
            return val
    return ""


def _journal_from_host(source_url: str) -> str:
    host = (urlparse(source_url).netloc or "").lower()
    for domain, journal in PUBLISHER_HOSTS.items():
        if host == domain or host.endswith("." + domain):
            return journal
    return ""


def extract_journal(soup: BeautifulSoup, source_url: str) -> str:
    val = _first_selector_text(soup, JOURNAL_SELECTORS)
    if val:
        return val
    for content in _meta_content(soup, _JOURNAL_META):
        return content
    return _journal_from_host(source_url)


def extract_authors(soup: BeautifulSoup) -> list[str]:
    """All distinct author names from the first selector that yields any."""
    for sel in AUTHOR_SELECTORS:
        attr = _attr_for(sel)
        authors: list[str] = []
        for el in soup.select(sel):
            name = _element_value(el, attr)
            if name and "@" not in name and name not in authors:
                authors.append(name)
        if authors:
            return authors
    return list(dict.fromkeys(_meta_content(soup, _AUTHOR_META)))


def extract_topic(soup: BeautifulSoup) -> str:
    if soup.title is not None:
        title = _normalize_space(soup.title.get_text(" "))
        if title:
            return title
    for content in _meta_content(soup, _TOPIC_META):
        return content
    return ""


def _looks_like_name(text: str) -> bool:
    if not text or "@" in text or any(ch.isdigit() for ch in text):
        return False
    return _NAME_SHAPE_RE.match(text) is not None


def _mailto_emails(soup: BeautifulSoup) -> Iterator[tuple[str, str]]:
    """Yield (email, link_text) for every mailto: anchor."""
    for a in soup.find_all("a", href=True):
        href = str(a["href"]).strip()
        if not href.lower().startswith("mailto:"):
            continue
        target = unquote(href[7:]).split("?", 1)[0]
        for addr in target.split(","):
            m = EMAIL_RE.search(addr)
            if m:
                yield m.group(0), _normalize_space(a.get_text(" "))


# --- Public API --------------------------------------------------------------


def find_emails(text: str) -> list[str]:
    """Distinct lowercased email-shaped strings, in first-seen order."""
    return list(dict.fromkeys(m.group(0).lower() for m in EMAIL_RE.finditer(text or "")))


def extract(page_content: str | bytes | None, source_url: str) -> list[RawContact]:
    """
    Parse page content into RawContacts, one per distinct email string.

    Raises ExtractionFailure only when the content is missing, empty or not
    text; pages without emails or metadata simply yield fewer/emptier rows.
    """
    text = _to_text(page_content, source_url)
    try:
        soup = BeautifulSoup(text, "html.parser")
    except Exception as exc:  # html.parser is lenient; this is a true parse failure
        raise ExtractionFailure(source_url, f"unparseable HTML: {exc}") from exc

    for tag in soup(["style", "template"]):
        tag.decompose()

    link_names: dict[str, str] = {}
    emails: list[str] = []
    for addr, link_text in _mailto_emails(soup):
        low = addr.lower()
        if low not in emails:
            emails.append(low)
        if _looks_like_name(link_text):
            link_names.setdefault(low, link_text)

    for addr in find_emails(soup.get_text(" ")):
        if addr not in emails:
            emails.append(addr)

    if not emails:
        return []

    journal = extract_journal(soup, source_url)
    authors = extract_authors(soup)
    topic = extract_topic(soup)
    default_name = authors[0] if authors else ""

    out = [
        RawContact(
            email=addr,
            name=link_names.get(addr) or default_name or None,
            journal=journal or None,
            topic=topic or None,
        )
        for addr in emails
    ]
    log.debug("extracted %d candidate(s) from %s", len(out), source_url)
    return out


__all__ = [
    "EMAIL_RE",
    "JOURNAL_SELECTORS",
    "AUTHOR_SELECTORS",
    "PUBLISHER_HOSTS",
    "extract",
    "extract_authors",
    "extract_journal",
    "extract_topic",
    "find_emails",
]
