# scholar_scraper/extract/links.py
from __future__ import annotations

from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

# Path fragments that mark a link to an individual paper. Matched against the
# resolved URL so relative hrefs ("publication/3") count too.
ARTICLE_PATH_MARKERS: tuple[str, ...] = ("/article", "/paper", "/publication")


def is_article_url(url: str) -> bool:
    path = urlparse(url).path
    return any(marker in path for marker in ARTICLE_PATH_MARKERS)


def collect_links(html: str | bytes, base_url: str, max_links: int = 50) -> list[str]:
    """
    Collect article links from a site-search result page.

    - Relative hrefs are resolved against base_url; fragments are dropped.
    - Only http(s) links whose path carries an article marker are kept,
      de-duplicated in page order.
    - At most max_links URLs are returned (max_links <= 0 returns []).
    """
    if max_links <= 0 or not html:
        return []
    if isinstance(html, bytes):
        html = html.decode("utf-8", "replace")

    soup = BeautifulSoup(html, "html.parser")
    seen: list[str] = []
    for a in soup.select("a[href]"):
        href = str(a.get("href") or "").strip()
        if not href:
            continue
        absolute, _ = urldefrag(urljoin(base_url, href))
        if urlparse(absolute).scheme not in ("http", "https") or not is_article_url(absolute):
            continue
        if absolute not in seen:
            seen.append(absolute)
        if len(seen) >= max_links:
            break
    return seen


__all__ = ["ARTICLE_PATH_MARKERS", "collect_links", "is_article_url"]
