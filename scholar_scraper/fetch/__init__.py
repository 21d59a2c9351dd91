from __future__ import annotations

from .client import HttpPageFetcher, PageFetcher, RenderedContent

__all__ = ["HttpPageFetcher", "PageFetcher", "RenderedContent"]
