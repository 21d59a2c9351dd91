from __future__ import annotations

from .exporter import EXPORT_FORMATS, render, render_stats_text, summarize

__all__ = ["EXPORT_FORMATS", "render", "render_stats_text", "summarize"]
