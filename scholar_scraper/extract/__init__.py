from __future__ import annotations

from .contacts import extract, find_emails
from .links import collect_links

__all__ = ["extract", "find_emails", "collect_links"]
