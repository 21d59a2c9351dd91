from __future__ import annotations

from .base import ResultSink, filter_records, search_records
from .memory import MemorySink
from .sqlite import SqliteSink

__all__ = ["MemorySink", "ResultSink", "SqliteSink", "filter_records", "search_records"]
