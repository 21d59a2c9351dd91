from __future__ import annotations

from .orchestrator import JobHandle, JobOrchestrator, start_scraping

__all__ = ["JobHandle", "JobOrchestrator", "start_scraping"]
