from __future__ import annotations

from .mx import MXResult, clear_cache, domain_of, has_mx, norm_domain, resolve_mx

"""
Resolve package

  - `mx` resolves mail-exchange records for email domains with a short
    in-process cache. Used only as an advisory "verified" signal.
"""

__all__ = [
    "MXResult",
    "clear_cache",
    "domain_of",
    "has_mx",
    "norm_domain",
    "resolve_mx",
]
