from __future__ import annotations

from .validate import (
    DomainValidator,
    is_acceptable,
    is_excluded,
    validate_domain,
    validate_format,
)

__all__ = [
    "DomainValidator",
    "is_acceptable",
    "is_excluded",
    "validate_domain",
    "validate_format",
]
