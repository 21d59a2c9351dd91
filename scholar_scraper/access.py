# scholar_scraper/access.py
from __future__ import annotations

import os
from typing import Protocol, runtime_checkable

from scholar_scraper.config import _getenv_bool


@runtime_checkable
class AccessGate(Protocol):
    """Answers one question: may this operator start a job right now?"""

    def authorize(self) -> bool: ...


class AllowAllGate:
    def authorize(self) -> bool:
        return True


class DenyAllGate:
    def authorize(self) -> bool:
        return False


class EnvAccessGate:
    """
    Gate driven by SCRAPER_ACCESS_ENABLED, re-read on every call so an operator
    can revoke access without restarting the process.
    """

    def __init__(self, env_var: str = "SCRAPER_ACCESS_ENABLED", default: bool = True) -> None:
        self.env_var = env_var
        self.default = default

    def authorize(self) -> bool:
        return _getenv_bool(self.env_var, self.default)

    def __repr__(self) -> str:
        return f"EnvAccessGate({self.env_var}={os.getenv(self.env_var)!r})"


__all__ = ["AccessGate", "AllowAllGate", "DenyAllGate", "EnvAccessGate"]
