"""
core/result.py -- Immutable outcome of every check / attempt call.

Expected authentication failures (bad password, banned, stale token...) are
returned as Result(success=False) and never raised. code is a stable machine
identifier callers can branch on; reason is the human-readable English text
from core/messages.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from core.messages import message


@dataclass(frozen=True)
class Result:
    success: bool
    reason: Optional[str] = None
    extra_info: Any = None
    code: Optional[str] = None

    def is_ok(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, extra_info: Any = None) -> Result:
        return cls(success=True, extra_info=extra_info)

    @classmethod
    def fail(cls, code: str, reason: Optional[str] = None, extra_info: Any = None) -> Result:
        """Build a failure. reason defaults to the catalogue text for code."""
        return cls(success=False, reason=reason if reason is not None else message(code), extra_info=extra_info, code=code)
