"""
auth/context.py -- Framework-neutral view of the current request.

Authenticators never see a FastAPI Request. The HTTP layer (api/dependencies.py)
builds a RequestContext per request and applies whatever the authenticators
left in outgoing_cookies / no_cache to the response afterwards. Tests build
one directly.

SessionBag wraps any mutable mapping (Starlette's request.session in the app,
a plain dict in tests). Starlette keeps the whole session in a signed cookie,
so "regenerating the session id" means rotating the _sid nonce stored inside
it: the signed cookie value changes and the old one no longer describes the
current session.
"""

from __future__ import annotations

import secrets
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Optional

_SID_KEY = "_sid"


class SessionBag:
    def __init__(self, data: Optional[MutableMapping[str, Any]] = None) -> None:
        self._data: MutableMapping[str, Any] = data if data is not None else {}
        if _SID_KEY not in self._data:
            self._data[_SID_KEY] = secrets.token_hex(16)

    @property
    def id(self) -> str:
        return self._data[_SID_KEY]

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def has(self, key: str) -> bool:
        return key in self._data

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return [k for k in self._data if k != _SID_KEY]

    def clear(self) -> None:
        for key in self.keys():
            del self._data[key]

    def regenerate(self) -> str:
        self._data[_SID_KEY] = secrets.token_hex(16)
        return self.id


@dataclass
class CookieInstruction:
    name: str
    value: str = ""
    max_age: Optional[int] = None
    secure: bool = False
    httponly: bool = True
    samesite: str = "lax"
    delete: bool = False


@dataclass
class RequestContext:
    session: SessionBag = field(default_factory=SessionBag)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    outgoing_cookies: list[CookieInstruction] = field(default_factory=list)
    no_cache: bool = False

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")

    def body_text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def cookie(self, name: str) -> Optional[str]:
        return self.cookies.get(name)

    def set_cookie(self, name: str, value: str, max_age: int, secure: bool = False) -> None:
        self.cookies[name] = value
        self.outgoing_cookies.append(CookieInstruction(name=name, value=value, max_age=max_age, secure=secure))

    def delete_cookie(self, name: str) -> None:
        self.cookies.pop(name, None)
        self.outgoing_cookies.append(CookieInstruction(name=name, delete=True))
