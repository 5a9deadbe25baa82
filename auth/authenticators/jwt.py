"""
auth/authenticators/jwt.py -- JWT bearer authenticator.

Header: Authorization: Bearer <jwt>

The "sub" claim is the user id. Verification errors from JwtManager keep
their kind in the Result code (invalidJwt / expiredJwt / beforeValidJwt).
Audit rows store "sha256:<hash>" of the token, never the token itself.
"""

from __future__ import annotations

from typing import Any, Optional

from core.exceptions import InvalidTokenError
from core.models import ID_TYPE_JWT
from core.result import Result
from auth.authenticators.base import StatelessAuthenticator, strip_scheme
from auth.jwt_manager import JwtManager


class JwtAuthenticator(StatelessAuthenticator):
    alias = "jwt"
    id_type = ID_TYPE_JWT

    def __init__(self, *args: Any, manager: JwtManager, keyset: str = "default", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.manager = manager
        self.keyset = keyset
        self.header_name = self.settings.jwt.authenticator_header
        self.payload: Optional[dict[str, Any]] = None

    def set_keyset(self, keyset: str) -> None:
        self.keyset = keyset

    def get_payload(self) -> Optional[dict[str, Any]]:
        return self.payload

    def check(self, credentials: dict[str, Any]) -> Result:
        raw = str(credentials.get("token") or "")
        if not raw:
            return self._no_token()
        raw = strip_scheme(raw, "Bearer")

        try:
            self.payload = self.manager.parse(raw, self.keyset)
        except InvalidTokenError as exc:
            return Result.fail(exc.code, reason=exc.message, extra_info=exc.kind)

        subject = self.payload.get("sub")
        if subject is None:
            return Result.fail("invalidJwt", reason="Invalid JWT: no subject claim.")

        try:
            user_id = int(subject)
        except (TypeError, ValueError):
            return Result.fail("invalidUser")

        user = self.users.find_by_id(user_id)
        if user is None:
            return Result.fail("invalidUser")

        return Result.ok(user)
