"""
auth/tokens.py -- Per-user access-token and HMAC-token management.

A TokenManager is bound onto every User the store hands out (user.tokens).
It wraps the IdentityStore token operations for that one user and carries
the token the current request authenticated with, which is what the scope
checks look at:

  user.token_can("posts.read")       current access token's scopes
  user.hmac_token_can("posts.read")  current HMAC token's scopes

Both return False when the request did not authenticate with that kind of
token. Scopes default to ["*"] on generation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from core.models import AccessToken

if TYPE_CHECKING:
    from core.models import User
    from store.identities import IdentityStore


class TokenManager:
    def __init__(self, user: User, identities: IdentityStore) -> None:
        self.user = user
        self.identities = identities
        self.current_access_token: Optional[AccessToken] = None
        self.current_hmac_token: Optional[AccessToken] = None

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def generate_access_token(self, name: str, scopes: Optional[list[str]] = None) -> AccessToken:
        """Create a token. raw_token on the result is the only time the bearer value is visible."""
        return self.identities.generate_access_token(self.user, name, scopes)

    def get_access_token(self, raw_token: str) -> Optional[AccessToken]:
        return self.identities.get_access_token(self.user, raw_token)

    def get_access_token_by_id(self, token_id: int) -> Optional[AccessToken]:
        return self.identities.get_access_token_by_id(token_id, self.user)

    def access_tokens(self) -> list[AccessToken]:
        return self.identities.get_all_access_tokens(self.user)

    def revoke_access_token(self, raw_token: str) -> bool:
        return self.identities.revoke_access_token(self.user, raw_token)

    def revoke_access_token_by_id(self, token_id: int) -> bool:
        return self.identities.revoke_access_token_by_id(self.user, token_id)

    def revoke_all_access_tokens(self) -> bool:
        return self.identities.revoke_all_access_tokens(self.user)

    def token_can(self, scope: str) -> bool:
        return self.current_access_token is not None and self.current_access_token.can(scope)

    def token_cant(self, scope: str) -> bool:
        return not self.token_can(scope)

    # ------------------------------------------------------------------
    # HMAC tokens
    # ------------------------------------------------------------------

    def generate_hmac_token(self, name: str, scopes: Optional[list[str]] = None) -> AccessToken:
        """Create a key pair. raw_token on the result is the plain signing secret."""
        return self.identities.generate_hmac_token(self.user, name, scopes)

    def get_hmac_token(self, key: str) -> Optional[AccessToken]:
        return self.identities.get_hmac_token_for_user(self.user, key)

    def get_hmac_token_by_id(self, token_id: int) -> Optional[AccessToken]:
        return self.identities.get_hmac_token_by_id(token_id, self.user)

    def hmac_tokens(self) -> list[AccessToken]:
        return self.identities.get_all_hmac_tokens(self.user)

    def revoke_hmac_token(self, key: str) -> bool:
        return self.identities.revoke_hmac_token(self.user, key)

    def revoke_all_hmac_tokens(self) -> bool:
        return self.identities.revoke_all_hmac_tokens(self.user)

    def hmac_token_can(self, scope: str) -> bool:
        return self.current_hmac_token is not None and self.current_hmac_token.can(scope)

    def hmac_token_cant(self, scope: str) -> bool:
        return not self.hmac_token_can(scope)
