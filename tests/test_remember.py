"""
tests/test_remember.py -- Remember-me selector/validator cookies.

Coverage:
  - a remembered login re-authenticates a fresh session and rotates the cookie
  - replaying the pre-rotation cookie is rejected and the cookie cleared [H3]
  - expired and banned-user tokens leave the visitor anonymous
  - logout and a non-remembered login drop the stored token
  - RememberMe unit behavior: malformed values, CAS rotation, opportunistic purge
"""

from __future__ import annotations

from auth.remember import RememberMe

from conftest import PASSWORD, Browser

CREDENTIALS = {"email": "alice@example.com", "password": PASSWORD}


def _remembered_login(browser: Browser) -> str:
    browser.request().session().remember().attempt(CREDENTIALS)
    return browser.ctx.cookies["remember"]


def _returning_visitor(service, cookie: str) -> Browser:
    visitor = Browser(service)
    visitor.cookies = {"remember": cookie}
    return visitor


def _deleted_cookies(browser: Browser) -> list[str]:
    return [c.name for c in browser.ctx.outgoing_cookies if c.delete]


class TestRememberedLogin:
    """A valid cookie logs a session-less visitor back in, exactly once per value."""

    def test_cookie_set_on_remembered_login(self, make_user, browser) -> None:
        make_user()
        cookie = _remembered_login(browser)
        selector, _, validator = cookie.partition(":")
        assert len(selector) == 24 and len(validator) == 40
        issued = [c for c in browser.ctx.outgoing_cookies if c.name == "remember" and not c.delete]
        assert issued and issued[0].httponly, "The remember cookie must be HttpOnly"

    def test_no_cookie_without_remember_flag(self, make_user, browser) -> None:
        make_user()
        browser.request().attempt(CREDENTIALS)
        assert "remember" not in browser.ctx.cookies

    def test_returning_visitor_is_logged_in_and_cookie_rotated(self, service, make_user, browser) -> None:
        user = make_user()
        cookie = _remembered_login(browser)

        visitor = _returning_visitor(service, cookie)
        auth = visitor.request()

        assert auth.logged_in(), "A valid remember cookie must log the visitor in"
        assert auth.id() == user.id
        rotated = visitor.ctx.cookies["remember"]
        assert rotated != cookie
        assert rotated.partition(":")[0] == cookie.partition(":")[0], "Rotation keeps the selector"
        assert visitor.request().logged_in(), "The rotated session carries over to the next request"

    def test_replayed_cookie_rejected(self, service, make_user, browser) -> None:
        make_user()
        cookie = _remembered_login(browser)
        _returning_visitor(service, cookie).request().logged_in()

        thief = _returning_visitor(service, cookie)
        auth = thief.request()

        assert not auth.logged_in(), "A cookie value must not authenticate twice"
        assert "remember" in _deleted_cookies(thief)

    def test_expired_cookie_rejected(self, service, clock, make_user, browser) -> None:
        make_user()
        cookie = _remembered_login(browser)
        clock.advance(days=31)

        assert not _returning_visitor(service, cookie).request().logged_in()

    def test_banned_user_rejected_and_tokens_purged(self, service, make_user, browser) -> None:
        user = make_user()
        cookie = _remembered_login(browser)
        service.users.ban(user, "Chargebacks")

        visitor = _returning_visitor(service, cookie)
        assert not visitor.request().logged_in()
        assert service.remember_store.get_remember_token(cookie.partition(":")[0]) is None
        assert "remember" in _deleted_cookies(visitor)

    def test_disabled_remembering_ignores_cookie(self, service, make_service, make_user, browser) -> None:
        make_user()
        cookie = _remembered_login(browser)
        strict = make_service(db=service.db, session={"allow_remembering": False})
        assert not _returning_visitor(strict, cookie).request().logged_in()


class TestForgetting:
    def test_logout_purges_tokens(self, service, make_user, browser) -> None:
        make_user()
        cookie = _remembered_login(browser)

        browser.request().logout()

        assert service.remember_store.get_remember_token(cookie.partition(":")[0]) is None
        assert "remember" in _deleted_cookies(browser)

    def test_plain_login_discards_previous_cookie(self, service, make_user, browser) -> None:
        make_user()
        cookie = _remembered_login(browser)

        other_tab = _returning_visitor(service, cookie)
        other_tab.request().attempt(CREDENTIALS)

        assert service.remember_store.get_remember_token(cookie.partition(":")[0]) is None
        assert "remember" not in other_tab.ctx.cookies

    def test_forget_drops_every_token(self, service, make_user, browser) -> None:
        user = make_user()
        first = _remembered_login(browser)
        second = _remembered_login(Browser(service))

        browser.request().session().forget(user)

        for cookie in (first, second):
            assert service.remember_store.get_remember_token(cookie.partition(":")[0]) is None


class TestRememberMe:
    """RememberMe in isolation, against the real store."""

    def _remember(self, service, clock, rng=lambda: 1.0) -> RememberMe:
        return RememberMe(service.remember_store, service.settings.session, clock, rng=rng)

    def test_malformed_values(self, service, clock) -> None:
        remember = self._remember(service, clock)
        for raw in (None, "", "no-colon", ":validator", "selector:"):
            assert remember.verify(raw) is None, f"{raw!r} must not verify"

    def test_only_the_hash_is_stored(self, service, clock, make_user) -> None:
        user = make_user()
        remember = self._remember(service, clock)
        selector, _, validator = remember.issue(user.id).partition(":")

        stored = service.remember_store.get_remember_token(selector)
        assert stored.hashed_validator != validator
        assert len(stored.hashed_validator) == 64

    def test_rotation_is_compare_and_swap(self, service, clock, make_user) -> None:
        user = make_user()
        remember = self._remember(service, clock)
        token = remember.verify(remember.issue(user.id))

        assert remember.rotate(token) is not None
        assert remember.rotate(token) is None, "A second rotation from the same verified row must lose"

    def test_purge_removes_expired_rows(self, service, clock, make_user) -> None:
        user = make_user()
        remember = self._remember(service, clock, rng=lambda: 0.0)
        selector = remember.issue(user.id).partition(":")[0]
        clock.advance(days=31)

        remember.maybe_purge()

        assert service.remember_store.get_remember_token(selector) is None

    def test_purge_skipped_when_not_drawn(self, service, clock, make_user) -> None:
        user = make_user()
        remember = self._remember(service, clock, rng=lambda: 0.99)
        selector = remember.issue(user.id).partition(":")[0]
        clock.advance(days=31)

        remember.maybe_purge()

        assert service.remember_store.get_remember_token(selector) is not None
