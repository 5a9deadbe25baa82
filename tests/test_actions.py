"""
tests/test_actions.py -- Email 2FA as the login action.

Coverage:
  - a correct password leaves the session PENDING, not LOGGED_IN
  - show / handle / verify walk the user to LOGGED_IN; login event fires
    only once the code is accepted
  - wrong email on handle, wrong code on verify, code reuse
  - login() refuses a user with open action identities
"""

from __future__ import annotations

import re

import pytest

from core.exceptions import AuthLogicError
from core.models import ID_TYPE_EMAIL_2FA

from conftest import PASSWORD, Browser, add_user

CREDENTIALS = {"email": "alice@example.com", "password": PASSWORD}


@pytest.fixture
def two_factor(make_service):
    return make_service(actions={"login": "email_2fa"})


def _code(mailer) -> str:
    match = re.search(r"Your code is: (\d{6})", mailer.outbox[-1].body)
    assert match, f"No code in mail body: {mailer.outbox[-1].body!r}"
    return match.group(1)


def _pending_browser(svc) -> Browser:
    add_user(svc)
    browser = Browser(svc)
    result = browser.request().attempt(CREDENTIALS)
    assert result.is_ok(), result.reason
    return browser


def _step(browser: Browser, step: str, data: dict | None = None):
    session = browser.request().session()
    action = session.get_action()
    if step == "show":
        return action.show(session, browser.ctx)
    return getattr(action, step)(session, browser.ctx, data or {})


class TestPendingLogin:
    def test_password_leaves_session_pending(self, two_factor) -> None:
        logins = []
        two_factor.events.on("login", logins.append)
        browser = _pending_browser(two_factor)

        session = browser.request().session()
        assert session.is_pending()
        assert not session.logged_in()
        assert session.get_user() is None
        assert session.get_pending_user().email == "alice@example.com"
        assert session.get_pending_message() == "Check your email for a verification code."
        assert logins == [], "The login event waits for the second factor"

    def test_facade_reports_anonymous_while_pending(self, two_factor) -> None:
        browser = _pending_browser(two_factor)
        auth = browser.request()
        assert auth.user() is None
        assert auth.id() is None


class TestEmail2FAFlow:
    """show -> handle -> verify, one request each, like the HTTP routes."""

    def test_full_flow(self, two_factor, mailer) -> None:
        logins = []
        two_factor.events.on("login", logins.append)
        browser = _pending_browser(two_factor)

        assert _step(browser, "show").step == "show"
        outcome = _step(browser, "handle", {"email": "alice@example.com"})
        assert outcome.step == "verify"
        assert mailer.outbox[-1].subject == "Your authentication code"

        outcome = _step(browser, "verify", {"token": _code(mailer)})

        assert outcome.success and outcome.step == "done"
        auth = browser.request()
        assert auth.logged_in()
        assert [u.email for u in logins] == ["alice@example.com"]
        assert two_factor.identities.get_identity_by_type(auth.user(), ID_TYPE_EMAIL_2FA) is None

    def test_handle_rejects_other_email(self, two_factor, mailer) -> None:
        browser = _pending_browser(two_factor)
        _step(browser, "show")
        sent = len(mailer.outbox)

        outcome = _step(browser, "handle", {"email": "mallory@example.com"})

        assert not outcome.success
        assert outcome.code == "invalidEmail"
        assert len(mailer.outbox) == sent, "No code may be mailed to an address that is not the user's"

    def test_wrong_code_keeps_pending(self, two_factor, mailer) -> None:
        browser = _pending_browser(two_factor)
        _step(browser, "show")
        _step(browser, "handle", {"email": "alice@example.com"})
        wrong = "000000" if _code(mailer) != "000000" else "999999"

        outcome = _step(browser, "verify", {"token": wrong})

        assert not outcome.success
        assert outcome.code == "invalid2FAToken"
        assert browser.request().session().is_pending()

    def test_empty_code(self, two_factor) -> None:
        browser = _pending_browser(two_factor)
        assert not _step(browser, "verify", {"token": ""}).success

    def test_show_replaces_the_code(self, two_factor, mailer) -> None:
        browser = _pending_browser(two_factor)
        _step(browser, "handle", {"email": "alice@example.com"})
        stale = _code(mailer)
        _step(browser, "show")
        _step(browser, "handle", {"email": "alice@example.com"})
        fresh = _code(mailer)

        if stale != fresh:
            assert not _step(browser, "verify", {"token": stale}).success
        assert _step(browser, "verify", {"token": fresh}).success

    def test_verify_requires_a_user(self, two_factor) -> None:
        browser = Browser(two_factor)
        session = browser.request().session()
        with pytest.raises(AuthLogicError):
            two_factor.actions["email_2fa"].verify(session, browser.ctx, {"token": "123456"})


class TestDirectLogin:
    def test_login_refused_with_open_action(self, two_factor) -> None:
        user = add_user(two_factor)
        two_factor.actions["email_2fa"].create_identity(user)

        with pytest.raises(AuthLogicError):
            Browser(two_factor).request().login(user)

    def test_direct_login_without_action(self, service, make_user, browser) -> None:
        user = make_user()
        browser.request().session().login(user)
        assert browser.request().id() == user.id
