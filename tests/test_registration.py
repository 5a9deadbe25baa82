"""
tests/test_registration.py -- Registrar.register() and the email activation action.

Coverage:
  - registration without actions: activated, logged in, one email identity
  - register event, default group, hashed password
  - weak password, duplicate email / username, registration disabled,
    already logged in
  - registration with email_activate: pending, inactive, code mailed on show,
    activation on verify
"""

from __future__ import annotations

import re

import pytest

from core.exceptions import ActionNotAvailableError
from core.models import ID_TYPE_EMAIL_ACTIVATE, ID_TYPE_EMAIL_PASSWORD
from auth.registration import Registrar

from conftest import PASSWORD, Browser

ALICE = {"email": "alice@example.com", "password": "Tr0ub4dor&3"}


def _code(mailer) -> str:
    match = re.search(r"Your code is: (\d{6})", mailer.outbox[-1].body)
    assert match, f"No code in mail body: {mailer.outbox[-1].body!r}"
    return match.group(1)


class TestRegister:
    """With no register action the new account is active and logged in at once."""

    def test_register_logs_in_activated_user(self, service, browser) -> None:
        registered = []
        service.events.on("register", registered.append)

        auth = browser.request()
        result = Registrar(service).register(auth, ALICE)

        assert result.is_ok(), result.reason
        user = result.extra_info
        assert auth.logged_in()
        assert auth.id() == user.id
        assert service.users.find_by_id(user.id).active
        assert [u.id for u in registered] == [user.id]

        identities = service.identities.get_identities(user)
        assert len(identities) == 1, f"Expected one identity, got {[i.type for i in identities]}"
        assert identities[0].type == ID_TYPE_EMAIL_PASSWORD
        assert identities[0].secret == "alice@example.com"
        assert identities[0].secret2 != ALICE["password"], "The password must be stored hashed"

    def test_default_group(self, service, browser) -> None:
        user = Registrar(service).register(browser.request(), ALICE).extra_info
        assert service.users.find_by_id(user.id).get_groups() == ["user"]

    def test_password_can_log_in_afterwards(self, service, browser) -> None:
        Registrar(service).register(browser.request(), ALICE)
        browser.request().logout()
        assert browser.request().attempt(ALICE).is_ok()

    def test_weak_password(self, service, browser) -> None:
        result = Registrar(service).register(browser.request(), {"email": "bob@example.com", "password": "letmein"})
        assert result.code == "errorPasswordLength"
        assert service.users.list_users() == []

    def test_common_password(self, service, browser) -> None:
        result = Registrar(service).register(browser.request(), {"email": "bob@example.com", "password": "password1"})
        assert result.code == "errorPasswordCommon"

    def test_missing_email(self, service, browser) -> None:
        assert Registrar(service).register(browser.request(), {"password": PASSWORD}).code == "invalidEmail"

    def test_duplicate_email(self, service, make_user) -> None:
        make_user()
        result = Registrar(service).register(Browser(service).request(), {"email": "Alice@Example.com", "password": PASSWORD})
        assert result.code == "userExists"

    def test_duplicate_username(self, service, make_user) -> None:
        make_user(username="alice")
        data = {"email": "other@example.com", "password": PASSWORD, "username": "alice"}
        assert Registrar(service).register(Browser(service).request(), data).code == "userExists"

    def test_disabled(self, make_service) -> None:
        svc = make_service(allow_registration=False)
        assert Registrar(svc).register(Browser(svc).request(), ALICE).code == "registerDisabled"

    def test_already_logged_in(self, service, make_user, browser) -> None:
        make_user(email="carol@example.com")
        browser.request().attempt({"email": "carol@example.com", "password": PASSWORD})
        assert Registrar(service).register(browser.request(), ALICE).code == "alreadyLoggedIn"


class TestEmailActivation:
    """register action email_activate: the account stays inactive until the mailed code is entered."""

    @pytest.fixture
    def activating(self, make_service):
        return make_service(actions={"register": "email_activate"})

    def test_registration_is_pending(self, activating) -> None:
        browser = Browser(activating)
        auth = browser.request()
        user = Registrar(activating).register(auth, ALICE).extra_info

        session = auth.session()
        assert session.is_pending()
        assert not session.logged_in()
        assert not activating.users.find_by_id(user.id).active
        assert not activating.is_activated(activating.users.find_by_id(user.id))
        assert activating.identities.get_identity_by_type(user, ID_TYPE_EMAIL_ACTIVATE) is not None

        session = browser.request().session()
        assert session.is_pending(), "The pending state must survive into the next request"
        assert session.get_pending_message() == "Check your email to complete account activation."

    def test_show_mails_code_and_verify_activates(self, activating, mailer) -> None:
        browser = Browser(activating)
        user = Registrar(activating).register(browser.request(), ALICE).extra_info

        session = browser.request().session()
        outcome = session.get_action().show(session, browser.ctx)
        assert outcome.step == "show"
        assert mailer.outbox[-1].to == "alice@example.com"
        code = _code(mailer)

        session = browser.request().session()
        outcome = session.get_action().verify(session, browser.ctx, {"token": code})

        assert outcome.success and outcome.step == "done"
        assert browser.request().logged_in()
        assert activating.users.find_by_id(user.id).active
        assert activating.identities.get_identity_by_type(user, ID_TYPE_EMAIL_ACTIVATE) is None

    def test_wrong_code(self, activating, mailer) -> None:
        browser = Browser(activating)
        Registrar(activating).register(browser.request(), ALICE)
        session = browser.request().session()
        session.get_action().show(session, browser.ctx)
        wrong = "000000" if _code(mailer) != "000000" else "111111"

        session = browser.request().session()
        outcome = session.get_action().verify(session, browser.ctx, {"token": wrong})

        assert not outcome.success
        assert outcome.code == "invalidActivateToken"
        assert browser.request().session().is_pending()

    def test_no_handle_step(self, activating) -> None:
        browser = Browser(activating)
        Registrar(activating).register(browser.request(), ALICE)
        session = browser.request().session()
        with pytest.raises(ActionNotAvailableError):
            session.get_action().handle(session, browser.ctx, {})
