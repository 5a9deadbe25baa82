"""
tests/test_stores.py -- SQLAlchemy Core repositories.

Coverage:
  - UserStore: case-insensitive lookup, soft delete, unknown fields
  - IdentityStore: bulk lookup, touch, delete-by-type, code collisions,
    force password reset (single, multiple, global)
  - LoginStore: last / previous login, audit rows outlive their user
"""

from __future__ import annotations

import itertools

import pytest
from sqlalchemy.exc import IntegrityError

from core.exceptions import AuthLogicError
from core.models import ID_TYPE_EMAIL_2FA, ID_TYPE_EMAIL_PASSWORD, User

from conftest import add_user

_counter = itertools.count(100000)


class TestUserStore:
    def test_lookup_ignores_case(self, service, make_user) -> None:
        user = make_user(username="Alice")
        assert service.users.find_by_credentials({"email": "ALICE@example.COM"}).id == user.id
        assert service.users.find_by_credentials({"username": "alice"}).id == user.id
        assert service.users.find_by_credentials({"email": "bob@example.com"}) is None

    def test_no_identifier(self, service) -> None:
        assert service.users.find_by_credentials({"password": "x"}) is None

    def test_unknown_field(self, service) -> None:
        with pytest.raises(ValueError):
            service.users.find_by_credentials({"shoe_size": "42"})

    def test_soft_delete(self, service, make_user) -> None:
        user = make_user()
        assert service.users.delete_user(user.id)
        assert not service.users.delete_user(user.id), "A second delete finds nothing live"

        assert service.users.find_by_id(user.id) is None
        assert service.users.find_by_credentials({"email": user.email}) is None
        assert service.users.list_users() == []
        assert service.identities.get_identity_by_type(user, ID_TYPE_EMAIL_PASSWORD) is not None

    def test_hydrated_users_are_bound(self, service, make_user) -> None:
        user = service.users.find_by_id(make_user().id)
        assert user.tokens is not None and user.authz is not None


class TestIdentityStore:
    def test_bulk_lookup(self, service) -> None:
        a = add_user(service, email="a@example.com")
        b = add_user(service, email="b@example.com")
        add_user(service, email="c@example.com")

        found = service.identities.get_identities_by_user_ids([a.id, b.id])

        assert sorted({i.user_id for i in found}) == [a.id, b.id]
        assert service.identities.get_identities_by_user_ids([]) == []

    def test_touch(self, service, clock, make_user) -> None:
        identity = service.identities.get_identity_by_type(make_user(), ID_TYPE_EMAIL_PASSWORD)
        stamped = service.identities.touch(identity.id)
        assert stamped == clock()
        assert service.identities.get_identity_by_secret(ID_TYPE_EMAIL_PASSWORD, identity.secret).last_used_at == clock()

    def test_delete_by_type(self, service, make_user) -> None:
        user = make_user()
        for _ in range(2):
            service.identities.create_code_identity(user, ID_TYPE_EMAIL_2FA, lambda: str(next(_counter)))
        assert service.identities.delete_identities_by_type(user, ID_TYPE_EMAIL_2FA) == 2
        assert service.identities.get_identities_by_types(user, [ID_TYPE_EMAIL_2FA]) == []
        assert len(service.identities.get_identities(user)) == 1

    def test_code_collision_retries(self, service, make_user) -> None:
        user = make_user()
        service.identities.create_code_identity(user, ID_TYPE_EMAIL_2FA, lambda: "111111")
        codes = iter(["111111", "222222"])

        assert service.identities.create_code_identity(user, ID_TYPE_EMAIL_2FA, lambda: next(codes)) == "222222"

    def test_code_collision_gives_up(self, service, make_user) -> None:
        user = make_user()
        service.identities.create_code_identity(user, ID_TYPE_EMAIL_2FA, lambda: "111111")
        with pytest.raises(IntegrityError):
            service.identities.create_code_identity(user, ID_TYPE_EMAIL_2FA, lambda: "111111")

    def test_incomplete_user(self, service) -> None:
        with pytest.raises(AuthLogicError):
            service.identities.delete_identities_by_type(User(email="x@example.com"), ID_TYPE_EMAIL_2FA)

    def test_force_reset(self, service) -> None:
        a = add_user(service, email="a@example.com")
        b = add_user(service, email="b@example.com")
        c = add_user(service, email="c@example.com")

        service.identities.force_multiple_password_reset([a.id, b.id])
        assert [service.identities.requires_password_reset(u) for u in (a, b, c)] == [True, True, False]

        service.identities.set_force_reset(a, False)
        assert not service.identities.requires_password_reset(a)

        service.identities.force_global_password_reset()
        assert all(service.identities.requires_password_reset(u) for u in (a, b, c))


class TestLoginStore:
    def test_last_and_previous_login(self, service, clock, make_user) -> None:
        user = make_user()
        assert service.logins.last_login(user) is None

        service.logins.record(ID_TYPE_EMAIL_PASSWORD, user.email, True, "198.51.100.1", "first", user.id)
        clock.advance(days=1)
        service.logins.record(ID_TYPE_EMAIL_PASSWORD, user.email, False, "198.51.100.9", "failed", user.id)
        service.logins.record(ID_TYPE_EMAIL_PASSWORD, user.email, True, "198.51.100.2", "second", user.id)

        assert service.logins.last_login(user).user_agent == "second"
        assert service.logins.previous_login(user).user_agent == "first"

    def test_audit_rows_outlive_the_user(self, service, make_user) -> None:
        user = make_user()
        service.logins.record(ID_TYPE_EMAIL_PASSWORD, user.email, True, user_id=user.id)
        service.users.delete_user(user.id)

        rows = service.logins.attempts_for(ID_TYPE_EMAIL_PASSWORD, user.email)
        assert len(rows) == 1 and rows[0].user_id == user.id

    def test_long_identifier_is_truncated(self, service) -> None:
        service.logins.record(ID_TYPE_EMAIL_PASSWORD, "x" * 400, False)
        assert len(service.logins.all()[-1].identifier) == 255
