"""
tests/test_cli.py -- main.py administration commands.

Coverage:
  - hmac decrypt / encrypt round trip over stored signing secrets
  - hmac reencrypt after a key rotation
  - user create (password validation, duplicates, groups)
  - user activate / deactivate / ban / unban / addgroup / force-reset
  - unknown users and unknown groups exit 1
"""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet

from main import main

from conftest import add_user

STRONG = "Tr0ub4dor&3"


def _secrets(service) -> list[str]:
    return [identity.secret2 for identity in service.identities.iter_hmac_identities()]


class TestHmacCommands:
    def test_decrypt_then_encrypt(self, service, capsys) -> None:
        raw = add_user(service).generate_hmac_token("signer").raw_token

        assert main(["hmac", "decrypt"], service=service) == 0
        assert _secrets(service) == [raw]

        assert main(["hmac", "encrypt"], service=service) == 0
        stored = _secrets(service)[0]
        assert stored.startswith("$b6$k1$")
        assert service.encrypter.decrypt(stored) == raw

        out = capsys.readouterr().out
        assert "decrypted." in out and "encrypted." in out

    def test_encrypt_skips_encrypted(self, service, capsys) -> None:
        add_user(service).generate_hmac_token("signer")
        before = _secrets(service)

        assert main(["hmac", "encrypt"], service=service) == 0
        assert _secrets(service) == before
        assert "already encrypted, skipped." in capsys.readouterr().out

    def test_reencrypt_after_rotation(self, service, make_service, capsys) -> None:
        raw = add_user(service).generate_hmac_token("signer").raw_token
        k1 = service.settings.tokens.hmac_encryption_keys["k1"]
        rotated = make_service(
            db=service.db,
            tokens={"hmac_encryption_keys": {"k1": k1, "k2": Fernet.generate_key().decode()}, "hmac_encryption_current_key": "k2"},
        )

        assert main(["hmac", "reencrypt"], service=rotated) == 0

        stored = _secrets(rotated)[0]
        assert stored.startswith("$b6$k2$")
        assert rotated.encrypter.decrypt(stored) == raw
        assert "re-encrypted." in capsys.readouterr().out

        assert main(["hmac", "reencrypt"], service=rotated) == 0
        assert "already encrypted with the current key" in capsys.readouterr().out


class TestUserCreate:
    def test_create(self, service, capsys) -> None:
        code = main(["user", "create", "--email", "ops@example.com", "--password", STRONG, "--username", "ops"], service=service)

        assert code == 0
        user = service.users.find_by_credentials({"email": "ops@example.com"})
        assert user.active
        assert user.username == "ops"
        assert user.get_groups() == ["user"]
        assert service.passwords.verify(STRONG, user.password_hash)
        assert "Created user" in capsys.readouterr().out

    def test_create_with_groups(self, service) -> None:
        argv = ["user", "create", "--email", "root@example.com", "--password", STRONG, "--group", "superadmin", "--group", "beta"]
        assert main(argv, service=service) == 0
        assert service.users.find_by_credentials({"email": "root@example.com"}).get_groups() == ["superadmin", "beta"]

    def test_weak_password(self, service, capsys) -> None:
        assert main(["user", "create", "--email", "ops@example.com", "--password", "short"], service=service) == 1
        assert service.users.find_by_credentials({"email": "ops@example.com"}) is None
        assert "[!]" in capsys.readouterr().out

    def test_duplicate(self, service, capsys) -> None:
        add_user(service, email="ops@example.com")
        assert main(["user", "create", "--email", "ops@example.com", "--password", STRONG], service=service) == 1
        assert "already exists" in capsys.readouterr().out


class TestUserUpdate:
    def test_deactivate_and_activate(self, service) -> None:
        user = add_user(service)
        assert main(["user", "deactivate", "--email", user.email], service=service) == 0
        assert not service.users.find_by_id(user.id).active
        assert main(["user", "activate", "--email", user.email], service=service) == 0
        assert service.users.find_by_id(user.id).active

    def test_ban_and_unban(self, service) -> None:
        user = add_user(service)
        assert main(["user", "ban", "--email", user.email, "--message", "Spamming"], service=service) == 0
        banned = service.users.find_by_id(user.id)
        assert banned.is_banned()
        assert banned.get_ban_message() == "Spamming"

        assert main(["user", "unban", "--email", user.email], service=service) == 0
        assert not service.users.find_by_id(user.id).is_banned()

    def test_addgroup(self, service) -> None:
        user = add_user(service)
        assert main(["user", "addgroup", "--email", user.email, "--group", "admin"], service=service) == 0
        assert service.users.find_by_id(user.id).get_groups() == ["user", "admin"]

    def test_addgroup_unknown(self, service, capsys) -> None:
        user = add_user(service)
        assert main(["user", "addgroup", "--email", user.email, "--group", "wizards"], service=service) == 1
        assert "[!]" in capsys.readouterr().out

    def test_force_reset(self, service) -> None:
        user = add_user(service)
        assert main(["user", "force-reset", "--email", user.email], service=service) == 0
        assert service.identities.requires_password_reset(user)

    def test_unknown_user(self, service, capsys) -> None:
        assert main(["user", "ban", "--email", "nobody@example.com"], service=service) == 1
        assert "No user with email" in capsys.readouterr().out

    def test_missing_subcommand(self, service) -> None:
        with pytest.raises(SystemExit):
            main(["user"], service=service)
