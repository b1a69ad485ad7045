"""
Unit tests for the JSON file persistence backend.

Covers the on-disk layout, tolerance of missing and corrupt files, scope
isolation inside the shared accounts file, and pruning of usage history on
write.
"""

from datetime import timedelta
from decimal import Decimal
import json

import pytest

from net.cloudmon.errors import StorageFailure
from net.cloudmon.store.file import (
    ACCOUNTS_FILE,
    PASSWORD_FILE,
    USAGE_HISTORY_FILE,
    USERS_FILE,
    FileBackend,
    ensure_data_dir,
)
from net.cloudmon.store.types import Account, EncryptedToken, utcnow


def read_file(backend: FileBackend, filename: str):
    with open(backend.path(filename), encoding="utf-8") as fd:
        return json.load(fd)


class TestLayout:
    def test_ensure_data_dir_creates_nested(self, tmp_path):
        path = ensure_data_dir(tmp_path / "a" / "b")
        assert path.is_dir()

    def test_ensure_data_dir_fails_on_file(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        with pytest.raises(OSError):
            ensure_data_dir(blocker / "data")

    def test_kind(self, file_backend):
        assert file_backend.kind == "File"

    async def test_accounts_file_format(self, file_backend):
        await file_backend.save_accounts([Account(name="a", token="t")])
        assert read_file(file_backend, ACCOUNTS_FILE) == [{"name": "a", "token": "t"}]
        assert not file_backend.path(ACCOUNTS_FILE + ".tmp").exists()

    async def test_password_file_format(self, file_backend):
        await file_backend.save_admin_credential("$2b$04$hash")
        assert read_file(file_backend, PASSWORD_FILE) == {"password": "$2b$04$hash"}

    async def test_encrypted_record_has_no_clear_token(self, file_backend):
        sealed = EncryptedToken(ciphertext="aa", nonce="bb", tag="cc")
        await file_backend.save_accounts([Account(name="a", encrypted_token=sealed)])
        record = read_file(file_backend, ACCOUNTS_FILE)[0]
        assert "token" not in record
        assert record["encrypted_token"] == sealed.model_dump()

    async def test_user_file_keeps_hash(self, file_backend):
        await file_backend.create_user("alice", "$2b$04$hash")
        record = read_file(file_backend, USERS_FILE)[0]
        assert record["id"] == 1
        assert record["password_hash"] == "$2b$04$hash"
        assert record["role"] == "user"


class TestReadFailures:
    async def test_missing_files(self, file_backend):
        assert await file_backend.load_accounts() == []
        assert await file_backend.load_admin_credential() is None
        assert await file_backend.get_users() == []
        assert await file_backend.get_webhooks() == []
        assert await file_backend.get_usage_history() == []

    async def test_corrupt_json_yields_empty(self, file_backend):
        file_backend.path(ACCOUNTS_FILE).write_text("{not json")
        assert await file_backend.load_accounts() == []

    async def test_wrong_shape_yields_empty(self, file_backend):
        file_backend.path(ACCOUNTS_FILE).write_text('{"name": "a"}')
        assert await file_backend.load_accounts() == []

    async def test_malformed_record_skipped(self, file_backend):
        file_backend.path(ACCOUNTS_FILE).write_text(
            json.dumps([{"token": "no-name"}, {"name": "ok", "token": "t"}])
        )
        assert [a.name for a in await file_backend.load_accounts()] == ["ok"]

    async def test_write_failure_returns_false(self, file_backend):
        file_backend.path(ACCOUNTS_FILE).mkdir()
        assert not await file_backend.save_accounts([Account(name="a", token="t")])

    async def test_create_user_write_failure_raises(self, file_backend):
        file_backend.path(USERS_FILE).mkdir()
        with pytest.raises(StorageFailure, match="error-store-1001"):
            await file_backend.create_user("alice", "$2b$04$hash")


class TestScopes:
    async def test_save_preserves_other_scopes(self, file_backend):
        await file_backend.save_accounts([Account(name="global", token="g")])
        await file_backend.save_accounts([Account(name="u1", token="1")], scope=1)
        await file_backend.save_accounts([Account(name="u2", token="2")], scope=2)

        await file_backend.save_accounts([], scope=1)

        assert [a.name for a in await file_backend.load_accounts()] == ["global"]
        assert await file_backend.load_accounts(1) == []
        assert [a.name for a in await file_backend.load_accounts(2)] == ["u2"]


class TestUsageRetention:
    async def test_write_prunes_old_records(self, file_backend):
        now = utcnow()
        file_backend.path(USAGE_HISTORY_FILE).write_text(
            json.dumps(
                [
                    {
                        "account_name": "a",
                        "usage_amount": 1.5,
                        "recorded_at": (now - timedelta(days=45)).isoformat(),
                    },
                    {
                        "account_name": "a",
                        "usage_amount": 2.0,
                        "recorded_at": (now - timedelta(days=5)).isoformat(),
                    },
                ]
            )
        )

        assert await file_backend.record_usage("a", Decimal("3.25"))

        stored = read_file(file_backend, USAGE_HISTORY_FILE)
        assert len(stored) == 2
        assert [r["usage_amount"] for r in stored] == ["2.0", "3.25"]

    async def test_amount_round_trip(self, file_backend):
        await file_backend.record_usage("a", "0.1234")
        history = await file_backend.get_usage_history("a")
        assert history[0].usage_amount == Decimal("0.1234")

    async def test_amount_keeps_full_precision(self, file_backend):
        await file_backend.record_usage("a", Decimal("1.234567890123456789"))

        stored = read_file(file_backend, USAGE_HISTORY_FILE)
        assert stored[0]["usage_amount"] == "1.234567890123456789"

        history = await file_backend.get_usage_history("a")
        assert history[0].usage_amount == Decimal("1.234567890123456789")
