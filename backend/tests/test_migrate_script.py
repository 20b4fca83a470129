"""
OpenBlind Backend — Migration Script Tests
============================================

What we test:
    ✅ Argument parsing (--test and --verify-only are exclusive)
    ✅ Exit codes: 2 on bad configuration, 1 on failed self-test, 0 on success
    ✅ A full run migrates legacy rows through the job service
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest

from openblind.exceptions import CipherConfigurationError
from scripts import migrate_encryption
from scripts.migrate_encryption import parse_args, run

MODULE = "scripts.migrate_encryption"


def _session_factory(session):
    @asynccontextmanager
    async def factory():
        yield session

    return factory


class TestArguments:

    def test_defaults(self):
        args = parse_args([])
        assert (args.test, args.verify_only, args.emails) == (False, False, False)

    def test_modes_are_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["--test", "--verify-only"])


class TestRun:

    @pytest.mark.asyncio
    async def test_configuration_error_exits_2(self):
        with patch(
            f"{MODULE}.build_cipher_engine",
            side_effect=CipherConfigurationError("ENCRYPTION_KEY is not set"),
        ):
            assert await run(parse_args([])) == 2

    @pytest.mark.asyncio
    async def test_self_test_only(self, cipher):
        with patch(f"{MODULE}.build_cipher_engine", return_value=cipher):
            assert await run(parse_args(["--test"])) == 0

    @pytest.mark.asyncio
    async def test_failed_self_test_exits_1(self, cipher):
        with patch(f"{MODULE}.build_cipher_engine", return_value=cipher), patch.object(
            cipher, "self_test", return_value=False
        ):
            assert await run(parse_args([])) == 1

    @pytest.mark.asyncio
    async def test_full_run_migrates(self, db_session, cipher, make_legacy_profile, make_account):
        await make_legacy_profile(1, "Maria", "Lopez")
        await make_account("maria@example.org", legacy=True)

        with patch(f"{MODULE}.build_cipher_engine", return_value=cipher), patch(
            f"{MODULE}.async_session_factory", _session_factory(db_session)
        ), patch(f"{MODULE}.dispose_engine", AsyncMock()) as dispose:
            code = await run(parse_args(["--emails"]))

        assert code == 0
        dispose.assert_awaited_once()
        stats = await migrate_encryption.EncryptionJobService(
            db_session, cipher
        ).get_encryption_stats()
        assert stats.coverage_percent == 100.0
