"""
OpenBlind Backend — Encryption Migration Script
=================================================

What:  Operator entry point for the encryption batch jobs, outside the API.

Usage (from backend/):
    python scripts/migrate_encryption.py              self-test, migrate, verify, stats
    python scripts/migrate_encryption.py --test       cipher self-test only
    python scripts/migrate_encryption.py --verify-only
    python scripts/migrate_encryption.py --emails     also migrate account emails

Exit status: 0 on success, 1 if the self-test fails or any record errored or
failed verification, 2 on a configuration error.
"""

import argparse
import asyncio
import logging
import sys

from openblind.config import settings
from openblind.database import async_session_factory, dispose_engine
from openblind.exceptions import CipherConfigurationError
from openblind.main import setup_logging
from openblind.services.cipher import build_cipher_engine
from openblind.services.encryption_jobs import EncryptionJobService

logger = logging.getLogger("openblind.scripts.migrate_encryption")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Encrypt legacy profile data and report encryption coverage."
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--test",
        action="store_true",
        help="Only run the cipher self-test",
    )
    mode.add_argument(
        "--verify-only",
        action="store_true",
        help="Skip migration; verify a sample and print stats",
    )
    parser.add_argument(
        "--emails",
        action="store_true",
        help="Also encrypt legacy account emails and backfill the blind index",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    try:
        cipher = build_cipher_engine(settings)
    except CipherConfigurationError as e:
        logger.critical("Encryption configuration error: %s", e.message)
        return 2

    if not cipher.self_test():
        logger.error("Cipher self-test FAILED")
        return 1
    logger.info("Cipher self-test passed")
    if args.test:
        return 0

    failures = 0
    try:
        async with async_session_factory() as session:
            jobs = EncryptionJobService(session, cipher)

            before = await jobs.get_encryption_stats()
            logger.info(
                "Before: %d profiles, %d encrypted (%.2f%%)",
                before.total,
                before.encrypted,
                before.coverage_percent,
            )

            if not args.verify_only:
                migrated = await jobs.migrate_encryption()
                failures += migrated.error_count
                logger.info(
                    "Profiles migrated: %d, errors: %d",
                    migrated.migrated_count,
                    migrated.error_count,
                )
                if args.emails:
                    emails = await jobs.migrate_account_emails()
                    failures += emails.error_count
                    logger.info(
                        "Account emails migrated: %d, errors: %d",
                        emails.migrated_count,
                        emails.error_count,
                    )

            verification = await jobs.verify_encryption()
            failures += verification.invalid_count
            logger.info(
                "Verification: %d valid, %d invalid",
                verification.valid_count,
                verification.invalid_count,
            )
            for detail in verification.details:
                if not detail.valid:
                    logger.warning("  profile %s (%s): %s", detail.id, detail.state, detail.error)

            after = await jobs.get_encryption_stats()
            logger.info(
                "After: %d profiles, %d encrypted, %d unencrypted (%.2f%%)",
                after.total,
                after.encrypted,
                after.unencrypted,
                after.coverage_percent,
            )
            await session.commit()
    finally:
        await dispose_engine()

    return 1 if failures else 0


def main(argv=None) -> int:
    setup_logging()
    return asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
