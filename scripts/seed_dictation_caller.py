#!/usr/bin/env python3
"""
=====================================================
Support Line - Dictation Caller Seed Script
=====================================================
Register a phone number whose calls are treated as grade dictation.

Usage:
    python scripts/seed_dictation_caller.py --phone +15551234567 --name "Test Teacher"

Defaults come from DICTATION_CALLER_PHONE / DICTATION_CALLER_NAME.
Running it twice for the same phone is safe.
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import get_settings  # noqa: E402
from services.callers.caller_service import CallerService  # noqa: E402
from services.storage import CallerRole, StorageError, create_call_store  # noqa: E402


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Register a dictation caller")
    parser.add_argument(
        "--phone",
        default=os.getenv("DICTATION_CALLER_PHONE", "+15551234567"),
        help="Caller phone number in E.164 form"
    )
    parser.add_argument(
        "--name",
        default=os.getenv("DICTATION_CALLER_NAME", "Test Teacher"),
        help="Display name"
    )
    return parser.parse_args(argv)


async def seed(phone: str, name: str) -> bool:
    """
    Create the dictation caller.

    Returns:
        True if the phone is (now) a dictation caller, False otherwise
    """
    settings = get_settings()
    if not settings.database_url:
        print("\nError: DATABASE_URL is not set; nothing would be persisted.")
        return False

    store = await create_call_store(settings)
    try:
        caller = await CallerService(store).register_dictation_caller(phone, name)
    except StorageError as e:
        print(f"\nDatabase error: {e}")
        return False
    finally:
        await store.close()

    if caller.role != CallerRole.DICTATION_CALLER:
        print(f"\nError: {phone} is already registered as {caller.role.value}.")
        return False

    print(f"\nDictation caller ready: {caller.id} {caller.phone_number} ({caller.name or 'unnamed'})")
    return True


def main():
    """Main entry point."""
    args = parse_args()

    print("=" * 60)
    print("Support Line - Dictation Caller Setup")
    print("=" * 60)
    print(f"Using phone: {args.phone}")

    success = asyncio.run(seed(args.phone.strip(), args.name.strip() or None))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
