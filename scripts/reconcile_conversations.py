"""
Repair conversation summaries that lag behind their message logs.

A message append writes the conversation log first and the two participants'
summaries afterwards; if a summary write fails, that user's latest-message
preview stays stale. This script walks the user directory (or the users
given on the command line) and brings every summary up to date.
"""

import argparse
import asyncio
import sys
from typing import List

from messenger.errors import FetchFailed, StoreError
from messenger.dependencies import get_document_store
from messenger.services.conversation_service import ConversationService
from messenger.services.user_directory import UserDirectory


async def reconcile(identities: List[str]) -> int:
    store = get_document_store()
    conversations = ConversationService(store, reconcile_on_read=False)

    if not identities:
        try:
            identities = [entry.email for entry in await UserDirectory(store).list_all_users()]
        except FetchFailed as e:
            print(f"Could not read the user directory: {e}")
            return 1

    print(f"Reconciling conversations of {len(identities)} users...")
    repaired_total = 0
    failures = 0
    for identity in identities:
        try:
            repaired = await conversations.reconcile_conversations(identity)
        except StoreError as e:
            failures += 1
            print(f"  {identity}: failed ({e})")
            continue
        if repaired:
            print(f"  {identity}: repaired {repaired} summaries")
        repaired_total += repaired

    print(f"Done. {repaired_total} summaries repaired, {failures} users failed.")
    return 1 if failures else 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Repair stale latest-message previews in conversation summaries",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reconcile_conversations.py
  python scripts/reconcile_conversations.py alice@example.com bob-example-com
        """,
    )
    parser.add_argument(
        "users",
        nargs="*",
        help="Emails or safe identities to reconcile (default: every registered user)",
    )
    args = parser.parse_args()
    return asyncio.run(reconcile(args.users))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        sys.exit(130)
