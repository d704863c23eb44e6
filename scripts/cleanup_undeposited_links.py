#!/usr/bin/env python3
"""
UNDEPOSITED LINK CLEANUP SCRIPT

PURPOSE: Remove payment links that never received a deposit
- Links still in PENDING_DEPOSIT after the cutoff are deleted
- Deposited and claimed links are never touched

USAGE:
    python scripts/cleanup_undeposited_links.py                         # Purge links older than 24h
    python scripts/cleanup_undeposited_links.py --older-than-hours 72   # Custom cutoff
    python scripts/cleanup_undeposited_links.py --dry-run               # Show what would be removed
"""

import sys
import os
import argparse
import logging
from datetime import timedelta
from typing import List, Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv  # noqa: E402

load_dotenv()

from database import Database  # noqa: E402
from services.link_ledger import LinkLedger  # noqa: E402

logger = logging.getLogger(__name__)

DEFAULT_OLDER_THAN_HOURS = 24


class UndepositedLinkCleanup:
    """Finds and purges links stuck waiting for a deposit"""

    def __init__(self, database: Database):
        self.ledger = LinkLedger(database)

    def run(self, older_than_hours: float, dry_run: bool = False) -> List[str]:
        if older_than_hours <= 0:
            raise ValueError("--older-than-hours must be positive")

        link_ids = self.ledger.purge_undeposited(timedelta(hours=older_than_hours), dry_run=dry_run)

        if not link_ids:
            logger.info(f"✅ No undeposited links older than {older_than_hours}h")
        elif dry_run:
            logger.info(f"🔍 DRY RUN: {len(link_ids)} link(s) would be removed:")
            for link_id in link_ids:
                logger.info(f"   - {link_id}")
        else:
            logger.info(f"🧹 Removed {len(link_ids)} undeposited link(s) older than {older_than_hours}h")
        return link_ids


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Remove payment links that never received a deposit')
    parser.add_argument('--older-than-hours', type=float, default=DEFAULT_OLDER_THAN_HOURS,
                        help=f'Only remove links created more than this many hours ago (default {DEFAULT_OLDER_THAN_HOURS})')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be removed without deleting')
    parser.add_argument('--database-url', type=str, default=None, help='Override DATABASE_URL')

    args = parser.parse_args(argv)

    database = Database(database_url=args.database_url)
    try:
        database.create_tables()
        UndepositedLinkCleanup(database).run(args.older_than_hours, dry_run=args.dry_run)
    except ValueError as e:
        logger.error(f"❌ {e}")
        return 2
    finally:
        database.dispose()
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    sys.exit(main())
