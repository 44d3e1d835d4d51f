#!/usr/bin/env python3
"""Recount badge progress from active spots.

Overwrites each user's per-category progress counts with the number of
active spots they have in that category. Badges already earned are kept even
when the recount falls below their threshold (a warning is logged).

Usage:
    # One user
    python scripts/reconcile_badges.py --user alice

    # Every user
    python scripts/reconcile_badges.py --all

    # Queue on the Celery worker instead of running inline
    python scripts/reconcile_badges.py --all --queue
"""

import sys
import os
import argparse
import logging

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from engine import BadgeEngine
from exceptions import StoreUnavailable
from models import init_db
from store import PonyProgressStore
from tasks import reconcile_badges_task, reconcile_all_users_task


def main(argv=None):
    parser = argparse.ArgumentParser(description='Recount badge progress from active spots')
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument('-u', '--user', help='user id to reconcile')
    target.add_argument('--all', action='store_true', help='reconcile every user')
    parser.add_argument('--queue', action='store_true', help='enqueue a Celery task instead of running inline')
    parser.add_argument('-v', '--verbose', action='store_true')
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    if args.queue:
        task = reconcile_all_users_task.delay() if args.all else reconcile_badges_task.delay(args.user)
        print(f'Queued task {task.id}')
        return 0

    init_db()
    engine = BadgeEngine(PonyProgressStore())
    user_ids = engine.store.list_user_ids() if args.all else [args.user]
    failures = 0
    for user_id in user_ids:
        try:
            counts = engine.reconcile(user_id)
        except StoreUnavailable as e:
            print(f'{user_id}: failed ({e})')
            failures += 1
            continue
        nonzero = {c: n for c, n in counts.items() if n}
        print(f'{user_id}: {nonzero or "no active spots"}')
    return 1 if failures else 0


if __name__ == '__main__':
    sys.exit(main())
