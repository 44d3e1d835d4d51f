"""Create DB mappings/tables for Mikke.

This script binds the PonyORM models using the same environment variables
that the application uses and calls `init_db(create_tables=True)` to
create any missing tables (User, Spot, ProgressRecord, EarnedBadge).

Usage:
  docker compose run --rm web python scripts/create_tables.py

With --drop flag (DESTRUCTIVE - drops all tables before creating):
  python scripts/create_tables.py --drop

The script is idempotent: it will not re-bind an already-initialized DB.
"""

import os
import sys
import argparse

# Running `python scripts/create_tables.py` puts scripts/ first on sys.path;
# the project modules live one level up.
_HERE = os.path.dirname(__file__)
_PROJECT_ROOT = os.path.abspath(os.path.join(_HERE, '..'))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from models import init_db, db


def drop_all_tables():
    """Drop all mapped tables and their data. Returns True on success."""
    print('WARNING: Dropping all tables...')
    init_db(create_tables=False)
    provider = getattr(db, 'provider', None)
    if not provider:
        print('Error: Database provider not initialized')
        return False
    print(f'Database provider: {getattr(provider, "dialect", provider)}')
    try:
        db.drop_all_tables(with_all_data=True)
    except Exception as e:
        print(f'Error dropping tables: {e}')
        return False
    print('Dropped all tables')
    return True


if __name__ == '__main__':
    parser = argparse.ArgumentParser(
        description='Create database tables for Mikke',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '--drop',
        action='store_true',
        help='Drop all existing tables before creating new ones (DESTRUCTIVE)'
    )
    args = parser.parse_args()

    if args.drop:
        print('=' * 60)
        print('WARNING: --drop flag specified')
        print('This will DELETE ALL DATA from the database!')
        print('=' * 60)
        response = input('Are you sure you want to continue? (yes/no): ')
        if response.lower() != 'yes':
            print('Aborted.')
            sys.exit(0)
        if drop_all_tables():
            print('Successfully dropped all tables')
        else:
            print('Failed to drop tables')
            sys.exit(1)
        # drop_all_tables leaves the mapping generated; recreate the tables
        db.create_tables()
        print('Done. Pony provider:', getattr(db, 'provider', None))
        sys.exit(0)

    print('Binding DB and generating mappings (create_tables=True)')
    init_db(create_tables=True)
    print('Done. Pony provider:', getattr(db, 'provider', None))
