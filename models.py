import os
from pony.orm import Database, Required, Optional, Set, PrimaryKey, composite_key
from datetime import datetime, timezone

"""PonyORM models and initialization.

Defines User, Spot, ProgressRecord and EarnedBadge entities. Spots are the
authoritative record of what a user posted; ProgressRecord holds the running
per-category count the badge engine increments, and EarnedBadge is the
append-only record of badges awarded. The init_db helper binds to Postgres
when configured and falls back to a local sqlite file for development.
"""

db = Database()


def utcnow():
    # Stored naive (UTC). sqlite returns naive datetimes on read, and mixing
    # aware and naive values makes Pony raise UnrepeatableReadError.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value):
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc(value):
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(db.Entity):
    # Opaque id issued by the auth provider
    username = Required(str, unique=True)
    display_name = Optional(str)
    photo_url = Optional(str, nullable=True)
    created_at = Optional(datetime, default=utcnow)
    spots = Set('Spot')
    progress = Set('ProgressRecord')
    badges = Set('EarnedBadge')
    ratings = Set('SpotRating')


class Spot(db.Entity):
    user = Required(User)
    title = Required(str)
    description = Optional(str)
    # one of categories.AchievementCategory values
    category = Required(str)
    # free-form sub category / tags picked in the category selector
    sub_category = Optional(str, nullable=True)
    latitude = Required(float)
    longitude = Required(float)
    address = Optional(str, nullable=True)
    # JSON-encoded list of image URLs in object storage
    images = Optional(str, default='[]')
    likes_count = Optional(int, default=0)
    dislikes_count = Optional(int, default=0)
    views_count = Optional(int, default=0)
    created_at = Optional(datetime, default=utcnow)
    updated_at = Optional(datetime, default=utcnow)
    # soft delete flag; inactive spots no longer count towards progress
    is_active = Optional(bool, default=True)
    ratings = Set('SpotRating')


class SpotRating(db.Entity):
    spot = Required(Spot)
    user = Required(User)
    # 'like' or 'dislike'
    rating = Required(str)
    created_at = Optional(datetime, default=utcnow)
    updated_at = Optional(datetime, default=utcnow)
    # one rating per user per spot
    composite_key(spot, user)


class ProgressRecord(db.Entity):
    user = Required(User)
    category = Required(str)
    post_count = Required(int, default=0, min=0)
    updated_at = Optional(datetime, default=utcnow)
    composite_key(user, category)


class EarnedBadge(db.Entity):
    id = PrimaryKey(int, auto=True)
    user = Required(User)
    category = Required(str)
    level = Required(str)
    earned_at = Required(datetime, default=utcnow)
    count_at_earn = Required(int)
    required_count = Required(int)
    # at most one badge per (user, category, level)
    composite_key(user, category, level)


def init_db(path=None, create_tables=True):
    # Binding is process-wide; later callers reuse the existing binding and
    # only generate the mapping if a previous caller skipped it.
    if getattr(db, 'provider', None) is not None:
        if getattr(db, 'schema', None) is None:
            db.generate_mapping(create_tables=create_tables)
        return db

    # Priority 1: DATABASE_URL (Postgres DSN)
    database_url = os.environ.get('DATABASE_URL')
    if database_url:
        db.bind(provider='postgres', dsn=database_url)

    # Priority 2: explicit PG env vars (PGHOST/PGPORT/PGUSER/PGPASSWORD/PGDATABASE)
    if getattr(db, 'provider', None) is None:
        pg_host = os.environ.get('PGHOST')
        pg_db = os.environ.get('PGDATABASE')
        if pg_host and pg_db:
            pg_port = os.environ.get('PGPORT', '5432')
            pg_user = os.environ.get('PGUSER', os.environ.get('POSTGRES_USER', 'postgres'))
            pg_password = os.environ.get('PGPASSWORD', os.environ.get('POSTGRES_PASSWORD', ''))
            dsn = f"postgresql://{pg_user}:{pg_password}@{pg_host}:{pg_port}/{pg_db}"
            db.bind(provider='postgres', dsn=dsn)

    # Priority 3: sqlite fallback
    if getattr(db, 'provider', None) is None:
        repo_root = os.path.dirname(os.path.abspath(__file__))
        requested_path = path or os.environ.get('DATABASE_FILE') or os.path.join(repo_root, 'db.sqlite')
        # ':memory:' gives every connection its own database, so the web test
        # client and the test code would not see each other's rows. Map it to
        # one shared file under .run/ instead.
        if requested_path == ':memory:':
            shared_dir = os.path.join(repo_root, '.run')
            os.makedirs(shared_dir, exist_ok=True)
            requested_path = os.path.join(shared_dir, 'pytest_db.sqlite')
        parent = os.path.dirname(requested_path)
        if parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)
        db.bind('sqlite', filename=requested_path, create_db=True)

    db.generate_mapping(create_tables=create_tables)
    return db
