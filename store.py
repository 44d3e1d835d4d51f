"""Progress store: the persistence boundary of the badge engine.

`ProgressStore` lists the operations the engine relies on. The engine never
locks or caches anything itself; serialising increments for the same
(user, category) pair is the store's job. `PonyProgressStore` implements it
on top of the PonyORM models, using a row lock for the increment and the
(user, category, level) composite key for badge uniqueness.
"""
import functools
import logging

from pony.orm import db_session, select, count, TransactionError
from pony.orm.dbapiprovider import DBException

from badges import Badge, BadgeLevel, level_rank, required_count_for
from categories import AchievementCategory, coerce_category
from exceptions import StoreUnavailable
from models import User, Spot, ProgressRecord, EarnedBadge, utcnow, as_utc, to_naive_utc

logger = logging.getLogger('mikke.store')


class ProgressStore:
    """Operations the badge engine needs from persistence.

    Implementations must make `atomic_increment` exactly-once per call and
    linearisable per (user, category), and must make `insert_badge` safe to
    call when the badge already exists. Any backend failure surfaces as
    `StoreUnavailable`.
    """

    def get_count(self, user_id, category):
        raise NotImplementedError

    def get_counts(self, user_id):
        """Return {AchievementCategory: count} for every category."""
        raise NotImplementedError

    def atomic_increment(self, user_id, category):
        """Add one to the count and return (old_count, new_count)."""
        raise NotImplementedError

    def badge_exists(self, user_id, category, level):
        raise NotImplementedError

    def insert_badge(self, user_id, category, level, earned_at, count_at_earn):
        """Record a badge. Returns False when it was already present."""
        raise NotImplementedError

    def list_badges(self, user_id):
        """Return the user's badges as `badges.Badge` values."""
        raise NotImplementedError

    def overwrite_counts(self, user_id, counts):
        raise NotImplementedError

    def recount_qualifying_events(self, user_id):
        """Recount {AchievementCategory: count} from the authoritative events."""
        raise NotImplementedError

    def list_user_ids(self):
        raise NotImplementedError


def _unavailable_on_db_error(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (DBException, TransactionError) as e:
            logger.error('Progress store call %s failed: %s', func.__name__, e)
            raise StoreUnavailable(f'{func.__name__} failed: {e}') from e
    return wrapper


def _zero_counts():
    return {c: 0 for c in AchievementCategory}


class PonyProgressStore(ProgressStore):
    """ProgressStore backed by the PonyORM `db` bound in models.init_db."""

    def __init__(self, retries=3):
        self.retries = retries

    def _user(self, user_id, create=False):
        u = User.get(username=user_id)
        if u is None and create:
            u = User(username=user_id)
        return u

    @_unavailable_on_db_error
    def get_count(self, user_id, category):
        cat = coerce_category(category).value
        with db_session:
            rec = ProgressRecord.get(lambda r: r.user.username == user_id and r.category == cat)
            return rec.post_count if rec else 0

    @_unavailable_on_db_error
    def get_counts(self, user_id):
        counts = _zero_counts()
        with db_session:
            rows = select((r.category, r.post_count) for r in ProgressRecord if r.user.username == user_id)[:]
        for cat, n in rows:
            counts[coerce_category(cat)] = n
        return counts

    @_unavailable_on_db_error
    def atomic_increment(self, user_id, category):
        category = coerce_category(category)

        # Pony retries the whole transaction on TransactionError, which covers
        # two first-time increments racing to create the same row.
        @db_session(retry=self.retries)
        def _increment():
            u = self._user(user_id, create=True)
            rec = ProgressRecord.get_for_update(user=u, category=category.value)
            if rec is None:
                rec = ProgressRecord(user=u, category=category.value, post_count=0)
            old = rec.post_count
            rec.post_count = old + 1
            rec.updated_at = utcnow()
            return old, old + 1

        old, new = _increment()
        logger.debug('Incremented progress user=%s category=%s %d -> %d', user_id, category.value, old, new)
        return old, new

    @_unavailable_on_db_error
    def badge_exists(self, user_id, category, level):
        cat = coerce_category(category).value
        lvl = BadgeLevel(level).value
        with db_session:
            return EarnedBadge.exists(lambda b: b.user.username == user_id and b.category == cat and b.level == lvl)

    @_unavailable_on_db_error
    def insert_badge(self, user_id, category, level, earned_at, count_at_earn):
        category = coerce_category(category)
        level = BadgeLevel(level)

        # A concurrent insert of the same badge fails the composite key; the
        # retry then sees the existing row and reports it as already present.
        @db_session(retry=self.retries)
        def _insert():
            u = self._user(user_id, create=True)
            if EarnedBadge.get(user=u, category=category.value, level=level.value):
                return False
            EarnedBadge(
                user=u,
                category=category.value,
                level=level.value,
                earned_at=to_naive_utc(earned_at),
                count_at_earn=count_at_earn,
                required_count=required_count_for(level),
            )
            return True

        return _insert()

    @_unavailable_on_db_error
    def list_badges(self, user_id):
        with db_session:
            rows = select(b for b in EarnedBadge if b.user.username == user_id)[:]
            out = [
                Badge(user_id, coerce_category(b.category), BadgeLevel(b.level), as_utc(b.earned_at), b.count_at_earn)
                for b in rows
            ]
        order = list(AchievementCategory)
        out.sort(key=lambda b: (order.index(b.category), level_rank(b.level)))
        return out

    @_unavailable_on_db_error
    def overwrite_counts(self, user_id, counts):
        normalized = {coerce_category(c): int(n) for c, n in counts.items()}

        @db_session(retry=self.retries)
        def _overwrite():
            u = self._user(user_id, create=True)
            now = utcnow()
            for category, n in normalized.items():
                rec = ProgressRecord.get_for_update(user=u, category=category.value)
                if rec is None:
                    ProgressRecord(user=u, category=category.value, post_count=n, updated_at=now)
                elif rec.post_count != n:
                    rec.post_count = n
                    rec.updated_at = now

        _overwrite()

    @_unavailable_on_db_error
    def recount_qualifying_events(self, user_id):
        counts = _zero_counts()
        with db_session:
            rows = select(
                (s.category, count(s)) for s in Spot if s.user.username == user_id and s.is_active
            )[:]
        for cat, n in rows:
            try:
                counts[coerce_category(cat)] = n
            except LookupError:
                logger.warning('Ignoring %d active spots with unknown category %r for user=%s', n, cat, user_id)
        return counts

    @_unavailable_on_db_error
    def list_user_ids(self):
        with db_session:
            return list(select(u.username for u in User))
