import logging
from datetime import datetime, timezone

import pytest
from pony.orm import db_session, select

from badges import BadgeLevel
from categories import AchievementCategory
from engine import BadgeEngine
from exceptions import StoreUnavailable, UnknownCategory
from models import init_db, User, Spot, EarnedBadge
from store import PonyProgressStore

PARK = AchievementCategory.PARK_OUTDOOR
FOOD = AchievementCategory.FOOD_DRINK

FIXED_NOW = datetime(2026, 10, 1, 9, 30, tzinfo=timezone.utc)


def setup_module(module):
    init_db()


def _engine(store=None):
    return BadgeEngine(store or PonyProgressStore(), clock=lambda: FIXED_NOW)


def _badge_rows(user_id, category, level):
    with db_session:
        return select(
            b for b in EarnedBadge
            if b.user.username == user_id and b.category == category and b.level == level
        ).count()


def _add_spots(user_id, category, n):
    with db_session:
        u = User.get(username=user_id) or User(username=user_id)
        for i in range(n):
            Spot(user=u, title=f'spot {i}', category=category, latitude=35.6, longitude=139.7)


def _deactivate(user_id, category, n):
    with db_session:
        spots = select(s for s in Spot if s.user.username == user_id and s.category == category and s.is_active)[:n]
        for s in spots:
            s.is_active = False


class JumpStore(PonyProgressStore):
    """Store whose next increment lands on a given count (bulk catch-up)."""

    def __init__(self, target):
        super().__init__()
        self.target = target

    def atomic_increment(self, user_id, category):
        old = self.get_count(user_id, category)
        self.overwrite_counts(user_id, {category: self.target})
        return old, self.target


class ReplayStore(PonyProgressStore):
    """Store that replays the first increment result instead of incrementing again."""

    def __init__(self):
        super().__init__()
        self.last = None

    def atomic_increment(self, user_id, category):
        if self.last is None:
            self.last = super().atomic_increment(user_id, category)
        return self.last


class UnavailableStore(PonyProgressStore):

    def atomic_increment(self, user_id, category):
        raise StoreUnavailable('progress store down')


def test_first_badge_after_five_events(user_id):
    engine = _engine()
    results = [engine.record_progress_event(user_id, 'park_outdoor') for _ in range(5)]
    assert results[:4] == [None, None, None, None]
    event = results[4]
    assert event is not None
    assert event.badge.level == BadgeLevel.BRONZE
    assert event.badge.category == PARK
    assert event.badge.count_at_earn == 5
    assert event.badge.earned_at == FIXED_NOW
    assert event.was_upgrade is False
    assert event.previous_level is None


def test_sixth_event_celebrates_nothing(user_id):
    engine = _engine()
    for _ in range(5):
        engine.record_progress_event(user_id, PARK)
    assert engine.record_progress_event(user_id, PARK) is None
    assert _badge_rows(user_id, 'park_outdoor', 'bronze') == 1


def test_unrelated_category_untouched(user_id):
    engine = _engine()
    for _ in range(5):
        engine.record_progress_event(user_id, PARK)
    summary = engine.get_progress_summary(user_id)
    assert summary['per_category']['park_outdoor']['count'] == 5
    assert summary['per_category']['park_outdoor']['earned_levels'] == ['bronze']
    assert summary['per_category']['food_drink']['count'] == 0
    assert summary['per_category']['food_drink']['earned_levels'] == []
    assert summary['total_badges_earned'] == 1


def test_double_crossing_gives_one_celebration_for_the_higher_level(user_id):
    seed = PonyProgressStore()
    seed.overwrite_counts(user_id, {PARK: 4})
    event = _engine(JumpStore(31)).record_progress_event(user_id, PARK)
    assert event.badge.level == BadgeLevel.SILVER
    assert event.badge.count_at_earn == 31
    assert event.previous_level is None
    assert event.was_upgrade is False
    # both crossed badges are stored
    assert _badge_rows(user_id, 'park_outdoor', 'bronze') == 1
    assert _badge_rows(user_id, 'park_outdoor', 'silver') == 1


def test_upgrade_detection(user_id):
    s = PonyProgressStore()
    s.overwrite_counts(user_id, {PARK: 29})
    s.insert_badge(user_id, PARK, BadgeLevel.BRONZE, FIXED_NOW, 5)
    event = _engine(s).record_progress_event(user_id, PARK)
    assert event.badge.level == BadgeLevel.SILVER
    assert event.was_upgrade is True
    assert event.previous_level == BadgeLevel.BRONZE


def test_replayed_increment_does_not_duplicate_badges(user_id):
    PonyProgressStore().overwrite_counts(user_id, {PARK: 4})
    engine = _engine(ReplayStore())
    first = engine.record_progress_event(user_id, PARK)
    second = engine.record_progress_event(user_id, PARK)
    assert first is not None and first.badge.level == BadgeLevel.BRONZE
    assert second is None
    assert _badge_rows(user_id, 'park_outdoor', 'bronze') == 1


def test_store_unavailable_propagates(user_id):
    with pytest.raises(StoreUnavailable):
        _engine(UnavailableStore()).record_progress_event(user_id, PARK)


def test_unknown_category_rejected_before_any_write(user_id):
    engine = _engine()
    with pytest.raises(UnknownCategory):
        engine.record_progress_event(user_id, 'karaoke')
    assert all(n == 0 for n in engine.store.get_counts(user_id).values())


def test_reconcile_overwrites_counts_and_is_idempotent(user_id):
    _add_spots(user_id, 'park_outdoor', 3)
    _add_spots(user_id, 'pet', 1)
    engine = _engine()
    # drift: stored count is ahead of the real number of spots
    engine.store.overwrite_counts(user_id, {PARK: 9})
    first = engine.reconcile(user_id)
    second = engine.reconcile(user_id)
    assert first == second
    assert first['park_outdoor'] == 3
    assert first['pet'] == 1
    assert first['food_drink'] == 0
    assert engine.get_progress_summary(user_id)['per_category']['park_outdoor']['count'] == 3


def test_badge_survives_downward_recount(user_id, caplog):
    _add_spots(user_id, 'park_outdoor', 5)
    engine = _engine()
    for _ in range(5):
        engine.record_progress_event(user_id, PARK)
    _deactivate(user_id, 'park_outdoor', 2)

    with caplog.at_level(logging.WARNING, logger='mikke.engine'):
        counts = engine.reconcile(user_id)
    assert counts['park_outdoor'] == 3
    assert any('holds bronze badge' in r.getMessage() for r in caplog.records)

    entry = engine.get_progress_summary(user_id)['per_category']['park_outdoor']
    assert entry['count'] == 3
    assert entry['earned_levels'] == ['bronze']


def test_reconcile_records_missing_badges_without_duplicates(user_id):
    _add_spots(user_id, 'tourism', 6)
    engine = _engine()
    engine.reconcile(user_id)
    engine.reconcile(user_id)
    assert _badge_rows(user_id, 'tourism', 'bronze') == 1
    badges = engine.store.list_badges(user_id)
    assert [(b.id, b.count_at_earn) for b in badges] == [('tourism_bronze', 6)]


def test_statistics(user_id):
    engine = _engine()
    engine.store.overwrite_counts(user_id, {PARK: 5, FOOD: 28, AchievementCategory.PET: 2})
    engine.store.insert_badge(user_id, PARK, 'bronze', FIXED_NOW, 5)
    engine.store.insert_badge(user_id, FOOD, 'bronze', FIXED_NOW, 5)
    stats = engine.get_badge_statistics(user_id)
    assert stats['total_possible_badges'] == 33
    assert stats['earned_badges_count'] == 2
    assert stats['progress_percentage'] == 6
    assert stats['next_milestone'] == {'category': 'food_drink', 'level': 'silver', 'needed': 2}


def test_statistics_for_new_user(user_id):
    stats = _engine().get_badge_statistics(user_id)
    assert stats['earned_badges_count'] == 0
    assert stats['progress_percentage'] == 0
    # every category needs 5; the first declared category wins the tie
    assert stats['next_milestone'] == {'category': 'park_outdoor', 'level': 'bronze', 'needed': 5}
