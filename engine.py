"""Badge engine: turns qualifying events into progress, badges and celebrations.

`BadgeEngine.record_progress_event` is called once per published spot. It
increments the (user, category) count through the store, asks `evaluate`
which thresholds that increment crossed, records any badge not already
present, and hands back at most one `CelebrationEvent` for the highest badge
it recorded. `reconcile` recounts progress from the user's active spots.
"""
import logging
from datetime import datetime, timezone

from badges import (
    THRESHOLDS,
    Badge,
    CelebrationEvent,
    evaluate,
    level_progress,
    level_rank,
    thresholds_for,
)
from categories import AchievementCategory, coerce_category
from exceptions import InconsistentCount

logger = logging.getLogger('mikke.engine')


class BadgeEngine:

    def __init__(self, store, clock=None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def record_progress_event(self, user_id, category):
        """Count one qualifying action and award any badge it unlocks.

        Returns a `CelebrationEvent` for the highest newly recorded badge, or
        None. Raises `StoreUnavailable` if the store fails; the caller decides
        whether to surface that, and must not undo its own action because of it.
        """
        category = coerce_category(category)
        old_count, new_count = self.store.atomic_increment(user_id, category)
        crossed = evaluate(category, old_count, new_count)
        if not crossed:
            return None

        # levels held before this event
        held = [
            t.level for t in thresholds_for(category)
            if self.store.badge_exists(user_id, category, t.level)
        ]
        earned_at = self._clock()
        recorded = []
        for t in crossed:
            if t.level in held:
                continue
            # insert_badge reports False when a replay or a concurrent event
            # got there first; that badge is not ours to celebrate
            if self.store.insert_badge(user_id, category, t.level, earned_at, new_count):
                badge = Badge(user_id, category, t.level, earned_at, new_count)
                recorded.append(badge)
                logger.info('Awarded %s badge user=%s count=%d', badge.id, user_id, new_count)

        if not recorded:
            return None
        top = max(recorded, key=lambda b: level_rank(b.level))
        previous = max(held, key=level_rank) if held else None
        was_upgrade = any(level_rank(lvl) < level_rank(top.level) for lvl in held)
        return CelebrationEvent(top, was_upgrade, previous)

    def get_progress_summary(self, user_id):
        counts = self.store.get_counts(user_id)
        badges = self.store.list_badges(user_id)
        earned = {c: [] for c in AchievementCategory}
        for b in badges:
            earned[b.category].append(b.level.value)

        per_category = {}
        for c in AchievementCategory:
            n = counts.get(c, 0)
            entry = {'count': n, 'earned_levels': earned[c]}
            entry.update(level_progress(n))
            per_category[c.value] = entry
        return {
            'user_id': user_id,
            'per_category': per_category,
            'total_badges_earned': len(badges),
            'badges': [b.to_dict() for b in badges],
        }

    def get_badge_statistics(self, user_id):
        """Overall completion and the closest next badge for a user."""
        summary = self.get_progress_summary(user_id)
        total_possible = len(AchievementCategory) * len(THRESHOLDS)
        earned_count = summary['total_badges_earned']

        next_milestone = None
        min_needed = None
        for category, entry in summary['per_category'].items():
            if not entry['next_level']:
                continue
            needed = entry['next_threshold'] - entry['count']
            if min_needed is None or needed < min_needed:
                min_needed = needed
                next_milestone = {'category': category, 'level': entry['next_level'], 'needed': needed}

        return {
            'total_possible_badges': total_possible,
            'earned_badges_count': earned_count,
            'progress_percentage': int(earned_count * 100 / total_possible + 0.5),
            'next_milestone': next_milestone,
        }

    def reconcile(self, user_id):
        """Recount progress from the user's active spots and store it.

        Badges are never revoked: a held badge whose threshold the recount no
        longer meets is logged as `InconsistentCount` and kept. Thresholds the
        recount meets without a stored badge get one recorded (no celebration).
        Returns {category value: count}.
        """
        counts = self.store.recount_qualifying_events(user_id)
        self.store.overwrite_counts(user_id, counts)

        held = self.store.list_badges(user_id)
        held_keys = set()
        for b in held:
            held_keys.add((b.category, b.level))
            n = counts.get(b.category, 0)
            if n < b.required_count:
                logger.warning('%s', InconsistentCount(user_id, b.category.value, n, b.level.value, b.required_count))

        now = self._clock()
        for category, n in counts.items():
            for t in evaluate(category, 0, n):
                if (category, t.level) in held_keys:
                    continue
                if self.store.insert_badge(user_id, category, t.level, now, n):
                    logger.info('Reconcile recorded missing %s_%s badge user=%s count=%d',
                                category.value, t.level.value, user_id, n)

        logger.debug('Reconciled progress user=%s counts=%s', user_id, {c.value: n for c, n in counts.items()})
        return {c.value: n for c, n in counts.items()}
