"""Badge ladder, threshold evaluation and badge value types.

Every category shares the same ladder: bronze at 5 spots, silver at 30 and
gold at 100. `evaluate` is a pure function over that table; it decides which
thresholds a count change crosses and leaves persistence to the engine.
"""
from collections import namedtuple
from enum import Enum

from categories import AchievementCategory, CATEGORY_METADATA, coerce_category


class BadgeLevel(str, Enum):
    BRONZE = 'bronze'
    SILVER = 'silver'
    GOLD = 'gold'


Threshold = namedtuple('Threshold', ['level', 'required_count'])

THRESHOLDS = (
    Threshold(BadgeLevel.BRONZE, 5),
    Threshold(BadgeLevel.SILVER, 30),
    Threshold(BadgeLevel.GOLD, 100),
)

LEVEL_METADATA = {
    BadgeLevel.BRONZE: {'color': '#CD7F32', 'gradient': 'linear-gradient(135deg, #CD7F32 0%, #8B4513 100%)'},
    BadgeLevel.SILVER: {'color': '#C0C0C0', 'gradient': 'linear-gradient(135deg, #E8E8E8 0%, #A8A8A8 100%)'},
    BadgeLevel.GOLD: {'color': '#FFD700', 'gradient': 'linear-gradient(135deg, #FFD700 0%, #FFA500 100%)'},
}


def _validate_table():
    # Raised at import so a broken ladder never reaches a request handler.
    counts = [t.required_count for t in THRESHOLDS]
    if any(c <= 0 for c in counts):
        raise RuntimeError('badge thresholds must be positive')
    if any(b <= a for a, b in zip(counts, counts[1:])):
        raise RuntimeError('badge thresholds must be strictly increasing')
    if [t.level for t in THRESHOLDS] != list(BadgeLevel):
        raise RuntimeError('badge ladder order must match BadgeLevel order')
    missing = [c for c in AchievementCategory if c not in CATEGORY_METADATA]
    if missing:
        raise RuntimeError(f'categories without metadata: {missing}')


_validate_table()

_LADDERS = {category: THRESHOLDS for category in AchievementCategory}
_LEVEL_RANK = {t.level: i for i, t in enumerate(THRESHOLDS)}


def thresholds_for(category):
    """Return the ladder for `category`, ascending by required count."""
    return _LADDERS[coerce_category(category)]


def level_rank(level):
    return _LEVEL_RANK[BadgeLevel(level)]


def required_count_for(level):
    return THRESHOLDS[level_rank(level)].required_count


def evaluate(category, old_count, new_count):
    """Return the thresholds crossed when a count goes from old to new.

    Each returned threshold satisfies old_count < required_count <= new_count
    and the list is in ascending level order. A non-increasing change never
    crosses anything.
    """
    ladder = thresholds_for(category)
    if new_count <= old_count:
        return []
    return [t for t in ladder if old_count < t.required_count <= new_count]


def level_progress(count):
    """Describe where `count` sits on the ladder.

    Returns a dict with `current_level` (highest level met, or None),
    `next_level` (None once gold is reached) and `next_threshold` (the gold
    threshold once gold is reached).
    """
    current = None
    nxt = None
    for t in THRESHOLDS:
        if count >= t.required_count:
            current = t
        elif nxt is None:
            nxt = t
    return {
        'current_level': current.level.value if current else None,
        'next_level': nxt.level.value if nxt else None,
        'next_threshold': nxt.required_count if nxt else THRESHOLDS[-1].required_count,
    }


def badge_id(category, level):
    return f'{coerce_category(category).value}_{BadgeLevel(level).value}'


class Badge(namedtuple('Badge', ['user_id', 'category', 'level', 'earned_at', 'count_at_earn'])):
    """An earned badge, detached from any database session."""

    __slots__ = ()

    @property
    def id(self):
        return badge_id(self.category, self.level)

    @property
    def required_count(self):
        return required_count_for(self.level)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'category': self.category.value,
            'level': self.level.value,
            'earned_at': self.earned_at.isoformat() if self.earned_at else None,
            'count_at_earn': self.count_at_earn,
            'required_count': self.required_count,
        }


class CelebrationEvent(namedtuple('CelebrationEvent', ['badge', 'was_upgrade', 'previous_level'])):
    """The single highest badge earned by one progress event.

    Lives only for the call that produced it; nothing persists it.
    """

    __slots__ = ()

    def to_dict(self):
        return {
            'badge': self.badge.to_dict(),
            'was_upgrade': self.was_upgrade,
            'previous_level': self.previous_level.value if self.previous_level else None,
        }


def get_badge_meta(category, level):
    category = coerce_category(category)
    level = BadgeLevel(level)
    meta = dict(CATEGORY_METADATA[category])
    meta.update({
        'id': badge_id(category, level),
        'category': category.value,
        'level': level.value,
        'required_count': required_count_for(level),
        'level_color': LEVEL_METADATA[level]['color'],
        'gradient': LEVEL_METADATA[level]['gradient'],
    })
    return meta


def catalog():
    """Every badge that can be earned, keyed by badge id."""
    return {
        badge_id(c, t.level): get_badge_meta(c, t.level)
        for c in AchievementCategory
        for t in THRESHOLDS
    }
