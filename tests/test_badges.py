from datetime import datetime, timezone

import pytest

from badges import (
    THRESHOLDS,
    Badge,
    BadgeLevel,
    CelebrationEvent,
    badge_id,
    catalog,
    evaluate,
    level_progress,
    thresholds_for,
)
from categories import AchievementCategory, coerce_category
from exceptions import UnknownCategory

PARK = AchievementCategory.PARK_OUTDOOR


def test_ladder_is_bronze_silver_gold():
    assert [(t.level, t.required_count) for t in THRESHOLDS] == [
        (BadgeLevel.BRONZE, 5),
        (BadgeLevel.SILVER, 30),
        (BadgeLevel.GOLD, 100),
    ]


def test_every_category_shares_the_ladder():
    for c in AchievementCategory:
        assert thresholds_for(c) == THRESHOLDS
    assert thresholds_for('food_drink') == THRESHOLDS
    assert len(AchievementCategory) == 11


def test_unknown_category_fails_loudly():
    with pytest.raises(UnknownCategory):
        thresholds_for('karaoke')
    with pytest.raises(UnknownCategory):
        evaluate('karaoke', 0, 5)
    with pytest.raises(LookupError):
        coerce_category('')


def test_coerce_category_accepts_members_and_strings():
    assert coerce_category(PARK) is PARK
    assert coerce_category(' pet ') is AchievementCategory.PET


def test_evaluate_single_crossing():
    assert evaluate(PARK, 4, 5) == [THRESHOLDS[0]]
    assert evaluate(PARK, 29, 30) == [THRESHOLDS[1]]
    assert evaluate(PARK, 99, 100) == [THRESHOLDS[2]]


def test_evaluate_no_crossing_between_thresholds():
    assert evaluate(PARK, 0, 1) == []
    assert evaluate(PARK, 5, 6) == []
    assert evaluate(PARK, 100, 101) == []


def test_evaluate_no_crossing_on_non_increase():
    assert evaluate(PARK, 10, 10) == []
    assert evaluate(PARK, 10, 5) == []
    assert evaluate(PARK, 31, 0) == []


def test_evaluate_multiple_crossings_ascending():
    assert [t.level for t in evaluate(PARK, 4, 31)] == [BadgeLevel.BRONZE, BadgeLevel.SILVER]
    assert [t.level for t in evaluate(PARK, 0, 250)] == list(BadgeLevel)


def test_evaluate_matches_range_definition():
    for old in range(0, 110, 3):
        for new in range(old, 120, 7):
            expected = [t for t in THRESHOLDS if old < t.required_count <= new]
            assert evaluate(PARK, old, new) == expected


def test_level_progress():
    assert level_progress(0) == {'current_level': None, 'next_level': 'bronze', 'next_threshold': 5}
    assert level_progress(5) == {'current_level': 'bronze', 'next_level': 'silver', 'next_threshold': 30}
    assert level_progress(42) == {'current_level': 'silver', 'next_level': 'gold', 'next_threshold': 100}
    assert level_progress(150) == {'current_level': 'gold', 'next_level': None, 'next_threshold': 100}


def test_badge_id_and_catalog():
    assert badge_id(PARK, 'bronze') == 'park_outdoor_bronze'
    cat = catalog()
    assert len(cat) == 33
    meta = cat['food_drink_gold']
    assert meta['required_count'] == 100
    assert meta['icon'] == '🍽️'
    assert meta['level_color'] == '#FFD700'


def test_celebration_to_dict():
    earned = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
    badge = Badge('u1', PARK, BadgeLevel.SILVER, earned, 30)
    event = CelebrationEvent(badge, True, BadgeLevel.BRONZE)
    d = event.to_dict()
    assert d['was_upgrade'] is True
    assert d['previous_level'] == 'bronze'
    assert d['badge']['id'] == 'park_outdoor_silver'
    assert d['badge']['required_count'] == 30
    assert d['badge']['earned_at'] == '2026-05-01T12:00:00+00:00'
    assert CelebrationEvent(badge, False, None).to_dict()['previous_level'] is None
