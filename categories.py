"""Spot categories that progress and badges are tracked for.

The set is closed: anything outside `AchievementCategory` is a programming
or input error and is reported as `UnknownCategory`.
"""
from enum import Enum

from exceptions import UnknownCategory


class AchievementCategory(str, Enum):
    PARK_OUTDOOR = 'park_outdoor'
    FAMILY = 'family'
    ENTERTAINMENT = 'entertainment'
    FOOD_DRINK = 'food_drink'
    SHOPPING = 'shopping'
    TOURISM = 'tourism'
    VENDING_MACHINE = 'vending_machine'
    PET = 'pet'
    PUBLIC_FACILITY = 'public_facility'
    TRANSPORTATION = 'transportation'
    OTHERS = 'others'


# label/icon/color shown on the badge screens
CATEGORY_METADATA = {
    AchievementCategory.PARK_OUTDOOR: {'label': '公園探検家', 'icon': '🌳', 'color': '#22C55E'},
    AchievementCategory.FAMILY: {'label': '家族の味方', 'icon': '👨‍👩‍👧‍👦', 'color': '#EC4899'},
    AchievementCategory.ENTERTAINMENT: {'label': 'エンタメマスター', 'icon': '🎮', 'color': '#8B5CF6'},
    AchievementCategory.FOOD_DRINK: {'label': 'グルメハンター', 'icon': '🍽️', 'color': '#F97316'},
    AchievementCategory.SHOPPING: {'label': 'ショッピング達人', 'icon': '🛍️', 'color': '#6B7280'},
    AchievementCategory.TOURISM: {'label': '観光スポッター', 'icon': '📸', 'color': '#EAB308'},
    AchievementCategory.VENDING_MACHINE: {'label': '自販機ソムリエ', 'icon': '🥤', 'color': '#F59E0B'},
    AchievementCategory.PET: {'label': 'ペット愛好家', 'icon': '🐕', 'color': '#84CC16'},
    AchievementCategory.PUBLIC_FACILITY: {'label': '公共施設マスター', 'icon': '🏢', 'color': '#06B6D4'},
    AchievementCategory.TRANSPORTATION: {'label': '交通エキスパート', 'icon': '🚗', 'color': '#3B82F6'},
    AchievementCategory.OTHERS: {'label': '発見者', 'icon': '✨', 'color': '#9CA3AF'},
}


def coerce_category(value):
    """Return the `AchievementCategory` for `value` or raise `UnknownCategory`.

    Accepts enum members as-is and raw strings such as 'food_drink'.
    """
    if isinstance(value, AchievementCategory):
        return value
    try:
        return AchievementCategory(str(value).strip())
    except ValueError:
        raise UnknownCategory(value) from None
