"""Error types raised (or logged) by the badge engine."""


class MikkeError(Exception):
    """Base class for application errors."""


class StoreUnavailable(MikkeError):
    """The progress store could not be reached or the transaction failed.

    Callers that trigger badge tracking as a side effect of a primary action
    (publishing a spot) must catch this and let the primary action succeed.
    """


class UnknownCategory(MikkeError, LookupError):
    """A category outside the fixed category set was supplied."""

    def __init__(self, category):
        self.category = category
        super().__init__(f'unknown category: {category!r}')


class InconsistentCount(MikkeError, Warning):
    """A recount fell below a threshold for which a badge was already awarded.

    This is reported through logging only; badges are never revoked.
    """

    def __init__(self, user_id, category, count, level, required_count):
        self.user_id = user_id
        self.category = category
        self.count = count
        self.level = level
        self.required_count = required_count
        super().__init__(
            f'user={user_id} category={category} recounted to {count} '
            f'but holds {level} badge (requires {required_count}); keeping badge'
        )
