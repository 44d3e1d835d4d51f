"""Spot publishing, browsing, rating and removal.

Publishing a spot is the primary action; badge tracking rides along behind
it. The spot is committed first and the badge check runs afterwards, so a
progress store failure is logged and reported back as
`badge_update_unavailable` while the spot stays published.
"""
import json
import logging

from pony.orm import db_session, select, desc

from categories import coerce_category
from exceptions import StoreUnavailable
from models import User, Spot, SpotRating, as_utc, utcnow

logger = logging.getLogger('mikke.spots')

RATINGS = ('like', 'dislike')


def spot_to_dict(s):
    try:
        images = json.loads(s.images or '[]')
    except ValueError:
        images = []
    return {
        'id': s.id,
        'user_id': s.user.username,
        'title': s.title,
        'description': s.description,
        'category': s.category,
        'sub_category': s.sub_category,
        'location': {'latitude': s.latitude, 'longitude': s.longitude, 'address': s.address},
        'images': images,
        'author': {'display_name': s.user.display_name or None, 'photo_url': s.user.photo_url},
        'stats': {'likes_count': s.likes_count, 'dislikes_count': s.dislikes_count, 'views_count': s.views_count},
        'created_at': as_utc(s.created_at).isoformat() if s.created_at else None,
        'updated_at': as_utc(s.updated_at).isoformat() if s.updated_at else None,
        'is_active': bool(s.is_active),
    }


def _validate_location(latitude, longitude):
    lat = float(latitude)
    lng = float(longitude)
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        raise ValueError('location out of range')
    return lat, lng


def create_spot(engine, user_id, title, category, latitude, longitude,
                description='', address=None, images=None, sub_category=None):
    """Publish a spot and record badge progress for its category.

    Returns (spot_dict, celebration, badge_update_unavailable). `celebration`
    is a `CelebrationEvent` or None. Raises UnknownCategory / ValueError for
    invalid input before anything is written.
    """
    category = coerce_category(category)
    title = (title or '').strip()
    if not title:
        raise ValueError('title required')
    lat, lng = _validate_location(latitude, longitude)

    with db_session:
        u = User.get(username=user_id)
        if not u:
            u = User(username=user_id)
        s = Spot(
            user=u,
            title=title,
            description=description or '',
            category=category.value,
            sub_category=sub_category,
            latitude=lat,
            longitude=lng,
            address=address,
            images=json.dumps(list(images or [])),
        )
        s.flush()
        spot = spot_to_dict(s)
    logger.info('Spot %s published user=%s category=%s', spot['id'], user_id, category.value)

    try:
        celebration = engine.record_progress_event(user_id, category)
    except StoreUnavailable as e:
        logger.warning('Badge update unavailable for spot=%s user=%s: %s', spot['id'], user_id, e)
        return spot, None, True
    return spot, celebration, False


def delete_spot(spot_id, user_id):
    """Soft-delete a spot owned by `user_id`.

    Returns True when the spot was deactivated, False when it does not exist,
    is not owned by the user, or is already inactive. Progress counts are left
    alone; reconciliation brings them back in line with active spots.
    """
    with db_session:
        s = Spot.get(id=spot_id)
        if not s or s.user.username != user_id or not s.is_active:
            return False
        s.is_active = False
        s.updated_at = utcnow()
    logger.info('Spot %s deactivated user=%s', spot_id, user_id)
    return True


def list_user_spots(user_id, limit=20):
    with db_session:
        q = select(s for s in Spot if s.user.username == user_id and s.is_active).order_by(desc(Spot.id))
        return [spot_to_dict(s) for s in q[:limit]]


def list_spots(category=None, limit=20):
    """Browse active spots from every user, newest first, optionally by category."""
    cat = coerce_category(category).value if category else None
    with db_session:
        q = select(s for s in Spot if s.is_active)
        if cat:
            q = q.filter(lambda s: s.category == cat)
        q = q.order_by(desc(Spot.id))
        return [spot_to_dict(s) for s in q[:limit]]


def increment_view_count(spot_id):
    """Count one view of an active spot and return it, or None if it is gone."""

    @db_session(retry=3)
    def _view():
        s = Spot.get_for_update(id=spot_id)
        if not s or not s.is_active:
            return None
        s.views_count = (s.views_count or 0) + 1
        return spot_to_dict(s)

    return _view()


def rate_spot(spot_id, user_id, rating):
    """Like or dislike a spot on behalf of `user_id`.

    Sending the rating the user already gave removes it; sending the other
    one switches it. Returns the user's rating after the call (None when
    removed) with the spot's like/dislike totals, or None when the spot does
    not exist or is inactive.
    """
    if rating not in RATINGS:
        raise ValueError(f'rating must be one of: {", ".join(RATINGS)}')

    @db_session(retry=3)
    def _rate():
        s = Spot.get_for_update(id=spot_id)
        if not s or not s.is_active:
            return None
        u = User.get(username=user_id)
        if not u:
            u = User(username=user_id)
        totals = {'like': s.likes_count or 0, 'dislike': s.dislikes_count or 0}
        existing = SpotRating.get(spot=s, user=u)
        if existing is None:
            SpotRating(spot=s, user=u, rating=rating)
            totals[rating] += 1
            current = rating
        elif existing.rating == rating:
            existing.delete()
            totals[rating] = max(0, totals[rating] - 1)
            current = None
        else:
            totals[existing.rating] = max(0, totals[existing.rating] - 1)
            totals[rating] += 1
            existing.rating = rating
            existing.updated_at = utcnow()
            current = rating
        s.likes_count = totals['like']
        s.dislikes_count = totals['dislike']
        return {
            'spot_id': s.id,
            'rating': current,
            'likes_count': totals['like'],
            'dislikes_count': totals['dislike'],
        }

    result = _rate()
    if result is not None:
        logger.info('Spot %s rated user=%s rating=%s', spot_id, user_id, result['rating'])
    return result
