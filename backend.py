"""Flask web application for Mikke.

This module defines the HTTP routes for login (mock), publishing and
removing spots (which feeds badge progress), browsing, viewing and rating
spots, and reading badge progress, statistics and the badge catalog.
Reconciliation of progress counts is delegated to a Celery task.

The app uses PonyORM for persistence through `store.PonyProgressStore`.
"""

from flask import Flask, jsonify, request, session, redirect, url_for
from pony.orm import db_session
import os
import logging
from types import SimpleNamespace
from dotenv import load_dotenv
import redis

from models import init_db, User
from badges import catalog
from categories import CATEGORY_METADATA
from engine import BadgeEngine
from exceptions import StoreUnavailable, UnknownCategory
from spots import create_spot, delete_spot, increment_view_count, list_spots, list_user_spots, rate_spot
from store import PonyProgressStore
from tasks import celery_app, reconcile_badges_task

# load .env if present
load_dotenv()

# named logger for the application
logger = logging.getLogger('mikke')


def _configure_logging():
    # Allow explicit override via environment variable LOG_LEVEL or MIKKE_LOG_LEVEL
    env_level = os.environ.get('LOG_LEVEL') or os.environ.get('MIKKE_LOG_LEVEL')
    is_dev = (os.environ.get('FLASK_ENV') == 'development') or (os.environ.get('FLASK_DEBUG') == '1')
    if env_level:
        requested = getattr(logging, env_level.strip().upper(), logging.INFO)
        if not isinstance(requested, int):
            requested = logging.INFO
    else:
        requested = logging.DEBUG if is_dev else logging.INFO

    # Never allow DEBUG logging in production.
    suppressed_debug = False
    if not is_dev and requested == logging.DEBUG:
        requested = logging.INFO
        suppressed_debug = True
    level = requested
    if not logger.handlers:
        ch = logging.StreamHandler()
        ch.setLevel(level)
        fmt = logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s')
        ch.setFormatter(fmt)
        logger.addHandler(ch)
    logger.setLevel(level)
    if suppressed_debug:
        logger.warning('DEBUG logging was requested via LOG_LEVEL but suppressed because FLASK_ENV is not development')


def get_current_user():
    """Return a lightweight object with .username from the session or None.

    This does not touch the database; callers re-query inside a db_session
    when they need a Pony entity.
    """
    username = session.get('username')
    if not username:
        return None
    return SimpleNamespace(username=username)


def json_error(message, code=400):
    return jsonify({'error': message}), code


MAX_LIMIT = 100


def _limit_arg(default=20):
    """Parse ?limit= into 1..MAX_LIMIT; None when it is not a positive integer."""
    try:
        limit = int(request.args.get('limit', default))
    except ValueError:
        return None
    if limit < 1:
        return None
    return min(limit, MAX_LIMIT)


def get_engine():
    """Return the process-wide BadgeEngine, creating it on first use."""
    engine = app.config.get('BADGE_ENGINE')
    if engine is None:
        init_db()
        engine = BadgeEngine(PonyProgressStore())
        app.config['BADGE_ENGINE'] = engine
    return engine


app = Flask(__name__)
app.secret_key = os.environ.get('SECRET_KEY', os.urandom(24))

if os.environ.get('USE_PROXY_FIX') == '1':
    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)
    logger.info('ProxyFix enabled to respect X-Forwarded-* headers')

is_dev = (os.environ.get('FLASK_ENV') == 'development') or (os.environ.get('FLASK_DEBUG') == '1')

# Secure cookies in production; plain HTTP is allowed during development.
app.config.update({
    'SESSION_COOKIE_SECURE': not is_dev,
    'SESSION_COOKIE_HTTPONLY': True,
    'SESSION_COOKIE_SAMESITE': 'Lax',
})

# Configure logging early
_configure_logging()


@app.route('/')
def index():
    return redirect(url_for('api_badges'))


@app.route('/health')
def health():
    # Simple health endpoint for container healthchecks. Keep lightweight.
    return jsonify({'status': 'ok'}), 200


@app.route('/ready')
def ready():
    """Readiness probe: check DB connectivity and Redis (if configured).

    Returns 200 when core dependencies are reachable, 503 otherwise. Redis is
    only checked when REDIS_HOST or a Redis password is configured.
    """
    deep = request.args.get('full') in ('1', 'true', 'yes', 'on')

    try:
        init_db()
        with db_session:
            users = User.select()[:1]
            if deep:
                for u in users:
                    _ = u.username
    except Exception as e:
        logger.error('Readiness DB check failed: %s', e)
        return jsonify({'ready': False, 'reason': 'db-unavailable'}), 503

    redis_password = os.environ.get('REDIS_PASSWORD') or os.environ.get('REDIS_AUTH')
    check_redis = bool(os.environ.get('REDIS_HOST') or redis_password)
    if check_redis:
        redis_host = os.environ.get('REDIS_HOST') or 'redis'
        redis_port = int(os.environ.get('REDIS_PORT') or 6379)
        try:
            r = redis.Redis(host=redis_host, port=redis_port, password=redis_password,
                            socket_connect_timeout=1, socket_timeout=1)
            if not r.ping():
                raise RuntimeError('PING failed')
        except Exception as re:
            logger.error('Redis readiness ping failed: %s', re)
            return jsonify({'ready': False, 'reason': 'redis-unavailable'}), 503

    details = {'ready': True}
    if deep:
        details.update({'db': 'ok', 'redis': 'ok' if check_redis else 'skipped'})
    return jsonify(details), 200


@app.route('/login')
def login():
    # Authentication is handled by the external auth provider. For tests and
    # development ?user=<id> logs in directly when ALLOW_MOCK_LOGIN=1.
    user = request.args.get('user') or (request.form.get('user') if request.form else None)
    j = request.get_json(silent=True) or {}
    if not user and isinstance(j, dict):
        user = j.get('user')

    if user and os.environ.get('ALLOW_MOCK_LOGIN') == '1':
        init_db()
        with db_session:
            u = User.get(username=user)
            if not u:
                u = User(username=user, display_name=request.args.get('name') or user)
        session['username'] = user
        return jsonify({'ok': True}), 200

    if 'username' in session:
        return jsonify({'username': session['username']}), 200
    return json_error('not logged in', 401)


@app.route('/logout')
def logout():
    session.clear()
    return jsonify({'ok': True}), 200


@app.route('/api/spots', methods=['GET', 'POST'])
def api_spots():
    u = get_current_user()
    if not u:
        return json_error('not logged in', 401)
    engine = get_engine()

    if request.method == 'GET':
        limit = _limit_arg()
        if limit is None:
            return json_error('invalid limit')
        return jsonify({'spots': list_user_spots(u.username, limit=limit)})

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return json_error('spot must be a JSON object')
    location = data.get('location') or {}
    if not isinstance(location, dict):
        return json_error('location must be an object')
    lat = location.get('latitude', data.get('latitude'))
    lng = location.get('longitude', data.get('longitude'))
    if not data.get('title') or not data.get('category') or lat is None or lng is None:
        return json_error('title, category and location required')
    try:
        spot, celebration, unavailable = create_spot(
            engine,
            u.username,
            title=data.get('title'),
            category=data.get('category'),
            latitude=lat,
            longitude=lng,
            description=data.get('description') or '',
            address=location.get('address', data.get('address')),
            images=data.get('images') or [],
            sub_category=data.get('sub_category'),
        )
    except UnknownCategory as e:
        return json_error(str(e))
    except (TypeError, ValueError) as e:
        return json_error(str(e) or 'invalid spot')

    resp = {
        'spot': spot,
        'celebration': celebration.to_dict() if celebration else None,
        'badge_update_unavailable': unavailable,
    }
    return jsonify(resp), 201


@app.route('/api/spots/browse')
def api_browse_spots():
    """Active spots from every user, newest first. ?category= narrows the list."""
    limit = _limit_arg()
    if limit is None:
        return json_error('invalid limit')
    get_engine()
    try:
        spots = list_spots(category=request.args.get('category') or None, limit=limit)
    except UnknownCategory as e:
        return json_error(str(e))
    return jsonify({'spots': spots})


@app.route('/api/spots/<int:spot_id>', methods=['GET', 'DELETE'])
def api_spot(spot_id):
    if request.method == 'GET':
        get_engine()
        spot = increment_view_count(spot_id)
        if spot is None:
            return json_error('spot not found', 404)
        return jsonify({'spot': spot})

    u = get_current_user()
    if not u:
        return json_error('not logged in', 401)
    get_engine()
    if not delete_spot(spot_id, u.username):
        return json_error('spot not found', 404)
    return jsonify({'ok': True}), 200


@app.route('/api/spots/<int:spot_id>/rate', methods=['POST'])
def api_rate_spot(spot_id):
    u = get_current_user()
    if not u:
        return json_error('not logged in', 401)
    data = request.get_json(silent=True)
    rating = data.get('rating') if isinstance(data, dict) else None
    get_engine()
    try:
        result = rate_spot(spot_id, u.username, rating)
    except ValueError as e:
        return json_error(str(e))
    if result is None:
        return json_error('spot not found', 404)
    return jsonify(result)


@app.route('/api/badges')
def api_badges():
    u = get_current_user()
    if not u:
        return json_error('not logged in', 401)
    try:
        summary = get_engine().get_progress_summary(u.username)
    except StoreUnavailable:
        logger.exception('Failed to load badge progress for user=%s', u.username)
        return json_error('badge-progress-unavailable', 503)
    summary['catalog'] = catalog()
    return jsonify(summary)


@app.route('/api/badges/statistics')
def api_badge_statistics():
    u = get_current_user()
    if not u:
        return json_error('not logged in', 401)
    try:
        stats = get_engine().get_badge_statistics(u.username)
    except StoreUnavailable:
        logger.exception('Failed to load badge statistics for user=%s', u.username)
        return json_error('badge-progress-unavailable', 503)
    return jsonify(stats)


@app.route('/api/badges/catalog')
def api_badge_catalog():
    categories = {c.value: meta for c, meta in CATEGORY_METADATA.items()}
    return jsonify({'catalog': catalog(), 'categories': categories})


@app.route('/api/badges/reconcile', methods=['POST'])
def api_reconcile_badges():
    """Queue a recount of the current user's progress from their active spots."""
    u = get_current_user()
    if not u:
        return json_error('not logged in', 401)
    try:
        task = reconcile_badges_task.delay(u.username)
    except StoreUnavailable:
        # eager mode runs the task inline, so store failures surface here
        logger.exception('Failed to reconcile badge progress for user=%s', u.username)
        return json_error('badge-progress-unavailable', 503)
    except Exception:
        logger.exception('Failed to enqueue reconcile task for user=%s', u.username)
        return json_error('enqueue-failed', 500)
    resp = {'ok': True, 'task_id': task.id}
    # eager mode (dev/tests) already has the result
    if celery_app.conf.task_always_eager:
        resp['counts'] = task.get()['counts']
    return jsonify(resp), 202


if __name__ == '__main__':
    init_db()
    host = os.environ.get('FLASK_HOST') or os.environ.get('HOST') or '127.0.0.1'
    port = int(os.environ.get('FLASK_PORT') or os.environ.get('PORT') or 5000)
    debug = os.environ.get('FLASK_DEBUG', '1')
    app.run(host=host, port=port, debug=(debug == '1'))
