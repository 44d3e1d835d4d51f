from celery import Celery
import os
import logging
from dotenv import load_dotenv

from engine import BadgeEngine
from models import init_db
from store import PonyProgressStore

# Ensure environment variables from .env are loaded in worker processes
load_dotenv()

logger = logging.getLogger('mikke.tasks')

# Celery broker URL. Prefer explicit CELERY_BROKER if provided. Otherwise
# construct a Redis URL from REDIS_HOST/REDIS_PORT/REDIS_DB and optional
# REDIS_PASSWORD sourced from the environment (e.g., .env).
CELERY_BROKER = os.environ.get('CELERY_BROKER')
if not CELERY_BROKER:
    redis_host = os.environ.get('REDIS_HOST', 'localhost')
    redis_port = os.environ.get('REDIS_PORT', '6379')
    redis_db = os.environ.get('REDIS_DB', '0')
    redis_password = os.environ.get('REDIS_PASSWORD') or os.environ.get('REDIS_AUTH')
    if redis_password:
        from urllib.parse import quote_plus
        pw = quote_plus(redis_password)
        CELERY_BROKER = f'redis://:{pw}@{redis_host}:{redis_port}/{redis_db}'
    else:
        CELERY_BROKER = f'redis://{redis_host}:{redis_port}/{redis_db}'

celery_app = Celery('mikke', broker=CELERY_BROKER)

# CELERY_EAGER=1 or a memory:// broker runs tasks inline in the calling
# process, so tests and local runs need no broker.
if os.environ.get('CELERY_EAGER', '0') == '1' or CELERY_BROKER.startswith('memory'):
    celery_app.conf.task_always_eager = True
    celery_app.conf.task_eager_propagates = True


def _engine():
    init_db()
    return BadgeEngine(PonyProgressStore())


@celery_app.task(bind=True)
def reconcile_badges_task(self, user_id):
    """Recount one user's progress from their active spots."""
    counts = _engine().reconcile(user_id)
    logger.info('Reconciled badge progress for user=%s', user_id)
    return {'user_id': user_id, 'counts': counts}


@celery_app.task(bind=True)
def reconcile_all_users_task(self):
    """Recount every user's progress. Failures for one user do not stop the rest."""
    engine = _engine()
    done = 0
    failed = []
    for user_id in engine.store.list_user_ids():
        try:
            engine.reconcile(user_id)
            done += 1
        except Exception:
            logger.exception('Failed to reconcile badge progress for user=%s', user_id)
            failed.append(user_id)
    logger.info('Reconciled badge progress for %d users (%d failed)', done, len(failed))
    return {'reconciled': done, 'failed': failed}
