import os
import uuid
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
RUN_DIR = os.path.join(REPO_ROOT, '.run')
DB_FILE = os.path.join(RUN_DIR, 'pytest_db.sqlite')

# Set before any test module imports tasks/backend: both read the
# environment at import time.
os.environ.setdefault('DATABASE_FILE', DB_FILE)
os.environ.setdefault('CELERY_EAGER', '1')
os.environ.setdefault('ALLOW_MOCK_LOGIN', '1')


@pytest.fixture(scope='session', autouse=True)
def ensure_clean_test_db():
    """Remove the shared test SQLite DB before and after the session.

    All tests share one bound PonyORM database, so they stay independent by
    using fresh user ids (see the `user_id` fixture) rather than a fresh DB.
    """
    os.makedirs(RUN_DIR, exist_ok=True)
    if os.path.exists(DB_FILE):
        os.remove(DB_FILE)

    yield

    if os.path.exists(DB_FILE):
        try:
            os.remove(DB_FILE)
        except OSError:
            pass


@pytest.fixture
def user_id():
    return f'user-{uuid.uuid4().hex[:12]}'
