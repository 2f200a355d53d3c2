import pytest, os, sys, tempfile

# Ensure the packages are in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Point the service at a scratch database and key file before it is imported
_scratch = tempfile.mkdtemp(prefix="bamboohold-tests-")
os.environ["BAMBOOHOLD_DB_PATH"] = os.path.join(_scratch, "bamboohold.db")
os.environ["BAMBOOHOLD_KEYS_PATH"] = os.path.join(_scratch, "keys.json")

# Initialize app at module load time (generates dev keys on first start)
from bamboohold_app.main import app, _startup, submit_limiter, decrypt_limiter
from bamboohold_app.db import init_db, reset_db

init_db()
_startup()


# Reset database and rate limiters before each test for isolation
@pytest.fixture(autouse=True)
def _reset_db():
    reset_db()
    submit_limiter.reset()
    decrypt_limiter.reset()
    yield
