import os
import sys
from pathlib import Path

# Set test configuration before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault(
    "TOKEN_SECRET",
    "test-secret-key-for-testing-only-do-not-use-in-production-0123456789abcdef",
)

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from estategate.service.runtime import reset_runtime_for_tests  # noqa: E402


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


class FrozenClock:
    """Settable clock for expiry tests."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def frozen_clock():
    from datetime import datetime, timezone

    return FrozenClock(datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc))

