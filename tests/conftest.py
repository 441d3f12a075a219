# tests/conftest.py
import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest  # noqa: E402

from support import NOW  # noqa: E402


@pytest.fixture
def now():
    return NOW
