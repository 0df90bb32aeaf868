import pytest

from feed_samples import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def _clear_feedlibrary_env(monkeypatch):
    for name in ("FL_LIBRARY_DIR", "FL_STATE_DB", "FL_LOG_FILE", "FL_LOG_LEVELS"):
        monkeypatch.delenv(name, raising=False)
