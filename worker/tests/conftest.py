import sys
from pathlib import Path

import pytest

# Ensure the `leadfinder` package is importable when running pytest from the worker directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from leadfinder.core import config  # noqa: E402


@pytest.fixture
def make_settings():
    def _make(**overrides):
        values = dict(
            google_api_key="test-key",
            database_url="",
            max_pages=5,
            fetch_mode="api",
            secret_key="s3cret",
            page_delay=0,
            page_token_delay=0,
            variant_delay=0,
        )
        values.update(overrides)
        return config.Settings(**values)

    return _make


@pytest.fixture
def no_sleep(monkeypatch):
    slept = []
    monkeypatch.setattr("time.sleep", lambda seconds: slept.append(seconds))
    return slept
