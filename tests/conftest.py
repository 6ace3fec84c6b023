from __future__ import annotations

import pytest

from faultline import config


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    # Keep a developer's .env and FAULTLINE_* variables out of unit tests.
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    for key in config.ENV_KEYS.values():
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("FAULTLINE_STORE_PATH", str(tmp_path / "store"))
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()
