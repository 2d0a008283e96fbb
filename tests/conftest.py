from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_wormhole_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Keep every test away from the real ~/.wormhole directory."""
    import wormhole.config as config

    home = tmp_path / "wormhole-home"
    monkeypatch.setattr(config, "WORMHOLE_DIR", home)
    monkeypatch.setattr(config, "DB_PATH", home / "timeline.db")
    monkeypatch.setattr(config, "CONFIG_PATH", home / "config.json")
    monkeypatch.setattr(config, "ARCHIVE_DIR", home / "archives")
    return home
