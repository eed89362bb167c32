"""Tests for configuration loading."""

import pytest
from pathlib import Path

from facenote.config import load_config

_ENV_KEYS = [
    "FACENOTE_DATA_DIR",
    "FACENOTE_IMAGE_MAX_SIZE",
    "FACENOTE_IMAGE_QUALITY",
    "FACENOTE_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self):
        config = load_config()
        assert config.store.data_dir.name == "data"
        assert config.image.max_size == 240
        assert config.image.quality == 70
        assert config.quiz.mode == "face-to-name"
        assert config.quiz.auto_promotion == "off"
        assert config.log_level == "INFO"

    def test_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("FACENOTE_DATA_DIR", str(tmp_path / "people"))
        monkeypatch.setenv("FACENOTE_IMAGE_MAX_SIZE", "120")
        monkeypatch.setenv("FACENOTE_LOG_LEVEL", "DEBUG")

        config = load_config()
        assert config.store.data_dir == tmp_path / "people"
        assert config.image.max_size == 120
        assert config.log_level == "DEBUG"

    def test_toml_file(self, tmp_path: Path):
        toml_path = tmp_path / "custom.toml"
        toml_path.write_text("""
log_level = "WARNING"

[store]
data_dir = "/srv/facenote"

[image]
max_size = 320
quality = 85

[quiz]
mode = "name-to-face"
auto_promotion = 3
""")
        config = load_config(toml_path)
        assert config.store.data_dir == Path("/srv/facenote")
        assert config.image.max_size == 320
        assert config.image.quality == 85
        assert config.quiz.mode == "name-to-face"
        assert config.quiz.auto_promotion == "3"
        assert config.log_level == "WARNING"

    def test_cwd_file_discovered(self, tmp_path: Path):
        (tmp_path / "facenote.toml").write_text("[image]\nquality = 50\n")
        assert load_config().image.quality == 50

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("FACENOTE_IMAGE_QUALITY", "40")

        toml_path = tmp_path / "facenote.toml"
        toml_path.write_text("""
[image]
quality = 90
""")
        config = load_config(toml_path)
        assert config.image.quality == 40  # env wins
