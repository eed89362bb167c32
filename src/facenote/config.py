"""Configuration loading from environment variables and facenote.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_DATA_DIR = Path.home() / ".facenote" / "data"
_CONFIG_FILENAME = "facenote.toml"


@dataclass
class StoreConfig:
    """Where the people store keeps its files."""

    data_dir: Path = _DEFAULT_DATA_DIR


@dataclass
class ImageConfig:
    """Photo compression parameters."""

    max_size: int = 240
    quality: int = 70


@dataclass
class QuizConfig:
    """Quiz defaults used until the user saves their own settings."""

    mode: str = "face-to-name"
    auto_promotion: str = "off"


@dataclass
class FaceNoteConfig:
    """Top-level FaceNote configuration."""

    store: StoreConfig = field(default_factory=StoreConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    quiz: QuizConfig = field(default_factory=QuizConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> FaceNoteConfig:
    """Load configuration from environment variables and optional facenote.toml.

    Priority: environment variables > facenote.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".facenote" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    store_data = file_data.get("store", {})
    image_data = file_data.get("image", {})
    quiz_data = file_data.get("quiz", {})

    data_dir = os.getenv("FACENOTE_DATA_DIR", store_data.get("data_dir"))

    config = FaceNoteConfig(
        store=StoreConfig(
            data_dir=Path(data_dir).expanduser() if data_dir else _DEFAULT_DATA_DIR,
        ),
        image=ImageConfig(
            max_size=int(os.getenv("FACENOTE_IMAGE_MAX_SIZE", image_data.get("max_size", 240))),
            quality=int(os.getenv("FACENOTE_IMAGE_QUALITY", image_data.get("quality", 70))),
        ),
        quiz=QuizConfig(
            mode=quiz_data.get("mode", "face-to-name"),
            auto_promotion=str(quiz_data.get("auto_promotion", "off")),
        ),
        log_level=os.getenv("FACENOTE_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
