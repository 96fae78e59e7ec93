"""Configuration manager for read-aloud."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .schemas import AppConfig, RecognitionConfig, RecognizerMode

DEFAULT_HOME = Path.home() / ".read_aloud"


@dataclass
class ConfigManager:
    """Load, manage, and persist application configuration."""

    config_path: Path = field(default_factory=lambda: DEFAULT_HOME / "config.json")
    _config: AppConfig = field(init=False)

    def __post_init__(self) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config = self._load_or_default()

    @property
    def config(self) -> AppConfig:
        """Return the current configuration model."""
        return self._config

    @property
    def recognizer_mode(self) -> RecognizerMode:
        """Recognizer mode as currently persisted on disk.

        Re-read on every access so another process (or the CLI ``mode``
        command) can switch backends while a pipeline is running.
        """
        self.reload()
        return self._config.recognition.mode

    def set_recognizer_mode(self, mode: RecognizerMode) -> None:
        recognition = RecognitionConfig.model_validate(
            {**self._config.recognition.model_dump(), "mode": mode}
        )
        self.update(recognition=recognition)

    def update(self, **kwargs: Any) -> None:
        """Update configuration fields and persist to disk."""
        self._config = self._config.model_copy(update=kwargs)
        self.save()

    def reload(self) -> None:
        """Re-read the configuration file, keeping the current model if it vanished."""
        if self.config_path.exists():
            self._config = AppConfig.model_validate_json(self.config_path.read_text())

    def save(self) -> None:
        """Persist configuration to disk."""
        self.config_path.write_text(self._config.model_dump_json(indent=2))

    def cache_path(self) -> Path:
        configured = self._config.cache.path
        if configured:
            return Path(configured).expanduser()
        return self.config_path.parent / "ocr_cache.sqlite3"

    def resolve_model(self, relative: str) -> Path:
        """Resolve a model asset path against ``models.base_dir`` when relative."""
        path = Path(relative).expanduser()
        if path.is_absolute():
            return path
        base = self._config.models.base_dir
        return (Path(base).expanduser() if base else Path.cwd()) / path

    def _load_or_default(self) -> AppConfig:
        if self.config_path.exists():
            return AppConfig.model_validate_json(self.config_path.read_text())
        config = AppConfig()
        self.config_path.write_text(config.model_dump_json(indent=2))
        return config
