"""Worker configuration loaded from YAML, environment and command line."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_level: str = "INFO"
    log_file: Path = Path.home() / ".funcworker" / "worker.log"


class WorkerSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    worker_id: Optional[str] = None
    request_id: Optional[str] = None
    max_workers: int = Field(default=8, ge=1)


class DeveloperSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    debug_mode: bool = False


class ConfigError(RuntimeError):
    """Raised when the config file cannot be decoded or validated."""


class Config:
    """Flat ``key: value`` YAML config grouped into typed sections.

    Precedence, lowest first: defaults, the YAML file, ``FUNCWORKER_*``
    environment variables, explicit overrides from the command line.
    """

    DEFAULT_CONFIG_PATH = Path.home() / ".funcworker" / "config.yaml"
    ENV_PREFIX = "FUNCWORKER_"

    _SECTION_BY_KEY = {
        "log_level": "logging",
        "log_file": "logging",
        "worker_id": "worker",
        "request_id": "worker",
        "max_workers": "worker",
        "debug_mode": "developer",
    }

    def __init__(
        self,
        config_path: Optional[Path] = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config_path = Path(config_path).expanduser() if config_path else self.DEFAULT_CONFIG_PATH
        self._values: Dict[str, Any] = self._load_file(self.config_path)
        self._values.update(self._env_values(os.environ if environ is None else environ))
        self._build_sections()

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any]:
        if not path.exists():
            return {}
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse config file {path}: {exc}") from exc
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return dict(payload)

    def _env_values(self, environ: Mapping[str, str]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for key in self._SECTION_BY_KEY:
            raw = environ.get(f"{self.ENV_PREFIX}{key.upper()}")
            if raw is not None:
                values[key] = raw
        return values

    def _build_sections(self) -> None:
        sections: Dict[str, Dict[str, Any]] = {"logging": {}, "worker": {}, "developer": {}}
        for key, value in self._values.items():
            section = self._SECTION_BY_KEY.get(key)
            if section is None:
                logger.debug("Ignoring unknown config key %s", key)
                continue
            sections[section][key] = value

        try:
            self.logging = LoggingSettings.model_validate(sections["logging"])
            self.worker = WorkerSettings.model_validate(sections["worker"])
            self.developer = DeveloperSettings.model_validate(sections["developer"])
        except ValidationError as exc:
            raise ConfigError(f"Invalid worker config: {exc}") from exc

    def apply_overrides(self, **overrides: Any) -> None:
        """Apply non-None overrides, typically parsed command-line flags."""
        changed = {key: value for key, value in overrides.items() if value is not None}
        unknown = set(changed) - set(self._SECTION_BY_KEY)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        if not changed:
            return
        self._values.update(changed)
        self._build_sections()
