from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from convflow.application.config_models import ConvflowConfig
from convflow.domain.constants import CONFIG_DIRNAME, CONFIG_FILENAME


class ConfigLoadError(Exception):
    def __init__(self, message: str, *, path: Path | None = None, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.cause = cause

    def __str__(self) -> str:
        if self.path is None:
            return self.message
        return f"{self.message}: {self.path}"


def _defaults() -> dict[str, Any]:
    return ConvflowConfig().model_dump()


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge mapping keys. For non-dict values, overlay wins.
    """
    merged: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = _deep_merge(merged[k], v)  # type: ignore[arg-type]
        else:
            merged[k] = v
    return merged


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    """
    Load YAML file and ensure root is a mapping.
    """
    # Protect against TOCTOU race conditions.
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except Exception as e:  # pragma: no cover
        raise ConfigLoadError("Failed to read config file", path=path, cause=e) from e

    try:
        data = yaml.safe_load(raw)
    except Exception as e:
        raise ConfigLoadError("Malformed YAML", path=path, cause=e) from e

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigLoadError("YAML root must be a mapping", path=path)

    return data


def _resolve_relative(cfg: dict[str, Any], base: Path) -> dict[str, Any]:
    """Anchor a relative sessions_root to the directory owning the config layer."""
    root = cfg.get("sessions_root")
    if isinstance(root, str) and not Path(root).is_absolute():
        cfg = dict(cfg)
        cfg["sessions_root"] = str(base / root)
    return cfg


def load_config(
    *,
    project_root: Path | None = None,
    user_home: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> ConvflowConfig:
    """
    Load and merge config with precedence (highest wins):
    overrides (CLI) > project > user > defaults.

    Files:
      - user:    user_home/.convflow/config.yml
      - project: project_root/.convflow/config.yml

    Raises:
        ConfigLoadError: If a file is malformed or the merged config is invalid
    """
    project_root = project_root or Path.cwd()
    user_home = user_home or Path.home()

    cfg: dict[str, Any] = _defaults()

    user_path = user_home / CONFIG_DIRNAME / CONFIG_FILENAME
    cfg = _deep_merge(cfg, _resolve_relative(_load_yaml_mapping(user_path), user_home))

    project_path = project_root / CONFIG_DIRNAME / CONFIG_FILENAME
    cfg = _deep_merge(cfg, _resolve_relative(_load_yaml_mapping(project_path), project_root))

    if overrides:
        cfg = _deep_merge(cfg, {k: v for k, v in overrides.items() if v is not None})

    try:
        return ConvflowConfig.model_validate(cfg)
    except ValidationError as e:
        raise ConfigLoadError(f"Invalid configuration: {e}") from e
