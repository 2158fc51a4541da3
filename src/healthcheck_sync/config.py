"""Engine configuration.

Resolution precedence per setting:
explicit override > project ``.healthcheck/config.yaml`` > user
``~/.healthcheck/config.toml`` > built-in default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import toml  # type: ignore[import-untyped]
from ruamel.yaml import YAML

from .core.phase import PhasePolicy

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:8080"
DEFAULT_REBROADCAST_DELAY = 0.5
DEFAULT_PALETTE: tuple[str, ...] = (
    "bg-indigo-500",
    "bg-emerald-500",
    "bg-amber-500",
    "bg-rose-500",
    "bg-cyan-500",
    "bg-fuchsia-500",
    "bg-lime-500",
    "bg-pink-500",
)

PROJECT_CONFIG_RELPATH = Path(".healthcheck") / "config.yaml"


def _user_config_dir() -> Path:
    return Path.home() / ".healthcheck"


def user_config_path() -> Path:
    return _user_config_dir() / "config.toml"


@dataclass(frozen=True)
class EngineConfig:
    """Resolved settings for one client."""

    phase_policy: PhasePolicy = PhasePolicy.FREE
    palette: tuple[str, ...] = DEFAULT_PALETTE
    rebroadcast_delay: float = DEFAULT_REBROADCAST_DELAY
    server_url: str = DEFAULT_SERVER_URL
    data_dir: Path = field(default_factory=lambda: _user_config_dir() / "data")
    sources: dict[str, str] = field(default_factory=dict, compare=False)

    def with_overrides(self, **overrides: Any) -> EngineConfig:
        """Return a copy with every non-None override applied."""
        applied = {k: v for k, v in overrides.items() if v is not None}
        sources = dict(self.sources)
        sources.update({k: "explicit override" for k in applied})
        return replace(self, sources=sources, **applied)


def _read_project_config(project_root: Path) -> dict[str, Any]:
    """Read the ``engine`` and ``sync`` sections of the project YAML file."""
    config_path = project_root / PROJECT_CONFIG_RELPATH
    if not config_path.exists():
        return {}
    try:
        yaml = YAML(typ="safe")
        data = yaml.load(config_path.read_text(encoding="utf-8"))
    except Exception as exc:
        logger.warning("Failed to read %s: %s", config_path, exc)
        return {}
    if not isinstance(data, dict):
        return {}
    merged: dict[str, Any] = {}
    for section in ("engine", "sync"):
        values = data.get(section)
        if isinstance(values, dict):
            merged.update(values)
    return merged


def _read_user_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        config: dict[str, Any] = toml.load(path)
    except (toml.TomlDecodeError, OSError) as exc:
        logger.warning("Failed to read %s: %s", path, exc)
        return {}
    sync_section = config.get("sync")
    return dict(sync_section) if isinstance(sync_section, dict) else {}


def _coerce(key: str, raw: Any, source: str) -> Any:
    """Validate one raw setting. Returns None (and logs) when invalid."""
    try:
        if key == "phase_policy":
            return PhasePolicy(str(raw).strip().lower())
        if key == "palette":
            if not isinstance(raw, list) or not raw or not all(isinstance(c, str) for c in raw):
                raise ValueError("palette must be a non-empty list of strings")
            return tuple(raw)
        if key == "rebroadcast_delay":
            value = float(raw)
            if value < 0:
                raise ValueError("rebroadcast_delay must be >= 0")
            return value
        if key == "server_url":
            if not isinstance(raw, str) or not raw.strip():
                raise ValueError("server_url must be a non-empty string")
            return raw.strip().rstrip("/")
        if key == "data_dir":
            return Path(str(raw)).expanduser()
    except (ValueError, TypeError) as exc:
        logger.warning("Invalid %s in %s, ignoring: %s", key, source, exc)
        return None
    return None


_SETTING_KEYS = ("phase_policy", "palette", "rebroadcast_delay", "server_url", "data_dir")


def load_config(
    project_root: Path | None = None,
    user_config: Path | None = None,
) -> EngineConfig:
    """Resolve the engine configuration for ``project_root`` (default: cwd)."""
    project_root = project_root or Path.cwd()
    user_path = user_config or user_config_path()

    layers = [
        (_read_project_config(project_root), str(project_root / PROJECT_CONFIG_RELPATH)),
        (_read_user_config(user_path), str(user_path)),
    ]

    resolved: dict[str, Any] = {}
    sources: dict[str, str] = {}
    for key in _SETTING_KEYS:
        for values, source in layers:
            if key not in values:
                continue
            value = _coerce(key, values[key], source)
            if value is not None:
                resolved[key] = value
                sources[key] = source
                break
        else:
            sources[key] = "built-in default"

    return EngineConfig(sources=sources, **resolved)


def set_server_url(url: str, user_config: Path | None = None) -> Path:
    """Persist ``[sync] server_url`` in the user TOML file and return its path."""
    path = user_config or user_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    config: dict[str, Any] = {}
    if path.exists():
        config = toml.load(path)

    sync_section = config.get("sync")
    if not isinstance(sync_section, dict):
        sync_section = {}
        config["sync"] = sync_section
    sync_section["server_url"] = url.strip().rstrip("/")

    with open(path, "w", encoding="utf-8") as f:
        toml.dump(config, f)
    return path
