"""Runtime settings: defaults from ``Constants``, then a config file, then environment."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from constants import Constants, PrereleasePolicy, SourceOrigin
from errors import ConfigError
from resolver.policy import SourcePolicy

logger = logging.getLogger(__name__)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Tunables for resolution and installation.

    Each field may be set in a YAML/JSON file (top-level keys, or under a
    ``pypackage`` section) or through ``PYPACKAGE_<FIELD>`` variables, e.g.
    ``PYPACKAGE_DOWNLOAD_CONCURRENCY=8``.
    """
    index_url: str = Constants.INDEX_URL
    python_version: Optional[str] = None
    prerelease_policy: PrereleasePolicy = PrereleasePolicy.EXCLUDE
    allow_index: bool = True
    allow_direct: bool = True
    prefer: SourceOrigin = SourceOrigin.INDEX
    request_timeout: float = Constants.REQUEST_TIMEOUT
    index_retries: int = Constants.HTTP_RETRY_MAX
    download_concurrency: int = Constants.DOWNLOAD_CONCURRENCY
    download_retries: int = Constants.DOWNLOAD_RETRY_MAX
    download_backoff: float = Constants.DOWNLOAD_BACKOFF_BASE_SEC
    require_digest: bool = Constants.REQUIRE_DIGEST
    max_archive_bytes: int = Constants.MAX_ARCHIVE_BYTES
    lock_wait: bool = Constants.LOCK_WAIT
    lock_timeout: float = Constants.LOCK_TIMEOUT_SEC
    log_level: Optional[str] = None

    def __post_init__(self):
        for name in ("download_concurrency", "download_retries"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")
        for name in ("request_timeout", "lock_timeout", "download_backoff", "max_archive_bytes", "index_retries"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        # Fails early when both origins are disabled.
        self.source_policy()

    def source_policy(self) -> SourcePolicy:
        return SourcePolicy(allow_index=self.allow_index, allow_direct=self.allow_direct, prefer=self.prefer)

    def replace(self, **changes: Any) -> "Settings":
        return dataclasses.replace(self, **_coerce_all(changes))


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError("not a boolean")


def _to_optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _enum(kind):
    def convert(value: Any):
        if isinstance(value, kind):
            return value
        return kind(str(value).strip().lower())
    return convert


_CONVERTERS = {
    "str": str,
    "Optional[str]": _to_optional_str,
    "bool": _to_bool,
    "int": int,
    "float": float,
    "PrereleasePolicy": _enum(PrereleasePolicy),
    "SourceOrigin": _enum(SourceOrigin),
}


def _coerce(name: str, value: Any) -> Any:
    convert = _CONVERTERS[str(Settings.__dataclass_fields__[name].type)]
    try:
        return convert(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from exc


def _coerce_all(values: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(Settings)}
    result = {}
    for key, value in values.items():
        name = str(key).replace("-", "_").lower()
        if name not in known:
            raise ConfigError(f"Unknown setting: {key}")
        result[name] = _coerce(name, value)
    return result


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            if path.suffix.lower() == ".json":
                data = json.load(handle)
            else:
                data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}") from exc
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to load config {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    section = data.get(Constants.TOOL_SECTION, data)
    if not isinstance(section, dict):
        raise ConfigError(f"'{Constants.TOOL_SECTION}' section in {path} must be a mapping")
    return section


def _from_environment(environ: Mapping[str, str]) -> Dict[str, Any]:
    values = {}
    for f in fields(Settings):
        key = Constants.ENV_PREFIX + f.name.upper()
        if key in environ and environ[key] != "":
            values[f.name] = environ[key]
    return values


def load_settings(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Layer defaults, config file, ``PYPACKAGE_*`` variables and explicit overrides.

    Later layers win. Unknown keys and malformed values raise ``ConfigError``.
    """
    values: Dict[str, Any] = {}
    if config_path:
        values.update(_coerce_all(_read_config(Path(config_path))))
        logger.debug("Loaded settings from %s", config_path)
    values.update(_coerce_all(_from_environment(os.environ if environ is None else environ)))
    values.update(_coerce_all(overrides or {}))
    return Settings(**values)
