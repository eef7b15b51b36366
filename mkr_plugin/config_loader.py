from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass
from json import JSONDecodeError
from pathlib import Path
from typing import Any

from mkr_plugin.util import expand_path


@dataclass(frozen=True)
class PluginEntry:
    source: str
    overwrite: bool | None = None  # None => use the top-level/CLI default


@dataclass(frozen=True)
class LoadedConfig:
    path: Path
    prefix: Path | None
    overwrite: bool | None
    plugins: list[PluginEntry]


_TOP_LEVEL_KEYS = {"prefix", "overwrite", "plugin", "plugins"}


def _require_str(value: Any, *, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{what}' must be a non-empty string")
    return value


def _optional_bool(value: Any, *, what: str) -> bool | None:
    if value is not None and not isinstance(value, bool):
        raise ValueError(f"'{what}' must be a boolean if present")
    return value


def _entry_from(value: Any, *, index: int) -> PluginEntry:
    if isinstance(value, str):
        return PluginEntry(source=_require_str(value, what=f"plugin[{index}]"))
    if not isinstance(value, dict):
        raise ValueError(f"plugin entry {index} must be a string or a table")

    keys = [k for k in ("source", "url", "path") if k in value]
    if len(keys) != 1:
        raise ValueError(f"plugin entry {index} requires exactly one of 'source', 'url' or 'path'")
    source = _require_str(value[keys[0]], what=f"plugin[{index}].{keys[0]}")
    overwrite = _optional_bool(value.get("overwrite"), what=f"plugin[{index}].overwrite")
    return PluginEntry(source=source, overwrite=overwrite)


def _as_entry_list(value: Any) -> list[PluginEntry]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    if not isinstance(value, list):
        raise ValueError("'plugin' must be a string, a table or an array of those")
    return [_entry_from(v, index=i) for i, v in enumerate(value, start=1)]


def _normalize_top_level(obj: Any) -> tuple[Path | None, bool | None, list[PluginEntry]]:
    if isinstance(obj, list):
        return None, None, _as_entry_list(obj)
    if not isinstance(obj, dict):
        raise ValueError("Config must be a list of plugin entries or {prefix, overwrite, plugin:[...]}.")

    extra_keys = set(obj.keys()) - _TOP_LEVEL_KEYS
    if extra_keys:
        extra = ", ".join(sorted(extra_keys))
        raise ValueError(f"Unknown top-level config keys: {extra}")
    if "plugin" in obj and "plugins" in obj:
        raise ValueError("Use either 'plugin' or 'plugins', not both")

    prefix = None
    if obj.get("prefix") is not None:
        prefix = expand_path(_require_str(obj["prefix"], what="prefix"))
    overwrite = _optional_bool(obj.get("overwrite"), what="overwrite")
    entries = _as_entry_list(obj.get("plugin", obj.get("plugins")))
    return prefix, overwrite, entries


def _load_json(text: str, path: Path) -> Any:
    try:
        return json.loads(text)
    except JSONDecodeError as e:
        raise ValueError(
            f"Invalid JSON in {path} at line {e.lineno}, column {e.colno}: {e.msg}"
        ) from e


def _load_toml(text: str, path: Path) -> Any:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


def _load_yaml(text: str, path: Path) -> Any:
    try:
        import yaml  # type: ignore
    except ImportError as e:
        raise ValueError(
            "YAML config support requires PyYAML. Install it (e.g. 'python -m pip install pyyaml') "
            f"and retry loading {path}."
        ) from e
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        if mark is not None and hasattr(mark, "line") and hasattr(mark, "column"):
            line = int(mark.line) + 1
            col = int(mark.column) + 1
            raise ValueError(f"Invalid YAML in {path} at line {line}, column {col}: {e}") from e
        raise ValueError(f"Invalid YAML in {path}: {e}") from e


def load_config_file(path: Path) -> LoadedConfig:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()

    if suffix == ".json":
        raw = _load_json(text, path)
    elif suffix == ".toml":
        raw = _load_toml(text, path)
    elif suffix in (".yaml", ".yml"):
        raw = _load_yaml(text, path)
    else:
        raise ValueError(
            f"Unsupported config format for {path} (expected .json, .toml, .yaml, .yml)."
        )
    try:
        prefix, overwrite, plugins = _normalize_top_level(raw)
    except ValueError as e:
        raise ValueError(f"{path}: {e}") from e
    return LoadedConfig(path=path, prefix=prefix, overwrite=overwrite, plugins=plugins)
