from __future__ import annotations

import os
import sys
from pathlib import Path

PREFIX_ENV = "MKR_PLUGIN_PREFIX"


def xdg_config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))


def expand_path(s: str) -> Path:
    # Expand ~ and $VARS
    return Path(os.path.expandvars(os.path.expanduser(s)))


def can_write_path(p: Path) -> bool:
    parent = p if p.is_dir() else p.parent
    try:
        return os.access(parent, os.W_OK)
    except OSError:
        return False


def default_prefix() -> Path:
    """
    Plugin root used when neither the CLI nor a config file names one.

    $MKR_PLUGIN_PREFIX wins over the platform default, which matches where
    mackerel-agent looks for plugins.
    """
    env = os.environ.get(PREFIX_ENV)
    if env:
        return expand_path(env)
    if sys.platform == "win32":
        program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
        return Path(program_files) / "Mackerel" / "mackerel-agent" / "plugins"
    return Path("/opt/mackerel-agent/plugins")


def default_config_file() -> Path | None:
    base = xdg_config_home() / "mkr-plugin"
    for name in ("plugins.toml", "plugins.yaml", "plugins.yml", "plugins.json"):
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None
