from __future__ import annotations

import logging
from pathlib import Path

from mkr_plugin.errors import DirectoryError
from mkr_plugin.fs import FileSystem

PLUGIN_DIR_MODE = 0o755


def plugin_bin_dir(prefix: Path) -> Path:
    return prefix / "bin"


def plugin_work_dir(prefix: Path) -> Path:
    return prefix / "work"


def setup_plugin_dir(prefix: Path, *, fs: FileSystem, logger: logging.Logger) -> Path:
    """
    Ensure `prefix`, `prefix/bin` and `prefix/work` exist and are writable.

    Returns `prefix` unchanged. Existing directories and their content are left
    alone, so calling this again on a bootstrapped root is a no-op. Any failure
    raises DirectoryError; no root is returned in that case.
    """
    for d in (prefix, plugin_bin_dir(prefix), plugin_work_dir(prefix)):
        if fs.is_dir(d):
            logger.debug("Plugin directory exists: %s", d)
        else:
            try:
                fs.mkdir(d, mode=PLUGIN_DIR_MODE)
            except OSError as e:
                raise DirectoryError(f"Failed to create plugin directory {d}: {e}") from e
            logger.debug("Created plugin directory: %s", d)

    for d in (plugin_bin_dir(prefix), plugin_work_dir(prefix)):
        if not fs.is_writable(d):
            raise DirectoryError(f"Plugin directory is not writable: {d}")
    return prefix
