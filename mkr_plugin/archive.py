from __future__ import annotations

import logging
import shutil
import stat
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from mkr_plugin.errors import ExtractionError, PluginIOError
from mkr_plugin.fs import FileSystem
from mkr_plugin.matcher import looks_like_plugin

INSTALLED_PLUGIN_MODE = 0o755
EXTRACTED_DIR_MODE = 0o755
# Entries without stored unix bits (archives made on DOS/Windows).
DEFAULT_ENTRY_MODE = 0o644
# Temporary name inside the bin directory while a plugin is being copied.
STAGING_PREFIX = ".mkr-plugin-staging."


@dataclass(frozen=True)
class InstalledPlugin:
    name: str
    path: Path
    replaced: bool


@dataclass
class InstallResult:
    installed: list[InstalledPlugin] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)  # already present, overwrite off


def is_executable(mode: int) -> bool:
    return bool(mode & 0o111)


def _member_path(workdir: Path, member: str) -> Path:
    name = member.replace("\\", "/")
    parts = PurePosixPath(name).parts
    if name.startswith("/") or ".." in parts or (parts and parts[0].endswith(":")):
        raise ExtractionError(f"Unsafe path in archive: {member!r}")
    return workdir.joinpath(*[p for p in parts if p not in {"", "."}])


def extract_archive(archive: Path, workdir: Path, *, fs: FileSystem, logger: logging.Logger) -> None:
    """
    Extract a zip archive below `workdir`, keeping nested paths and each file
    entry's stored permission bits.
    """
    try:
        fh = fs.open_read(archive)
    except OSError as e:
        raise PluginIOError(f"Failed to open artifact {archive}: {e}") from e

    with fh:
        try:
            zf = zipfile.ZipFile(fh)
        except zipfile.BadZipFile as e:
            raise ExtractionError(f"Failed to read archive {archive}: {e}") from e

        try:
            fs.mkdir(workdir, mode=EXTRACTED_DIR_MODE)
        except OSError as e:
            raise PluginIOError(f"Failed to create {workdir}: {e}") from e

        with zf:
            for info in zf.infolist():
                dest = _member_path(workdir, info.filename)
                unix_mode = info.external_attr >> 16
                try:
                    if info.is_dir():
                        fs.mkdir(dest, mode=EXTRACTED_DIR_MODE)
                        continue
                    if stat.S_ISLNK(unix_mode):
                        logger.debug("Skipping symlink entry %s", info.filename)
                        continue
                    fs.mkdir(dest.parent, mode=EXTRACTED_DIR_MODE)
                    with zf.open(info) as src, fs.open_write(dest) as out:
                        shutil.copyfileobj(src, out)
                    fs.chmod(dest, stat.S_IMODE(unix_mode) or DEFAULT_ENTRY_MODE)
                except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError) as e:
                    # RuntimeError: encrypted entries; NotImplementedError: unknown compression.
                    raise ExtractionError(f"Failed to extract {info.filename} from {archive}: {e}") from e
                except OSError as e:
                    raise PluginIOError(f"Failed to extract {info.filename} to {dest}: {e}") from e
                logger.debug("Extracted %s", dest)


def _walk_sorted(workdir: Path, fs: FileSystem) -> list[Path]:
    # Lexicographic order of the path below workdir; decides which duplicate wins.
    try:
        files = list(fs.walk_files(workdir))
    except OSError as e:
        raise PluginIOError(f"Failed to walk {workdir}: {e}") from e
    return sorted(files, key=lambda p: p.relative_to(workdir).as_posix())


def install_by_artifact(
    archive: Path,
    bindir: Path,
    workdir: Path,
    overwrite: bool,
    *,
    fs: FileSystem,
    logger: logging.Logger,
) -> InstallResult:
    """
    Extract `archive` into `workdir` and copy every plugin found in it to `bindir`.

    A file is installed when its base name looks like a plugin and its
    extracted mode has an execute bit; anything else is skipped silently.
    Directory structure is discarded: `a/b/mackerel-plugin-x` lands at
    `bindir/mackerel-plugin-x` with mode 0755. An existing file there is kept
    untouched unless `overwrite` is set, in which case it is replaced by rename.
    A directory at that path is an error either way.

    If several files share a base name, the first in lexicographic path order
    is installed and the rest are skipped with a warning.
    """
    extract_archive(archive, workdir, fs=fs, logger=logger)

    result = InstallResult()
    seen: dict[str, Path] = {}
    for src in _walk_sorted(workdir, fs):
        name = src.name
        if not looks_like_plugin(name):
            logger.debug("Skipping %s: not a plugin name", src)
            continue
        try:
            src_mode = fs.mode(src)
        except OSError as e:
            raise PluginIOError(f"Failed to stat {src}: {e}") from e
        if not is_executable(src_mode):
            logger.debug("Skipping %s: not executable (mode %04o)", src, src_mode)
            continue
        if name in seen:
            logger.warning("Skipping %s: %s was already taken from %s", src, name, seen[name])
            continue
        seen[name] = src

        dest = bindir / name
        if fs.is_dir(dest):
            raise PluginIOError(f"Failed to install {name}: {dest} is a directory")
        exists = fs.exists(dest)
        if exists and not overwrite:
            logger.debug("Skipping %s: %s already exists", src, dest)
            result.kept.append(name)
            continue
        _install_file(src, dest, fs=fs, logger=logger)
        logger.debug("Copied %s to %s", src, dest)
        result.installed.append(InstalledPlugin(name=name, path=dest, replaced=exists))
    return result


def _install_file(src: Path, dest: Path, *, fs: FileSystem, logger: logging.Logger) -> None:
    # Stage next to dest and rename over it: a running binary or a symlink at
    # dest is swapped out, never written through.
    staged = dest.with_name(f"{STAGING_PREFIX}{dest.name}")
    try:
        fs.remove(staged)
        fs.copy_file(src, staged)
        fs.chmod(staged, INSTALLED_PLUGIN_MODE)
        fs.replace(staged, dest)
    except OSError as e:
        try:
            fs.remove(staged)
        except OSError as cleanup_err:
            logger.warning("Failed to remove %s: %s", staged, cleanup_err)
        raise PluginIOError(f"Failed to install {dest.name} to {dest}: {e}") from e
