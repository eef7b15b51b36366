"""
Installer for mackerel-agent plugin artifacts.

Takes a zip artifact (URL or local path), extracts it under PREFIX/work and
copies every executable mackerel-plugin-* / check-* file to PREFIX/bin.
"""

from mkr_plugin.archive import InstalledPlugin, InstallResult, install_by_artifact
from mkr_plugin.bootstrap import setup_plugin_dir
from mkr_plugin.core import Context, Options, build_context
from mkr_plugin.errors import (
    DirectoryError,
    DownloadError,
    ExtractionError,
    PluginInstallError,
    PluginIOError,
)
from mkr_plugin.fetch import ArtifactReference, download_plugin_artifact, fetch_artifact
from mkr_plugin.fs import FileSystem, LocalFileSystem, MemoryFileSystem
from mkr_plugin.installer import install_plugin
from mkr_plugin.matcher import looks_like_plugin

__all__ = [
    "ArtifactReference",
    "Context",
    "DirectoryError",
    "DownloadError",
    "ExtractionError",
    "FileSystem",
    "InstallResult",
    "InstalledPlugin",
    "LocalFileSystem",
    "MemoryFileSystem",
    "Options",
    "PluginIOError",
    "PluginInstallError",
    "build_context",
    "download_plugin_artifact",
    "fetch_artifact",
    "install_by_artifact",
    "install_plugin",
    "looks_like_plugin",
    "setup_plugin_dir",
]
