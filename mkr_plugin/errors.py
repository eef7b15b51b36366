from __future__ import annotations


class PluginInstallError(Exception):
    """Base class for every failure surfaced by the install pipeline."""


class DirectoryError(PluginInstallError):
    pass


class DownloadError(PluginInstallError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExtractionError(PluginInstallError):
    pass


class PluginIOError(PluginInstallError):
    pass
