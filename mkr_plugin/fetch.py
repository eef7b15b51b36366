from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol, Sequence
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import requests

from mkr_plugin.core import Context
from mkr_plugin.errors import DownloadError, PluginIOError
from mkr_plugin.fs import FileSystem
from mkr_plugin.util import expand_path

REMOTE_SCHEMES = ("http", "https")
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ArtifactReference:
    raw: str
    scheme: str  # "http" | "https" | "file" | anything else (rejected at fetch time)
    location: str  # URL for remote references, filesystem path for local ones

    @classmethod
    def parse(cls, text: str) -> "ArtifactReference":
        if not isinstance(text, str) or not text.strip():
            raise ValueError("artifact reference must be a non-empty string")
        text = text.strip()
        parsed = urlparse(text)
        scheme = parsed.scheme.lower()
        if scheme in REMOTE_SCHEMES:
            return cls(raw=text, scheme=scheme, location=text)
        if scheme == "file":
            return cls(raw=text, scheme="file", location=url2pathname(parsed.path))
        # No scheme, or a Windows drive letter ("C:\...") which urlparse reads as one.
        if not scheme or len(scheme) == 1:
            return cls(raw=text, scheme="file", location=str(expand_path(text)))
        return cls(raw=text, scheme=scheme, location=text)

    @property
    def is_remote(self) -> bool:
        return self.scheme in REMOTE_SCHEMES


def artifact_file_name(url: str) -> str:
    name = posixpath.basename(unquote(urlparse(url).path))
    if not name or name in {".", ".."}:
        raise DownloadError(f"Cannot determine artifact file name from url: {url}")
    return name


def _discard(fs: FileSystem, path: Path, logger: logging.Logger) -> None:
    try:
        fs.remove(path)
    except OSError as e:
        logger.warning("Failed to remove partial download %s: %s", path, e)


def download_plugin_artifact(
    url: str,
    workdir: Path,
    *,
    fs: FileSystem,
    session: requests.Session,
    logger: logging.Logger,
    timeout: float | None = None,
) -> Path:
    """
    Download `url` into `workdir/<last path segment of url>` and return that path.

    A status outside 2xx raises DownloadError with the code in the message and
    `status_code` set; nothing is written in that case. Transport errors while
    streaming remove the partial file before raising.
    """
    dest = workdir / artifact_file_name(url)
    logger.debug("GET %s", url)
    try:
        resp = session.get(url, stream=True, timeout=timeout)
    except requests.RequestException as e:
        raise DownloadError(f"Failed to download {url}: {e}") from e

    with resp:
        if not 200 <= resp.status_code < 300:
            raise DownloadError(
                f"http response not OK. code: {resp.status_code}, url: {url}",
                status_code=resp.status_code,
            )
        try:
            with fs.open_write(dest) as fh:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    fh.write(chunk)
        except requests.RequestException as e:
            _discard(fs, dest, logger)
            raise DownloadError(f"Failed to download {url}: {e}") from e
        except OSError as e:
            _discard(fs, dest, logger)
            raise PluginIOError(f"Failed to write {dest}: {e}") from e

    logger.debug("Downloaded %s to %s", url, dest)
    return dest


class ArtifactSource(Protocol):
    """
    Resolves an ArtifactReference to a local archive file.

    A source declares the reference schemes it handles; the registry picks one
    per reference.
    """

    name: str

    def schemes(self) -> Sequence[str]: ...

    def fetch(self, ref: ArtifactReference, workdir: Path, ctx: Context) -> Path: ...


@dataclass(frozen=True)
class HttpArtifactSource:
    name: str = "builtin.source.http"

    def schemes(self) -> Sequence[str]:
        return REMOTE_SCHEMES

    def fetch(self, ref: ArtifactReference, workdir: Path, ctx: Context) -> Path:
        return download_plugin_artifact(
            ref.location,
            workdir,
            fs=ctx.fs,
            session=ctx.session,
            logger=ctx.logger,
            timeout=ctx.options.timeout,
        )


@dataclass(frozen=True)
class LocalArtifactSource:
    name: str = "builtin.source.local"

    def schemes(self) -> Sequence[str]:
        return ("file",)

    def fetch(self, ref: ArtifactReference, workdir: Path, ctx: Context) -> Path:
        # Pass-through: the archive is read from where it is.
        ctx.logger.debug("Using local artifact %s", ref.location)
        return Path(ref.location)


class SourceRegistry:
    def __init__(self, sources: Iterable[ArtifactSource]) -> None:
        by_scheme: dict[str, ArtifactSource] = {}
        for source in sources:
            if not getattr(source, "name", None):
                raise ValueError("Artifact source is missing required attribute 'name'")
            schemes = source.schemes()
            if not schemes:
                raise ValueError(f"Artifact source {source.name} must handle at least one scheme")
            for scheme in schemes:
                if scheme in by_scheme:
                    other = by_scheme[scheme]
                    raise ValueError(
                        f"Duplicate artifact source for scheme {scheme!r}: {other.name} and {source.name}"
                    )
                by_scheme[scheme] = source
        self._by_scheme = by_scheme

    @property
    def registered_schemes(self) -> list[str]:
        return sorted(self._by_scheme)

    def fetch(self, ref: ArtifactReference, workdir: Path, ctx: Context) -> Path:
        source = self._by_scheme.get(ref.scheme)
        if source is None:
            known = ", ".join(self.registered_schemes) or "(none)"
            raise DownloadError(f"Unsupported artifact scheme {ref.scheme!r} in {ref.raw} (known: {known})")
        return source.fetch(ref, workdir, ctx)


def builtin_sources() -> list[ArtifactSource]:
    return [HttpArtifactSource(), LocalArtifactSource()]


def fetch_artifact(
    ref: ArtifactReference,
    workdir: Path,
    ctx: Context,
    *,
    registry: SourceRegistry | None = None,
) -> Path:
    if registry is None:
        registry = SourceRegistry(builtin_sources())
    return registry.fetch(ref, workdir, ctx)
