from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import requests

from mkr_plugin.fs import FileSystem, LocalFileSystem


@dataclass(frozen=True)
class Options:
    prefix: Path
    overwrite: bool
    keep_work: bool = False
    timeout: float | None = None  # None => no deadline, whatever requests does


@dataclass(frozen=True)
class Context:
    logger: logging.Logger
    fs: FileSystem
    session: requests.Session
    options: Options


def build_context(
    *,
    options: Options,
    logger: logging.Logger,
    fs: FileSystem | None = None,
    session: requests.Session | None = None,
) -> Context:
    if fs is None:
        fs = LocalFileSystem()
    if session is None:
        session = requests.Session()
        session.headers["User-Agent"] = "mkr-plugin-installer"

    return Context(
        logger=logger,
        fs=fs,
        session=session,
        options=options,
    )
