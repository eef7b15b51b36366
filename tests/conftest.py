"""
Pytest configuration and fixtures.
"""

import io
import logging
import stat
import threading
import zipfile
from functools import partial
from http.server import BaseHTTPRequestHandler, SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Callable, Generator

import pytest
import requests

from mkr_plugin.core import Options, build_context
from mkr_plugin.fs import MemoryFileSystem

SAMPLE_CONTENT = b"#!/bin/sh\necho mackerel-plugin-sample\n"
DUPLICATE_CONTENT = b"#!/bin/sh\necho mackerel-plugin-sample duplicate\n"

# (name, data, mode); mode None => no unix bits stored, data None => directory entry.
Entry = tuple[str, bytes | None, int | None]

SINGLE_ENTRIES: list[Entry] = [
    ("mackerel-plugin-sample_linux_amd64/", None, 0o755),
    ("mackerel-plugin-sample_linux_amd64/mackerel-plugin-sample", SAMPLE_CONTENT, 0o755),
    ("mackerel-plugin-sample_linux_amd64/README.md", b"# sample\n", 0o644),
]

DUPLICATE_ENTRIES: list[Entry] = [
    ("mackerel-plugin-sample-duplicate_linux_amd64/mackerel-plugin-sample", DUPLICATE_CONTENT, 0o755),
]

MULTI_ENTRIES: list[Entry] = [
    ("mackerel-plugin-sample-multi_darwin_386/check-sample", b"check-sample\n", 0o755),
    ("mackerel-plugin-sample-multi_darwin_386/mackerel-plugin-sample-multi-1", b"multi-1\n", 0o755),
    ("mackerel-plugin-sample-multi_darwin_386/plugins/mackerel-plugin-sample-multi-2", b"multi-2\n", 0o755),
    ("mackerel-plugin-sample-multi_darwin_386/mackerel-plugin-non-executable", b"non-exec\n", 0o644),
    ("mackerel-plugin-sample-multi_darwin_386/not-mackerel-plugin-sample", b"not-plugin\n", 0o755),
    ("mackerel-plugin-sample-multi_darwin_386/a/b/c/mackerel-plugin-deep", b"deep\n", 0o700),
]


def build_zip(entries: list[Entry]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data, mode in entries:
            info = zipfile.ZipInfo(name)
            info.create_system = 3
            if data is None:
                info.external_attr = ((stat.S_IFDIR | (mode or 0o755)) << 16) | 0x10
                zf.writestr(info, b"")
                continue
            info.compress_type = zipfile.ZIP_DEFLATED
            if mode is not None:
                info.external_attr = (stat.S_IFREG | mode) << 16
            else:
                info.create_system = 0
            zf.writestr(info, data)
    return buf.getvalue()


@pytest.fixture
def logger() -> logging.Logger:
    log = logging.getLogger("mkr-plugin-test")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def make_zip(tmp_path: Path) -> Callable[[str, list[Entry]], Path]:
    """Write a zip built from entries into tmp_path/artifacts and return its path."""

    def _make(name: str, entries: list[Entry]) -> Path:
        out_dir = tmp_path / "artifacts"
        out_dir.mkdir(exist_ok=True)
        path = out_dir / name
        path.write_bytes(build_zip(entries))
        return path

    return _make


class SeededMemoryFileSystem(MemoryFileSystem):
    """MemoryFileSystem with shortcuts for arranging and inspecting test trees."""

    def add_file(self, path: Path | str, data: bytes, mode: int = 0o644) -> Path:
        path = Path(path)
        self.mkdir(path.parent)
        with self.open_write(path) as fh:
            fh.write(data)
        self.chmod(path, mode)
        return path

    def read_bytes(self, path: Path | str) -> bytes:
        with self.open_read(Path(path)) as fh:
            return fh.read()


@pytest.fixture
def memfs() -> SeededMemoryFileSystem:
    return SeededMemoryFileSystem()


@pytest.fixture
def served_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("served")


class _QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:
        pass


class _StatusHandler(BaseHTTPRequestHandler):
    """Answers `/<code>/<name>` with that status code and a short body."""

    def do_GET(self) -> None:
        code = int(self.path.strip("/").split("/", 1)[0])
        body = f"status {code}\n".encode()
        self.send_response(code)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args) -> None:
        pass


def _serve(handler) -> Generator[str, None, None]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    try:
        yield f"http://{host}:{port}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture
def http_server(served_dir: Path) -> Generator[str, None, None]:
    """Serve served_dir over HTTP on localhost; yields the base URL."""
    yield from _serve(partial(_QuietHandler, directory=str(served_dir)))


@pytest.fixture
def status_server() -> Generator[str, None, None]:
    """HTTP server whose first path segment is the status code to answer with."""
    yield from _serve(_StatusHandler)


@pytest.fixture
def session() -> Generator[requests.Session, None, None]:
    s = requests.Session()
    # Talk to the local test server directly even if a proxy is configured.
    s.trust_env = False
    yield s
    s.close()


@pytest.fixture
def mem_context(memfs, logger, session):
    """Context over an in-memory filesystem rooted at /opt/mackerel-agent/plugins."""

    def _make(overwrite: bool = False, keep_work: bool = False):
        options = Options(
            prefix=Path("/opt/mackerel-agent/plugins"),
            overwrite=overwrite,
            keep_work=keep_work,
        )
        return build_context(options=options, logger=logger, fs=memfs, session=session)

    return _make
