"""
Filesystem capability used by every install stage.

Components never touch `os`/`shutil` directly; they receive a FileSystem and
call it. LocalFileSystem is the real disk. MemoryFileSystem keeps the whole
tree in a dict and enforces directory write bits, so bootstrap/install can be
exercised without disk I/O (and permission failures reproduce even as root).
"""

from __future__ import annotations

import errno
import io
import itertools
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Callable, Iterator, Protocol

from mkr_plugin.util import can_write_path


class FileSystem(Protocol):
    def exists(self, path: Path) -> bool: ...

    def is_dir(self, path: Path) -> bool: ...

    def is_writable(self, path: Path) -> bool: ...

    def mkdir(self, path: Path, mode: int = 0o755) -> None:
        """Create `path` and any missing parents. Existing directories are fine."""
        ...

    def mode(self, path: Path) -> int:
        """Permission bits (no file type bits)."""
        ...

    def chmod(self, path: Path, mode: int) -> None: ...

    def open_read(self, path: Path) -> BinaryIO: ...

    def open_write(self, path: Path) -> BinaryIO:
        """Open for writing, truncating an existing file in place."""
        ...

    def copy_file(self, src: Path, dst: Path) -> None: ...

    def replace(self, src: Path, dst: Path) -> None:
        """Rename `src` onto `dst` in one step, replacing a file or symlink at `dst`."""
        ...

    def remove(self, path: Path) -> None: ...

    def remove_tree(self, path: Path) -> None: ...

    def make_temp_dir(self, parent: Path, prefix: str) -> Path: ...

    def walk_files(self, root: Path) -> Iterator[Path]:
        """Every regular file below `root`, at any depth, in no particular order."""
        ...


def _raise(err: OSError) -> None:
    raise err


class LocalFileSystem:
    def exists(self, path: Path) -> bool:
        return path.exists()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def is_writable(self, path: Path) -> bool:
        return path.is_dir() and can_write_path(path)

    def mkdir(self, path: Path, mode: int = 0o755) -> None:
        path.mkdir(mode=mode, parents=True, exist_ok=True)

    def mode(self, path: Path) -> int:
        return stat.S_IMODE(path.stat().st_mode)

    def chmod(self, path: Path, mode: int) -> None:
        os.chmod(path, mode)

    def open_read(self, path: Path) -> BinaryIO:
        return open(path, "rb")

    def open_write(self, path: Path) -> BinaryIO:
        return open(path, "wb")

    def copy_file(self, src: Path, dst: Path) -> None:
        shutil.copyfile(src, dst)

    def replace(self, src: Path, dst: Path) -> None:
        os.replace(src, dst)

    def remove(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    def remove_tree(self, path: Path) -> None:
        shutil.rmtree(path)

    def make_temp_dir(self, parent: Path, prefix: str) -> Path:
        return Path(tempfile.mkdtemp(prefix=prefix, dir=parent))

    def walk_files(self, root: Path) -> Iterator[Path]:
        # os.walk silently ignores unreadable directories unless told otherwise.
        for dirpath, _dirnames, filenames in os.walk(root, onerror=_raise):
            for name in filenames:
                p = Path(dirpath) / name
                if p.is_symlink() or not p.is_file():
                    continue
                yield p


@dataclass
class _Node:
    is_dir: bool
    mode: int
    data: bytes = b""


class _MemoryWriter(io.BytesIO):
    def __init__(self, commit: Callable[[bytes], None]) -> None:
        super().__init__()
        self._commit = commit

    def close(self) -> None:
        if not self.closed:
            self._commit(self.getvalue())
        super().close()


def _oserror(cls: type[OSError], code: int, path: object) -> OSError:
    return cls(code, os.strerror(code), str(path))


class MemoryFileSystem:
    def __init__(self) -> None:
        self._nodes: dict[PurePosixPath, _Node] = {
            PurePosixPath("/"): _Node(is_dir=True, mode=0o755),
        }
        self._temp_counter = itertools.count(1)

    @staticmethod
    def _key(path: Path | str) -> PurePosixPath:
        p = PurePosixPath(Path(path).as_posix())
        if not p.is_absolute():
            p = PurePosixPath("/") / p
        return p

    def _get(self, path: Path | str) -> _Node:
        node = self._nodes.get(self._key(path))
        if node is None:
            raise _oserror(FileNotFoundError, errno.ENOENT, path)
        return node

    def _check_parent_writable(self, key: PurePosixPath) -> None:
        parent = self._nodes.get(key.parent)
        if parent is None:
            raise _oserror(FileNotFoundError, errno.ENOENT, key.parent)
        if not parent.is_dir:
            raise _oserror(NotADirectoryError, errno.ENOTDIR, key.parent)
        if not parent.mode & 0o200:
            raise _oserror(PermissionError, errno.EACCES, key)

    def exists(self, path: Path) -> bool:
        return self._key(path) in self._nodes

    def is_dir(self, path: Path) -> bool:
        node = self._nodes.get(self._key(path))
        return node is not None and node.is_dir

    def is_writable(self, path: Path) -> bool:
        node = self._nodes.get(self._key(path))
        return node is not None and node.is_dir and bool(node.mode & 0o200)

    def mkdir(self, path: Path, mode: int = 0o755) -> None:
        key = self._key(path)
        for current in [*reversed(key.parents), key]:
            node = self._nodes.get(current)
            if node is not None:
                if not node.is_dir:
                    raise _oserror(FileExistsError, errno.EEXIST, current)
                continue
            self._check_parent_writable(current)
            # Like Path.mkdir(parents=True): only the leaf gets `mode`.
            self._nodes[current] = _Node(is_dir=True, mode=mode if current == key else 0o755)

    def mode(self, path: Path) -> int:
        return self._get(path).mode

    def chmod(self, path: Path, mode: int) -> None:
        self._get(path).mode = mode & 0o7777

    def open_read(self, path: Path) -> BinaryIO:
        node = self._get(path)
        if node.is_dir:
            raise _oserror(IsADirectoryError, errno.EISDIR, path)
        return io.BytesIO(node.data)

    def _prepare_write(self, path: Path) -> _Node:
        key = self._key(path)
        node = self._nodes.get(key)
        if node is None:
            self._check_parent_writable(key)
            node = _Node(is_dir=False, mode=0o644)
            self._nodes[key] = node
            return node
        if node.is_dir:
            raise _oserror(IsADirectoryError, errno.EISDIR, path)
        if not node.mode & 0o200:
            raise _oserror(PermissionError, errno.EACCES, path)
        node.data = b""
        return node

    def open_write(self, path: Path) -> BinaryIO:
        node = self._prepare_write(path)

        def commit(data: bytes) -> None:
            node.data = data

        return _MemoryWriter(commit)

    def copy_file(self, src: Path, dst: Path) -> None:
        with self.open_read(src) as fh:
            data = fh.read()
        self._prepare_write(dst).data = data

    def replace(self, src: Path, dst: Path) -> None:
        src_key, dst_key = self._key(src), self._key(dst)
        node = self._get(src)
        if node.is_dir:
            raise _oserror(IsADirectoryError, errno.EISDIR, src)
        target = self._nodes.get(dst_key)
        if target is not None and target.is_dir:
            raise _oserror(IsADirectoryError, errno.EISDIR, dst)
        self._check_parent_writable(src_key)
        self._check_parent_writable(dst_key)
        del self._nodes[src_key]
        self._nodes[dst_key] = node

    def remove(self, path: Path) -> None:
        key = self._key(path)
        node = self._nodes.get(key)
        if node is None:
            return
        if node.is_dir:
            raise _oserror(IsADirectoryError, errno.EISDIR, path)
        self._check_parent_writable(key)
        del self._nodes[key]

    def remove_tree(self, path: Path) -> None:
        key = self._key(path)
        if key not in self._nodes:
            raise _oserror(FileNotFoundError, errno.ENOENT, path)
        self._check_parent_writable(key)
        for k in [k for k in self._nodes if k == key or key in k.parents]:
            del self._nodes[k]

    def make_temp_dir(self, parent: Path, prefix: str) -> Path:
        while True:
            key = self._key(parent) / f"{prefix}{next(self._temp_counter):06d}"
            if key not in self._nodes:
                break
        self._check_parent_writable(key)
        self._nodes[key] = _Node(is_dir=True, mode=0o700)
        return Path(str(key))

    def walk_files(self, root: Path) -> Iterator[Path]:
        key = self._key(root)
        node = self._get(root)
        if not node.is_dir:
            raise _oserror(NotADirectoryError, errno.ENOTDIR, root)
        for k, n in list(self._nodes.items()):
            if not n.is_dir and key in k.parents:
                yield Path(str(k))
