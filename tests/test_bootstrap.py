"""Tests for plugin root bootstrap (bin/work creation)."""

import os
from pathlib import Path

import pytest

from mkr_plugin.bootstrap import setup_plugin_dir
from mkr_plugin.errors import DirectoryError
from mkr_plugin.fs import LocalFileSystem

running_as_root = hasattr(os, "geteuid") and os.geteuid() == 0


class TestLocalSetup:
    def test_creates_bin_and_work(self, tmp_path, logger):
        prefix = tmp_path / "plugins"
        result = setup_plugin_dir(prefix, fs=LocalFileSystem(), logger=logger)
        assert result == prefix
        assert (prefix / "bin").is_dir()
        assert (prefix / "work").is_dir()

    def test_existing_prefix(self, tmp_path, logger):
        result = setup_plugin_dir(tmp_path, fs=LocalFileSystem(), logger=logger)
        assert result == tmp_path
        assert (tmp_path / "bin").is_dir()
        assert (tmp_path / "work").is_dir()

    def test_idempotent_keeps_content(self, tmp_path, logger):
        fs = LocalFileSystem()
        setup_plugin_dir(tmp_path, fs=fs, logger=logger)
        plugin = tmp_path / "bin" / "mackerel-plugin-sample"
        plugin.write_bytes(b"installed")

        assert setup_plugin_dir(tmp_path, fs=fs, logger=logger) == tmp_path
        assert plugin.read_bytes() == b"installed"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["bin", "work"]

    @pytest.mark.skipif(running_as_root, reason="root ignores directory permissions")
    def test_read_only_prefix_fails(self, tmp_path, logger):
        os.chmod(tmp_path, 0o500)
        try:
            with pytest.raises(DirectoryError):
                setup_plugin_dir(tmp_path, fs=LocalFileSystem(), logger=logger)
        finally:
            os.chmod(tmp_path, 0o700)

    def test_bin_path_is_a_file(self, tmp_path, logger):
        (tmp_path / "bin").write_text("not a directory")
        with pytest.raises(DirectoryError):
            setup_plugin_dir(tmp_path, fs=LocalFileSystem(), logger=logger)


class TestMemorySetup:
    def test_creates_nested_prefix(self, memfs, logger):
        prefix = Path("/opt/mackerel-agent/plugins")
        assert setup_plugin_dir(prefix, fs=memfs, logger=logger) == prefix
        assert memfs.is_dir(prefix / "bin")
        assert memfs.is_dir(prefix / "work")
        assert memfs.mode(prefix / "bin") == 0o755

    def test_idempotent(self, memfs, logger):
        prefix = Path("/plugins")
        setup_plugin_dir(prefix, fs=memfs, logger=logger)
        memfs.add_file(prefix / "bin" / "check-sample", b"x", mode=0o755)

        assert setup_plugin_dir(prefix, fs=memfs, logger=logger) == prefix
        assert memfs.read_bytes(prefix / "bin" / "check-sample") == b"x"

    def test_read_only_parent_fails(self, memfs, logger):
        memfs.mkdir(Path("/readonly"), mode=0o555)
        with pytest.raises(DirectoryError) as exc:
            setup_plugin_dir(Path("/readonly/plugins"), fs=memfs, logger=logger)
        assert "/readonly/plugins" in str(exc.value)
        assert isinstance(exc.value.__cause__, PermissionError)
        assert not memfs.exists(Path("/readonly/plugins"))

    def test_read_only_prefix_fails_before_children(self, memfs, logger):
        memfs.mkdir(Path("/plugins"), mode=0o555)
        with pytest.raises(DirectoryError):
            setup_plugin_dir(Path("/plugins"), fs=memfs, logger=logger)
        assert not memfs.exists(Path("/plugins/bin"))

    def test_existing_unwritable_bin_fails(self, memfs, logger):
        memfs.mkdir(Path("/plugins/work"))
        memfs.mkdir(Path("/plugins/bin"), mode=0o555)
        with pytest.raises(DirectoryError, match="not writable"):
            setup_plugin_dir(Path("/plugins"), fs=memfs, logger=logger)
