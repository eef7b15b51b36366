from __future__ import annotations

from pathlib import Path

from mkr_plugin.archive import InstallResult, install_by_artifact
from mkr_plugin.bootstrap import plugin_bin_dir, plugin_work_dir, setup_plugin_dir
from mkr_plugin.core import Context
from mkr_plugin.errors import PluginIOError
from mkr_plugin.fetch import ArtifactReference, SourceRegistry, fetch_artifact

RUN_DIR_PREFIX = "mkr-plugin-installer-"


def install_plugin(
    ctx: Context,
    source: str | ArtifactReference,
    *,
    overwrite: bool | None = None,
    registry: SourceRegistry | None = None,
) -> InstallResult:
    """
    Bootstrap the plugin root, fetch `source` and install the plugins it contains.

    Each run gets its own scratch directory under `work`, removed afterwards
    unless `keep_work` is set. `overwrite` defaults to the context options.
    """
    ref = source if isinstance(source, ArtifactReference) else ArtifactReference.parse(source)
    if overwrite is None:
        overwrite = ctx.options.overwrite
    fs = ctx.fs

    prefix = setup_plugin_dir(ctx.options.prefix, fs=fs, logger=ctx.logger)
    bindir = plugin_bin_dir(prefix)
    try:
        rundir = fs.make_temp_dir(plugin_work_dir(prefix), RUN_DIR_PREFIX)
    except OSError as e:
        raise PluginIOError(f"Failed to create work directory under {plugin_work_dir(prefix)}: {e}") from e

    try:
        archive = fetch_artifact(ref, rundir, ctx, registry=registry)
        return install_by_artifact(
            archive,
            bindir,
            rundir / "artifact",
            overwrite,
            fs=fs,
            logger=ctx.logger,
        )
    finally:
        if ctx.options.keep_work:
            ctx.logger.info("Keeping work directory %s", rundir)
        else:
            _cleanup(ctx, rundir)


def _cleanup(ctx: Context, rundir: Path) -> None:
    try:
        ctx.fs.remove_tree(rundir)
    except OSError as e:
        ctx.logger.warning("Failed to remove work directory %s: %s", rundir, e)

