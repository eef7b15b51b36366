from __future__ import annotations

import argparse
import logging
from pathlib import Path

from mkr_plugin.archive import InstallResult
from mkr_plugin.config_loader import LoadedConfig, load_config_file
from mkr_plugin.core import Options, build_context
from mkr_plugin.errors import PluginInstallError
from mkr_plugin.installer import install_plugin
from mkr_plugin.util import default_config_file, default_prefix


def _setup_logger(verbose: bool) -> logging.Logger:
    logger = logging.getLogger("mkr-plugin")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.handlers[:] = [handler]
    logger.propagate = False
    return logger


def _positive_float(value: str) -> float:
    try:
        f = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None
    if f <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")
    return f


def _result_lines(result: InstallResult) -> list[str]:
    lines: list[str] = []
    for p in result.installed:
        verb = "Replaced" if p.replaced else "Installed"
        lines.append(f"{verb} {p.name} at {p.path}.")
    for name in result.kept:
        lines.append(f"{name} is already installed (use --overwrite to replace it).")
    if not lines:
        lines.append("No plugins found in artifact.")
    return lines


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="mkr-plugin",
        description="Install mackerel-agent plugins from a zip artifact.",
    )
    parser.add_argument(
        "sources",
        nargs="*",
        metavar="SOURCE",
        help="Artifact to install: an http(s) URL or a path to a local zip archive.",
    )
    parser.add_argument(
        "--prefix",
        type=Path,
        default=None,
        help="Plugin root; plugins go to PREFIX/bin. "
        "Defaults to the config 'prefix', then $MKR_PLUGIN_PREFIX, then /opt/mackerel-agent/plugins.",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace plugins that are already installed.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file listing artifacts (*.json, *.toml, *.yaml, *.yml). "
        "Without SOURCE arguments, ~/.config/mkr-plugin/plugins.* is used if present.",
    )
    parser.add_argument(
        "--keep-work",
        action="store_true",
        help="Leave the extracted artifact under PREFIX/work for inspection.",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help="HTTP timeout in seconds (default: none).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Verbose logs.",
    )
    args = parser.parse_args(argv)

    logger = _setup_logger(args.verbose)

    config_path: Path | None = args.config
    if config_path is None and not args.sources:
        config_path = default_config_file()

    loaded: LoadedConfig | None = None
    if config_path is not None:
        if not config_path.exists():
            logger.error("Config file not found: %s", config_path)
            return 2
        try:
            loaded = load_config_file(config_path)
        except (OSError, ValueError) as e:
            logger.error("Failed to load config @ %s: %s", config_path, e)
            return 2
        logger.debug("Loaded %d plugin entries from %s", len(loaded.plugins), config_path)

    entries: list[tuple[str, bool | None]] = [(s, None) for s in args.sources]
    if loaded is not None:
        entries.extend((e.source, e.overwrite) for e in loaded.plugins)
    if not entries:
        logger.error("Nothing to install: pass SOURCE arguments or --config.")
        return 2

    prefix = args.prefix
    if prefix is None and loaded is not None:
        prefix = loaded.prefix
    if prefix is None:
        prefix = default_prefix()

    overwrite = bool(args.overwrite or (loaded is not None and loaded.overwrite))
    options = Options(
        prefix=prefix,
        overwrite=overwrite,
        keep_work=bool(args.keep_work),
        timeout=args.timeout,
    )
    ctx = build_context(options=options, logger=logger)

    logger.info("=== Installing plugins to %s ({} artifacts) ===".format(len(entries)), prefix / "bin")
    for source, entry_overwrite in entries:
        logger.info("# %s", source)
        try:
            result = install_plugin(ctx, source, overwrite=entry_overwrite)
        except PluginInstallError as e:
            logger.error("Failed to install plugins from %s: %s", source, e)
            return 1
        except ValueError as e:
            logger.error("Invalid artifact %r: %s", source, e)
            return 2
        lines = _result_lines(result)
        for i, msg in enumerate(lines, start=1):
            if i == len(lines):
                logger.info("└─ %s", msg)
            else:
                logger.info("├─ %s", msg)

    logger.info("Done.")
    return 0
