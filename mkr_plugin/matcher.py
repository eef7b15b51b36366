from __future__ import annotations

# mackerel-plugin-* are metric plugins, check-* are check monitoring plugins.
PLUGIN_NAME_PREFIXES = ("mackerel-plugin-", "check-")


def looks_like_plugin(name: str) -> bool:
    # Prefix match on the whole name only: "hoge-mackerel-plugin-x" is not a plugin.
    return name.startswith(PLUGIN_NAME_PREFIXES)
