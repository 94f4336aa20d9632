import pytest

from modhost.services.runtime import (
    Location,
    ModuleHandle,
    Registry,
    RegistryEntry,
    collect_module_names,
    discover,
    find,
    prune,
    tree_from_package,
)
from modhost.services.runtime.discovery import normalize_path
from modhost.utils.error_handler import ConfigError


def _tree():
    return {
        "core": {
            "db": lambda: "db",
            "cache": {"redis": lambda: "redis"},
        },
        "hud": ModuleHandle(path="hud", factory=lambda: "hud", client_only=True),
        "legacy": ModuleHandle(path="legacy", factory=lambda: "legacy", disabled=True),
        "json": "json",
    }


def test_discover_registers_dotted_paths_breadth_first():
    registry = Registry()
    cache = discover(_tree(), registry, side=Location.CLIENT)

    assert collect_module_names(cache) == ["hud", "json", "core.db", "core.cache.redis"]
    assert registry.names() == ["hud", "json", "core.db", "core.cache.redis"]
    assert isinstance(cache["core"]["cache"]["redis"], RegistryEntry)


def test_disabled_modules_are_skipped():
    registry = Registry()
    discover(_tree(), registry, side=Location.CLIENT)
    assert "legacy" not in registry


def test_client_only_skipped_on_server():
    registry = Registry()
    cache = discover(_tree(), registry, side=Location.SERVER)
    assert "hud" not in registry
    assert find(cache, "hud") is None


def test_string_leaves_become_import_handles():
    registry = Registry()
    discover({"json": "json"}, registry)
    handle = registry.get("json").handle
    assert handle.import_path == "json"
    assert handle.instantiate().__name__ == "json"


def test_unsupported_leaf_is_ignored():
    registry = Registry()
    discover({"weird": 42, "ok": lambda: 1}, registry)
    assert registry.names() == ["ok"]


def test_prefix_roots_names():
    registry = Registry()
    cache = discover({"util": lambda: 1}, registry, prefix="shared")
    assert registry.names() == ["shared.util"]
    assert cache == {"util": registry.get("shared.util")}


def test_find_walks_nested_cache():
    registry = Registry()
    cache = discover(_tree(), registry, side=Location.CLIENT)

    assert find(cache, "core.cache.redis") is registry.get("core.cache.redis")
    assert find(cache, "core.cache") is None
    assert find(cache, "core.missing") is None


def test_prune_drops_entries_and_empty_groups():
    registry = Registry()
    cache = discover(_tree(), registry, side=Location.CLIENT)

    prune(cache, {"core.cache.redis", "json"})

    assert collect_module_names(cache) == ["hud", "core.db"]
    assert "cache" not in cache["core"]
    prune(cache, {"core.db"})
    assert "core" not in cache


def test_normalized_duplicates_follow_registry_policy():
    tree = {"a": {"b": lambda: 1}, " a ": {"b ": lambda: 2}}

    lenient = Registry()
    discover(tree, lenient)
    assert lenient.names() == ["a.b"]

    with pytest.raises(ConfigError):
        discover(tree, Registry(reject_duplicates=True))


def test_normalize_path_drops_blank_parts():
    assert normalize_path("", " core ", "db") == "core.db"


def test_tree_from_package(tmp_path, monkeypatch):
    package = tmp_path / "modhost_fixture_pkg"
    (package / "net").mkdir(parents=True)
    (package / "__init__.py").write_text("")
    (package / "alpha.py").write_text("VALUE = 'alpha'\n")
    (package / "_hidden.py").write_text("")
    (package / "net" / "__init__.py").write_text("")
    (package / "net" / "http.py").write_text("")
    monkeypatch.syspath_prepend(str(tmp_path))

    tree = tree_from_package("modhost_fixture_pkg")
    assert tree["alpha"].import_path == "modhost_fixture_pkg.alpha"
    assert tree["_hidden"].disabled is True
    assert tree["net"]["http"].import_path == "modhost_fixture_pkg.net.http"

    registry = Registry()
    discover(tree, registry)
    assert set(registry.names()) == {"alpha", "net.http"}
    assert registry.get("alpha").handle.instantiate().VALUE == "alpha"


def test_tree_from_plain_module_fails():
    with pytest.raises(ImportError):
        tree_from_package("json.decoder")
