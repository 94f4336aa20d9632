"""
Module source provider.

Walks a source tree into a hierarchical, path-keyed cache whose leaves are
registry entries. A source tree is a nested mapping: mappings are groups,
and leaves are ``ModuleHandle`` objects, zero-argument factories, or dotted
import paths. ``tree_from_package`` builds such a tree from a Python package.
"""

from __future__ import annotations

import importlib
import pkgutil
from collections import deque
from typing import Any, Collection, Deque, Dict, List, Mapping, Optional, Tuple

from modhost.utils.logger import get_logger

from .models import Location, ModuleHandle, RegistryEntry
from .registry import Registry

logger = get_logger(__name__)

SourceTree = Mapping[str, Any]
ModuleCache = Dict[str, Any]


def normalize_path(*parts: str) -> str:
    return ".".join(part.strip() for part in parts if part and part.strip())


def _as_handle(path: str, leaf: Any) -> Optional[ModuleHandle]:
    if isinstance(leaf, ModuleHandle):
        if leaf.path != path:
            return ModuleHandle(
                path=path,
                factory=leaf.factory,
                import_path=leaf.import_path,
                disabled=leaf.disabled,
                client_only=leaf.client_only,
            )
        return leaf
    if isinstance(leaf, str):
        return ModuleHandle(path=path, import_path=leaf)
    if callable(leaf):
        return ModuleHandle(path=path, factory=leaf)
    return None


def discover(
    tree: SourceTree,
    registry: Registry,
    *,
    side: Location = Location.SERVER,
    prefix: str = "",
) -> ModuleCache:
    """
    Register every enabled module under ``tree`` and return the nested cache.

    Traversal is breadth-first. Disabled leaves are skipped, as are
    client-only leaves when running server-side. Duplicate paths follow the
    registry's duplicate policy.
    """
    cache: ModuleCache = {}
    pending: Deque[Tuple[SourceTree, str, ModuleCache]] = deque([(tree, prefix, cache)])
    registered = 0

    while pending:
        node, path, target = pending.popleft()
        for key, child in node.items():
            child_path = normalize_path(path, key)
            leaf_key = key.strip()
            if isinstance(child, Mapping):
                group: ModuleCache = target.setdefault(leaf_key, {})
                pending.append((child, child_path, group))
                continue

            handle = _as_handle(child_path, child)
            if handle is None:
                logger.warning(
                    "unsupported_module_source",
                    path=child_path,
                    type=type(child).__name__,
                )
                continue
            if handle.disabled:
                logger.debug("module_disabled", module=child_path)
                continue
            if handle.client_only and side is Location.SERVER:
                logger.debug("client_only_module_skipped", module=child_path)
                continue

            entry = registry.register(child_path, handle)
            if entry is not None:
                target[leaf_key] = entry
                registered += 1

    logger.info("modules_discovered", root=prefix or "<root>", count=registered)
    return cache


def tree_from_package(package: str) -> SourceTree:
    """
    Build a source tree from an importable package.

    Sub-packages become groups and plain modules become import-path leaves.
    Only package ``__init__`` files are imported here; private names
    (leading underscore) are kept but disabled.
    """
    root = importlib.import_module(package)
    search_path = getattr(root, "__path__", None)
    if search_path is None:
        raise ImportError(f"{package} is a module, not a package")

    tree: Dict[str, Any] = {}
    for info in pkgutil.iter_modules(search_path):
        dotted = f"{package}.{info.name}"
        if info.ispkg:
            tree[info.name] = tree_from_package(dotted)
        else:
            tree[info.name] = ModuleHandle(
                path=info.name,
                import_path=dotted,
                disabled=info.name.startswith("_"),
            )
    return tree


def collect_module_names(cache: ModuleCache) -> List[str]:
    """Registered names under ``cache`` in breadth-first order."""
    names: List[str] = []
    pending: Deque[ModuleCache] = deque([cache])
    while pending:
        node = pending.popleft()
        for value in node.values():
            if isinstance(value, RegistryEntry):
                names.append(value.name)
            elif isinstance(value, dict):
                pending.append(value)
    return names


def prune(cache: ModuleCache, names: Collection[str]) -> None:
    """Remove entries named in ``names`` from ``cache``, dropping emptied groups."""
    for key in list(cache):
        value = cache[key]
        if isinstance(value, RegistryEntry):
            if value.name in names:
                del cache[key]
        elif isinstance(value, dict):
            prune(value, names)
            if not value:
                del cache[key]


def find(cache: ModuleCache, path: str) -> Optional[RegistryEntry]:
    """Look up a registry entry by dotted path inside ``cache``."""
    node: Any = cache
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node if isinstance(node, RegistryEntry) else None
