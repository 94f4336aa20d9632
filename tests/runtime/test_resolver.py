import itertools
import random

import pytest

from modhost.services.runtime import resolve_order
from modhost.utils.error_handler import ConfigError, CycleError


def _assert_topological(order, graph):
    position = {name: index for index, name in enumerate(order)}
    for name, deps in graph.items():
        for dep in deps:
            if dep in position:
                assert position[dep] < position[name], f"{dep} must precede {name}"


def test_dependencies_come_first():
    graph = {"b": ["a"], "c": ["a"], "a": []}
    order = resolve_order(["b", "c", "a"], graph)

    assert sorted(order) == ["a", "b", "c"]
    assert order[0] == "a"
    _assert_topological(order, graph)


def test_ties_break_in_discovery_order():
    assert resolve_order(["z", "m", "a"], {}) == ["z", "m", "a"]
    assert resolve_order(["a", "c", "b"], {"b": ["a"], "c": ["a"]}) == ["a", "c", "b"]


def test_deterministic_for_same_input():
    graph = {"d": ["b", "c"], "b": ["a"], "c": ["a"]}
    names = ["d", "c", "b", "a"]
    assert resolve_order(names, graph) == resolve_order(names, graph)


def test_accepts_callable_lookup():
    graph = {"b": ["a"]}
    assert resolve_order(["b", "a"], graph.get) == ["a", "b"]


@pytest.mark.parametrize("names", list(itertools.permutations(["a", "b", "c", "d"])))
def test_every_discovery_order_yields_valid_order(names):
    graph = {"b": ["a"], "c": ["a", "b"], "d": ["c"]}
    order = resolve_order(list(names), graph)
    assert sorted(order) == ["a", "b", "c", "d"]
    _assert_topological(order, graph)


def test_cycle_returns_none():
    assert resolve_order(["a", "b"], {"a": ["b"], "b": ["a"]}) is None


def test_self_dependency_is_a_cycle():
    assert resolve_order(["a"], {"a": ["a"]}) is None


def test_cycle_raises_in_strict_mode():
    with pytest.raises(CycleError) as exc_info:
        resolve_order(["a", "b", "c"], {"a": ["b"], "b": ["a"]}, strict=True)
    assert set(exc_info.value.modules) == {"a", "b"}


def test_missing_dependency_is_ignored_leniently():
    assert resolve_order(["a", "b"], {"b": ["a", "ghost"]}) == ["a", "b"]


def test_missing_dependency_raises_in_strict_mode():
    with pytest.raises(ConfigError):
        resolve_order(["b"], {"b": ["ghost"]}, strict=True)


def test_known_external_dependency_is_not_an_error():
    order = resolve_order(["b"], {"b": ["client_only"]}, strict=True, known={"client_only"})
    assert order == ["b"]


def test_duplicate_names_and_edges_collapse():
    assert resolve_order(["a", "b", "a"], {"b": ["a", "a"]}) == ["a", "b"]


def test_empty_input():
    assert resolve_order([], {}) == []


def test_random_dags_resolve():
    rng = random.Random(1234)
    for _ in range(25):
        names = [f"m{i}" for i in range(12)]
        # edges only point backwards in creation order, so the graph is acyclic
        graph = {
            name: [names[j] for j in range(index) if rng.random() < 0.3]
            for index, name in enumerate(names)
        }
        shuffled = names[:]
        rng.shuffle(shuffled)

        order = resolve_order(shuffled, graph)
        assert sorted(order) == sorted(names)
        _assert_topological(order, graph)
