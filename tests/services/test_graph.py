from __future__ import annotations

from uuid import uuid4

from coursetrack.services.graph import find_cycle


def test_acyclic_graph() -> None:
    a, b, c = uuid4(), uuid4(), uuid4()
    assert find_cycle({a: {b}, b: {c}, c: set()}) is None


def test_self_loop() -> None:
    a = uuid4()
    assert find_cycle({a: {a}}) == [a, a]


def test_two_node_cycle() -> None:
    a, b = uuid4(), uuid4()
    cycle = find_cycle({a: {b}, b: {a}})
    assert cycle is not None
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {a, b}


def test_long_cycle_reported_in_order() -> None:
    a, b, c, d = uuid4(), uuid4(), uuid4(), uuid4()
    cycle = find_cycle({a: {b}, b: {c}, c: {d}, d: {b}})
    assert cycle == [b, c, d, b]


def test_targets_without_edges_are_leaves() -> None:
    a, b = uuid4(), uuid4()
    assert find_cycle({a: {b}}) is None


def test_diamond_is_not_a_cycle() -> None:
    a, b, c, d = uuid4(), uuid4(), uuid4(), uuid4()
    assert find_cycle({a: {b, c}, b: {d}, c: {d}, d: set()}) is None
