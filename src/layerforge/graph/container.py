"""Nested tuple/mapping trees of graph values.

Layers that produce several results (attention outputs plus weights, a
block's hidden state plus cross-attention) return them as plain Python
tuples or dicts whose leaves are nodes. The helpers here walk those trees
so combinators can treat a whole tree as one value.
"""

from __future__ import annotations

from typing import Any, Callable, List, Mapping, Tuple

from .errors import GraphConstructionError


def _is_tuple(tree: Any) -> bool:
    return isinstance(tree, tuple)


def _is_mapping(tree: Any) -> bool:
    return isinstance(tree, Mapping)


def _rebuild_tuple(template: tuple, items: List[Any]) -> tuple:
    if hasattr(template, "_fields"):
        return type(template)(*items)
    return tuple(items)


def is_leaf(tree: Any) -> bool:
    return not (_is_tuple(tree) or _is_mapping(tree))


def container_map(tree: Any, fn: Callable[[Any], Any]) -> Any:
    if _is_tuple(tree):
        return _rebuild_tuple(tree, [container_map(item, fn) for item in tree])
    if _is_mapping(tree):
        return {key: container_map(value, fn) for key, value in tree.items()}
    return fn(tree)


def container_zip_with(
    left: Any, right: Any, fn: Callable[[Any, Any], Any], _path: Tuple[Any, ...] = ()
) -> Any:
    """Applies ``fn`` to matching leaves of two structurally identical trees."""
    where = "/".join(str(p) for p in _path) or "<root>"
    if _is_tuple(left) and _is_tuple(right):
        if len(left) != len(right):
            raise GraphConstructionError(
                f"Container mismatch at {where}: tuple of size {len(left)} vs {len(right)}"
            )
        items = [
            container_zip_with(lhs, rhs, fn, _path + (idx,))
            for idx, (lhs, rhs) in enumerate(zip(left, right))
        ]
        return _rebuild_tuple(left, items)
    if _is_mapping(left) and _is_mapping(right):
        if set(left) != set(right):
            raise GraphConstructionError(
                f"Container mismatch at {where}: keys {sorted(map(str, left))} vs "
                f"{sorted(map(str, right))}"
            )
        return {key: container_zip_with(left[key], right[key], fn, _path + (key,)) for key in left}
    if not is_leaf(left) or not is_leaf(right):
        raise GraphConstructionError(
            f"Container mismatch at {where}: {type(left).__name__} vs {type(right).__name__}"
        )
    return fn(left, right)


def flatten(tree: Any) -> Tuple[List[Any], Callable[[List[Any]], Any]]:
    """Returns the leaves of ``tree`` in order and a function rebuilding it."""
    leaves: List[Any] = []

    def collect(node: Any) -> None:
        if _is_tuple(node):
            for item in node:
                collect(item)
        elif _is_mapping(node):
            for value in node.values():
                collect(value)
        else:
            leaves.append(node)

    collect(tree)

    def rebuild(values: List[Any]) -> Any:
        if len(values) != len(leaves):
            raise ValueError(f"expected {len(leaves)} leaves, got {len(values)}")
        it = iter(values)
        return container_map(tree, lambda _: next(it))

    return leaves, rebuild
