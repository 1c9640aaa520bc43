"""Conditional composition over possibly-absent values.

Both branches of every combinator are always part of the graph; which one
is used is decided per execution, depending on whether a value turned out
to be present.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Tuple

from layerforge.graph import (
    ABSENT,
    GraphConstructionError,
    Node,
    container,
    container_map,
    container_zip_with,
    layer,
    nx,
    optional,
)


def _none_impl(**_: Any) -> Any:
    return ABSENT


def none() -> Node:
    """A node that always evaluates to ``ABSENT``."""
    return layer(_none_impl, [], op_name="none")


def default(x: Node, fallback: Node) -> Node:
    """Evaluates to ``x`` when present, otherwise to ``fallback``.

        attention_mask = default(attention_mask, default_attention_mask(input_ids))
    """

    def op(value: Any, fallback_value: Any, **_: Any) -> Any:
        return fallback_value if value is ABSENT else value

    return layer(op, [optional(x), optional(fallback)], op_name="default")


def _if_present_impl(condition: Any, on_true: Any, on_false: Any, **_: Any) -> Any:
    return on_false if condition is ABSENT else on_true


def _if_present_layer(condition: Node, on_true: Node, on_false: Node) -> Node:
    return layer(
        _if_present_impl,
        [optional(condition), optional(on_true), optional(on_false)],
        op_name="if_present",
    )


def if_present(condition: Node, on_true: Any, on_false: Optional[Any] = None) -> Any:
    """Picks ``on_true`` when ``condition`` is present and ``on_false`` otherwise.

    The branches may be single nodes or matching tuple/mapping trees of
    nodes, in which case a matching tree is returned. A missing
    ``on_false`` becomes a tree of :func:`none` nodes shaped like
    ``on_true``.
    """
    if not isinstance(condition, Node):
        raise GraphConstructionError(
            f"if_present condition must be a node, got {type(condition).__name__}"
        )
    if on_false is None:
        on_false = container_map(on_true, lambda _: none())
    return container_zip_with(
        on_true, on_false, lambda left, right: _if_present_layer(condition, left, right)
    )


def maybe_container(tree: Any, condition: bool) -> Node:
    """A container node when ``condition`` holds, otherwise :func:`none`."""
    if condition:
        return container(tree)
    return none()


def append(tuple_node: Node, x: Node) -> Node:
    return layer(lambda values, value, **_: tuple(values) + (value,), [tuple_node, x], op_name="append")


def unwrap_tuple(node: Node, size: int) -> Tuple[Node, ...]:
    """Splits a node evaluating to a tuple into ``size`` per-element nodes."""
    return tuple(
        nx(node, lambda values, idx=idx: values[idx], op_name="unwrap_tuple") for idx in range(size)
    )


def output(outputs: Mapping[str, Any]) -> Node:
    """Builds the model output mapping.

    Every node is wrapped as optional, so a missing output shows up as
    ``ABSENT`` instead of making the whole output absent.
    """
    wrapped = {
        key: optional(value) if isinstance(value, Node) else value for key, value in outputs.items()
    }
    return container(wrapped)
