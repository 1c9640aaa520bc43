"""Immutable symbolic graph nodes.

A :class:`Node` describes a tensor computation without running it. Nodes
reference their inputs directly, so a graph is always built in dependency
order and can never contain a cycle. Evaluation happens later in
:mod:`layerforge.graph.executor`.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import torch

from .container import flatten
from .errors import GraphConstructionError
from .initializers import Initializer, resolve_initializer

Shape = Tuple[Optional[int], ...]

_node_ids = itertools.count()


class _Absent:
    """Runtime value of something that is not there."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


def is_absent(value: Any) -> bool:
    return value is ABSENT


@dataclass(frozen=True)
class StatefulOutput:
    """Returned by ops that produce new values for their own parameters."""

    output: Any
    state: Dict[str, Any]


@dataclass(frozen=True, eq=False)
class Param:
    name: str
    shape: Union[Tuple[int, ...], Callable[..., Tuple[int, ...]]]
    initializer: Initializer
    initializer_id: Union[str, Initializer]
    dtype: torch.dtype = torch.float32

    def resolve_shape(self, input_shapes: Sequence[Optional[Tuple[int, ...]]]) -> Tuple[int, ...]:
        if not callable(self.shape):
            return tuple(int(dim) for dim in self.shape)
        try:
            shape = self.shape(*input_shapes)
            return tuple(int(dim) for dim in shape)
        except (TypeError, IndexError, ValueError) as exc:
            raise GraphConstructionError(
                f"Cannot infer shape of parameter '{self.name}' from input shapes "
                f"{list(input_shapes)}: {exc}"
            ) from exc


@dataclass(frozen=True, eq=False)
class Node:
    op: Callable[..., Any]
    inputs: Tuple[Union["Node", "OptionalValue", Param], ...]
    options: Mapping[str, Any]
    op_name: str
    name: Optional[str] = None
    shape: Optional[Shape] = None
    id: int = field(default_factory=lambda: next(_node_ids))

    @property
    def params(self) -> Tuple[Param, ...]:
        return tuple(item for item in self.inputs if isinstance(item, Param))

    def dependencies(self) -> Tuple["Node", ...]:
        deps = []
        for item in self.inputs:
            if isinstance(item, OptionalValue):
                deps.append(item.node)
            elif isinstance(item, Node):
                deps.append(item)
        return tuple(deps)

    def __repr__(self) -> str:
        label = self.name or f"#{self.id}"
        return f"Node<{self.op_name} {label}>"


@dataclass(frozen=True, eq=False)
class OptionalValue:
    """Marks a layer input whose absence should be passed through, not propagated."""

    node: Node

    def __repr__(self) -> str:
        return f"Optional({self.node!r})"


GraphInput = Union[Node, OptionalValue, Param]


def optional(value: Union[Node, OptionalValue]) -> OptionalValue:
    if isinstance(value, OptionalValue):
        return value
    if isinstance(value, Node):
        return OptionalValue(value)
    raise GraphConstructionError(f"optional() expects a node, got {type(value).__name__}")


def param(
    name: str,
    shape: Union[Tuple[int, ...], Callable[..., Tuple[int, ...]]],
    initializer: Union[str, Initializer] = "glorot_uniform",
    dtype: torch.dtype = torch.float32,
) -> Param:
    """Declares a learnable slot.

    ``shape`` is either a fixed tuple or a function receiving the shapes of
    the owning layer's non-parameter inputs, evaluated once when the layer
    first sees concrete inputs.
    """
    if not name or not isinstance(name, str):
        raise GraphConstructionError("Parameter name must be a non-empty string")
    if not callable(shape) and not isinstance(shape, tuple):
        raise GraphConstructionError(
            f"Parameter '{name}' shape must be a tuple or a function of input shapes"
        )
    return Param(
        name=name,
        shape=shape,
        initializer=resolve_initializer(initializer),
        initializer_id=initializer,
        dtype=dtype,
    )


def layer(
    op: Callable[..., Any],
    inputs: Sequence[GraphInput],
    *,
    name: Optional[str] = None,
    op_name: str = "custom",
    shape: Optional[Shape] = None,
    **options: Any,
) -> Node:
    """Adds a node computing ``op(*input_values, mode=..., **options)``."""
    if not callable(op):
        raise GraphConstructionError(f"Layer op must be callable, got {type(op).__name__}")
    if "mode" in options:
        raise GraphConstructionError("'mode' is supplied at execution time and cannot be set")
    checked = []
    seen_params = set()
    for item in inputs:
        if not isinstance(item, (Node, OptionalValue, Param)):
            raise GraphConstructionError(
                f"Layer '{name or op_name}' inputs must be nodes, optional nodes or "
                f"parameters, got {type(item).__name__}"
            )
        if isinstance(item, Param):
            if item.name in seen_params:
                raise GraphConstructionError(
                    f"Layer '{name or op_name}' declares parameter '{item.name}' twice"
                )
            seen_params.add(item.name)
        checked.append(item)
    return Node(
        op=op,
        inputs=tuple(checked),
        options=MappingProxyType(dict(options)),
        op_name=op_name,
        name=name,
        shape=shape,
    )


def _feed_input(*, mode: str, input_name: str, **_: Any) -> Any:
    # Resolved by the executor; never called for a fed placeholder.
    raise GraphConstructionError(f"Input '{input_name}' was evaluated without a feed")


def placeholder(name: str, shape: Optional[Shape] = None, optional: bool = False) -> Node:
    """Declares a graph input. ``None`` dimensions in ``shape`` stay unresolved."""
    if not name:
        raise GraphConstructionError("Inputs require a name")
    if shape is not None:
        shape = tuple(shape)
    return Node(
        op=_feed_input,
        inputs=(),
        options=MappingProxyType({"input_name": name, "optional": bool(optional)}),
        op_name="input",
        name=name,
        shape=shape,
    )


def constant(value: Any, *, name: Optional[str] = None) -> Node:
    if isinstance(value, torch.Tensor):
        shape = tuple(value.shape)
    else:
        shape = None
    return layer(lambda *, value, **_: value, [], name=name, op_name="constant", shape=shape, value=value)


def nx(node: Node, fn: Callable[[Any], Any], *, name: Optional[str] = None, op_name: str = "nx") -> Node:
    """Applies a plain tensor function to a single node."""
    return layer(lambda x, **_: fn(x), [node], name=name, op_name=op_name)


def container(tree: Any, *, name: Optional[str] = None) -> Node:
    """Wraps a tuple/mapping tree of nodes into one node evaluating to the same tree.

    Leaves that are not graph values are kept as static entries.
    """
    leaves, rebuild = flatten(tree)
    positions = [idx for idx, leaf in enumerate(leaves) if isinstance(leaf, (Node, OptionalValue))]

    def op(*values: Any, **_: Any) -> Any:
        filled = list(leaves)
        for idx, value in zip(positions, values):
            filled[idx] = value
        return rebuild(filled)

    return layer(op, [leaves[idx] for idx in positions], name=name, op_name="container")
