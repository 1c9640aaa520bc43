"""Evaluates built graphs with torch as the tensor engine.

Parameters live outside the graph in a nested ``{layer_name: {param_name:
tensor}}`` mapping. ``CompiledGraph.init`` fills in missing entries,
``predict``/``forward`` only read them.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import torch

from .container import flatten
from .errors import GraphConstructionError, GraphExecutionError
from .node import ABSENT, Node, OptionalValue, Param, StatefulOutput

logger = logging.getLogger(__name__)

MODES = ("train", "inference")

Params = Dict[str, Dict[str, torch.Tensor]]


@dataclass
class GraphResult:
    output: Any
    state: Params = field(default_factory=dict)


def _as_node(leaf: Any) -> Node:
    if isinstance(leaf, OptionalValue):
        return leaf.node
    if isinstance(leaf, Node):
        return leaf
    raise GraphConstructionError(f"Graph outputs must be nodes, got {type(leaf).__name__}")


def topological_nodes(outputs: Any) -> List[Node]:
    """All nodes reachable from ``outputs``, dependencies first."""
    leaves, _ = flatten(outputs)
    stack = [_as_node(leaf) for leaf in leaves]
    seen: Dict[int, Node] = {}
    while stack:
        node = stack.pop()
        if node.id in seen:
            continue
        seen[node.id] = node
        stack.extend(node.dependencies())
    # inputs are always created before the nodes that use them
    return [seen[node_id] for node_id in sorted(seen)]


def _assign_names(nodes: List[Node]) -> Dict[int, str]:
    names: Dict[int, str] = {}
    counts: Counter = Counter()
    taken = set()
    for node in nodes:
        if not node.params:
            continue
        if node.name is not None:
            if node.name in taken:
                raise GraphConstructionError(f"Duplicate layer name '{node.name}'")
            names[node.id] = node.name
            taken.add(node.name)
    for node in nodes:
        if not node.params or node.id in names:
            continue
        while True:
            candidate = f"{node.op_name}_{counts[node.op_name]}"
            counts[node.op_name] += 1
            if candidate not in taken:
                break
        names[node.id] = candidate
        taken.add(candidate)
    return names


def _shape_of(value: Any) -> Optional[Tuple[int, ...]]:
    if value is ABSENT:
        return None
    shape = getattr(value, "shape", None)
    return tuple(shape) if shape is not None else None


def merge_state(params: Params, state: Params) -> Params:
    """Returns ``params`` with the stateful outputs of a forward pass written back."""
    merged = {layer_name: dict(values) for layer_name, values in params.items()}
    for layer_name, values in state.items():
        merged.setdefault(layer_name, {}).update(values)
    return merged


class CompiledGraph:
    def __init__(self, outputs: Any) -> None:
        self.outputs = outputs
        self._leaves, self._rebuild = flatten(outputs)
        self._output_nodes = [_as_node(leaf) for leaf in self._leaves]
        self.nodes = topological_nodes(outputs)
        self.layer_names = _assign_names(self.nodes)
        self.input_nodes = [node for node in self.nodes if node.op_name == "input"]
        names = [node.name for node in self.input_nodes]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise GraphConstructionError(f"Duplicate input names: {duplicates}")
        logger.debug(
            "built graph: %d nodes, %d inputs, %d parameterized layers",
            len(self.nodes),
            len(self.input_nodes),
            len(self.layer_names),
        )

    @property
    def input_names(self) -> List[str]:
        return [node.name for node in self.input_nodes]

    def init(
        self, inputs: Mapping[str, Any], params: Optional[Params] = None, *, seed: int = 0
    ) -> Params:
        """Materializes every missing parameter by tracing ``inputs``.

        Layers that evaluate to ``ABSENT`` for these inputs get no
        parameters, so feed every optional input the model will later use.
        """
        generator = torch.Generator().manual_seed(seed)
        store = {layer_name: dict(values) for layer_name, values in (params or {}).items()}
        self._evaluate(store, inputs, mode="inference", generator=generator)
        return store

    def predict(self, params: Params, inputs: Mapping[str, Any], *, mode: str = "inference") -> Any:
        return self.forward(params, inputs, mode=mode).output

    def forward(self, params: Params, inputs: Mapping[str, Any], *, mode: str = "train") -> GraphResult:
        return self._evaluate(params, inputs, mode=mode, generator=None)

    def _feed(self, node: Node, inputs: Mapping[str, Any]) -> Any:
        value = inputs.get(node.name, ABSENT)
        if value is None:
            value = ABSENT
        if value is ABSENT:
            if node.options["optional"]:
                return ABSENT
            raise GraphExecutionError(f"Missing required input '{node.name}'")
        if node.shape is not None:
            actual = _shape_of(value)
            if actual is None or len(actual) != len(node.shape) or any(
                want is not None and want != got for want, got in zip(node.shape, actual)
            ):
                raise GraphExecutionError(
                    f"Input '{node.name}' expected shape {node.shape}, got {actual}"
                )
        return value

    def _resolve_param(
        self,
        store: Params,
        layer_name: str,
        item: Param,
        input_shapes: List[Optional[Tuple[int, ...]]],
        generator: Optional[torch.Generator],
    ) -> torch.Tensor:
        layer_params = store.get(layer_name, {})
        if item.name in layer_params:
            return layer_params[item.name]
        if generator is None:
            raise GraphExecutionError(f"Missing parameter '{item.name}' for layer '{layer_name}'")
        shape = item.resolve_shape(input_shapes)
        value = item.initializer(shape, item.dtype, generator)
        store.setdefault(layer_name, {})[item.name] = value
        logger.debug("initialized %s.%s with shape %s", layer_name, item.name, shape)
        return value

    def _evaluate(
        self,
        store: Params,
        inputs: Mapping[str, Any],
        *,
        mode: str,
        generator: Optional[torch.Generator],
    ) -> GraphResult:
        if mode not in MODES:
            raise GraphExecutionError(f"Unknown mode '{mode}' (expected one of {MODES})")
        unknown = sorted(set(inputs) - set(self.input_names))
        if unknown:
            raise GraphExecutionError(f"Unknown inputs: {unknown}")

        values: Dict[int, Any] = {}
        state: Params = {}
        for node in self.nodes:
            if node.op_name == "input":
                values[node.id] = self._feed(node, inputs)
                continue

            args: List[Any] = []
            absent = False
            for item in node.inputs:
                if isinstance(item, Param):
                    args.append(item)
                elif isinstance(item, OptionalValue):
                    args.append(values[item.node.id])
                else:
                    value = values[item.id]
                    if value is ABSENT:
                        absent = True
                        break
                    args.append(value)
            if absent:
                values[node.id] = ABSENT
                continue

            if node.params:
                layer_name = self.layer_names[node.id]
                shapes = [_shape_of(arg) for arg in args if not isinstance(arg, Param)]
                args = [
                    self._resolve_param(store, layer_name, arg, shapes, generator)
                    if isinstance(arg, Param)
                    else arg
                    for arg in args
                ]

            result = node.op(*args, mode=mode, **node.options)
            if isinstance(result, StatefulOutput):
                state.setdefault(self.layer_names[node.id], {}).update(result.state)
                result = result.output
            values[node.id] = result

        output = self._rebuild([values[node.id] for node in self._output_nodes])
        return GraphResult(output=output, state=state)


def build(outputs: Any) -> CompiledGraph:
    return CompiledGraph(outputs)


def summary(outputs: Any) -> List[Dict[str, Any]]:
    """Describes every node reachable from ``outputs`` in evaluation order.

    Each row lists the node's parameters with the initializer identifier
    they were declared with, so an external store can recreate them.
    """
    compiled = build(outputs)
    rows = []
    for node in compiled.nodes:
        rows.append(
            {
                "id": node.id,
                "name": compiled.layer_names.get(node.id, node.name),
                "op_name": node.op_name,
                "inputs": [dep.id for dep in node.dependencies()],
                "params": [item.name for item in node.params],
                "initializers": {item.name: item.initializer_id for item in node.params},
            }
        )
    return rows
