from .container import container_map, container_zip_with, flatten
from .errors import GraphConstructionError, GraphExecutionError
from .executor import CompiledGraph, GraphResult, build, merge_state, summary
from .node import (
    ABSENT,
    Node,
    OptionalValue,
    Param,
    StatefulOutput,
    constant,
    container,
    is_absent,
    layer,
    nx,
    optional,
    param,
    placeholder,
)

__all__ = [
    "ABSENT",
    "CompiledGraph",
    "GraphConstructionError",
    "GraphExecutionError",
    "GraphResult",
    "Node",
    "OptionalValue",
    "Param",
    "StatefulOutput",
    "build",
    "constant",
    "container",
    "container_map",
    "container_zip_with",
    "flatten",
    "is_absent",
    "layer",
    "merge_state",
    "nx",
    "optional",
    "param",
    "placeholder",
    "summary",
]
