from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Mapping

import torch

from layerforge.graph import summary


def summarize_graph(outputs: Any) -> Dict[str, object]:
    """
    Produce lightweight graph metadata (used for the CLI and analysis).
    """
    rows = summary(outputs)
    counter: Counter = Counter(row["op_name"] for row in rows)
    return {
        "nodes": len(rows),
        "op_counts": dict(counter),
        "inputs": [row["name"] for row in rows if row["op_name"] == "input"],
        "parameterized_layers": [row["name"] for row in rows if row["params"]],
    }


def count_parameters(params: Mapping[str, Mapping[str, torch.Tensor]]) -> int:
    return sum(int(value.numel()) for values in params.values() for value in values.values())
