from __future__ import annotations

from typing import Callable, Dict, Tuple, Union

import torch
from torch import nn

from .errors import GraphConstructionError

# (shape, dtype, generator) -> tensor
Initializer = Callable[[Tuple[int, ...], torch.dtype, torch.Generator], torch.Tensor]


def zeros(shape, dtype, generator) -> torch.Tensor:
    return nn.init.zeros_(torch.empty(shape, dtype=dtype))


def ones(shape, dtype, generator) -> torch.Tensor:
    return nn.init.ones_(torch.empty(shape, dtype=dtype))


def full(value: float) -> Initializer:
    def init(shape, dtype, generator) -> torch.Tensor:
        return nn.init.constant_(torch.empty(shape, dtype=dtype), value)

    return init


def uniform(scale: float = 1e-2) -> Initializer:
    def init(shape, dtype, generator) -> torch.Tensor:
        return nn.init.uniform_(torch.empty(shape, dtype=dtype), -scale, scale, generator=generator)

    return init


def normal(scale: float = 1e-2) -> Initializer:
    def init(shape, dtype, generator) -> torch.Tensor:
        return nn.init.normal_(torch.empty(shape, dtype=dtype), std=scale, generator=generator)

    return init


def glorot_uniform(shape, dtype, generator) -> torch.Tensor:
    # needs at least two dimensions to compute fan in and fan out
    return nn.init.xavier_uniform_(torch.empty(shape, dtype=dtype), generator=generator)


_REGISTRY: Dict[str, Initializer] = {
    "zeros": zeros,
    "ones": ones,
    "uniform": uniform(),
    "normal": normal(),
    "glorot_uniform": glorot_uniform,
}


def resolve_initializer(spec: Union[str, Initializer]) -> Initializer:
    if callable(spec):
        return spec
    try:
        return _REGISTRY[spec]
    except (KeyError, TypeError):
        known = ", ".join(sorted(_REGISTRY))
        raise GraphConstructionError(
            f"Unknown initializer {spec!r} (expected one of: {known}, or a callable)"
        ) from None
