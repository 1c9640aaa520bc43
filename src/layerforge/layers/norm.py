from __future__ import annotations

import time
from typing import Any, Tuple

import torch

from layerforge.graph import Node, StatefulOutput, layer, param

from .options import DropPathOptions, RMSNormOptions, ScaleOptions, validate_options

_MASK64 = (1 << 64) - 1
_GOLDEN = 0x9E3779B97F4A7C15


def _channel_shape(channel_index: int):
    def shape(input_shape: Tuple[int, ...], *_: Any) -> Tuple[int]:
        return (input_shape[channel_index],)

    return shape


def _along_channel(values: torch.Tensor, x: torch.Tensor, channel_index: int) -> torch.Tensor:
    shape = [1] * x.dim()
    shape[channel_index % x.dim()] = -1
    return values.reshape(shape)


def _rms_norm_impl(
    x: torch.Tensor, weight: torch.Tensor, *, epsilon: float, channel_index: int, **_: Any
) -> torch.Tensor:
    variance = x.pow(2).mean(dim=channel_index, keepdim=True)
    x = x * torch.rsqrt(variance + epsilon)
    return x * _along_channel(weight, x, channel_index)


def rms_norm(x: Node, **opts: Any) -> Node:
    """Root-mean-square normalization with a learned per-channel ``weight``.

    Unlike layer normalization the input is not mean-centered.

    Options:
        name: layer name.
        channel_index: axis to normalize over. Defaults to -1.
        epsilon: added to the variance. Defaults to ``1e-6``.
        initializer: initializer for ``weight``. Defaults to ``"ones"``.
    """
    options = validate_options(RMSNormOptions, "rms_norm", opts)
    weight = param("weight", _channel_shape(options.channel_index), initializer=options.initializer)
    return layer(
        _rms_norm_impl,
        [x, weight],
        name=options.name,
        op_name="rms_norm",
        epsilon=options.epsilon,
        channel_index=options.channel_index,
    )


def _scale_impl(x: torch.Tensor, scale: torch.Tensor, *, channel_index: int, **_: Any) -> torch.Tensor:
    return x * _along_channel(scale, x, channel_index)


def scale(x: Node, **opts: Any) -> Node:
    """Multiplies ``x`` by a learned per-channel scale (layer scale)."""
    options = validate_options(ScaleOptions, "scale", opts)
    scale_param = param(
        "scale", _channel_shape(options.channel_index), initializer=options.scale_initializer
    )
    return layer(
        _scale_impl,
        [x, scale_param],
        name=options.name,
        op_name="scale",
        channel_index=options.channel_index,
    )


def _prng_key_initializer(seed: int):
    def init(shape, dtype, generator) -> torch.Tensor:
        return torch.tensor([seed, 0], dtype=dtype)

    return init


def uniform_from_key(
    key: torch.Tensor, shape: Tuple[int, ...], dtype: torch.dtype = torch.float32
) -> Tuple[torch.Tensor, torch.Tensor]:
    """Draws uniform ``[0, 1)`` values from a ``(seed, counter)`` key.

    Returns the sample and the key advanced by one step. The same key always
    gives the same sample.
    """
    seed, counter = (int(v) for v in key.tolist())
    generator = torch.Generator().manual_seed((seed * _GOLDEN + counter) & _MASK64)
    sample = torch.rand(shape, generator=generator, dtype=dtype)
    next_key = torch.tensor([seed, counter + 1], dtype=key.dtype, device=key.device)
    return sample, next_key


def _drop_path_impl(x: torch.Tensor, key: torch.Tensor, *, rate: float, mode: str, **_: Any) -> Any:
    if mode != "train":
        return x
    keep_prob = 1.0 - rate
    shape = (x.shape[0],) + (1,) * (x.dim() - 1)
    rand, next_key = uniform_from_key(key, shape, dtype=x.dtype)
    keep = torch.floor(keep_prob + rand).to(x.device)
    out = x / keep_prob * keep
    return StatefulOutput(output=out, state={"key": next_key})


def drop_path(x: Node, **opts: Any) -> Node:
    """Stochastic depth: drops the whole branch per example while training.

    The random state is a ``"key"`` parameter; in train mode the layer
    returns the advanced key as state, which the caller writes back with
    :func:`layerforge.graph.merge_state`. With ``rate == 0`` no layer is
    added at all.

    Options:
        name: layer name.
        seed: seed for the key. Defaults to the current time.
        rate: probability of dropping the branch. Defaults to ``0.0``.

    See `Deep Networks with Stochastic Depth <https://arxiv.org/abs/1603.09382>`_.
    """
    options = validate_options(DropPathOptions, "drop_path", opts)
    if options.rate == 0.0:
        return x
    seed = options.seed if options.seed is not None else time.time_ns()
    key = param("key", (2,), initializer=_prng_key_initializer(seed), dtype=torch.int64)
    return layer(_drop_path_impl, [x, key], name=options.name, op_name="drop_path", rate=options.rate)
