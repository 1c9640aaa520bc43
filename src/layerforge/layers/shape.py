from __future__ import annotations

from typing import Any, Tuple

import torch
import torch.nn.functional as F

from layerforge.graph import GraphConstructionError, Node, layer, nx

from .options import LayerOptions, TakeTokenOptions, validate_options


def split_heads(states: Node, num_heads: int) -> Node:
    """Reshapes ``{batch, seq, hidden}`` into ``{batch, seq, num_heads, hidden / num_heads}``."""
    if num_heads < 1:
        raise GraphConstructionError(f"split_heads requires num_heads >= 1, got {num_heads}")

    def split(x: torch.Tensor) -> torch.Tensor:
        return x.reshape(x.shape[0], x.shape[1], num_heads, -1)

    return nx(states, split, op_name="split_heads")


def merge_heads(states: Node) -> Node:
    """Inverse of :func:`split_heads`."""
    return nx(states, lambda x: x.reshape(x.shape[0], x.shape[1], -1), op_name="merge_heads")


def split_pair(x: Node) -> Tuple[Node, Node]:
    """Splits a ``{batch, seq, 2}`` node into two ``{batch, seq}`` nodes."""
    left = nx(x, lambda t: t[:, :, 0], op_name="split_pair")
    right = nx(x, lambda t: t[:, :, 1], op_name="split_pair")
    return left, right


def flatten_leading(x: Node) -> Node:
    """Collapses every axis but the last one."""
    return nx(x, lambda t: t.reshape(-1, t.shape[-1]), op_name="flatten_leading")


def flatten_trailing(x: Node) -> Node:
    """Collapses every axis but the first one."""
    return nx(x, lambda t: t.reshape(t.shape[0], -1), op_name="flatten_trailing")


def _pixel_shuffle_impl(x: torch.Tensor, *, upscale_factor: int, **_: Any) -> torch.Tensor:
    r = upscale_factor
    *batch, height, width, channels = x.shape
    out_channels = channels // (r * r)
    x = x.reshape(*batch, height, width, out_channels, r, r)
    n = len(batch)
    # {H, W, C, r, r} -> {H, r, W, r, C}
    x = x.permute(*range(n), n, n + 3, n + 1, n + 4, n + 2)
    return x.reshape(*batch, height * r, width * r, out_channels)


def _space_to_depth_impl(x: torch.Tensor, *, downscale_factor: int, **_: Any) -> torch.Tensor:
    r = downscale_factor
    *batch, height, width, channels = x.shape
    x = x.reshape(*batch, height // r, r, width // r, r, channels)
    n = len(batch)
    # {H, r, W, r, C} -> {H, W, C, r, r}
    x = x.permute(*range(n), n, n + 2, n + 4, n + 1, n + 3)
    return x.reshape(*batch, height // r, width // r, channels * r * r)


def pixel_shuffle(x: Node, upscale_factor: int, **opts: Any) -> Node:
    """Rearranges ``{*, H, W, C * r^2}`` into ``{*, H * r, W * r, C}``.

    Used for sub-pixel convolution with a stride of ``1 / r``.
    """
    options = validate_options(LayerOptions, "pixel_shuffle", opts)
    if upscale_factor < 1:
        raise GraphConstructionError(f"pixel_shuffle requires upscale_factor >= 1, got {upscale_factor}")
    return layer(
        _pixel_shuffle_impl,
        [x],
        name=options.name,
        op_name="pixel_shuffle",
        upscale_factor=upscale_factor,
    )


def space_to_depth(x: Node, downscale_factor: int, **opts: Any) -> Node:
    """Inverse of :func:`pixel_shuffle` with the same factor."""
    options = validate_options(LayerOptions, "space_to_depth", opts)
    if downscale_factor < 1:
        raise GraphConstructionError(
            f"space_to_depth requires downscale_factor >= 1, got {downscale_factor}"
        )
    return layer(
        _space_to_depth_impl,
        [x],
        name=options.name,
        op_name="space_to_depth",
        downscale_factor=downscale_factor,
    )


def take_token(x: Node, **opts: Any) -> Node:
    """Takes one element along ``axis`` and drops that axis.

    Options:
        name: layer name.
        axis: axis to take the token from (required).
        index: position along ``axis``. Defaults to 0.
    """
    options = validate_options(TakeTokenOptions, "take_token", opts)
    return nx(x, lambda t: t.select(options.axis, options.index), name=options.name, op_name="take_token")


def cosine_similarity(x: Node, y: Node) -> Node:
    """Cosine similarity of ``x`` and ``y`` along the trailing axis."""
    return layer(
        lambda a, b, **_: F.cosine_similarity(a, b, dim=-1),
        [x, y],
        op_name="cosine_similarity",
    )
