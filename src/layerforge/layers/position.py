"""T5-style relative position bias.

Signed query/key distances are mapped to a bounded set of buckets: exact
buckets for short distances and logarithmically wider ones up to
``max_distance``. Each bucket owns one learned bias per attention head.
"""

from __future__ import annotations

import math
from typing import Any, Tuple

import torch
import torch.nn.functional as F

from layerforge.graph import ABSENT, GraphConstructionError, Node, layer, optional, param

from .options import RelativeAttentionBiasOptions, validate_options


def _key_query_lengths(query: torch.Tensor, key: torch.Tensor, attention_cache: Any) -> Tuple[int, int]:
    if attention_cache is ABSENT:
        return int(key.shape[1]), int(query.shape[1])
    # the cache already holds the new step, so queries span the full key length
    key_length = attention_cache.key_length
    return key_length, key_length


def relative_position_buckets(
    relative_position: torch.Tensor,
    *,
    bidirectional: bool = True,
    num_buckets: int = 32,
    max_distance: int = 128,
) -> torch.Tensor:
    """Maps signed distances (``key - query``) to bucket ids in ``[0, num_buckets)``."""
    relative_buckets = torch.zeros_like(relative_position)
    if bidirectional:
        num_buckets = num_buckets // 2
        relative_buckets = relative_buckets + (relative_position > 0).to(relative_position.dtype) * num_buckets
        relative_position = relative_position.abs()
    else:
        relative_position = -torch.clamp(relative_position, max=0)

    max_exact = num_buckets // 2
    is_small = relative_position < max_exact

    # log(0) never reaches the output: those positions take the exact branch
    distance = relative_position.to(torch.float32).clamp(min=1.0)
    if_large = max_exact + (
        torch.log(distance / max_exact)
        / math.log(max_distance / max_exact)
        * (num_buckets - max_exact)
    )
    if_large = torch.clamp(if_large, max=num_buckets - 1).to(relative_position.dtype)

    return relative_buckets + torch.where(is_small, relative_position, if_large)


def compute_relative_position_buckets(
    query: torch.Tensor,
    key: torch.Tensor,
    attention_cache: Any,
    *,
    bidirectional: bool = True,
    num_buckets: int = 32,
    max_distance: int = 128,
    **_: Any,
) -> torch.Tensor:
    key_length, query_length = _key_query_lengths(query, key, attention_cache)
    context_position = torch.arange(query_length, device=query.device).unsqueeze(1)
    memory_position = torch.arange(key_length, device=query.device).unsqueeze(0)
    return relative_position_buckets(
        memory_position - context_position,
        bidirectional=bidirectional,
        num_buckets=num_buckets,
        max_distance=max_distance,
    )


def _bias_from_buckets(buckets: torch.Tensor, kernel: torch.Tensor, **_: Any) -> torch.Tensor:
    bias = F.embedding(buckets, kernel)
    return bias.permute(2, 0, 1).unsqueeze(0)


def _offset_bias(bias: torch.Tensor, query: torch.Tensor, offset: Any, **_: Any) -> torch.Tensor:
    if offset is ABSENT:
        return bias
    start = int(offset)
    return bias.narrow(2, start, int(query.shape[1]))


def relative_attention_bias(
    query: Node, key: Node, attention_cache: Node, offset: Node, **opts: Any
) -> Node:
    """Computes a ``{1, heads, seq_q, seq_k}`` attention bias from relative positions.

    ``attention_cache`` and ``offset`` may evaluate to ``ABSENT``; with an
    offset the bias rows for the current queries are sliced out, starting
    at that offset.

    Options:
        name: layer name for the bucket embedding.
        bidirectional: whether keys after the query get their own buckets.
            Defaults to ``True``.
        num_heads: number of attention heads. Defaults to 8.
        num_buckets: number of buckets. Defaults to 32.
        max_distance: distance mapped to the last bucket. Defaults to 128.
    """
    options = validate_options(RelativeAttentionBiasOptions, "relative_attention_bias", opts)
    effective_buckets = options.num_buckets // 2 if options.bidirectional else options.num_buckets
    max_exact = effective_buckets // 2
    if max_exact < 1 or options.max_distance <= max_exact:
        raise GraphConstructionError(
            "relative_attention_bias requires at least one exact bucket and "
            f"max_distance above it (num_buckets={options.num_buckets}, "
            f"max_distance={options.max_distance}, bidirectional={options.bidirectional})"
        )

    buckets = layer(
        compute_relative_position_buckets,
        [query, key, optional(attention_cache)],
        op_name="relative_position_buckets",
        bidirectional=options.bidirectional,
        num_buckets=options.num_buckets,
        max_distance=options.max_distance,
    )

    kernel = param("kernel", (options.num_buckets, options.num_heads), initializer="uniform")
    bias = layer(_bias_from_buckets, [buckets, kernel], name=options.name, op_name="relative_attention_bias")

    return layer(_offset_bias, [bias, query, optional(offset)], op_name="offset_attention_bias")
