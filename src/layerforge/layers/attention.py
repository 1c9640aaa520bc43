"""Scaled dot-product attention pieces.

Queries, keys and values use the ``{batch, seq, heads, depth}`` layout;
attention weights are ``{batch, heads, seq_q, seq_k}``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import torch

from layerforge.graph import ABSENT, Node, layer, nx, optional

from .combinators import if_present
from .options import AttentionWeightsOptions, validate_options

# Large negative instead of -inf, so fully masked rows stay finite after softmax.
MASKED_BIAS = -1.0e10


@dataclass(frozen=True)
class AttentionCache:
    """Keys and values from previous decoding steps, ``{batch, seq, heads, depth}``."""

    key: torch.Tensor
    value: torch.Tensor

    @property
    def key_length(self) -> int:
        return int(self.key.shape[1])


def expand_attention_mask(attention_mask: Node) -> Node:
    """Lifts a ``{batch, seq}`` mask to the broadcastable ``{batch, 1, 1, seq}``."""
    return nx(
        attention_mask,
        lambda mask: mask.unsqueeze(-2).unsqueeze(-2),
        op_name="expand_attention_mask",
    )


def _attention_bias_impl(attention_mask: Any, **_: Any) -> torch.Tensor:
    if attention_mask is ABSENT:
        return torch.tensor(0.0)
    zero = torch.zeros((), dtype=torch.float32, device=attention_mask.device)
    masked = torch.full((), MASKED_BIAS, dtype=torch.float32, device=attention_mask.device)
    return torch.where(attention_mask > 0, zero, masked)


def attention_bias(attention_mask: Node) -> Node:
    """Converts a 0/1 mask into an additive bias; an absent mask gives a scalar ``0``."""
    return layer(_attention_bias_impl, [optional(attention_mask)], op_name="attention_bias")


def _attention_weights_impl(
    query: torch.Tensor, key: torch.Tensor, bias: torch.Tensor, *, scale_query: bool = True, **_: Any
) -> torch.Tensor:
    query = query.transpose(1, 2)
    key = key.transpose(1, 2)
    if scale_query:
        query = query / math.sqrt(query.shape[-1])
    weights = torch.matmul(query, key.transpose(-1, -2))
    weights = weights + bias
    return torch.softmax(weights, dim=-1)


def attention_weights(query: Node, key: Node, bias: Node, **opts: Any) -> Node:
    """Computes softmax-normalized attention weights.

    Options:
        scale_query: divide the query by ``sqrt(depth)``. Defaults to ``True``.
    """
    options = validate_options(AttentionWeightsOptions, "attention_weights", opts)
    return layer(
        _attention_weights_impl,
        [query, key, bias],
        op_name="attention_weights",
        scale_query=options.scale_query,
    )


def _attention_output_impl(weights: torch.Tensor, value: torch.Tensor, **_: Any) -> torch.Tensor:
    value = value.transpose(1, 2)
    out = torch.matmul(weights, value)
    return out.transpose(1, 2)


def attention_output(weights: Node, value: Node) -> Node:
    """Weighted sum of values, returned in the ``{batch, seq, heads, depth}`` layout."""
    return layer(_attention_output_impl, [weights, value], op_name="attention_output")


def _head_mask_impl(weights: torch.Tensor, head_mask: torch.Tensor, **_: Any) -> torch.Tensor:
    head_mask = head_mask.reshape(1, -1, 1, 1)
    return weights * head_mask


def apply_attention_head_mask(weights: Node, head_mask: Node) -> Node:
    """Multiplies per-head weights by ``head_mask``; identity when the mask is absent."""
    return if_present(
        head_mask,
        layer(_head_mask_impl, [weights, head_mask], op_name="apply_attention_head_mask"),
        weights,
    )
