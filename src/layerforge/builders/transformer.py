"""Relative-position transformer stacks assembled from :mod:`layerforge.layers`.

Blocks are pre-norm: RMS norm, then attention or feed-forward, then a
drop-path residual. Decoder blocks optionally cross-attend to an encoder
hidden state, which is an optional graph input; when it is absent the
cross-attention branch evaluates to nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import torch

from layerforge import layers
from layerforge.dsl.models import Arch, DSLConfig
from layerforge.graph import Node, container, layer, nx, placeholder

from .utils import summarize_graph

logger = logging.getLogger(__name__)


@dataclass
class BuildMetadata:
    hidden_size: int
    num_heads: int
    num_layers: int
    inputs: List[str]
    extras: Optional[Dict[str, object]] = None


def add(left: Node, right: Node) -> Node:
    return layer(lambda a, b, **_: a + b, [left, right], op_name="add")


def _causal_bias(hidden: Node) -> Node:
    def bias(x: torch.Tensor) -> torch.Tensor:
        length = x.shape[1]
        mask = torch.full((length, length), layers.MASKED_BIAS, device=x.device)
        return torch.triu(mask, diagonal=1).view(1, 1, length, length)

    return nx(hidden, bias, op_name="causal_bias")


def attention(
    hidden: Node,
    key_value: Node,
    bias: Node,
    head_mask: Node,
    arch: Arch,
    name: str,
) -> Tuple[Node, Node]:
    """Multi-head attention of ``hidden`` over ``key_value``; returns ``(output, weights)``."""
    size = arch.hidden_size
    query = layers.dense(hidden, size, use_bias=False, name=f"{name}.query")
    key = layers.dense(key_value, size, use_bias=False, name=f"{name}.key")
    value = layers.dense(key_value, size, use_bias=False, name=f"{name}.value")

    query = layers.split_heads(query, arch.num_heads)
    key = layers.split_heads(key, arch.num_heads)
    value = layers.split_heads(value, arch.num_heads)

    # relative-position models fold the scale into the learned projections
    weights = layers.attention_weights(query, key, bias, scale_query=False)
    weights = layers.apply_attention_head_mask(weights, head_mask)

    out = layers.attention_output(weights, value)
    out = layers.merge_heads(out)
    out = layers.dense(out, size, use_bias=False, name=f"{name}.output")
    return out, weights


def feed_forward(hidden: Node, arch: Arch, name: str) -> Node:
    x = layers.dense(hidden, arch.intermediate_size, use_bias=False, name=f"{name}.intermediate")
    x = layers.activation(x, arch.activation)
    return layers.dense(x, arch.hidden_size, use_bias=False, name=f"{name}.output")


def _residual(hidden: Node, branch: Node, arch: Arch, seed: int, name: str) -> Node:
    branch = layers.drop_path(branch, rate=arch.drop_path_rate, seed=seed, name=name)
    return add(hidden, branch)


def build_block(
    hidden: Node,
    self_bias: Node,
    head_mask: Node,
    encoder_hidden_state: Node,
    cross_bias: Node,
    arch: Arch,
    *,
    name: str,
    seed: int = 0,
) -> Tuple[Node, Node, Node]:
    """One block; returns ``(hidden, attention_weights, cross_attention_weights)``."""
    eps = arch.layer_norm_epsilon

    normed = layers.rms_norm(hidden, epsilon=eps, name=f"{name}.self_attention_norm")
    out, weights = attention(normed, normed, self_bias, head_mask, arch, f"{name}.self_attention")
    hidden = _residual(hidden, out, arch, seed, f"{name}.self_attention_drop_path")

    cross_weights = layers.none()
    if arch.cross_attention:
        normed = layers.rms_norm(hidden, epsilon=eps, name=f"{name}.cross_attention_norm")
        cross_out, cross_weights_present = attention(
            normed,
            encoder_hidden_state,
            cross_bias,
            layers.none(),
            arch,
            f"{name}.cross_attention",
        )
        cross_hidden = _residual(hidden, cross_out, arch, seed + 1, f"{name}.cross_attention_drop_path")
        hidden, cross_weights = layers.if_present(
            encoder_hidden_state,
            (cross_hidden, cross_weights_present),
            (hidden, layers.none()),
        )

    normed = layers.rms_norm(hidden, epsilon=eps, name=f"{name}.ffn_norm")
    out = feed_forward(normed, arch, f"{name}.ffn")
    hidden = _residual(hidden, out, arch, seed + 2, f"{name}.ffn_drop_path")
    return hidden, weights, cross_weights


def build_stack(cfg: DSLConfig) -> Tuple[Node, BuildMetadata]:
    """Builds the full graph for ``cfg``.

    Inputs: ``hidden_state`` ``{batch, seq, hidden}`` and the optional
    ``attention_mask``, ``head_mask`` ``{layers, heads}`` and, with cross
    attention, ``encoder_hidden_state`` and ``encoder_attention_mask``.
    """
    arch = cfg.arch
    rel = arch.relative_attention

    hidden_state = placeholder("hidden_state", shape=(None, None, arch.hidden_size))
    attention_mask = placeholder("attention_mask", shape=(None, None), optional=True)
    head_mask = placeholder("head_mask", shape=(arch.num_layers, arch.num_heads), optional=True)

    attention_mask = layers.default(attention_mask, layers.default_attention_mask(hidden_state))

    position_bias = layers.relative_attention_bias(
        hidden_state,
        hidden_state,
        layers.none(),
        layers.none(),
        name="relative_attention_bias",
        bidirectional=rel.bidirectional,
        num_heads=arch.num_heads,
        num_buckets=rel.num_buckets,
        max_distance=rel.max_distance,
    )
    self_bias = add(layers.attention_bias(layers.expand_attention_mask(attention_mask)), position_bias)
    if arch.decoder:
        self_bias = add(self_bias, _causal_bias(hidden_state))

    encoder_hidden_state = layers.none()
    cross_bias = layers.none()
    if arch.cross_attention:
        encoder_hidden_state = placeholder(
            "encoder_hidden_state", shape=(None, None, arch.hidden_size), optional=True
        )
        encoder_attention_mask = placeholder("encoder_attention_mask", shape=(None, None), optional=True)
        cross_bias = layers.attention_bias(layers.expand_attention_mask(encoder_attention_mask))

    hidden = hidden_state
    hidden_states = container((hidden_state,))
    attentions: List[Node] = []
    cross_attentions: List[Node] = []
    for idx in range(arch.num_layers):
        layer_head_mask = layers.take_token(head_mask, axis=0, index=idx)
        hidden, weights, cross_weights = build_block(
            hidden,
            self_bias,
            layer_head_mask,
            encoder_hidden_state,
            cross_bias,
            arch,
            name=f"blocks.{idx}",
            seed=cfg.init.seed + 3 * idx,
        )
        hidden_states = layers.append(hidden_states, hidden)
        attentions.append(weights)
        cross_attentions.append(cross_weights)

    hidden = layers.rms_norm(hidden, epsilon=arch.layer_norm_epsilon, name="output_norm")

    outputs = layers.output(
        {
            "hidden_state": hidden,
            "hidden_states": hidden_states,
            "attentions": container(tuple(attentions)),
            "cross_attentions": layers.maybe_container(tuple(cross_attentions), arch.cross_attention),
        }
    )
    extras = summarize_graph(outputs)
    meta = BuildMetadata(
        hidden_size=arch.hidden_size,
        num_heads=arch.num_heads,
        num_layers=arch.num_layers,
        inputs=list(extras["inputs"]),
        extras=extras,
    )
    logger.debug("built %d-layer stack with %d nodes", arch.num_layers, extras["nodes"])
    return outputs, meta
