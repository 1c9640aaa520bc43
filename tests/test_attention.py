from __future__ import annotations

import math

import pytest
import torch

from layerforge.graph import GraphConstructionError, build, placeholder
from layerforge.layers import (
    MASKED_BIAS,
    apply_attention_head_mask,
    attention_bias,
    attention_output,
    attention_weights,
    expand_attention_mask,
    merge_heads,
    split_heads,
)


def test_attention_bias_from_mask() -> None:
    mask = placeholder("mask", optional=True)
    compiled = build(attention_bias(mask))
    out = compiled.predict({}, {"mask": torch.tensor([[1, 0, 1], [0, 0, 1]])})
    expected = torch.tensor([[0.0, MASKED_BIAS, 0.0], [MASKED_BIAS, MASKED_BIAS, 0.0]])
    assert torch.equal(out, expected)


def test_attention_bias_without_mask_is_scalar_zero() -> None:
    mask = placeholder("mask", optional=True)
    out = build(attention_bias(mask)).predict({}, {})
    assert out.dim() == 0
    assert out.item() == 0.0


def test_expand_attention_mask_shape() -> None:
    mask = placeholder("mask")
    out = build(expand_attention_mask(mask)).predict({}, {"mask": torch.ones(2, 5)})
    assert out.shape == (2, 1, 1, 5)


def _attention_graph(**opts):
    query = placeholder("query")
    key = placeholder("key")
    mask = placeholder("mask", optional=True)
    bias = attention_bias(expand_attention_mask(mask))
    return build(attention_weights(query, key, bias, **opts))


def test_attention_weights_are_row_stochastic() -> None:
    torch.manual_seed(0)
    query = torch.randn(2, 3, 4, 8)
    key = torch.randn(2, 3, 4, 8)
    weights = _attention_graph().predict({}, {"query": query, "key": key})
    assert weights.shape == (2, 4, 3, 3)
    assert torch.allclose(weights.sum(dim=-1), torch.ones(2, 4, 3), atol=1e-6)
    assert (weights >= 0).all()

    logits = torch.einsum("bqhd,bkhd->bhqk", query, key) / math.sqrt(8)
    assert torch.allclose(weights, torch.softmax(logits, dim=-1), atol=1e-6)


def test_attention_weights_without_query_scaling() -> None:
    torch.manual_seed(1)
    query = torch.randn(1, 2, 2, 4)
    key = torch.randn(1, 2, 2, 4)
    weights = _attention_graph(scale_query=False).predict({}, {"query": query, "key": key})
    logits = torch.einsum("bqhd,bkhd->bhqk", query, key)
    assert torch.allclose(weights, torch.softmax(logits, dim=-1), atol=1e-6)


def test_masked_keys_get_no_weight() -> None:
    torch.manual_seed(2)
    query = torch.randn(2, 3, 4, 8)
    key = torch.randn(2, 3, 4, 8)
    mask = torch.tensor([[1, 1, 0], [0, 0, 0]])
    weights = _attention_graph().predict({}, {"query": query, "key": key, "mask": mask})
    assert torch.all(weights[0, :, :, 2] == 0)
    # a fully masked row stays finite
    assert torch.isfinite(weights[1]).all()
    assert torch.allclose(weights[1].sum(dim=-1), torch.ones(4, 3), atol=1e-6)


def test_attention_weights_reject_unknown_options() -> None:
    query = placeholder("query")
    key = placeholder("key")
    bias = attention_bias(placeholder("mask", optional=True))
    with pytest.raises(GraphConstructionError):
        attention_weights(query, key, bias, scale=True)


def test_attention_output_layout() -> None:
    torch.manual_seed(3)
    weights = torch.softmax(torch.randn(2, 4, 3, 5), dim=-1)
    value = torch.randn(2, 5, 4, 8)
    w = placeholder("weights")
    v = placeholder("value")
    out = build(attention_output(w, v)).predict({}, {"weights": weights, "value": value})
    assert out.shape == (2, 3, 4, 8)
    assert torch.allclose(out, torch.einsum("bhqk,bkhd->bqhd", weights, value), atol=1e-5)


def test_head_mask() -> None:
    weights = torch.softmax(torch.randn(1, 4, 2, 2), dim=-1)
    w = placeholder("weights")
    head_mask = placeholder("head_mask", optional=True)
    compiled = build(apply_attention_head_mask(w, head_mask))

    masked = compiled.predict({}, {"weights": weights, "head_mask": torch.tensor([1.0, 0.0, 1.0, 1.0])})
    assert torch.all(masked[:, 1] == 0)
    assert torch.equal(masked[:, 0], weights[:, 0])

    assert torch.equal(compiled.predict({}, {"weights": weights}), weights)


def test_split_and_merge_heads_round_trip() -> None:
    states = placeholder("states")
    x = torch.arange(2 * 3 * 8, dtype=torch.float32).reshape(2, 3, 8)
    split = build(split_heads(states, 4)).predict({}, {"states": x})
    assert split.shape == (2, 3, 4, 2)
    assert torch.equal(split[0, 0, 1], torch.tensor([2.0, 3.0]))
    merged = build(merge_heads(split_heads(states, 4))).predict({}, {"states": x})
    assert torch.equal(merged, x)
