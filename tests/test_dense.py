from __future__ import annotations

import pytest
import torch
import torch.nn.functional as F

from layerforge.graph import GraphConstructionError, build, placeholder
from layerforge.layers import (
    activation,
    apply_vision_patch_mask,
    conv1d,
    default_attention_mask,
    default_bounding_box,
    default_position_ids,
    default_token_type_ids,
    dense,
    dense_transposed,
    embedding,
    gelu_new,
    learned_embeddings,
    prepend_embedding,
    quick_gelu,
    shift_tokens_right,
)


def test_dense_infers_kernel_from_input() -> None:
    x = placeholder("x")
    compiled = build(dense(x, 5, name="proj"))
    value = torch.randn(2, 3, 4)
    params = compiled.init({"x": value})
    assert params["proj"]["kernel"].shape == (4, 5)
    assert torch.equal(params["proj"]["bias"], torch.zeros(5))
    out = compiled.predict(params, {"x": value})
    assert torch.allclose(out, value @ params["proj"]["kernel"])


def test_dense_without_bias_and_transposed_kernel() -> None:
    x = placeholder("x")
    params = build(dense(x, 5, use_bias=False, name="proj")).init({"x": torch.ones(1, 4)})
    assert list(params["proj"]) == ["kernel"]
    params = build(dense_transposed(x, 5, name="proj")).init({"x": torch.ones(1, 4)})
    assert params["proj"]["kernel"].shape == (5, 4)
    params = build(conv1d(x, 5, name="c_attn")).init({"x": torch.ones(1, 4)})
    assert params["c_attn"]["kernel"].shape == (4, 5)


def test_dense_rejects_unknown_option() -> None:
    with pytest.raises(GraphConstructionError):
        dense(placeholder("x"), 4, activation="relu")


def test_activations() -> None:
    value = torch.linspace(-3, 3, 13)
    assert torch.allclose(gelu_new(value), F.gelu(value, approximate="tanh"), atol=1e-6)
    assert torch.allclose(quick_gelu(value), value * torch.sigmoid(1.702 * value))

    x = placeholder("x")
    assert torch.equal(build(activation(x, "relu")).predict({}, {"x": value}), F.relu(value))
    with pytest.raises(GraphConstructionError):
        activation(x, "swish")


def test_embedding_lookup() -> None:
    ids = placeholder("ids")
    compiled = build(embedding(ids, 10, 4, name="tokens"))
    value = torch.tensor([[1, 2, 1]])
    params = compiled.init({"ids": value})
    assert params["tokens"]["kernel"].shape == (10, 4)
    out = compiled.predict(params, {"ids": value})
    assert out.shape == (1, 3, 4)
    assert torch.equal(out[0, 0], out[0, 2])


def test_learned_embeddings_and_prepend() -> None:
    positions = learned_embeddings(6, 4, name="positions")
    params = build(positions).init({})
    assert build(positions).predict(params, {}).shape == (1, 6, 4)

    x = placeholder("x")
    compiled = build(prepend_embedding(x, name="cls"))
    value = torch.randn(2, 3, 4)
    params = compiled.init({"x": value})
    params["cls"]["embedding"] = torch.arange(4, dtype=torch.float32)
    out = compiled.predict(params, {"x": value})
    assert out.shape == (2, 4, 4)
    assert torch.equal(out[1, 0], torch.arange(4, dtype=torch.float32))
    assert torch.equal(out[:, 1:], value)


def test_vision_patch_mask() -> None:
    x = placeholder("x")
    patch_mask = placeholder("patch_mask", optional=True)
    compiled = build(apply_vision_patch_mask(x, patch_mask, name="patches"))
    value = torch.randn(1, 3, 4)
    mask = torch.tensor([[0, 1, 0]])

    params = compiled.init({"x": value, "patch_mask": mask})
    assert params["patches"]["mask_token"].shape == (1, 1, 4)
    out = compiled.predict(params, {"x": value, "patch_mask": mask})
    assert torch.equal(out[0, 1], torch.zeros(4))
    assert torch.equal(out[0, 0], value[0, 0])

    assert torch.equal(compiled.predict(params, {"x": value}), value)


def test_default_inputs() -> None:
    x = placeholder("x")
    value = torch.zeros(2, 3, 8)
    mask, positions, token_types, boxes = build(
        (
            default_attention_mask(x),
            default_position_ids(x, offset=2),
            default_token_type_ids(x),
            default_bounding_box(x),
        )
    ).predict({}, {"x": value})
    assert torch.equal(mask, torch.ones(2, 3, dtype=torch.long))
    assert positions.tolist() == [[2, 3, 4], [2, 3, 4]]
    assert torch.equal(token_types, torch.zeros(2, 3, dtype=torch.long))
    assert boxes.shape == (2, 3, 4)


def test_shift_tokens_right() -> None:
    ids = placeholder("ids")
    out = build(shift_tokens_right(ids, 0)).predict({}, {"ids": torch.tensor([[5, 6, 7]])})
    assert out.tolist() == [[0, 5, 6]]


def test_dense_kernel_respects_glorot_bound() -> None:
    x = placeholder("x")
    params = build(dense(x, 6, name="proj")).init({"x": torch.ones(2, 10)}, seed=5)
    kernel = params["proj"]["kernel"]
    bound = (6.0 / (10 + 6)) ** 0.5
    assert kernel.shape == (10, 6)
    assert float(kernel.abs().max()) <= bound
    assert float(kernel.std()) > 0


@pytest.mark.parametrize(
    "kind, reference",
    [
        ("elu", F.elu),
        ("selu", F.selu),
        ("softplus", F.softplus),
        ("leaky_relu", F.leaky_relu),
        ("mish", F.mish),
        ("log_softmax", lambda t: torch.log_softmax(t, dim=-1)),
    ],
)
def test_more_activations(kind: str, reference) -> None:
    value = torch.linspace(-3, 3, 13)
    x = placeholder("x")
    out = build(activation(x, kind)).predict({}, {"x": value})
    assert torch.allclose(out, reference(value))
