from __future__ import annotations

import pytest
import torch
import torch.nn.functional as F

from layerforge.graph import GraphConstructionError, build, placeholder
from layerforge.layers import (
    cosine_similarity,
    flatten_leading,
    flatten_trailing,
    pixel_shuffle,
    space_to_depth,
    split_heads,
    split_pair,
    take_token,
)


def _apply(fn, value, **kwargs):
    x = placeholder("x")
    return build(fn(x, **kwargs)).predict({}, {"x": value})


def test_pixel_shuffle_matches_channels_first_ordering() -> None:
    value = torch.arange(2 * 3 * 4 * 12, dtype=torch.float32).reshape(2, 3, 4, 12)
    out = _apply(pixel_shuffle, value, upscale_factor=2)
    assert out.shape == (2, 6, 8, 3)
    expected = F.pixel_shuffle(value.permute(0, 3, 1, 2), 2).permute(0, 2, 3, 1)
    assert torch.equal(out, expected)


def test_space_to_depth_inverts_pixel_shuffle() -> None:
    value = torch.randn(2, 3, 4, 18)
    x = placeholder("x")
    restored = build(space_to_depth(pixel_shuffle(x, 3), 3)).predict({}, {"x": value})
    assert torch.equal(restored, value)


def test_pixel_shuffle_rejects_bad_factor() -> None:
    with pytest.raises(GraphConstructionError):
        pixel_shuffle(placeholder("x"), 0)


def test_split_heads_requires_divisible_hidden() -> None:
    with pytest.raises(RuntimeError):
        _apply(split_heads, torch.ones(2, 3, 6), num_heads=4)
    with pytest.raises(GraphConstructionError):
        split_heads(placeholder("x"), 0)


def test_flatten_leading_and_trailing() -> None:
    value = torch.arange(2 * 3 * 4 * 5).reshape(2, 3, 4, 5)
    leading = _apply(flatten_leading, value)
    assert leading.shape == (24, 5)
    assert torch.equal(leading[7], value[0, 1, 3])
    trailing = _apply(flatten_trailing, value)
    assert trailing.shape == (2, 60)
    assert torch.equal(trailing[1], value[1].reshape(-1))


def test_take_token() -> None:
    value = torch.arange(24).reshape(2, 3, 4)
    assert torch.equal(_apply(take_token, value, axis=1), value[:, 0])
    assert torch.equal(_apply(take_token, value, axis=-1, index=2), value[..., 2])


def test_take_token_requires_axis() -> None:
    with pytest.raises(GraphConstructionError):
        take_token(placeholder("x"))


def test_split_pair() -> None:
    value = torch.arange(12).reshape(2, 3, 2)
    x = placeholder("x")
    left, right = split_pair(x)
    out = build((left, right)).predict({}, {"x": value})
    assert torch.equal(out[0], value[:, :, 0])
    assert torch.equal(out[1], value[:, :, 1])


def test_cosine_similarity() -> None:
    value = torch.randn(3, 4)
    x = placeholder("x")
    y = placeholder("y")
    compiled = build(cosine_similarity(x, y))
    assert torch.allclose(compiled.predict({}, {"x": value, "y": 2 * value}), torch.ones(3), atol=1e-6)
    assert torch.allclose(compiled.predict({}, {"x": value, "y": -value}), -torch.ones(3), atol=1e-6)
