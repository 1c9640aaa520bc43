from __future__ import annotations

from pathlib import Path

import pytest

from layerforge.dsl import DSLValidationError, load_validate_yaml, validate_dict


EXAMPLES = [
    "examples/encoder_tiny.yaml",
    "examples/decoder_cross.yaml",
]


@pytest.mark.parametrize("path", EXAMPLES)
def test_examples_validate(path: str) -> None:
    cfg = load_validate_yaml(Path(path))
    assert cfg.arch.hidden_size % cfg.arch.num_heads == 0
    assert cfg.arch.num_layers == 2


def test_defaults_are_filled() -> None:
    cfg = validate_dict(
        {"arch": {"hidden_size": 8, "num_heads": 2, "num_layers": 1, "intermediate_size": 16}}
    )
    assert cfg.arch.relative_attention.num_buckets == 32
    assert cfg.arch.drop_path_rate == 0.0
    assert cfg.init.seed == 0


def test_missing_required_fails(tmp_path: Path) -> None:
    p = tmp_path / "bad.yaml"
    p.write_text("init: {seed: 1}")
    with pytest.raises(DSLValidationError):
        load_validate_yaml(p)


def test_unknown_key_fails(tmp_path: Path) -> None:
    p = tmp_path / "bad.yaml"
    p.write_text(
        "arch: {hidden_size: 8, num_heads: 2, num_layers: 1, intermediate_size: 16, dropout: 0.1}"
    )
    with pytest.raises(DSLValidationError):
        load_validate_yaml(p)


@pytest.mark.parametrize(
    "arch",
    [
        {"hidden_size": 10, "num_heads": 4},
        {"relative_attention": {"num_buckets": 2}},
        {"relative_attention": {"num_buckets": 32, "max_distance": 8}},
        {"decoder": True},
        {"cross_attention": True, "relative_attention": {"bidirectional": False}},
        {"drop_path_rate": 1.0},
    ],
)
def test_semantic_checks(arch: dict) -> None:
    base = {"hidden_size": 8, "num_heads": 2, "num_layers": 1, "intermediate_size": 16}
    with pytest.raises(DSLValidationError):
        validate_dict({"arch": {**base, **arch}})


def test_non_mapping_fails() -> None:
    with pytest.raises(DSLValidationError):
        validate_dict(["arch"])
