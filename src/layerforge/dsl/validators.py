from __future__ import annotations

from .errors import DSLValidationError
from .models import Arch, DSLConfig


def _validate_heads(arch: Arch) -> None:
    if arch.hidden_size % arch.num_heads != 0:
        raise DSLValidationError(
            f"hidden_size ({arch.hidden_size}) must be divisible by num_heads ({arch.num_heads})"
        )


def _validate_relative_attention(arch: Arch) -> None:
    rel = arch.relative_attention
    buckets = rel.num_buckets // 2 if rel.bidirectional else rel.num_buckets
    max_exact = buckets // 2
    if max_exact < 1:
        raise DSLValidationError(
            f"relative_attention.num_buckets={rel.num_buckets} leaves no exact buckets"
        )
    if rel.max_distance <= max_exact:
        raise DSLValidationError(
            f"relative_attention.max_distance must exceed {max_exact} (got {rel.max_distance})"
        )


def _validate_decoder(arch: Arch) -> None:
    if arch.decoder and arch.relative_attention.bidirectional:
        raise DSLValidationError("decoder stacks require relative_attention.bidirectional: false")
    if arch.cross_attention and not arch.decoder:
        raise DSLValidationError("cross_attention is only supported with decoder: true")


def run_additional_checks(cfg: DSLConfig) -> None:
    arch = cfg.arch
    _validate_heads(arch)
    _validate_relative_attention(arch)
    _validate_decoder(arch)
