from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RelativeAttention(_Strict):
    bidirectional: bool = True
    num_buckets: int = Field(default=32, ge=2)
    max_distance: int = Field(default=128, ge=1)


class Arch(_Strict):
    hidden_size: int = Field(..., ge=1)
    num_heads: int = Field(..., ge=1)
    num_layers: int = Field(..., ge=1)
    intermediate_size: int = Field(..., ge=1)
    activation: Literal["relu", "gelu", "gelu_new", "quick_gelu", "silu"] = "relu"
    layer_norm_epsilon: float = Field(default=1e-6, gt=0)
    drop_path_rate: float = Field(default=0.0, ge=0.0, lt=1.0)
    relative_attention: RelativeAttention = Field(default_factory=RelativeAttention)
    decoder: bool = False
    cross_attention: bool = False


class Init(_Strict):
    seed: int = 0


class DSLConfig(_Strict):
    arch: Arch
    init: Init = Field(default_factory=Init)
