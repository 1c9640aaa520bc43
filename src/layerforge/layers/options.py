from __future__ import annotations

from typing import Any, Callable, Dict, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from layerforge.graph import GraphConstructionError
from layerforge.graph.initializers import full

InitializerSpec = Union[str, Callable[..., Any]]

T = TypeVar("T", bound=BaseModel)


class LayerOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    name: Optional[str] = None


class AttentionWeightsOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    scale_query: bool = True


class RelativeAttentionBiasOptions(LayerOptions):
    bidirectional: bool = True
    num_heads: int = Field(default=8, ge=1)
    num_buckets: int = Field(default=32, ge=2)
    max_distance: int = Field(default=128, ge=1)


class RMSNormOptions(LayerOptions):
    channel_index: int = -1
    epsilon: float = Field(default=1e-6, gt=0)
    initializer: InitializerSpec = "ones"


class DropPathOptions(LayerOptions):
    seed: Optional[int] = None
    rate: float = Field(default=0.0, ge=0.0, lt=1.0)


class ScaleOptions(LayerOptions):
    scale_initializer: InitializerSpec = full(1e-6)
    channel_index: int = -1


class DenseOptions(LayerOptions):
    use_bias: bool = True
    kernel_initializer: InitializerSpec = "glorot_uniform"
    bias_initializer: InitializerSpec = "zeros"


class Conv1dOptions(DenseOptions):
    pass


class DenseTransposedOptions(LayerOptions):
    kernel_initializer: InitializerSpec = "glorot_uniform"


class EmbeddingOptions(LayerOptions):
    kernel_initializer: InitializerSpec = "uniform"


class LearnedEmbeddingsOptions(LayerOptions):
    initializer: InitializerSpec = "zeros"


class TakeTokenOptions(LayerOptions):
    axis: int
    index: int = 0


class PositionIdsOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    offset: int = 0


ActivationKind = Literal[
    "linear",
    "relu",
    "relu6",
    "leaky_relu",
    "elu",
    "selu",
    "celu",
    "gelu",
    "gelu_new",
    "quick_gelu",
    "silu",
    "mish",
    "softplus",
    "softsign",
    "hard_sigmoid",
    "hard_silu",
    "hard_tanh",
    "log_sigmoid",
    "tanh",
    "sigmoid",
    "softmax",
    "log_softmax",
    "exp",
]


class ActivationOptions(LayerOptions):
    kind: ActivationKind


def validate_options(model: Type[T], layer_name: str, opts: Dict[str, Any]) -> T:
    """Parses keyword options against ``model``; unknown keys fail immediately."""
    try:
        return model.model_validate(opts)
    except ValidationError as exc:
        raise GraphConstructionError(f"Invalid options for {layer_name}: {exc}") from exc
