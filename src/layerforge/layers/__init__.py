from .attention import (
    MASKED_BIAS,
    AttentionCache,
    apply_attention_head_mask,
    attention_bias,
    attention_output,
    attention_weights,
    expand_attention_mask,
)
from .combinators import append, default, if_present, maybe_container, none, output, unwrap_tuple
from .defaults import (
    default_attention_mask,
    default_bounding_box,
    default_position_ids,
    default_token_type_ids,
    shift_tokens_right,
)
from .dense import (
    activation,
    apply_vision_patch_mask,
    conv1d,
    dense,
    dense_transposed,
    embedding,
    gelu_new,
    learned_embeddings,
    prepend_embedding,
    quick_gelu,
)
from .norm import drop_path, rms_norm, scale
from .position import (
    compute_relative_position_buckets,
    relative_attention_bias,
    relative_position_buckets,
)
from .shape import (
    cosine_similarity,
    flatten_leading,
    flatten_trailing,
    merge_heads,
    pixel_shuffle,
    space_to_depth,
    split_heads,
    split_pair,
    take_token,
)

__all__ = [
    "MASKED_BIAS",
    "AttentionCache",
    "activation",
    "append",
    "apply_attention_head_mask",
    "apply_vision_patch_mask",
    "attention_bias",
    "attention_output",
    "attention_weights",
    "compute_relative_position_buckets",
    "conv1d",
    "cosine_similarity",
    "default",
    "default_attention_mask",
    "default_bounding_box",
    "default_position_ids",
    "default_token_type_ids",
    "dense",
    "dense_transposed",
    "drop_path",
    "embedding",
    "expand_attention_mask",
    "flatten_leading",
    "flatten_trailing",
    "gelu_new",
    "if_present",
    "learned_embeddings",
    "maybe_container",
    "merge_heads",
    "none",
    "output",
    "pixel_shuffle",
    "prepend_embedding",
    "quick_gelu",
    "relative_attention_bias",
    "relative_position_buckets",
    "rms_norm",
    "scale",
    "shift_tokens_right",
    "space_to_depth",
    "split_heads",
    "split_pair",
    "take_token",
    "unwrap_tuple",
]
