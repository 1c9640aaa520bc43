from __future__ import annotations

import math
from typing import Any, Callable, Dict

import torch
import torch.nn.functional as F

from layerforge.graph import Node, layer, param

from .combinators import if_present
from .options import (
    ActivationOptions,
    Conv1dOptions,
    DenseOptions,
    DenseTransposedOptions,
    EmbeddingOptions,
    LayerOptions,
    LearnedEmbeddingsOptions,
    validate_options,
)


def gelu_new(x: torch.Tensor) -> torch.Tensor:
    """GeLU with the tanh approximation, as used by GPT-2."""
    return 0.5 * x * (1.0 + torch.tanh(math.sqrt(2.0 / math.pi) * (x + 0.044715 * torch.pow(x, 3.0))))


def quick_gelu(x: torch.Tensor) -> torch.Tensor:
    return x * torch.sigmoid(1.702 * x)


ACTIVATIONS: Dict[str, Callable[[torch.Tensor], torch.Tensor]] = {
    "linear": lambda x: x,
    "relu": F.relu,
    "relu6": F.relu6,
    "leaky_relu": F.leaky_relu,
    "elu": F.elu,
    "selu": F.selu,
    "celu": F.celu,
    "gelu": F.gelu,
    "gelu_new": gelu_new,
    "quick_gelu": quick_gelu,
    "silu": F.silu,
    "mish": F.mish,
    "softplus": F.softplus,
    "softsign": F.softsign,
    "hard_sigmoid": F.hardsigmoid,
    "hard_silu": F.hardswish,
    "hard_tanh": F.hardtanh,
    "log_sigmoid": F.logsigmoid,
    "tanh": torch.tanh,
    "sigmoid": torch.sigmoid,
    "softmax": lambda x: torch.softmax(x, dim=-1),
    "log_softmax": lambda x: torch.log_softmax(x, dim=-1),
    "exp": torch.exp,
}


def activation(x: Node, kind: str, **opts: Any) -> Node:
    options = validate_options(ActivationOptions, "activation", {"kind": kind, **opts})
    fn = ACTIVATIONS[options.kind]
    return layer(lambda t, **_: fn(t), [x], name=options.name, op_name=options.kind)


def _dense_impl(x: torch.Tensor, kernel: torch.Tensor, bias: Any = None, **_: Any) -> torch.Tensor:
    out = torch.matmul(x, kernel)
    if bias is not None:
        out = out + bias
    return out


def dense(x: Node, units: int, **opts: Any) -> Node:
    """Fully connected layer with a ``{in, units}`` kernel.

    Options:
        name: layer name.
        use_bias: whether to add a bias. Defaults to ``True``.
        kernel_initializer: defaults to ``"glorot_uniform"``.
        bias_initializer: defaults to ``"zeros"``.
    """
    options = validate_options(DenseOptions, "dense", opts)
    kernel = param("kernel", lambda shape, *_: (shape[-1], units), initializer=options.kernel_initializer)
    inputs = [x, kernel]
    if options.use_bias:
        inputs.append(param("bias", (units,), initializer=options.bias_initializer))
    return layer(_dense_impl, inputs, name=options.name, op_name="dense")


def dense_transposed(x: Node, units: int, **opts: Any) -> Node:
    """Like :func:`dense`, but the kernel is stored as ``{units, in}``."""
    options = validate_options(DenseTransposedOptions, "dense_transposed", opts)
    kernel = param("kernel", lambda shape, *_: (units, shape[-1]), initializer=options.kernel_initializer)
    return layer(
        lambda t, k, **_: torch.matmul(t, k.transpose(0, 1)),
        [x, kernel],
        name=options.name,
        op_name="dense_transposed",
    )


def conv1d(x: Node, units: int, **opts: Any) -> Node:
    """GPT-2 style 1D convolution, a dense projection over the last axis."""
    options = validate_options(Conv1dOptions, "conv1d", opts)
    kernel = param("kernel", lambda shape, *_: (shape[-1], units), initializer=options.kernel_initializer)
    inputs = [x, kernel]
    if options.use_bias:
        inputs.append(param("bias", (units,), initializer=options.bias_initializer))
    return layer(_dense_impl, inputs, name=options.name, op_name="conv1d")


def embedding(x: Node, vocab_size: int, embedding_size: int, **opts: Any) -> Node:
    options = validate_options(EmbeddingOptions, "embedding", opts)
    kernel = param("kernel", (vocab_size, embedding_size), initializer=options.kernel_initializer)
    return layer(
        lambda ids, k, **_: F.embedding(ids.long(), k),
        [x, kernel],
        name=options.name,
        op_name="embedding",
    )


def learned_embeddings(num_embeddings: int, embedding_size: int, **opts: Any) -> Node:
    """A ``{1, num_embeddings, embedding_size}`` node of learned embeddings."""
    options = validate_options(LearnedEmbeddingsOptions, "learned_embeddings", opts)
    embeddings = param("embeddings", (num_embeddings, embedding_size), initializer=options.initializer)
    return layer(
        lambda e, **_: e.unsqueeze(0),
        [embeddings],
        name=options.name,
        op_name="learned_embeddings",
    )


def _prepend_embedding_impl(embeddings: torch.Tensor, embedding: torch.Tensor, **_: Any) -> torch.Tensor:
    batch_size = embeddings.shape[0]
    embedding = embedding.reshape(1, 1, -1).expand(batch_size, 1, -1)
    return torch.cat([embedding.to(embeddings.dtype), embeddings], dim=1)


def prepend_embedding(embeddings: Node, **opts: Any) -> Node:
    """Prepends one learned embedding (such as CLS) to every sequence."""
    options = validate_options(LearnedEmbeddingsOptions, "prepend_embedding", opts)
    embedding = param("embedding", lambda shape, *_: (shape[2],), initializer=options.initializer)
    return layer(
        _prepend_embedding_impl,
        [embeddings, embedding],
        name=options.name,
        op_name="prepend_embedding",
    )


def _patch_mask_impl(
    embeddings: torch.Tensor, patch_mask: torch.Tensor, mask_token: torch.Tensor, **_: Any
) -> torch.Tensor:
    mask = patch_mask.bool().unsqueeze(-1)
    return torch.where(mask, mask_token.to(embeddings.dtype).expand_as(embeddings), embeddings)


def apply_vision_patch_mask(embeddings: Node, patch_mask: Node, **opts: Any) -> Node:
    """Replaces masked patch embeddings with a learned mask token.

    Without a patch mask the embeddings pass through unchanged.
    """
    options = validate_options(LayerOptions, "apply_vision_patch_mask", opts)
    mask_token = param("mask_token", lambda shape, *_: (1, 1, shape[2]), initializer="zeros")
    masked = layer(
        _patch_mask_impl,
        [embeddings, patch_mask, mask_token],
        name=options.name,
        op_name="apply_patch_mask",
    )
    return if_present(patch_mask, masked, embeddings)
