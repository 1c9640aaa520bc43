"""Default values for optional model inputs, derived from another input."""

from __future__ import annotations

from typing import Any

import torch

from layerforge.graph import Node, nx

from .options import PositionIdsOptions, validate_options


def default_attention_mask(x: Node) -> Node:
    """All-ones ``{batch, seq}`` mask."""
    return nx(
        x,
        lambda t: torch.ones(t.shape[0], t.shape[1], dtype=torch.long, device=t.device),
        op_name="default_attention_mask",
    )


def default_position_ids(x: Node, **opts: Any) -> Node:
    """Increasing ``{batch, seq}`` position ids.

    Options:
        offset: index of the first position. Defaults to 0.
    """
    options = validate_options(PositionIdsOptions, "default_position_ids", opts)

    def position_ids(t: torch.Tensor) -> torch.Tensor:
        ids = torch.arange(t.shape[1], device=t.device) + options.offset
        return ids.unsqueeze(0).expand(t.shape[0], -1)

    return nx(x, position_ids, op_name="default_position_ids")


def default_token_type_ids(x: Node) -> Node:
    return nx(
        x,
        lambda t: torch.zeros(t.shape[0], t.shape[1], dtype=torch.long, device=t.device),
        op_name="default_token_type_ids",
    )


def default_bounding_box(x: Node) -> Node:
    """Zero ``{batch, seq, 4}`` boxes for document-understanding models."""
    return nx(
        x,
        lambda t: torch.zeros(t.shape[0], t.shape[1], 4, dtype=torch.long, device=t.device),
        op_name="default_bounding_box",
    )


def shift_tokens_right(input_ids: Node, decoder_start_token_id: int) -> Node:
    """Drops the last token and prepends ``decoder_start_token_id``."""

    def shift(ids: torch.Tensor) -> torch.Tensor:
        start = torch.full((ids.shape[0], 1), decoder_start_token_id, dtype=ids.dtype, device=ids.device)
        return torch.cat([start, ids[:, :-1]], dim=1)

    return nx(input_ids, shift, op_name="shift_tokens_right")
