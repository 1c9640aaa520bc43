#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

import torch

from layerforge.builders import build_stack, count_parameters
from layerforge.dsl import DSLValidationError, load_validate_yaml
from layerforge.graph import build


def main() -> int:
    ap = argparse.ArgumentParser(description="Validate a block YAML config and summarize its graph")
    ap.add_argument("--cfg", type=str, required=True, help="Path to YAML config")
    ap.add_argument("--init", action="store_true", help="Initialize parameters on a dummy batch")
    ap.add_argument("--seq-len", type=int, default=8)
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    path = Path(args.cfg)
    try:
        cfg = load_validate_yaml(path)
    except DSLValidationError as e:
        print("INVALID\n---")
        print(e)
        return 1
    outputs, meta = build_stack(cfg)
    print("VALID\n---")
    print(cfg.model_dump_json(indent=2))
    print("---")
    print(json.dumps(meta.extras, indent=2))

    if args.init:
        size = cfg.arch.hidden_size
        inputs = {"hidden_state": torch.zeros(1, args.seq_len, size)}
        if cfg.arch.cross_attention:
            inputs["encoder_hidden_state"] = torch.zeros(1, args.seq_len, size)
        params = build(outputs).init(inputs, seed=cfg.init.seed)
        print(f"parameters: {count_parameters(params)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
