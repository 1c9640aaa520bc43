from __future__ import annotations

# JSON Schema for block configs; pydantic models carry the defaults.

DSL_JSON_SCHEMA: dict = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "layerforge block config v0.1",
    "type": "object",
    "required": ["arch"],
    "additionalProperties": False,
    "properties": {
        "arch": {
            "type": "object",
            "properties": {
                "hidden_size": {"type": "integer", "minimum": 1},
                "num_heads": {"type": "integer", "minimum": 1},
                "num_layers": {"type": "integer", "minimum": 1},
                "intermediate_size": {"type": "integer", "minimum": 1},
                "activation": {"enum": ["relu", "gelu", "gelu_new", "quick_gelu", "silu"]},
                "layer_norm_epsilon": {"type": "number", "exclusiveMinimum": 0},
                "drop_path_rate": {"type": "number", "minimum": 0, "exclusiveMaximum": 1},
                "relative_attention": {"$ref": "#/definitions/relative_attention"},
                "decoder": {"type": "boolean"},
                "cross_attention": {"type": "boolean"},
            },
            "required": ["hidden_size", "num_heads", "num_layers", "intermediate_size"],
            "additionalProperties": False,
        },
        "init": {
            "type": "object",
            "properties": {"seed": {"type": "integer"}},
            "additionalProperties": False,
        },
    },
    "definitions": {
        "relative_attention": {
            "type": "object",
            "properties": {
                "bidirectional": {"type": "boolean"},
                "num_buckets": {"type": "integer", "minimum": 2},
                "max_distance": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
    },
}
