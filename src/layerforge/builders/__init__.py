from .transformer import BuildMetadata, attention, build_block, build_stack, feed_forward
from .utils import count_parameters, summarize_graph

__all__ = [
    "BuildMetadata",
    "attention",
    "build_block",
    "build_stack",
    "count_parameters",
    "feed_forward",
    "summarize_graph",
]
