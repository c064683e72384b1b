"""Canvas flows: graph resolution, layout and chunked dispatch."""

from .layout import add_response_node, payload_to_canvas
from .resolver import CanvasResolver, CanvasScaffolding
from .runner import CanvasRunner

__all__ = [
    "add_response_node",
    "payload_to_canvas",
    "CanvasResolver",
    "CanvasScaffolding",
    "CanvasRunner",
]
