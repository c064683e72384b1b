"""Data models for Cloud Atlas."""

from .payload import LlmOptions, Message, Options, Payload, User, new_request_id
from .flow import ContentId, ContentKind, FlowConfig, FlowResponse, PayloadConfig, resolve_flag
from .canvas import (
    CanvasContent,
    Edge,
    FileNode,
    NodeRole,
    OtherNode,
    TextNode,
    color_for_role,
    role_for_color,
    text_node,
)

__all__ = [
    "LlmOptions",
    "Message",
    "Options",
    "Payload",
    "User",
    "new_request_id",
    "ContentId",
    "ContentKind",
    "FlowConfig",
    "FlowResponse",
    "PayloadConfig",
    "resolve_flag",
    "CanvasContent",
    "Edge",
    "FileNode",
    "NodeRole",
    "OtherNode",
    "TextNode",
    "color_for_role",
    "role_for_color",
    "text_node",
]
