"""
Canvas models for Cloud Atlas.

A canvas is a JSON document of nodes and edges. Node roles are stored on disk
as colour codes; the mapping lives here and nowhere else.
"""

import uuid
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class NodeRole(str, Enum):
    INPUT = "input"
    USER_PROMPT = "user_prompt"
    SYSTEM = "system"
    CONTEXT = "context"


_COLOR_ROLES: Dict[str, NodeRole] = {
    "1": NodeRole.INPUT,        # red
    "2": NodeRole.USER_PROMPT,  # orange
    "5": NodeRole.SYSTEM,       # blue
    "4": NodeRole.CONTEXT,      # green
}

_ROLE_COLORS: Dict[NodeRole, str] = {role: color for color, role in _COLOR_ROLES.items()}


def role_for_color(color: Optional[str]) -> Optional[NodeRole]:
    return _COLOR_ROLES.get(color) if color else None


def color_for_role(role: NodeRole) -> str:
    return _ROLE_COLORS[role]


class _BaseNode(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    x: float = 0
    y: float = 0
    width: float = 200
    height: float = 200
    color: Optional[str] = None

    @property
    def role(self) -> Optional[NodeRole]:
        return role_for_color(self.color)


class FileNode(_BaseNode):
    type: Literal["file"] = "file"
    file: str


class TextNode(_BaseNode):
    type: Literal["text"] = "text"
    text: str


class OtherNode(_BaseNode):
    """Group and link nodes. They are kept on round-trip but never resolved."""

    type: Literal["group", "link"]


Node = Annotated[Union[FileNode, TextNode, OtherNode], Field(discriminator="type")]


class Edge(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    from_node: str = Field(..., alias="fromNode")
    from_side: str = Field("bottom", alias="fromSide")
    to_node: str = Field(..., alias="toNode")
    to_side: str = Field("top", alias="toSide")


class CanvasContent(BaseModel):
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    @classmethod
    def from_json(cls, text: str) -> "CanvasContent":
        return cls.model_validate_json(text) if text.strip() else cls()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)

    def nodes_with_role(self, role: NodeRole) -> List[Union[FileNode, TextNode]]:
        return [
            node for node in self.nodes
            if isinstance(node, (FileNode, TextNode)) and node.role == role
        ]

    def edges_into(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.to_node == node_id]


def text_node(text: str, x: float = 0, y: float = 0,
              height: float = 200, width: float = 200,
              role: Optional[NodeRole] = None) -> TextNode:
    """Create a free-standing text node, optionally coloured for a role."""
    return TextNode(
        text=text,
        x=x,
        y=y,
        width=width,
        height=height,
        color=color_for_role(role) if role else None,
    )
