"""
Canvas layout helpers: rendering payloads as canvases and splicing responses
into an existing canvas.
"""

from typing import Union

from ..models import CanvasContent, Edge, FileNode, NodeRole, Payload, TextNode, text_node

NODE_WIDTH = 400
NODE_HEIGHT = 300
NODE_GAP = 60


def _edge(source: str, target: str) -> Edge:
    return Edge(from_node=source, to_node=target)


def payload_to_canvas(payload: Payload) -> CanvasContent:
    """
    Render a payload's active message as a canvas.

    The input node sits in the middle with the user prompt and system nodes
    above it and one context node per additional context entry below. Every
    other node has an edge into the input node.
    """
    user = payload.active_user
    message = payload.active_message
    canvas = CanvasContent()

    input_node = text_node(user.input or "", x=0, y=0,
                           width=NODE_WIDTH, height=NODE_HEIGHT, role=NodeRole.INPUT)
    canvas.nodes.append(input_node)

    above = []
    if user.user_prompt:
        above.append(text_node(user.user_prompt, role=NodeRole.USER_PROMPT))
    if message.system:
        above.append(text_node(message.system, role=NodeRole.SYSTEM))

    below = [
        text_node(f"{key}\n\n{value}", role=NodeRole.CONTEXT)
        for key, value in user.additional_context.items()
    ]

    for row, y in ((above, -(NODE_HEIGHT + NODE_GAP)), (below, NODE_HEIGHT + NODE_GAP)):
        for index, node in enumerate(row):
            node.x = index * (NODE_WIDTH + NODE_GAP)
            node.y = y
            node.width = NODE_WIDTH
            node.height = NODE_HEIGHT
            canvas.nodes.append(node)
            canvas.edges.append(_edge(node.id, input_node.id))

    return canvas


def add_response_node(canvas: CanvasContent, input_node: Union[FileNode, TextNode],
                      response: str, position: int) -> TextNode:
    """Place a response below the input node and connect the two."""
    node = text_node(
        response,
        x=input_node.x + position * (input_node.width + NODE_GAP),
        y=input_node.y + input_node.height + NODE_GAP,
        width=max(input_node.width, NODE_WIDTH),
        height=NODE_HEIGHT,
    )
    canvas.nodes.append(node)
    canvas.edges.append(_edge(input_node.id, node.id))
    return node
