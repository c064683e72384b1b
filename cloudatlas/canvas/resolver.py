"""
Canvas graph resolver for Cloud Atlas.

Builds request payloads from a canvas whose nodes play the roles of input,
user prompt, system instructions and additional context.
"""

import logging
from typing import List, Optional, Union

from pydantic import BaseModel

from ..config import PluginSettings
from ..constants import ADDITIONAL_SYSTEM
from ..exceptions import CanvasInputError, LayerResolutionError
from ..flows.merge import join_strings
from ..flows.naming import INDEX_SUFFIX
from ..models import (
    CanvasContent,
    ContentId,
    ContentKind,
    FileNode,
    Message,
    NodeRole,
    Payload,
    TextNode,
    User,
    new_request_id,
)
from ..vault import ContentResolver

ResolvableNode = Union[FileNode, TextNode]


class CanvasScaffolding(BaseModel):
    """Payloads built from a canvas, plus what is needed to splice in responses."""

    payloads: List[Payload]
    canvas: CanvasContent
    input_node: ResolvableNode


def node_source(node: ResolvableNode) -> ContentId:
    if isinstance(node, FileNode):
        return ContentId(kind=ContentKind.FILE, value=node.file)
    return ContentId(kind=ContentKind.SYNTHETIC, value=node.id)


class CanvasResolver:
    """
    Classifies canvas nodes by role and assembles the equivalent payload.
    """

    def __init__(self, content: ContentResolver, settings: PluginSettings):
        self.content = content
        self.settings = settings

    async def node_content(self, node: ResolvableNode) -> Optional[str]:
        if isinstance(node, TextNode):
            return node.text
        return await self.content.resolve(node_source(node), [])

    def _scoped(self, canvas: CanvasContent, role: NodeRole, input_node: ResolvableNode) -> List[ResolvableNode]:
        nodes = canvas.nodes_with_role(role)
        if not self.settings.canvas_edge_scoped:
            return nodes
        connected = {edge.from_node for edge in canvas.edges_into(input_node.id)}
        return [node for node in nodes if node.id in connected]

    async def _joined(self, nodes: List[ResolvableNode]) -> str:
        parts = [await self.node_content(node) for node in nodes]
        return "\n".join(part for part in parts if part)

    async def resolve(self, canvas: CanvasContent) -> CanvasScaffolding:
        """
        Build the payload(s) described by a canvas.

        Raises:
            CanvasInputError: If the canvas has zero or several input nodes
        """
        input_nodes = canvas.nodes_with_role(NodeRole.INPUT)
        if len(input_nodes) != 1:
            raise CanvasInputError(
                f"A canvas flow needs exactly one input node (red), found {len(input_nodes)}"
            )
        input_node = input_nodes[0]

        user_prompt = await self._joined(self._scoped(canvas, NodeRole.USER_PROMPT, input_node))
        system = join_strings(
            await self._joined(self._scoped(canvas, NodeRole.SYSTEM, input_node)),
            ADDITIONAL_SYSTEM,
        )

        additional_context = {}
        for node in canvas.nodes_with_role(NodeRole.CONTEXT):
            source = node_source(node)
            content = await self.node_content(node)
            if content is not None:
                additional_context[source.value] = content
            if source.kind == ContentKind.FILE and self.content.wants_forward_links(source.value):
                additional_context.update(self.content.forward_link_context(source.value, []))

        if isinstance(input_node, FileNode):
            if self.settings.canvas_resolve_links:
                additional_context.update(self.content.forward_link_context(input_node.file, []))
            if self.settings.canvas_resolve_backlinks:
                additional_context.update(self.content.backlink_context(input_node.file, []))

        payload = Payload(
            messages=[Message(
                user=User(
                    user_prompt=user_prompt,
                    input=await self.node_content(input_node),
                    additional_context=additional_context,
                ),
                system=system,
            )],
            options=self.settings.options.model_copy(deep=True),
            provider="auto" if self.settings.provider == "cloudatlas" else self.settings.provider,
            llm_options=self.settings.llm_options.model_copy(),
            request_id=new_request_id(),
        )

        return CanvasScaffolding(
            payloads=self.expand_batch(payload),
            canvas=canvas,
            input_node=input_node,
        )

    def expand_batch(self, payload: Payload) -> List[Payload]:
        """
        Fan a payload out over the items of an index note.

        Applies only when exactly one context key is an index note. Each item
        linked from the index replaces the index entry in its own copy of the
        payload, which gets a fresh request id. The copy keys the item by its
        own path and drops the index key.
        """
        context = payload.active_user.additional_context
        index_keys = [
            key for key in context
            if ContentId.parse(key).kind == ContentKind.FILE and key.endswith(INDEX_SUFFIX)
        ]
        if len(index_keys) != 1:
            return [payload]

        index = index_keys[0]
        try:
            items = sorted(self.content.vault.forward_links(index))
        except LayerResolutionError as e:
            logging.warning(f"Could not read batch index {index}: {e}")
            return [payload]

        payloads = []
        for item in items:
            content = self.content.read_filtered(item, [])
            if content is None:
                continue
            clone = payload.model_copy(deep=True)
            clone.request_id = new_request_id()
            clone_context = clone.active_user.additional_context
            del clone_context[index]
            clone_context[item] = content
            payloads.append(clone)

        logging.info(f"Batch index {index} expanded into {len(payloads)} payloads")
        return payloads or [payload]
