"""
Flow config parser for Cloud Atlas.

Extracts a FlowConfig from a flow layer's front matter and returns the body
text that follows it.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..constants import FLOWS_PLACEHOLDER, LINK_PREFIX
from ..exceptions import MalformedFlowError
from ..models import FlowConfig, LlmOptions
from ..vault import BaseVault
from ..vault.frontmatter import parse_bool
from .naming import list_flows


class FlowConfigParser:
    """
    Reads flow layers from a vault.

    Fields absent from the front matter stay unset so the engine can apply
    inheritance; only ``exclusion_patterns`` defaults (to an empty list).
    """

    def __init__(self, vault: BaseVault, flows_folder: str):
        self.vault = vault
        self.flows_folder = flows_folder

    def parse(self, identifier: str) -> FlowConfig:
        """
        Parse the config of one flow layer.

        Raises:
            ContentNotFoundError: If the layer does not exist
            MalformedFlowError: If its front matter is invalid
        """
        config, _ = self.load(identifier)
        return config

    def load(self, identifier: str) -> Tuple[FlowConfig, str]:
        """
        Parse a flow layer and return its config together with its body.

        The body starts exactly at the config's ``front_matter_offset``. A
        ``{{flows}}`` placeholder in the body is replaced by the flow listing.
        """
        metadata, offset = self.vault.metadata(identifier)
        body = self.vault.read(identifier)[offset:]

        if FLOWS_PLACEHOLDER in body:
            body = body.replace(FLOWS_PLACEHOLDER, self.flow_listing())

        try:
            config = self.config_from_metadata(metadata, offset)
        except (TypeError, ValueError) as e:
            raise MalformedFlowError(f"Invalid flow settings in {identifier}: {e}") from e

        logging.debug(f"Parsed flow layer {identifier}: {config}")
        return config, body

    def config_from_metadata(self, metadata: Dict[str, Any], offset: int = 0) -> FlowConfig:
        """
        Build a FlowConfig from a front matter mapping.

        Args:
            metadata: The parsed front matter
            offset: Where the body starts in the note

        Returns:
            The layer's config, with unset fields left as None
        """
        additional_context = {
            key[len(LINK_PREFIX):]: str(value)
            for key, value in metadata.items()
            if isinstance(key, str) and key.startswith(LINK_PREFIX) and value is not None
        }

        return FlowConfig(
            user_prompt=_optional_str(metadata.get("userPrompt")),
            system_instructions=_optional_str(metadata.get("system_instructions")),
            mode=_optional_str(metadata.get("mode")),
            resolve_backlinks=parse_bool(metadata.get("resolveBacklinks")),
            resolve_forward_links=parse_bool(metadata.get("resolveForwardLinks")),
            expand_urls=parse_bool(metadata.get("expandUrls")),
            exclusion_patterns=_string_list(metadata.get("exclusionPattern")),
            front_matter_offset=offset,
            llm_options=LlmOptions(
                temperature=_number(metadata.get("temperature"), float),
                max_tokens=_number(metadata.get("max_tokens"), int),
            ),
            additional_context=additional_context,
            model=_optional_str(metadata.get("model")),
            can_delegate=parse_bool(metadata.get("can_delegate")),
        )

    def flow_listing(self) -> str:
        return "\n".join(f"- {name}" for name in list_flows(self.vault, self.flows_folder))


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def _number(value: Any, kind):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return kind(value)
