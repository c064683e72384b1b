"""
Flow configuration models for Cloud Atlas.

A FlowConfig is derived from one flow layer's front matter. Resolution
toggles are tri-state: ``None`` means "inherit from the previous layer".
"""

from enum import Enum
from typing import Dict, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .payload import LlmOptions, Payload

T = TypeVar("T")


def resolve_flag(current: Optional[T], previous: Optional[T]) -> Optional[T]:
    """Return the layer's own value, or the previous layer's when unset."""
    return previous if current is None else current


class FlowConfig(BaseModel):
    """Configuration contributed by a single flow layer."""

    user_prompt: Optional[str] = None
    system_instructions: Optional[str] = None
    mode: Optional[str] = None
    resolve_backlinks: Optional[bool] = None
    resolve_forward_links: Optional[bool] = None
    expand_urls: Optional[bool] = None
    exclusion_patterns: List[str] = Field(default_factory=list)
    front_matter_offset: int = 0
    llm_options: LlmOptions = Field(default_factory=LlmOptions)
    additional_context: Dict[str, str] = Field(default_factory=dict)
    model: Optional[str] = None
    can_delegate: Optional[bool] = None

    @classmethod
    def base(cls) -> "FlowConfig":
        """The config a composition chain starts from."""
        return cls(
            resolve_backlinks=True,
            resolve_forward_links=True,
            expand_urls=True,
            can_delegate=False,
        )

    def inherit_from(self, previous: "FlowConfig") -> "FlowConfig":
        """Fill every unset inheritable field from ``previous``."""
        return self.model_copy(update={
            "resolve_forward_links": resolve_flag(self.resolve_forward_links, previous.resolve_forward_links),
            "resolve_backlinks": resolve_flag(self.resolve_backlinks, previous.resolve_backlinks),
            "expand_urls": resolve_flag(self.expand_urls, previous.expand_urls),
            "model": resolve_flag(self.model, previous.model),
            "can_delegate": resolve_flag(self.can_delegate, previous.can_delegate),
        })


class PayloadConfig(BaseModel):
    """A composed payload together with the effective config of its last layer."""

    payload: Payload
    config: FlowConfig


class ContentKind(str, Enum):
    FILE = "file"
    URL = "url"
    SYNTHETIC = "synthetic"


class ContentId(BaseModel):
    """
    Identifier of a piece of content: a vault path, a URL or a synthetic id
    such as a canvas node id.
    """

    model_config = ConfigDict(frozen=True)

    kind: ContentKind
    value: str

    @classmethod
    def parse(cls, raw: str) -> "ContentId":
        """Classify a plain string key the way stored flows encode it."""
        if raw.startswith("http://") or raw.startswith("https://"):
            return cls(kind=ContentKind.URL, value=raw)
        if "." in raw.rsplit("/", 1)[-1]:
            return cls(kind=ContentKind.FILE, value=raw)
        return cls(kind=ContentKind.SYNTHETIC, value=raw)

    def __str__(self) -> str:
        return self.value


class FlowResponse(BaseModel):
    """Outcome of running a flow on a note."""

    flow: str
    note: str
    response: str
    payload: Payload
    config: FlowConfig
    delegated: List["FlowResponse"] = Field(default_factory=list)


# Enable forward references for self-referencing model
FlowResponse.model_rebuild()
