"""
Request payload models for Cloud Atlas.

A payload is the unit sent to the LLM backend. It carries an ordered list of
messages; during composition the last message is the one being merged into.
"""

import uuid
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def new_request_id() -> str:
    """Generate a short identifier for one logical request."""
    return uuid.uuid4().hex[:10]


class LlmOptions(BaseModel):
    """Sampling parameters passed through to the model."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def is_empty(self) -> bool:
        return self.temperature is None and self.max_tokens is None

    def with_overrides(self, other: "LlmOptions") -> "LlmOptions":
        """Return a copy where every field set on ``other`` replaces ours."""
        return self.model_copy(update=other.model_dump(exclude_none=True))


class Options(BaseModel):
    """Server-side post-processing switches."""

    generate_embeddings: bool = False
    entity_recognition: bool = False
    wikify: List[str] = Field(default_factory=list)


class User(BaseModel):
    """The user side of a conversation turn."""

    user_prompt: Optional[str] = Field(
        None,
        description="Instructions telling the model what to do with the input"
    )

    input: Optional[str] = Field(
        None,
        description="The main content the instructions apply to"
    )

    additional_context: Dict[str, str] = Field(
        default_factory=dict,
        description="Related content keyed by note path, URL or node id"
    )


class Message(BaseModel):
    """One conversation turn."""

    user: Optional[User] = None
    system: Optional[str] = None
    assistant: Optional[str] = None


class Payload(BaseModel):
    """
    A complete request for the LLM backend.

    ``request_id`` is generated once when a composition chain starts and is
    carried unchanged through every merge.
    """

    model_config = ConfigDict(populate_by_name=True)

    messages: List[Message] = Field(default_factory=lambda: [Message(user=User())])
    options: Options = Field(default_factory=Options)
    provider: str = "auto"
    model: Optional[str] = None
    llm_options: LlmOptions = Field(default_factory=LlmOptions, alias="llmOptions")
    request_id: str = Field(default_factory=new_request_id, alias="requestId")
    version: Optional[Literal["V1", "V2"]] = None

    @property
    def active_message(self) -> Message:
        return self.messages[-1]

    @property
    def active_user(self) -> User:
        message = self.active_message
        if message.user is None:
            message.user = User()
        return message.user

    def to_wire(self) -> Dict[str, Any]:
        """Serialize using the field names the backend expects."""
        data = self.model_dump(by_alias=True)
        data["llmOptions"] = self.llm_options.model_dump(exclude_none=True)
        if self.version is None:
            data.pop("version")
        return data

