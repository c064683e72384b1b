"""
Dispatcher interface for Cloud Atlas.

A dispatcher sends one payload to an LLM backend and returns the response
text.
"""

from abc import ABC, abstractmethod
from typing import Dict, List

from ..models import Payload, User


class Dispatcher(ABC):
    """
    Abstract base class for LLM backends.
    """

    @abstractmethod
    async def send(self, payload: Payload) -> str:
        """
        Send a payload and return the response text.

        Raises:
            DispatchError: If the backend fails or returns nothing
        """

    async def aclose(self) -> None:
        """Release any network resources held by the dispatcher."""


def payload_to_messages(payload: Payload) -> List[Dict[str, str]]:
    """
    Flatten a payload into chat messages.

    For each message, in order: system, user prompt, one entry per additional
    context item, input, then any assistant reply from an earlier turn. Empty
    parts are skipped.
    """
    messages: List[Dict[str, str]] = []
    for message in payload.messages:
        if message.system:
            messages.append({"role": "system", "content": message.system})

        user = message.user
        if user is not None:
            messages.extend(_user_messages(user))

        if message.assistant:
            messages.append({"role": "assistant", "content": message.assistant})

    return messages


def _user_messages(user: User) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = []
    if user.user_prompt:
        messages.append({"role": "user", "content": user.user_prompt})

    for key, value in user.additional_context.items():
        messages.append({"role": "user", "content": f"additional_context -{key}: {value}\n"})

    if user.input:
        messages.append({"role": "user", "content": user.input})
    return messages
