"""
Interactive sessions: free-form prompts over a set of attached notes, with
the conversation kept as a growing list of messages.
"""

import logging
from typing import List, Set

from ..constants import INTERACTIVE_INPUT
from ..exceptions import ContentNotFoundError
from ..models import Message, Payload, User
from .engine import FlowEngine


class InteractiveSession:
    """
    A multi-turn conversation. Each send() appends the user turn and the
    assistant's reply to the history that the next request carries.
    """

    def __init__(self, engine: FlowEngine):
        self.engine = engine
        self.attached_files: Set[str] = set()
        self.history: List[Message] = []

    def attach(self, identifier: str) -> None:
        if not self.engine.vault.exists(identifier):
            raise ContentNotFoundError(identifier)
        self.attached_files.add(identifier)
        logging.info(f"Attached file: {identifier}")

    def detach(self, identifier: str) -> None:
        self.attached_files.discard(identifier)

    def build_payload(self, prompt: str) -> Payload:
        additional_context = {}
        for identifier in sorted(self.attached_files):
            content = self.engine.resolver.read_filtered(identifier, [])
            if content is not None:
                additional_context[identifier] = content

        payload = self.engine.seed_payload()
        payload.messages = [message.model_copy(deep=True) for message in self.history]
        payload.messages.append(Message(user=User(
            user_prompt=prompt,
            input=INTERACTIVE_INPUT,
            additional_context=additional_context,
        )))
        return payload

    async def send(self, prompt: str) -> str:
        """
        Send a prompt with the attached notes and the conversation so far.

        Raises:
            ValueError: If the prompt is blank
        """
        if not prompt.strip():
            raise ValueError("Please enter a prompt before sending.")

        payload = self.build_payload(prompt)
        response = await self.engine.dispatch(payload, source="interactive")

        self.history.append(payload.messages[-1])
        self.history.append(Message(assistant=response))
        return response
