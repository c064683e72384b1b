"""
Direct provider dispatch through the OpenAI SDK.

Covers both OpenAI and Azure OpenAI deployments.
"""

import logging
from typing import Any, Dict, Optional

import openai

from ..exceptions import DispatchError
from ..models import Payload
from .base import Dispatcher, payload_to_messages


class OpenAiDispatcher(Dispatcher):
    """
    Sends payloads to the OpenAI chat completions API.
    """

    def __init__(self, api_key: str, model_id: str, client: Optional[Any] = None):
        """
        Initialize the dispatcher.

        Args:
            api_key: OpenAI API key, passed through as-is
            model_id: Model to use unless the payload names one
            client: Optional preconfigured async client
        """
        self.model_id = model_id
        self.client = client or openai.AsyncOpenAI(api_key=api_key)

    def _model_for(self, payload: Payload) -> str:
        return payload.model or self.model_id

    async def send(self, payload: Payload) -> str:
        messages = payload_to_messages(payload)
        kwargs: Dict[str, Any] = payload.llm_options.model_dump(exclude_none=True)
        model = self._model_for(payload)

        logging.debug(f"Sending {len(messages)} messages to {model}")
        try:
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                **kwargs
            )
        except openai.OpenAIError as e:
            raise DispatchError(f"Request to {model} failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise DispatchError(f"Empty response from {model}")
        return content

    async def aclose(self) -> None:
        await self.client.close()


class AzureAiDispatcher(OpenAiDispatcher):
    """
    Sends payloads to an Azure OpenAI deployment.
    """

    def __init__(self, api_key: str, deployment_id: str, endpoint: str,
                 api_version: str = "2024-02-01", client: Optional[Any] = None):
        super().__init__(
            api_key,
            deployment_id,
            client=client or openai.AsyncAzureOpenAI(
                api_key=api_key,
                azure_endpoint=endpoint,
                api_version=api_version,
            ),
        )

    def _model_for(self, payload: Payload) -> str:
        # Azure routes by deployment, not by model name.
        return self.model_id
