"""LLM backends."""

from ..config import PluginSettings
from .base import Dispatcher, payload_to_messages
from .cloud import CloudAtlasDispatcher
from .openai_provider import AzureAiDispatcher, OpenAiDispatcher


def create_dispatcher(settings: PluginSettings) -> Dispatcher:
    """
    Build the dispatcher selected by ``settings.provider``.

    Raises:
        ValueError: If the provider is unknown
    """
    if settings.provider == "openai":
        return OpenAiDispatcher(settings.openai.api_key, settings.openai.model_id)
    if settings.provider == "azureai":
        return AzureAiDispatcher(
            settings.azureai.api_key,
            settings.azureai.deployment_id,
            settings.azureai.endpoint,
            settings.azureai.api_version,
        )
    if settings.provider == "cloudatlas":
        return CloudAtlasDispatcher(
            settings.api_key,
            settings.endpoint,
            timeout_mins=settings.timeout_mins,
            poll_interval=settings.poll_interval,
        )
    raise ValueError(f"Unknown provider: {settings.provider}")


__all__ = [
    "Dispatcher",
    "payload_to_messages",
    "CloudAtlasDispatcher",
    "OpenAiDispatcher",
    "AzureAiDispatcher",
    "create_dispatcher",
]
