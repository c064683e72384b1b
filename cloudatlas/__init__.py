"""
Cloud Atlas: composes notes, flow templates and canvases into LLM requests.

Layers of markdown with front matter are merged into one payload, sent to an
LLM backend and the response is written back into the vault.
"""

__version__ = "0.1.0"
__author__ = "Cloud Atlas Project"

# Import main components
from .config import ConfigManager, PluginSettings
from .database import RunLedger
from .models import CanvasContent, FlowConfig, FlowResponse, Payload
from .vault import BaseVault, FilesystemVault, InMemoryVault
from .dispatch import create_dispatcher
from .flows import FlowEngine, InteractiveSession
from .canvas import CanvasResolver, CanvasRunner, payload_to_canvas

__all__ = [
    "ConfigManager",
    "PluginSettings",
    "RunLedger",
    "CanvasContent",
    "FlowConfig",
    "FlowResponse",
    "Payload",
    "BaseVault",
    "FilesystemVault",
    "InMemoryVault",
    "create_dispatcher",
    "FlowEngine",
    "InteractiveSession",
    "CanvasResolver",
    "CanvasRunner",
    "payload_to_canvas",
]
