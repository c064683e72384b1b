"""Note stores and content resolution."""

from .base import BaseVault
from .filesystem import FilesystemVault
from .memory import InMemoryVault, OverlayVault
from .resolver import ContentResolver, compile_exclusions, is_excluded

__all__ = [
    "BaseVault",
    "FilesystemVault",
    "InMemoryVault",
    "OverlayVault",
    "ContentResolver",
    "compile_exclusions",
    "is_excluded",
]
