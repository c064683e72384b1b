"""
In-memory vaults for Cloud Atlas.

InMemoryVault holds notes in a dictionary and is used for tests and
ephemeral runs. OverlayVault layers scratch notes over another vault without
persisting them.
"""

from typing import Dict, List, Optional

from ..exceptions import ContentNotFoundError
from .base import BaseVault


class InMemoryVault(BaseVault):
    """
    Vault that keeps every file in memory.
    """

    def __init__(self, files: Optional[Dict[str, str]] = None):
        self._files: Dict[str, bytes] = {}
        for identifier, text in (files or {}).items():
            self.write(identifier, text)

    def read_bytes(self, identifier: str) -> bytes:
        try:
            return self._files[identifier]
        except KeyError:
            raise ContentNotFoundError(identifier) from None

    def write(self, identifier: str, text: str) -> None:
        self._files[identifier] = text.encode("utf-8")

    def write_bytes(self, identifier: str, data: bytes) -> None:
        self._files[identifier] = data

    def exists(self, identifier: str) -> bool:
        return identifier in self._files

    def list_files(self, prefix: str = "") -> List[str]:
        return sorted(identifier for identifier in self._files if identifier.startswith(prefix))


class OverlayVault(BaseVault):
    """
    Reads fall through to the base vault unless the file exists in the
    overlay. Writes to overlay files stay in memory; all others go to the base.
    """

    def __init__(self, base: BaseVault, scratch: Dict[str, str]):
        self.base = base
        self.scratch = InMemoryVault(scratch)

    def read_bytes(self, identifier: str) -> bytes:
        if self.scratch.exists(identifier):
            return self.scratch.read_bytes(identifier)
        return self.base.read_bytes(identifier)

    def write(self, identifier: str, text: str) -> None:
        if self.scratch.exists(identifier):
            self.scratch.write(identifier, text)
        else:
            self.base.write(identifier, text)

    def exists(self, identifier: str) -> bool:
        return self.scratch.exists(identifier) or self.base.exists(identifier)

    def list_files(self, prefix: str = "") -> List[str]:
        return sorted(set(self.base.list_files(prefix)) | set(self.scratch.list_files(prefix)))
