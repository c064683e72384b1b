"""
Filesystem vault for Cloud Atlas.

Reads and writes notes in a directory tree, the way a desktop note-taking
application lays out its vault.
"""

import logging
from pathlib import Path
from typing import List

from ..exceptions import ContentNotFoundError
from .base import BaseVault


class FilesystemVault(BaseVault):
    """
    Vault backed by a directory on disk.
    """

    def __init__(self, root: str):
        """
        Initialize the filesystem vault.

        Args:
            root: Path to the vault directory
        """
        self.root = Path(root)

        if not self.root.is_dir():
            logging.warning(f"Vault directory not found: {root}")

        logging.info(f"Initialized filesystem vault at: {self.root}")

    def _path(self, identifier: str) -> Path:
        path = (self.root / identifier).resolve()
        if self.root.resolve() not in path.parents:
            raise ContentNotFoundError(identifier)
        return path

    def read_bytes(self, identifier: str) -> bytes:
        path = self._path(identifier)
        if not path.is_file():
            raise ContentNotFoundError(identifier)
        return path.read_bytes()

    def write(self, identifier: str, text: str) -> None:
        path = self._path(identifier)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
        logging.info(f"Wrote {identifier}")

    def exists(self, identifier: str) -> bool:
        try:
            return self._path(identifier).is_file()
        except ContentNotFoundError:
            return False

    def list_files(self, prefix: str = "") -> List[str]:
        if not self.root.is_dir():
            return []
        files = []
        for path in self.root.rglob("*"):
            if not path.is_file():
                continue
            relative = path.relative_to(self.root).as_posix()
            # Skip hidden folders such as .obsidian and .git
            if any(part.startswith(".") for part in relative.split("/")):
                continue
            if relative.startswith(prefix):
                files.append(relative)
        return sorted(files)
