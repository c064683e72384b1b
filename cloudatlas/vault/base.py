"""
Base vault interface for Cloud Atlas.

A vault is the content store the engines read notes from and write results
back to. Implementations only provide storage primitives; link resolution and
front matter handling are shared here.
"""

import logging
import posixpath
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set, Tuple

import yaml

from ..exceptions import ContentNotFoundError, LayerResolutionError, MalformedFlowError
from .frontmatter import extract_link_targets, split_front_matter


class BaseVault(ABC):
    """
    Abstract base class for note stores.

    Identifiers are vault-relative POSIX paths such as ``Projects/Atlas.md``.
    """

    @abstractmethod
    def read_bytes(self, identifier: str) -> bytes:
        """
        Read the raw content of a file.

        Raises:
            ContentNotFoundError: If no such file exists
        """

    @abstractmethod
    def write(self, identifier: str, text: str) -> None:
        """Create or replace a file with the given text."""

    @abstractmethod
    def list_files(self, prefix: str = "") -> List[str]:
        """List every file identifier under ``prefix``, sorted."""

    def exists(self, identifier: str) -> bool:
        return identifier in self.list_files()

    def read(self, identifier: str) -> str:
        """
        Read a file as UTF-8 text.

        Raises:
            ContentNotFoundError: If no such file exists
            MalformedFlowError: If the file is not valid UTF-8
        """
        try:
            return self.read_bytes(identifier).decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFlowError(f"{identifier} is not valid UTF-8 text: {e}") from e

    def metadata(self, identifier: str) -> Tuple[Dict[str, Any], int]:
        """
        Return a note's front matter and the offset where its body begins.

        Raises:
            ContentNotFoundError: If the note does not exist
            MalformedFlowError: If the front matter is not valid YAML
        """
        text = self.read(identifier)
        try:
            return split_front_matter(text)
        except yaml.YAMLError as e:
            raise MalformedFlowError(f"Invalid front matter in {identifier}: {e}") from e

    def body(self, identifier: str) -> str:
        """Return a note's text with the front matter block removed."""
        text = self.read(identifier)
        try:
            _, offset = split_front_matter(text)
        except yaml.YAMLError:
            offset = 0
        return text[offset:]

    def resolve_link(self, target: str, source: Optional[str] = None,
                     files: Optional[List[str]] = None) -> Optional[str]:
        """
        Resolve a link target to a file identifier.

        Tries the path relative to the linking note, then the vault root, then
        any file with a matching name.

        Args:
            target: Link target as written in the note
            source: Identifier of the linking note
            files: Vault listing to resolve against, listed afresh when omitted
        """
        if "." not in posixpath.basename(target):
            target = f"{target}.md"

        if files is None:
            files = self.list_files()
        candidates = []
        if source:
            candidates.append(posixpath.normpath(posixpath.join(posixpath.dirname(source), target)))
        candidates.append(posixpath.normpath(target))
        for candidate in candidates:
            if candidate in files:
                return candidate

        name = posixpath.basename(target)
        for identifier in files:
            if posixpath.basename(identifier) == name:
                return identifier
        return None

    def forward_links(self, identifier: str, files: Optional[List[str]] = None) -> Set[str]:
        """
        Return the identifiers of the notes a note links to.

        Raises:
            ContentNotFoundError: If the note does not exist
            MalformedFlowError: If the note is not valid UTF-8
        """
        if not identifier.endswith(".md"):
            return set()
        targets = extract_link_targets(self.body(identifier))
        if not targets:
            return set()
        if files is None:
            files = self.list_files()
        links = set()
        for target in targets:
            resolved = self.resolve_link(target, identifier, files)
            if resolved and resolved != identifier:
                links.add(resolved)
        return links

    def backlinks(self, identifier: str) -> Set[str]:
        """
        Return the identifiers of the notes linking to a note.

        Notes that cannot be decoded are skipped.
        """
        files = self.list_files()
        if identifier not in files:
            raise ContentNotFoundError(identifier)
        sources = set()
        for candidate in files:
            if candidate == identifier or not candidate.endswith(".md"):
                continue
            try:
                links = self.forward_links(candidate, files)
            except LayerResolutionError as e:
                logging.debug(f"Skipping {candidate} while collecting backlinks: {e}")
                continue
            if identifier in links:
                sources.add(candidate)
        return sources
