"""
Content resolution for Cloud Atlas.

Turns note identifiers, links, backlinks and URLs into the text that ends up
in a payload's additional context.
"""

import base64
import io
import logging
import re
import zipfile
from typing import Dict, Iterable, List, Optional, Pattern, Set

from bs4 import BeautifulSoup
import docx
from docx.opc.exceptions import PackageNotFoundError
import httpx

from ..exceptions import LayerResolutionError
from ..models import ContentId, ContentKind
from .base import BaseVault
from .frontmatter import extract_urls, parse_bool

_IMAGE_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
}

_TEXT_CONTENT_TYPES = ("text/", "application/json", "application/xml", "application/javascript")


def compile_exclusions(patterns: Iterable[str]) -> List[Pattern]:
    """
    Compile exclusion patterns one by one.

    Raises:
        re.error: If any pattern is malformed
    """
    return [re.compile(pattern) for pattern in patterns]


def is_excluded(identifier: str, exclusions: List[Pattern]) -> bool:
    return any(pattern.search(identifier) for pattern in exclusions)


def html_to_text(html: str) -> str:
    """Reduce an HTML page to its visible text on a single line."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ", strip=True).split())


class ContentResolver:
    """
    Reads note content and expands the link graph around a note.
    """

    def __init__(self, vault: BaseVault, http_client: Optional[httpx.AsyncClient] = None,
                 url_timeout: float = 30.0):
        """
        Initialize the content resolver.

        Args:
            vault: The vault to read notes from
            http_client: Optional shared client for URL expansion
            url_timeout: Timeout for URL fetches when no client is given
        """
        self.vault = vault
        self.http_client = http_client
        self.url_timeout = url_timeout

    def read_filtered(self, identifier: str, exclusions: List[Pattern]) -> Optional[str]:
        """
        Read a file for use as context.

        Excluded or unreadable files yield None. Markdown notes lose their front
        matter, images become data URLs and Word documents are reduced to text.
        """
        if is_excluded(identifier, exclusions):
            logging.debug(f"Excluded from context: {identifier}")
            return None

        lowered = identifier.lower()
        try:
            if lowered.endswith(".md"):
                return self.vault.body(identifier)

            suffix = lowered[lowered.rfind("."):] if "." in lowered else ""
            if suffix in _IMAGE_TYPES:
                encoded = base64.b64encode(self.vault.read_bytes(identifier)).decode("ascii")
                return f"data:{_IMAGE_TYPES[suffix]};base64,{encoded}"

            if suffix == ".docx":
                document = docx.Document(io.BytesIO(self.vault.read_bytes(identifier)))
                return "\n".join(paragraph.text for paragraph in document.paragraphs)

            return self.vault.read(identifier)

        except LayerResolutionError as e:
            logging.debug(f"Error reading file {identifier}: {e}")
            return None
        except (ValueError, PackageNotFoundError, zipfile.BadZipFile) as e:
            logging.debug(f"Unreadable file {identifier}: {e}")
            return None

    def wants_forward_links(self, identifier: str) -> bool:
        """True if a note's own front matter asks for its links to be followed."""
        if not identifier.endswith(".md"):
            return False
        try:
            metadata, _ = self.vault.metadata(identifier)
        except LayerResolutionError:
            return False
        return parse_bool(metadata.get("resolveForwardLinks")) is True

    def forward_link_context(self, identifier: str, exclusions: List[Pattern],
                             visited: Optional[Set[str]] = None) -> Dict[str, str]:
        """
        Collect the content of every note linked from ``identifier``.

        Linked notes whose front matter sets ``resolveForwardLinks`` are
        followed further. Excluded notes are still traversed but contribute no
        content.
        """
        if visited is None:
            visited = {identifier}

        context: Dict[str, str] = {}
        try:
            links = sorted(self.vault.forward_links(identifier))
        except LayerResolutionError as e:
            logging.debug(f"Could not resolve links of {identifier}: {e}")
            return context

        for link in links:
            if link in visited:
                continue
            visited.add(link)

            content = self.read_filtered(link, exclusions)
            if content is not None:
                context[link] = content

            if self.wants_forward_links(link):
                context.update(self.forward_link_context(link, exclusions, visited))

        return context

    def backlink_context(self, identifier: str, exclusions: List[Pattern]) -> Dict[str, str]:
        """Collect the content of every note linking to ``identifier``."""
        context: Dict[str, str] = {}
        try:
            sources = sorted(self.vault.backlinks(identifier))
        except LayerResolutionError as e:
            logging.warning(f"Backlink resolution failed for {identifier}: {e}")
            return context

        for source in sources:
            content = self.read_filtered(source, exclusions)
            if content is not None:
                context[source] = content
        return context

    async def fetch_url_content(self, url: str) -> Optional[str]:
        """
        Fetch a URL and return its text if the content type is textual.

        HTML is reduced to plain text. Failures and non-text responses yield None.
        """
        try:
            if self.http_client is not None:
                response = await self.http_client.get(url, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=self.url_timeout) as client:
                    response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            logging.error(f"Error fetching URL {url}: {e}")
            return None

        if response.status_code != 200:
            logging.error(f"Failed to fetch URL: {url}, status: {response.status_code}")
            return None

        content_type = response.headers.get("content-type", "")
        if not any(kind in content_type for kind in _TEXT_CONTENT_TYPES):
            logging.info(f"Skipping non-text URL: {url} ({content_type})")
            return None

        if "text/html" in content_type:
            return html_to_text(response.text)
        return response.text

    async def url_context(self, text: str) -> Dict[str, str]:
        """Fetch every URL mentioned in ``text`` and key the content by URL."""
        context: Dict[str, str] = {}
        for url in extract_urls(text):
            content = await self.fetch_url_content(url)
            if content is not None:
                context[url] = content
        return context

    async def resolve(self, content_id: ContentId, exclusions: List[Pattern]) -> Optional[str]:
        """Resolve any content identifier to text."""
        if content_id.kind == ContentKind.URL:
            return await self.fetch_url_content(content_id.value)
        if content_id.kind == ContentKind.FILE:
            return self.read_filtered(content_id.value, exclusions)
        return None

