"""Front matter and link extraction for markdown notes."""

import re
from typing import Any, Dict, List, Optional, Tuple

import yaml

_FENCE = "---"

WIKILINK_RE = re.compile(r"!?\[\[([^\]|#^]+)(?:[#^][^\]|]*)?(?:\|[^\]]*)?\]\]")
MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
BARE_URL_RE = re.compile(r"(?:^|\s)(https?://[^\s)]+)")


def split_front_matter(text: str) -> Tuple[Dict[str, Any], int]:
    """
    Split a note into its YAML front matter and the offset where the body starts.

    The front matter block must open on the very first line. Everything up to
    and including the closing fence line belongs to the metadata.

    Returns:
        (metadata, offset). Notes without front matter return ({}, 0).

    Raises:
        yaml.YAMLError: If the block is not valid YAML
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].rstrip("\r\n") != _FENCE:
        return {}, 0

    offset = len(lines[0])
    for line in lines[1:]:
        offset += len(line)
        if line.rstrip("\r\n") == _FENCE:
            block = text[len(lines[0]):offset - len(line)]
            metadata = yaml.safe_load(block) or {}
            if not isinstance(metadata, dict):
                raise yaml.YAMLError("front matter is not a mapping")
            return metadata, offset

    # Unterminated fence: treat the whole note as body.
    return {}, 0


def extract_link_targets(body: str) -> List[str]:
    """Return raw wikilink and relative markdown-link targets in document order."""
    targets = [match.group(1).strip() for match in WIKILINK_RE.finditer(body)]
    for match in MARKDOWN_LINK_RE.finditer(body):
        target = match.group(2).strip()
        if "://" not in target and not target.startswith("#"):
            targets.append(target.split("#", 1)[0])
    return [target for target in targets if target]


def extract_urls(content: str) -> List[str]:
    """Extract http(s) URLs from markdown links and bare text, de-duplicated."""
    urls = []
    for match in MARKDOWN_LINK_RE.finditer(content):
        if match.group(2).startswith("http://") or match.group(2).startswith("https://"):
            urls.append(match.group(2))
    for match in BARE_URL_RE.finditer(content):
        urls.append(match.group(1))
    return list(dict.fromkeys(urls))


def parse_bool(value: Any) -> Optional[bool]:
    """Interpret a front matter value as a tri-state boolean."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
        return None
    return bool(value)
