"""Parse tool - recognize feed documents and extract title/description."""

import html
import re
from html.entities import name2codepoint

from bs4 import BeautifulSoup, Tag

from ..errors import FeedParseError
from ..models.discovered_feed import FeedMetadata, FeedType

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 500

XML_ENTITIES = frozenset({"amp", "lt", "gt", "quot", "apos"})

_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")
_XML_DECLARATION = re.compile(r"<\?xml[^>]*\?>", re.IGNORECASE)
_NAMED_ENTITY = re.compile(r"&([A-Za-z][A-Za-z0-9]*);")
_TAGS = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def _replace_html_entity(match: re.Match) -> str:
    name = match.group(1)
    if name in XML_ENTITIES:
        return match.group(0)
    codepoint = name2codepoint.get(name)
    if codepoint is None:
        # Unknown entity: escape the ampersand so the parser keeps the text
        return "&amp;" + name + ";"
    return chr(codepoint)


def clean_feed_content(content: str) -> str:
    """
    Repair common feed defects before parsing: BOM, leading junk,
    repeated XML declarations, control characters, HTML-only entities.
    """
    text = content.lstrip("\ufeff").strip()
    text = _INVALID_XML_CHARS.sub("", text)
    declarations = _XML_DECLARATION.findall(text)
    if declarations:
        text = _XML_DECLARATION.sub("", text).strip()
    start = text.find("<")
    if start > 0:
        text = text[start:]
    text = _NAMED_ENTITY.sub(_replace_html_entity, text)
    return text


def _clean_text(value: str | None, max_length: int, strip_markup: bool = False) -> str | None:
    """Normalize whitespace and truncate; descriptions also lose embedded HTML."""
    if not value:
        return None
    text = value
    if strip_markup:
        text = html.unescape(_TAGS.sub(" ", text))
    text = _WHITESPACE.sub(" ", text).strip()
    if not text:
        return None
    if len(text) > max_length:
        text = text[: max_length - 3].rstrip() + "..."
    return text


def _child_text(parent: Tag | None, *names: str) -> str | None:
    if parent is None:
        return None
    for name in names:
        child = parent.find(name, recursive=False)
        if child is not None:
            text = child.get_text()
            if text and text.strip():
                return text
    return None


def _detect_type(root: Tag) -> FeedType | None:
    name = (root.name or "").lower()
    if name == "rss":
        return FeedType.RSS
    if name == "feed":
        return FeedType.ATOM
    if name == "rdf" or name.endswith(":rdf"):
        return FeedType.RDF
    return None


def extract_feed_metadata(content: str) -> FeedMetadata:
    """
    Classify content as RSS 2.0, Atom or RDF by its root element and extract
    the feed-level title and description.
    Raises FeedParseError when content is not a recognizable feed.
    """
    if not content or not content.strip():
        raise FeedParseError("Empty response body")

    text = clean_feed_content(content)
    if not text.startswith("<"):
        raise FeedParseError("Not a valid RSS, Atom, or RDF feed: content is not XML")

    soup = BeautifulSoup(text, "xml")
    root = soup.find(True)
    if root is None:
        raise FeedParseError("Not a valid RSS, Atom, or RDF feed: no root element")

    feed_type = _detect_type(root)
    if feed_type is None:
        raise FeedParseError(f"Not a valid RSS, Atom, or RDF feed: unexpected root <{root.name}>")

    if feed_type is FeedType.ATOM:
        title = _child_text(root, "title")
        description = _child_text(root, "subtitle", "tagline")
    else:
        channel = root.find("channel", recursive=False)
        # Some RSS feeds put title/description straight under <rss>
        title = _child_text(channel, "title") or _child_text(root, "title")
        description = _child_text(channel, "description") or _child_text(root, "description")

    return FeedMetadata(
        title=_clean_text(title, MAX_TITLE_LENGTH),
        description=_clean_text(description, MAX_DESCRIPTION_LENGTH, strip_markup=True),
        type=feed_type,
    )
