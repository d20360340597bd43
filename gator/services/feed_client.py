"""Feed source client.

This module downloads an RSS feed and parses its channel into a
ParsedFeedDocument. One HTTP attempt is made per call; retrying is left to
the next aggregation tick.
"""

import html
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from lxml import etree

from gator.config import DEFAULT_FETCH_TIMEOUT, DEFAULT_USER_AGENT
from gator.errors import FeedFetchError, FeedParseError


logger = logging.getLogger(__name__)


@dataclass
class ParsedItem:
    """Represents one <item> from a feed channel."""

    title: str
    link: str
    description: str
    pub_date: str


@dataclass
class ParsedFeedDocument:
    """Channel-level metadata plus the items, in document order."""

    title: str = ""
    link: str = ""
    description: str = ""
    items: List[ParsedItem] = field(default_factory=list)


def _xml_parser() -> etree.XMLParser:
    # Feed bodies are untrusted: no DTDs, no network access.
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        huge_tree=False,
    )


def _text(element: Optional[etree._Element], tag: str, unescape: bool = False) -> str:
    if element is None:
        return ""
    value = (element.findtext(tag) or "").strip()
    if unescape:
        # Feeds routinely double-encode entities (&amp;amp;).
        value = html.unescape(value)
    return value


def parse_feed_document(body: bytes, feed_url: str = "") -> ParsedFeedDocument:
    """Parse an RSS body into a ParsedFeedDocument.

    Titles and descriptions are HTML-entity-decoded. A body without a
    <channel> element yields an empty document.

    Args:
        body: Raw response body
        feed_url: URL the body came from (used in error messages)

    Returns:
        ParsedFeedDocument

    Raises:
        FeedParseError: If the body is not well-formed XML
    """
    if not body or not body.strip():
        raise FeedParseError(feed_url, "document is empty")

    try:
        root = etree.fromstring(body, parser=_xml_parser())
    except etree.XMLSyntaxError as e:
        raise FeedParseError(feed_url, str(e)) from e

    channel = root if root.tag == "channel" else root.find("channel")
    if channel is None:
        logger.warning(f"No <channel> element in feed: {feed_url}")
        return ParsedFeedDocument()

    document = ParsedFeedDocument(
        title=_text(channel, "title", unescape=True),
        link=_text(channel, "link"),
        description=_text(channel, "description", unescape=True),
    )

    for item in channel.iterfind("item"):
        document.items.append(ParsedItem(
            title=_text(item, "title", unescape=True),
            link=_text(item, "link"),
            description=_text(item, "description", unescape=True),
            pub_date=_text(item, "pubDate"),
        ))

    return document


async def fetch_feed(
    feed_url: str,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> ParsedFeedDocument:
    """Download and parse an RSS feed.

    Cancelling the awaiting task aborts the request in flight.

    Args:
        feed_url: URL of the feed
        timeout: Seconds allowed for the whole request
        user_agent: Value of the User-Agent header

    Returns:
        ParsedFeedDocument

    Raises:
        FeedFetchError: On an invalid URL, network failure, timeout or a non-2xx status
        FeedParseError: If the body is not well-formed XML
    """
    logger.debug(f"Fetching feed: {feed_url}")

    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=timeout,
        headers={"User-Agent": user_agent},
    ) as client:
        try:
            response = await client.get(feed_url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FeedFetchError(feed_url, str(e) or type(e).__name__) from e

    if not 200 <= response.status_code < 300:
        raise FeedFetchError(
            feed_url,
            f"HTTP {response.status_code}",
            status_code=response.status_code,
        )

    document = parse_feed_document(response.content, feed_url)
    logger.debug(f"Parsed {len(document.items)} items from {feed_url}")
    return document
