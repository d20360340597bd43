"""Post writer service.

This module turns parsed feed items into posts, treating an item that is
already stored for the feed as a no-op.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

import aiosqlite

from gator.errors import InvalidItemError, InvalidPublishDateError, MissingLinkError
from gator.services.feed_client import ParsedItem
from gator.storage import database


logger = logging.getLogger(__name__)

RFC1123_FORMAT = "%a, %d %b %Y %H:%M:%S"

# RFC 822 zone names; anything else must be a numeric offset
ZONE_OFFSETS = {
    "UT": 0,
    "UTC": 0,
    "GMT": 0,
    "Z": 0,
    "EST": -5,
    "EDT": -4,
    "CST": -6,
    "CDT": -5,
    "MST": -7,
    "MDT": -6,
    "PST": -8,
    "PDT": -7,
}

_NUMERIC_OFFSET = re.compile(r"([+-])(\d{2})(\d{2})")


@dataclass
class IngestResult:
    """Outcome of writing one feed's items."""

    feed_id: int
    created: int = 0
    skipped: int = 0
    invalid: int = 0
    aborted: bool = False


def _zone_offset(zone: str):
    if zone.upper() in ZONE_OFFSETS:
        return timedelta(hours=ZONE_OFFSETS[zone.upper()])

    match = _NUMERIC_OFFSET.fullmatch(zone)
    if match is None:
        return None
    sign, hours, minutes = match.groups()
    if int(hours) > 23 or int(minutes) > 59:
        return None
    offset = timedelta(hours=int(hours), minutes=int(minutes))
    return -offset if sign == "-" else offset


def parse_pub_date(value: str) -> datetime:
    """Parse an item's pubDate.

    The zone is either an RFC 822 name from ZONE_OFFSETS or a numeric
    offset such as "+0200"; the host's own time zone is never consulted.

    Args:
        value: Date string such as "Mon, 02 Jan 2006 15:04:05 GMT"

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        InvalidPublishDateError: If the string is not in RFC 1123 form
    """
    stamp, _, zone = (value or "").strip().rpartition(" ")
    offset = _zone_offset(zone)
    if not stamp or offset is None:
        raise InvalidPublishDateError(value)

    try:
        parsed = datetime.strptime(stamp, RFC1123_FORMAT)
    except ValueError as e:
        raise InvalidPublishDateError(value) from e

    return parsed.replace(tzinfo=timezone(offset)).astimezone(timezone.utc)


async def store_post(feed_id: int, item: ParsedItem) -> bool:
    """Persist one parsed item as a post.

    Args:
        feed_id: ID of the feed the item came from
        item: Parsed item

    Returns:
        True if a new post was created, False if it was already stored

    Raises:
        MissingLinkError: If the item has no link
        InvalidPublishDateError: If the item's pubDate cannot be parsed
        aiosqlite.Error: On any storage failure other than a duplicate
    """
    if not item.link:
        raise MissingLinkError(f"Item {item.title!r} has no link")
    published_at = parse_pub_date(item.pub_date)

    return await database.create_post(
        feed_id=feed_id,
        title=item.title,
        url=item.link,
        description=item.description or None,
        published_at=published_at,
    )


async def store_posts(feed_id: int, items: Iterable[ParsedItem], feed_url: str = "") -> IngestResult:
    """Persist a batch of items for one feed.

    Items without a link or with an unparsable pubDate are logged and
    skipped. The first storage error is logged and abandons the rest of the
    batch. Nothing is raised.

    Args:
        feed_id: ID of the feed the items came from
        items: Parsed items, in document order
        feed_url: URL of the feed (for log messages)

    Returns:
        IngestResult with per-outcome counts
    """
    result = IngestResult(feed_id=feed_id)

    for item in items:
        try:
            created = await store_post(feed_id, item)
        except InvalidItemError as e:
            result.invalid += 1
            logger.warning(f"Skipping item {item.title!r} from {feed_url}: {e}")
            continue
        except aiosqlite.Error as e:
            result.aborted = True
            logger.error(f"Failed to store post {item.link!r} from {feed_url}, abandoning batch: {e}")
            break

        if created:
            result.created += 1
        else:
            result.skipped += 1

    return result
