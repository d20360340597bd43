"""Feed aggregation loop.

Each tick picks the followed feed that has waited longest, marks it as
fetched, downloads and parses it, and stores any new posts. Errors are
logged and the loop carries on with the next tick.
"""

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from gator.config import DEFAULT_FETCH_TIMEOUT, DEFAULT_USER_AGENT
from gator.errors import FeedFetchError, FeedParseError, NoFeedsError
from gator.models.schemas import FeedRef
from gator.services.feed_client import fetch_feed
from gator.services.post_writer import IngestResult, store_posts
from gator.storage import database


logger = logging.getLogger(__name__)


async def select_next_feed() -> FeedRef:
    """Choose the next feed to fetch and record the attempt.

    The feed is marked as fetched before it is downloaded, so a feed that
    keeps failing still moves to the back of the rotation.

    Raises:
        NoFeedsError: If no feed is followed
    """
    feed = await database.get_next_feed_to_fetch()
    if feed is None:
        raise NoFeedsError("No followed feeds to fetch")

    await database.mark_feed_fetched(feed.id, datetime.now(timezone.utc))
    return feed


async def scrape_next_feed(
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> Optional[IngestResult]:
    """Run one select, fetch and write cycle.

    Returns:
        IngestResult for the feed, or None if the tick was skipped
    """
    try:
        feed = await select_next_feed()
    except NoFeedsError as e:
        logger.warning(f"Skipping tick: {e}")
        return None
    except Exception as e:
        logger.error(f"Skipping tick, could not select a feed: {e}")
        return None

    logger.info(f"Fetching feed {feed.url}")

    try:
        document = await fetch_feed(feed.url, timeout=timeout, user_agent=user_agent)
    except (FeedFetchError, FeedParseError) as e:
        logger.error(str(e))
        return None

    result = await store_posts(feed.id, document.items, feed_url=feed.url)
    logger.info(
        f"Feed {feed.url}: {result.created} new, {result.skipped} already stored, "
        f"{result.invalid} invalid of {len(document.items)} items"
        + (" (batch abandoned)" if result.aborted else "")
    )
    return result


async def run_aggregation_loop(
    period: timedelta,
    *,
    stop_event: Optional[asyncio.Event] = None,
    max_ticks: Optional[int] = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> int:
    """Fetch feeds at a fixed rate until told to stop.

    The first tick runs immediately. The stop event is checked before every
    tick and also interrupts a tick in progress, cancelling its fetch.

    Args:
        period: Time between the starts of consecutive ticks
        stop_event: Set to stop the loop (runs forever if None)
        max_ticks: Stop after this many ticks (unbounded if None)
        timeout: Per-fetch timeout in seconds
        user_agent: User-Agent header for fetches

    Returns:
        Number of ticks started
    """
    if period <= timedelta():
        raise ValueError(f"period must be positive, got {period}")

    if stop_event is None:
        stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    interval = period.total_seconds()
    next_tick = loop.time()
    ticks = 0

    logger.info(f"Collecting feeds every {period}")

    while not stop_event.is_set():
        if max_ticks is not None and ticks >= max_ticks:
            break

        ticks += 1
        tick = asyncio.ensure_future(scrape_next_feed(timeout=timeout, user_agent=user_agent))
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({tick, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            tick.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await tick
            raise
        finally:
            stopper.cancel()

        if not tick.done():
            logger.info("Stop requested, cancelling tick in progress")
            tick.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await tick
            break

        if tick.exception() is not None:
            logger.error(f"Tick failed unexpectedly: {tick.exception()!r}")

        next_tick += interval
        delay = next_tick - loop.time()
        if delay < 0:
            # Ticks that fell due while this one ran are dropped, not replayed
            next_tick, delay = loop.time(), 0.0
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    logger.info(f"Aggregation loop stopped after {ticks} ticks")
    return ticks
