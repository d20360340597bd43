"""Services for gator."""

from .feed_client import fetch_feed, parse_feed_document, ParsedFeedDocument, ParsedItem
from .post_writer import store_post, store_posts, parse_pub_date, IngestResult
from .aggregator import select_next_feed, scrape_next_feed, run_aggregation_loop

__all__ = [
    "fetch_feed",
    "parse_feed_document",
    "ParsedFeedDocument",
    "ParsedItem",
    "store_post",
    "store_posts",
    "parse_pub_date",
    "IngestResult",
    "select_next_feed",
    "scrape_next_feed",
    "run_aggregation_loop",
]
