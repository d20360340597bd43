"""Unit tests for feed services.

Tests for feed fetching, RSS parsing, and post writing.
"""

import httpx
import os
import pytest
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from gator.errors import FeedFetchError, FeedParseError, InvalidPublishDateError, MissingLinkError
from gator.services.feed_client import ParsedItem, fetch_feed, parse_feed_document
from gator.services.post_writer import parse_pub_date, store_post, store_posts
from gator.storage.database import count_posts, create_feed, create_feed_follow, create_user


# Mark all tests as async
pytestmark = pytest.mark.anyio


RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
    <channel>
        <title>Ben &amp;amp; Jerry's Blog</title>
        <link>https://example.com</link>
        <description>Ice cream &amp;lt;news&amp;gt;</description>
        <item>
            <title>Post 1</title>
            <link>https://example.com/post1</link>
            <description>First &amp;amp; best</description>
            <pubDate>Mon, 15 Jan 2024 10:30:00 GMT</pubDate>
        </item>
        <item>
            <title>Post 2</title>
            <link>https://example.com/post2</link>
            <pubDate>Tue, 16 Jan 2024 10:30:00 +0000</pubDate>
        </item>
    </channel>
</rss>
"""


@contextmanager
def mock_http(response=None, error=None):
    """Patch httpx.AsyncClient in the feed client module."""
    with patch("gator.services.feed_client.httpx.AsyncClient") as mock_client:
        mock_instance = AsyncMock()
        if error is not None:
            mock_instance.get = AsyncMock(side_effect=error)
        else:
            mock_instance.get = AsyncMock(return_value=response)
        mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
        mock_instance.__aexit__ = AsyncMock(return_value=None)
        mock_client.return_value = mock_instance
        yield mock_client, mock_instance


def make_response(status_code=200, content=RSS_FEED):
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    return response


class TestParseFeedDocument:
    """Tests for RSS parsing."""

    async def test_parses_channel_and_items(self):
        document = parse_feed_document(RSS_FEED)

        assert document.link == "https://example.com"
        assert [i.link for i in document.items] == [
            "https://example.com/post1",
            "https://example.com/post2",
        ]
        assert document.items[0].pub_date == "Mon, 15 Jan 2024 10:30:00 GMT"

    async def test_decodes_double_encoded_entities(self):
        document = parse_feed_document(RSS_FEED)

        assert document.title == "Ben & Jerry's Blog"
        assert document.description == "Ice cream <news>"
        assert document.items[0].description == "First & best"

    async def test_missing_description_is_empty(self):
        document = parse_feed_document(RSS_FEED)

        assert document.items[1].description == ""

    async def test_malformed_xml_raises(self):
        with pytest.raises(FeedParseError):
            parse_feed_document(b"<rss><channel><title>oops</channel>", "https://example.com/rss")

    async def test_empty_body_raises(self):
        with pytest.raises(FeedParseError):
            parse_feed_document(b"")

    async def test_document_without_channel_is_empty(self):
        document = parse_feed_document(b"<html><body>Not a feed</body></html>")

        assert document.items == []
        assert document.title == ""


class TestFetchFeed:
    """Tests for downloading feeds."""

    async def test_fetch_success(self):
        with mock_http(make_response()) as (mock_client, mock_instance):
            document = await fetch_feed("https://example.com/rss")

        assert len(document.items) == 2
        mock_instance.get.assert_awaited_once_with("https://example.com/rss")

    async def test_sends_user_agent(self):
        with mock_http(make_response()) as (mock_client, _):
            await fetch_feed("https://example.com/rss", timeout=5.0)

        kwargs = mock_client.call_args.kwargs
        assert kwargs["headers"] == {"User-Agent": "gator"}
        assert kwargs["timeout"] == 5.0

    async def test_http_error_status_raises(self):
        with mock_http(make_response(status_code=500, content=b"oops")):
            with pytest.raises(FeedFetchError) as exc_info:
                await fetch_feed("https://example.com/rss")

        assert exc_info.value.status_code == 500

    async def test_network_error_raises(self):
        with mock_http(error=httpx.ConnectError("connection refused")):
            with pytest.raises(FeedFetchError, match="connection refused"):
                await fetch_feed("https://example.com/rss")

    async def test_invalid_url_raises(self):
        with pytest.raises(FeedFetchError) as exc_info:
            await fetch_feed("http://[::1/rss")

        assert exc_info.value.url == "http://[::1/rss"

    async def test_timeout_raises(self):
        with mock_http(error=httpx.ReadTimeout("timed out")):
            with pytest.raises(FeedFetchError):
                await fetch_feed("https://example.com/rss")

    async def test_malformed_body_raises_parse_error(self):
        with mock_http(make_response(content=b"<rss><channel>")):
            with pytest.raises(FeedParseError):
                await fetch_feed("https://example.com/rss")


class TestParsePubDate:
    """Tests for RFC 1123 date parsing."""

    async def test_zone_name(self):
        assert parse_pub_date("Mon, 15 Jan 2024 10:30:00 GMT") == datetime(
            2024, 1, 15, 10, 30, tzinfo=timezone.utc
        )

    async def test_numeric_offset_is_normalized_to_utc(self):
        parsed = parse_pub_date("Mon, 15 Jan 2024 12:30:00 +0200")

        assert parsed == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert parsed.utcoffset().total_seconds() == 0

    @pytest.mark.parametrize("zone, hour", [
        ("UT", 10),
        ("UTC", 10),
        ("EST", 15),
        ("EDT", 14),
        ("PST", 18),
        ("PDT", 17),
    ])
    async def test_rfc822_zone_names(self, zone, hour):
        parsed = parse_pub_date(f"Mon, 15 Jan 2024 10:30:00 {zone}")

        assert parsed == datetime(2024, 1, 15, hour, 30, tzinfo=timezone.utc)

    @pytest.mark.skipif(not hasattr(time, "tzset"), reason="needs time.tzset")
    async def test_host_time_zone_is_ignored(self):
        old_tz = os.environ.get("TZ")
        os.environ["TZ"] = "America/New_York"
        time.tzset()
        try:
            parsed = parse_pub_date("Mon, 15 Jan 2024 10:30:00 EST")
            with pytest.raises(InvalidPublishDateError):
                parse_pub_date("Mon, 15 Jan 2024 10:30:00 CET")
        finally:
            if old_tz is None:
                del os.environ["TZ"]
            else:
                os.environ["TZ"] = old_tz
            time.tzset()

        assert parsed == datetime(2024, 1, 15, 15, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [
        "",
        "2024-01-15T10:30:00Z",
        "yesterday",
        "15 Jan 2024",
        "Mon, 15 Jan 2024 10:30:00 CET",
        "Mon, 15 Jan 2024 10:30:00 +2500",
        "Mon, 15 Jan 2024 10:30:00",
    ])
    async def test_invalid_dates_raise(self, value):
        with pytest.raises(InvalidPublishDateError):
            parse_pub_date(value)


def _item(n, pub_date="Mon, 15 Jan 2024 10:30:00 GMT", description=""):
    return ParsedItem(
        title=f"Post {n}",
        link=f"https://example.com/{n}",
        description=description,
        pub_date=pub_date,
    )


@pytest.fixture
async def feed(in_memory_db):
    user = await create_user("alice")
    feed = await create_feed("Blog", "https://example.com/rss", user.id)
    await create_feed_follow(user.id, feed.id)
    return feed


class TestStorePosts:
    """Tests for writing parsed items as posts."""

    async def test_store_post_created_then_duplicate(self, in_memory_db, feed):
        assert await store_post(feed.id, _item(1)) is True
        assert await store_post(feed.id, _item(1)) is False

    async def test_empty_description_is_stored_as_null(self, in_memory_db, feed):
        await store_post(feed.id, _item(1))
        await store_post(feed.id, _item(2, description="Some text"))

        cursor = await in_memory_db.execute("SELECT url, description FROM posts ORDER BY url")
        rows = [tuple(row) for row in await cursor.fetchall()]

        assert rows == [
            ("https://example.com/1", None),
            ("https://example.com/2", "Some text"),
        ]

    async def test_store_post_bad_date_raises(self, in_memory_db, feed):
        with pytest.raises(InvalidPublishDateError):
            await store_post(feed.id, _item(1, pub_date="not a date"))

        assert await count_posts() == 0

    async def test_store_posts_counts(self, in_memory_db, feed):
        items = [_item(1), _item(2), _item(3)]

        first = await store_posts(feed.id, items)
        second = await store_posts(feed.id, items)

        assert (first.created, first.skipped) == (3, 0)
        assert (second.created, second.skipped) == (0, 3)
        assert await count_posts() == 3

    async def test_bad_date_skips_only_that_item(self, in_memory_db, feed):
        items = [_item(1), _item(2, pub_date="garbage"), _item(3)]

        result = await store_posts(feed.id, items)

        assert result.created == 2
        assert result.invalid == 1
        assert result.aborted is False

    async def test_item_without_link_raises(self, in_memory_db, feed):
        item = ParsedItem(title="No link", link="", description="", pub_date="Mon, 15 Jan 2024 10:30:00 GMT")

        with pytest.raises(MissingLinkError):
            await store_post(feed.id, item)

    async def test_items_without_links_are_skipped(self, in_memory_db, feed):
        linkless = [
            ParsedItem(title=f"Orphan {n}", link="", description="", pub_date="Mon, 15 Jan 2024 10:30:00 GMT")
            for n in range(2)
        ]

        result = await store_posts(feed.id, linkless + [_item(1)])

        assert result.invalid == 2
        assert result.skipped == 0
        assert result.created == 1
        assert await count_posts() == 1

    async def test_storage_error_abandons_batch(self, in_memory_db, feed):
        import aiosqlite

        create_post = AsyncMock(side_effect=[True, aiosqlite.OperationalError("disk I/O error"), True])
        with patch("gator.services.post_writer.database.create_post", create_post):
            result = await store_posts(feed.id, [_item(1), _item(2), _item(3)])

        assert result.created == 1
        assert result.aborted is True
        assert create_post.await_count == 2
