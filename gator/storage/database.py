"""Database storage for gator.

This module provides async SQLite database operations for users, feeds,
feed follows and posts.
Database location: ~/.gator/gator.db (or db_path in the config, or GATOR_DB_PATH env var)
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import aiosqlite

from gator.config import get_config
from gator.errors import DuplicateError
from gator.models.schemas import Feed, FeedFollow, FeedRef, Post, User


def _get_db_path() -> Path:
    """Get the database path, respecting GATOR_DB_PATH env var for testing."""
    env_path = os.environ.get("GATOR_DB_PATH")
    if env_path:
        return Path(env_path)
    return Path(get_config().db_path).expanduser()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: datetime) -> str:
    """Serialize a timestamp so that string order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# Singleton connection
_db_connection: Optional[aiosqlite.Connection] = None


async def get_database() -> aiosqlite.Connection:
    """Get or create a singleton database connection.

    Returns:
        Active database connection
    """
    global _db_connection

    if _db_connection is None:
        db_path = _get_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)

        _db_connection = await aiosqlite.connect(db_path)
        _db_connection.row_factory = aiosqlite.Row
        await init_database(_db_connection)

    return _db_connection


async def init_database(db: Optional[aiosqlite.Connection] = None) -> None:
    """Initialize database tables if they don't exist.

    Args:
        db: Optional database connection (uses singleton if not provided)
    """
    if db is None:
        db = await get_database()

    await db.execute("PRAGMA foreign_keys = ON")

    await db.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            name TEXT NOT NULL UNIQUE
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS feeds (
            id INTEGER PRIMARY KEY,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            name TEXT NOT NULL,
            url TEXT NOT NULL UNIQUE,
            user_id INTEGER NOT NULL,
            last_fetched_at TIMESTAMP,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS feed_follows (
            id INTEGER PRIMARY KEY,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            user_id INTEGER NOT NULL,
            feed_id INTEGER NOT NULL,
            UNIQUE (user_id, feed_id),
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS posts (
            id INTEGER PRIMARY KEY,
            created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL,
            title TEXT NOT NULL,
            url TEXT NOT NULL,
            description TEXT,
            published_at TIMESTAMP NOT NULL,
            feed_id INTEGER NOT NULL,
            UNIQUE (feed_id, url),
            FOREIGN KEY (feed_id) REFERENCES feeds(id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_feeds_last_fetched_at ON feeds(last_fetched_at)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_posts_published_at ON posts(published_at)
    """)

    await db.commit()


def _row_to_user(row: aiosqlite.Row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
    )


def _row_to_feed(row: aiosqlite.Row) -> Feed:
    return Feed(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        user_id=row["user_id"],
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
        last_fetched_at=_dt(row["last_fetched_at"]),
    )


# Users


async def create_user(name: str) -> User:
    """Register a new user.

    Raises:
        DuplicateError: If a user with the same name already exists
    """
    db = await get_database()
    now = _ts(_now())

    try:
        cursor = await db.execute(
            "INSERT INTO users (created_at, updated_at, name) VALUES (?, ?, ?)",
            (now, now, name),
        )
        await db.commit()
    except aiosqlite.IntegrityError as e:
        raise DuplicateError(f"User '{name}' already exists") from e

    return User(id=cursor.lastrowid, name=name, created_at=_dt(now), updated_at=_dt(now))


async def get_user_by_name(name: str) -> Optional[User]:
    db = await get_database()

    cursor = await db.execute("SELECT * FROM users WHERE name = ?", (name,))
    row = await cursor.fetchone()

    return _row_to_user(row) if row else None


async def list_users() -> List[User]:
    db = await get_database()

    cursor = await db.execute("SELECT * FROM users ORDER BY name")
    return [_row_to_user(row) async for row in cursor]


async def reset_database() -> None:
    """Delete every row from every table."""
    db = await get_database()

    for table in ("posts", "feed_follows", "feeds", "users"):
        await db.execute(f"DELETE FROM {table}")
    await db.commit()


# Feeds


async def create_feed(name: str, url: str, user_id: int) -> Feed:
    """Add a new feed created by the given user.

    Raises:
        DuplicateError: If a feed with the same URL already exists
    """
    db = await get_database()
    now = _ts(_now())

    try:
        cursor = await db.execute(
            """
            INSERT INTO feeds (created_at, updated_at, name, url, user_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            (now, now, name, url, user_id),
        )
        await db.commit()
    except aiosqlite.IntegrityError as e:
        raise DuplicateError(f"Feed with URL '{url}' already exists") from e

    return Feed(
        id=cursor.lastrowid,
        name=name,
        url=url,
        user_id=user_id,
        created_at=_dt(now),
        updated_at=_dt(now),
        last_fetched_at=None,
    )


async def get_feed_by_url(url: str) -> Optional[Feed]:
    db = await get_database()

    cursor = await db.execute("SELECT * FROM feeds WHERE url = ?", (url,))
    row = await cursor.fetchone()

    return _row_to_feed(row) if row else None


async def get_feed(feed_id: int) -> Optional[Feed]:
    db = await get_database()

    cursor = await db.execute("SELECT * FROM feeds WHERE id = ?", (feed_id,))
    row = await cursor.fetchone()

    return _row_to_feed(row) if row else None


async def list_feeds() -> List[dict]:
    """List all feeds with the name of the user who added them."""
    db = await get_database()

    cursor = await db.execute("""
        SELECT f.*, u.name AS user_name,
               (SELECT COUNT(*) FROM posts p WHERE p.feed_id = f.id) AS total_posts
        FROM feeds f
        JOIN users u ON u.id = f.user_id
        ORDER BY f.name
    """)

    feeds = []
    async for row in cursor:
        feeds.append({
            "id": row["id"],
            "name": row["name"],
            "url": row["url"],
            "user_name": row["user_name"],
            "last_fetched_at": row["last_fetched_at"],
            "total_posts": row["total_posts"],
        })

    return feeds


async def get_next_feed_to_fetch() -> Optional[FeedRef]:
    """Pick the followed feed that has waited longest for a fetch.

    Never-fetched feeds come first, then the oldest last_fetched_at; ties go
    to the lowest id.

    Returns:
        FeedRef for the chosen feed, or None if no feed is followed
    """
    db = await get_database()

    cursor = await db.execute("""
        SELECT f.id, f.url
        FROM feeds f
        WHERE EXISTS (SELECT 1 FROM feed_follows ff WHERE ff.feed_id = f.id)
        ORDER BY f.last_fetched_at IS NOT NULL, f.last_fetched_at, f.id
        LIMIT 1
    """)
    row = await cursor.fetchone()

    return FeedRef(id=row["id"], url=row["url"]) if row else None


async def mark_feed_fetched(feed_id: int, fetched_at: Optional[datetime] = None) -> bool:
    """Record a fetch attempt for a feed.

    updated_at is always set; last_fetched_at never moves backwards.

    Args:
        feed_id: ID of the feed
        fetched_at: Time of the attempt (defaults to now)

    Returns:
        True if the feed exists
    """
    db = await get_database()
    stamp = _ts(fetched_at or _now())

    cursor = await db.execute(
        """
        UPDATE feeds
        SET last_fetched_at = CASE
                WHEN last_fetched_at IS NULL OR last_fetched_at < ? THEN ?
                ELSE last_fetched_at
            END,
            updated_at = ?
        WHERE id = ?
        """,
        (stamp, stamp, stamp, feed_id),
    )
    await db.commit()

    return cursor.rowcount > 0


# Feed follows


async def create_feed_follow(user_id: int, feed_id: int) -> FeedFollow:
    """Subscribe a user to a feed.

    Raises:
        DuplicateError: If the user already follows the feed
    """
    db = await get_database()
    now = _ts(_now())

    cursor = await db.execute(
        """
        INSERT INTO feed_follows (created_at, updated_at, user_id, feed_id)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (user_id, feed_id) DO NOTHING
        """,
        (now, now, user_id, feed_id),
    )
    await db.commit()

    if cursor.rowcount == 0:
        raise DuplicateError("Feed is already followed by this user")

    follow_id = cursor.lastrowid
    cursor = await db.execute(
        """
        SELECT ff.*, u.name AS user_name, f.name AS feed_name
        FROM feed_follows ff
        JOIN users u ON u.id = ff.user_id
        JOIN feeds f ON f.id = ff.feed_id
        WHERE ff.id = ?
        """,
        (follow_id,),
    )
    row = await cursor.fetchone()

    return FeedFollow(
        id=row["id"],
        user_id=row["user_id"],
        feed_id=row["feed_id"],
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
        user_name=row["user_name"],
        feed_name=row["feed_name"],
    )


async def get_feed_follows_for_user(user_id: int) -> List[FeedFollow]:
    db = await get_database()

    cursor = await db.execute(
        """
        SELECT ff.*, u.name AS user_name, f.name AS feed_name
        FROM feed_follows ff
        JOIN users u ON u.id = ff.user_id
        JOIN feeds f ON f.id = ff.feed_id
        WHERE ff.user_id = ?
        ORDER BY f.name
        """,
        (user_id,),
    )

    follows = []
    async for row in cursor:
        follows.append(FeedFollow(
            id=row["id"],
            user_id=row["user_id"],
            feed_id=row["feed_id"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            user_name=row["user_name"],
            feed_name=row["feed_name"],
        ))

    return follows


async def delete_feed_follow(user_id: int, feed_url: str) -> bool:
    """Unsubscribe a user from the feed with the given URL.

    Returns:
        True if a follow was removed
    """
    db = await get_database()

    cursor = await db.execute(
        """
        DELETE FROM feed_follows
        WHERE user_id = ? AND feed_id IN (SELECT id FROM feeds WHERE url = ?)
        """,
        (user_id, feed_url),
    )
    await db.commit()

    return cursor.rowcount > 0


# Posts


async def create_post(
    feed_id: int,
    title: str,
    url: str,
    description: Optional[str],
    published_at: datetime,
) -> bool:
    """Insert a post unless the feed already has one with this URL.

    A (feed_id, url) conflict is reported as False rather than raised. Any
    other database error propagates.

    Returns:
        True if a new row was created, False if the post already existed
    """
    db = await get_database()
    now = _ts(_now())

    cursor = await db.execute(
        """
        INSERT INTO posts (created_at, updated_at, title, url, description, published_at, feed_id)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (feed_id, url) DO NOTHING
        """,
        (now, now, title, url, description, _ts(published_at), feed_id),
    )
    await db.commit()

    return cursor.rowcount > 0


async def get_posts_for_user(user_id: int, limit: int = 2) -> List[Post]:
    """Newest posts from the feeds a user follows.

    Args:
        user_id: ID of the user
        limit: Maximum number of posts to return

    Returns:
        List of Post objects, newest first
    """
    db = await get_database()

    cursor = await db.execute(
        """
        SELECT p.*, f.name AS feed_name
        FROM posts p
        JOIN feed_follows ff ON ff.feed_id = p.feed_id
        JOIN feeds f ON f.id = p.feed_id
        WHERE ff.user_id = ?
        ORDER BY p.published_at DESC, p.id DESC
        LIMIT ?
        """,
        (user_id, limit),
    )

    posts = []
    async for row in cursor:
        posts.append(Post(
            id=row["id"],
            feed_id=row["feed_id"],
            title=row["title"],
            url=row["url"],
            description=row["description"],
            published_at=_dt(row["published_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
            feed_name=row["feed_name"],
        ))

    return posts


async def count_posts(feed_id: Optional[int] = None) -> int:
    db = await get_database()

    if feed_id is None:
        cursor = await db.execute("SELECT COUNT(*) AS count FROM posts")
    else:
        cursor = await db.execute(
            "SELECT COUNT(*) AS count FROM posts WHERE feed_id = ?", (feed_id,)
        )
    row = await cursor.fetchone()

    return row["count"]


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection

    if _db_connection is not None:
        await _db_connection.close()
        _db_connection = None
