"""Data models for gator.

This module defines the core data structures for users, feeds, follows and posts.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class User:
    """A registered user."""

    id: int
    name: str
    created_at: datetime
    updated_at: datetime


@dataclass
class Feed:
    """Represents a subscribable RSS feed."""

    id: int
    name: str
    url: str
    user_id: int
    created_at: datetime
    updated_at: datetime
    last_fetched_at: Optional[datetime]


@dataclass(frozen=True)
class FeedRef:
    """The minimum the aggregator holds onto while a fetch is in flight."""

    id: int
    url: str


@dataclass
class FeedFollow:
    """A user's subscription to a feed."""

    id: int
    user_id: int
    feed_id: int
    created_at: datetime
    updated_at: datetime
    user_name: str = ""
    feed_name: str = ""


@dataclass
class Post:
    """One ingested entry from a feed."""

    id: int
    feed_id: int
    title: str
    url: str
    description: Optional[str]
    published_at: datetime
    created_at: datetime
    updated_at: datetime
    feed_name: str = ""
