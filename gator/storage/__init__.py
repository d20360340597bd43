"""Storage layer for gator."""

from .database import (
    get_database,
    init_database,
    close_database,
    create_user,
    get_user_by_name,
    list_users,
    reset_database,
    create_feed,
    get_feed,
    get_feed_by_url,
    list_feeds,
    get_next_feed_to_fetch,
    mark_feed_fetched,
    create_feed_follow,
    get_feed_follows_for_user,
    delete_feed_follow,
    create_post,
    get_posts_for_user,
    count_posts,
)

__all__ = [
    "get_database",
    "init_database",
    "close_database",
    "create_user",
    "get_user_by_name",
    "list_users",
    "reset_database",
    "create_feed",
    "get_feed",
    "get_feed_by_url",
    "list_feeds",
    "get_next_feed_to_fetch",
    "mark_feed_fetched",
    "create_feed_follow",
    "get_feed_follows_for_user",
    "delete_feed_follow",
    "create_post",
    "get_posts_for_user",
    "count_posts",
]
