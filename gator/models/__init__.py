"""Data models for gator."""

from .schemas import Feed, FeedFollow, FeedRef, Post, User

__all__ = ["Feed", "FeedFollow", "FeedRef", "Post", "User"]
