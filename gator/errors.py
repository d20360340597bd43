"""Exception types raised by gator."""

from typing import Optional


class GatorError(Exception):
    """Base class for gator errors."""


class ConfigurationError(GatorError):
    """Bad or missing configuration. Fatal at startup."""


class NoFeedsError(GatorError):
    """No followed feed is available to fetch."""


class FeedFetchError(GatorError):
    """A feed could not be downloaded (network failure, timeout, non-2xx)."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to fetch {url}: {message}")
        self.url = url
        self.status_code = status_code


class FeedParseError(GatorError):
    """A feed body was not well-formed XML."""

    def __init__(self, url: str, message: str):
        super().__init__(f"Failed to parse {url}: {message}")
        self.url = url


class InvalidItemError(GatorError):
    """A parsed feed item cannot be stored as a post."""


class MissingLinkError(InvalidItemError):
    """An item has no <link>."""


class InvalidPublishDateError(InvalidItemError):
    """An item's publish date does not match the RFC 1123 format."""

    def __init__(self, value: str):
        super().__init__(f"Invalid publish date: {value!r}")
        self.value = value


class NotLoggedInError(GatorError):
    """No user is logged in."""


class UserNotFoundError(GatorError):
    """The named user does not exist."""


class DuplicateError(GatorError):
    """A user, feed or follow with the same key already exists."""
