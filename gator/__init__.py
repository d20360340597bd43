"""gator - RSS feed aggregator CLI."""

__version__ = "0.1.0"
