"""Command-line interface package initialization"""

from gator.cli.app import main, requires_login

__all__ = ["main", "requires_login"]
