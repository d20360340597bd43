"""gator - command-line interface

Commands for managing users, feeds and follows, browsing stored posts, and
running the aggregation loop ("agg").
"""

import asyncio
import functools
import signal
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click

from gator.config import Config, load_config, parse_duration, set_config
from gator.errors import ConfigurationError, GatorError, NotLoggedInError, UserNotFoundError
from gator.logging_config import logger, setup_logging
from gator.models.schemas import User
from gator.services.aggregator import run_aggregation_loop
from gator.storage import database


def requires_login(handler: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Resolve the logged-in user before calling handler(config, user, ...)."""

    @functools.wraps(handler)
    async def wrapper(config: Config, *args, **kwargs):
        if not config.current_user_name:
            raise NotLoggedInError("No user is logged in. Run 'gator login NAME' first.")

        user = await database.get_user_by_name(config.current_user_name)
        if user is None:
            raise UserNotFoundError(f"User '{config.current_user_name}' does not exist")

        return await handler(config, user, *args, **kwargs)

    return wrapper


def _run(handler: Callable[..., Awaitable[Any]], *args) -> Any:
    """Run an async command handler, closing the database afterwards."""

    async def runner():
        try:
            return await handler(*args)
        finally:
            await database.close_database()

    try:
        return asyncio.run(runner())
    except GatorError as e:
        raise click.ClickException(str(e)) from e


# Handlers


async def _register(config: Config, name: str) -> None:
    user = await database.create_user(name)
    config.set_user(user.name)
    click.echo(f"User '{user.name}' created")
    logger.debug(f"New user: {user}")


async def _login(config: Config, name: str) -> None:
    user = await database.get_user_by_name(name)
    if user is None:
        raise UserNotFoundError(f"User '{name}' does not exist")
    config.set_user(user.name)
    click.echo(f"Logged in as '{user.name}'")


async def _users(config: Config) -> None:
    for user in await database.list_users():
        if user.name == config.current_user_name:
            click.echo(f"* {user.name} (current)")
        else:
            click.echo(f"* {user.name}")


async def _reset(config: Config) -> None:
    await database.reset_database()
    click.echo("Database reset")


@requires_login
async def _addfeed(config: Config, user: User, name: str, url: str) -> None:
    feed = await database.get_feed_by_url(url)
    if feed is None:
        feed = await database.create_feed(name=name, url=url, user_id=user.id)
        click.echo(f"Added feed '{feed.name}' ({feed.url})")

    follow = await database.create_feed_follow(user.id, feed.id)
    click.echo(f"{follow.user_name} now follows '{follow.feed_name}'")


async def _feeds(config: Config) -> None:
    feeds = await database.list_feeds()
    if not feeds:
        click.echo("No feeds yet")
        return

    for feed in feeds:
        click.echo(f"* {feed['name']}")
        click.echo(f"  URL: {feed['url']}")
        click.echo(f"  Added by: {feed['user_name']}")
        click.echo(f"  Last fetched: {feed['last_fetched_at'] or 'never'}")
        click.echo(f"  Posts: {feed['total_posts']}")


@requires_login
async def _follow(config: Config, user: User, url: str) -> None:
    feed = await database.get_feed_by_url(url)
    if feed is None:
        raise GatorError(f"No feed with URL '{url}'. Add it with 'gator addfeed NAME URL'.")

    follow = await database.create_feed_follow(user.id, feed.id)
    click.echo(f"{follow.user_name} now follows '{follow.feed_name}'")


@requires_login
async def _following(config: Config, user: User) -> None:
    follows = await database.get_feed_follows_for_user(user.id)
    if not follows:
        click.echo(f"{user.name} is not following any feeds")
        return

    for follow in follows:
        click.echo(f"* {follow.feed_name}")


@requires_login
async def _unfollow(config: Config, user: User, url: str) -> None:
    if not await database.delete_feed_follow(user.id, url):
        raise GatorError(f"{user.name} does not follow '{url}'")
    click.echo(f"{user.name} unfollowed {url}")


@requires_login
async def _browse(config: Config, user: User, limit: int) -> None:
    posts = await database.get_posts_for_user(user.id, limit=limit)
    if not posts:
        click.echo("No posts yet. Run 'gator agg' to collect some.")
        return

    for post in posts:
        click.echo(f"{post.published_at:%a, %d %b %Y %H:%M} from {post.feed_name}")
        click.echo(f"--- {post.title} ---")
        if post.description:
            click.echo(f"    {post.description}")
        click.echo(f"Link: {post.url}")
        click.echo("=" * 40)


async def _aggregate(config: Config, period, max_ticks: Optional[int]) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, ValueError):
            # Not supported on this platform or thread; Ctrl-C still raises KeyboardInterrupt
            pass

    click.echo(f"Collecting feeds every {period}")
    await run_aggregation_loop(
        period,
        stop_event=stop_event,
        max_ticks=max_ticks,
        timeout=config.fetch_timeout,
        user_agent=config.user_agent,
    )


# Commands


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.gatorconfig.json or GATOR_CONFIG_PATH)",
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path]) -> None:
    """gator - a personal RSS feed aggregator."""
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    set_config(config)
    setup_logging(config)
    ctx.obj = config


@main.command()
@click.argument("name")
@click.pass_obj
def register(config: Config, name: str) -> None:
    """Create a user and log in as them."""
    _run(_register, config, name)


@main.command()
@click.argument("name")
@click.pass_obj
def login(config: Config, name: str) -> None:
    """Log in as an existing user."""
    _run(_login, config, name)


@main.command()
@click.pass_obj
def users(config: Config) -> None:
    """List registered users."""
    _run(_users, config)


@main.command()
@click.pass_obj
def reset(config: Config) -> None:
    """Delete all users, feeds, follows and posts."""
    _run(_reset, config)


@main.command()
@click.argument("name")
@click.argument("url")
@click.pass_obj
def addfeed(config: Config, name: str, url: str) -> None:
    """Add a feed and follow it."""
    _run(_addfeed, config, name, url)


@main.command()
@click.pass_obj
def feeds(config: Config) -> None:
    """List all feeds."""
    _run(_feeds, config)


@main.command()
@click.argument("url")
@click.pass_obj
def follow(config: Config, url: str) -> None:
    """Follow an existing feed by URL."""
    _run(_follow, config, url)


@main.command()
@click.pass_obj
def following(config: Config) -> None:
    """List the feeds the current user follows."""
    _run(_following, config)


@main.command()
@click.argument("url")
@click.pass_obj
def unfollow(config: Config, url: str) -> None:
    """Stop following a feed by URL."""
    _run(_unfollow, config, url)


@main.command()
@click.argument("limit", type=click.IntRange(min=1), default=2)
@click.pass_obj
def browse(config: Config, limit: int) -> None:
    """Show the newest posts from followed feeds."""
    _run(_browse, config, limit)


@main.command()
@click.argument("period")
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many fetches (default: run until interrupted)",
)
@click.pass_obj
def agg(config: Config, period: str, max_ticks: Optional[int]) -> None:
    """Fetch followed feeds every PERIOD (e.g. 30s, 1m, 1h30m)."""
    try:
        interval = parse_duration(period)
    except ConfigurationError as e:
        raise click.BadParameter(str(e), param_hint="PERIOD") from e

    try:
        _run(_aggregate, config, interval, max_ticks)
    except KeyboardInterrupt:
        logger.info("Aggregator stopped by user")


if __name__ == "__main__":
    main()
