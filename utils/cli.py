# utils/cli.py
"""CLI management commands."""
import click
from flask import current_app
from flask.cli import with_appcontext


@click.command("add-node")
@click.argument("hostname")
@click.argument("shared_secret")
@click.option("--nickname", default=None, help="Display name for the node")
@with_appcontext
def add_node_cli(hostname, shared_secret, nickname):
    """Register (or update) a connected node and its shared secret."""
    from db_queries.federation import upsert_node_connection

    if upsert_node_connection(hostname, shared_secret, nickname=nickname):
        click.echo(f"Node {hostname.lower()} connected.")
    else:
        raise click.ClickException(f"Could not save node {hostname}.")


@click.command("add-user")
@click.argument("nickname")
@click.password_option()
@click.option("--display-name", default=None, help="Name shown on the profile")
@with_appcontext
def add_user_cli(nickname, password, display_name):
    """Create a local account."""
    from db_queries.users import add_user

    user_id = add_user(nickname, password, display_name)
    if not user_id:
        raise click.ClickException(f"Nickname {nickname} is already taken.")
    click.echo(f"Created user {nickname} (id {user_id}).")


@click.command("purge-tokens")
@click.option("--max-age", type=int, default=None, help="Age in seconds; defaults to OWT_MAX_AGE")
@with_appcontext
def purge_tokens_cli(max_age):
    """Delete expired OpenWebAuth tokens and cache entries."""
    from db_queries.cache import cache_clear_expired
    from db_queries.openwebauth_tokens import purge
    from utils.magic_auth import OWT_TOKEN_TYPE

    purge(OWT_TOKEN_TYPE, max_age if max_age is not None else current_app.config['OWT_MAX_AGE'])
    removed = cache_clear_expired()
    click.echo(f"Tokens purged, {removed} cache entries removed.")


@click.command("run-worker")
@with_appcontext
def run_worker_cli():
    """Run all due background jobs once, in the foreground."""
    from utils.worker import worker

    completed = worker.run_pending()
    click.echo(f"{completed} job(s) completed.")


def register_cli(app):
    app.cli.add_command(add_node_cli)
    app.cli.add_command(add_user_cli)
    app.cli.add_command(purge_tokens_cli)
    app.cli.add_command(run_worker_cli)
