"""
CLI entry point: bybit-notifier run | accounts | monitor | unmonitor | monitored | logs.

Every command loads settings from --config (default config/local.yaml).
"""

import asyncio
import os
import sys
import time
from typing import Optional, Tuple

import click

from .accounts import JsonAccountStore
from .config.settings import NotifierSettings, load_settings
from .exceptions import AccountNotFoundError
from .utils.logging import account_log_path, read_log_tail, setup_logging


def _settings(ctx: click.Context) -> NotifierSettings:
    config_path = ctx.obj["config_path"]
    if config_path and not os.path.exists(config_path):
        if ctx.obj["config_explicit"]:
            raise click.ClickException(f"Configuration file not found: {config_path}")
        config_path = None
    return load_settings(config_path)


def _store(ctx: click.Context) -> JsonAccountStore:
    return JsonAccountStore(_settings(ctx).storage.accounts_file)


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config file (default: config/local.yaml).")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]) -> None:
    """bybit-notifier: webhook notifications for Bybit private account activity."""
    ctx.ensure_object(dict)
    ctx.obj["config_explicit"] = config_path is not None
    ctx.obj["config_path"] = config_path or os.getenv("CONFIG_FILE", "config/local.yaml")


# ---------- run ----------


@cli.command()
@click.option("--all", "start_all", is_flag=True, help="Also start every account flagged active.")
@click.option("--account", "account_ids", multiple=True, type=int, help="Account id to monitor (repeatable).")
@click.pass_context
def run(ctx: click.Context, start_all: bool, account_ids: Tuple[int, ...]) -> None:
    """Restore monitored accounts and stream until interrupted."""
    from .main import NotifierService

    settings = _settings(ctx)
    setup_logging(settings.logging, settings.service_name)

    async def _run() -> None:
        service = NotifierService(settings)
        await service.run(start_all=start_all, account_ids=account_ids)

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass


# ---------- accounts ----------


@cli.group()
def accounts() -> None:
    """Manage the accounts known to the notifier."""


@accounts.command("list")
@click.pass_context
def list_accounts(ctx: click.Context) -> None:
    """List registered accounts."""
    store = _store(ctx)

    async def _list():
        return await store.list_accounts(), await store.list_active_ids()

    records, monitored = asyncio.run(_list())
    if not records:
        click.echo("No accounts registered.")
        return

    for account in records:
        flags = []
        if account.active:
            flags.append("active")
        if account.id in monitored:
            flags.append("monitored")
        webhook = "webhook set" if account.webhook_url else "no webhook"
        click.echo(
            f"{account.id:>4}  {account.name:<20} key={account.masked_key()}  {webhook}"
            f"  [{', '.join(flags) or 'inactive'}]"
        )


@accounts.command("add")
@click.option("--name", required=True, help="Display name of the account.")
@click.option("--api-key", required=True, help="Bybit API key.")
@click.option("--api-secret", prompt=True, hide_input=True, help="Bybit API secret.")
@click.option("--webhook-url", default=None, help="Webhook that receives notifications.")
@click.option("--inactive", is_flag=True, help="Register without flagging the account active.")
@click.pass_context
def add_account(
    ctx: click.Context,
    name: str,
    api_key: str,
    api_secret: str,
    webhook_url: Optional[str],
    inactive: bool
) -> None:
    """Register a new account."""
    if not api_key.strip() or not api_secret.strip():
        raise click.ClickException("API key and secret must not be empty")

    store = _store(ctx)
    account = asyncio.run(store.add_account(name, api_key, api_secret, webhook_url, active=not inactive))
    click.echo(f"Account registered: {account.label}")


@accounts.command("edit")
@click.argument("account_id", type=int)
@click.option("--name", default=None, help="New display name.")
@click.option("--webhook-url", default=None, help="New webhook URL (empty string clears it).")
@click.option("--active/--inactive", default=None, help="Flag the account active or inactive.")
@click.pass_context
def edit_account(
    ctx: click.Context,
    account_id: int,
    name: Optional[str],
    webhook_url: Optional[str],
    active: Optional[bool]
) -> None:
    """Edit an account's name, webhook or active flag."""
    store = _store(ctx)
    try:
        account = asyncio.run(store.update_account(account_id, name=name, webhook_url=webhook_url, active=active))
    except AccountNotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(f"Account updated: {account.label}")


@accounts.command("remove")
@click.argument("account_id", type=int)
@click.pass_context
def remove_account(ctx: click.Context, account_id: int) -> None:
    """Remove an account. Refused while the account is monitored."""
    store = _store(ctx)

    async def _remove() -> None:
        if account_id in await store.list_active_ids():
            raise click.ClickException(
                f"Account {account_id} is being monitored. Run 'unmonitor {account_id}' first."
            )
        await store.remove_account(account_id)

    try:
        asyncio.run(_remove())
    except AccountNotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(f"Account {account_id} removed.")


# ---------- monitoring flags ----------


@cli.command()
@click.argument("account_id", type=int)
@click.pass_context
def monitor(ctx: click.Context, account_id: int) -> None:
    """Flag an account for monitoring; `run` picks it up on start."""
    store = _store(ctx)

    async def _monitor() -> None:
        if await store.get_account(account_id) is None:
            raise AccountNotFoundError(account_id)
        await store.set_active(account_id, True)

    try:
        asyncio.run(_monitor())
    except AccountNotFoundError as e:
        raise click.ClickException(str(e))
    click.echo(f"Account {account_id} will be monitored.")


@cli.command()
@click.argument("account_id", type=int)
@click.pass_context
def unmonitor(ctx: click.Context, account_id: int) -> None:
    """Clear an account's monitoring flag."""
    store = _store(ctx)
    asyncio.run(store.set_active(account_id, False))
    click.echo(f"Account {account_id} will no longer be monitored.")


@cli.command()
@click.pass_context
def monitored(ctx: click.Context) -> None:
    """List accounts flagged for monitoring."""
    store = _store(ctx)

    async def _monitored():
        ids = await store.list_active_ids()
        return [await store.get_account(account_id) for account_id in ids], ids

    records, ids = asyncio.run(_monitored())
    if not ids:
        click.echo("No accounts are monitored.")
        return
    for account_id, account in zip(ids, records):
        label = account.label if account else f"unknown account (ID: {account_id})"
        click.echo(f"  • {label}")


# ---------- logs ----------


@cli.command()
@click.argument("account_id", type=int)
@click.option("--lines", default=1000, show_default=True, help="Number of lines to show.")
@click.option("--follow", is_flag=True, help="Keep printing new lines as they are written.")
@click.pass_context
def logs(ctx: click.Context, account_id: int, lines: int, follow: bool) -> None:
    """Show an account's log file."""
    settings = _settings(ctx)
    path = account_log_path(account_id, settings.logging.log_dir)

    if not os.path.exists(path):
        raise click.ClickException(f"No log file for account {account_id} at {path}")

    for line in read_log_tail(path, lines):
        click.echo(line)

    if not follow:
        return

    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            f.seek(0, os.SEEK_END)
            while True:
                line = f.readline()
                if line:
                    click.echo(line.rstrip('\n'))
                else:
                    time.sleep(0.5)
    except KeyboardInterrupt:
        click.echo("", err=True)


if __name__ == "__main__":
    sys.exit(cli())
