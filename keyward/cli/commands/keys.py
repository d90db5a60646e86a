"""Public key management commands."""

import asyncio
import sys
from pathlib import Path

import typer
from rich.prompt import Confirm

from keyward.cli.utils.context import CLIContext
from keyward.core.errors import (
    DuplicateKeyError,
    InconsistentStateError,
    KeyNotFoundError,
    KeywardError,
)

app = typer.Typer(help="Manage SSH public keys")

KEY_COLUMNS = ["id", "name", "fingerprint", "has_used", "has_recent_activity", "created_at"]


def _read_key(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise typer.BadParameter(f"cannot read key file: {e}")


def _fail(cli_ctx: CLIContext, message: str) -> None:
    cli_ctx.formatter.print_error(message)
    raise typer.Exit(1)


@app.command("check")
def check_key(
    ctx: typer.Context,
    key_file: str = typer.Argument(..., help="Public key file, or - for stdin"),
):
    """
    Parse a public key and check its strength without registering it.

    Example:
        keyward keys check ~/.ssh/id_ed25519.pub
    """
    cli_ctx: CLIContext = ctx.obj

    try:
        service = cli_ctx.build_service()
        parsed = asyncio.run(service.check_key(_read_key(key_file)))
    except KeywardError as e:
        _fail(cli_ctx, f"Key rejected: {e.message}")

    cli_ctx.formatter.print_detail(
        {"key_type": parsed.key_type, "comment": parsed.comment or None, "accepted": True},
        title="Public Key",
    )


@app.command("add")
def add_key(
    ctx: typer.Context,
    key_file: str = typer.Argument(..., help="Public key file, or - for stdin"),
    owner: int = typer.Option(..., "--owner", "-u", help="Owner user id"),
    name: str = typer.Option(..., "--name", "-n", help="Key name, unique per owner"),
):
    """
    Register a public key and authorize it.

    Example:
        keyward keys add --owner 1 --name laptop ~/.ssh/id_ed25519.pub
    """
    cli_ctx: CLIContext = ctx.obj
    raw_text = _read_key(key_file)

    try:
        key = cli_ctx.run(lambda service: service.add_key(owner, name, raw_text))
    except DuplicateKeyError as e:
        _fail(cli_ctx, f"Key with {e.field} '{e.value}' already exists")
    except InconsistentStateError as e:
        _fail(cli_ctx, f"{e.message}. Run 'keyward keys rebuild' to repair authorized_keys")
    except KeywardError as e:
        _fail(cli_ctx, f"Failed to add key: {e.message}")

    cli_ctx.formatter.print_success(f"Key '{key.name}' added with id {key.id}")
    if cli_ctx.debug:
        cli_ctx.formatter.print_detail(key.to_dict(), title="Key Details")


@app.command("list")
def list_keys(
    ctx: typer.Context,
    owner: int = typer.Option(..., "--owner", "-u", help="Owner user id"),
    no_headers: bool = typer.Option(False, "--no-headers", help="Hide table headers"),
):
    """
    List the keys of one owner.

    Example:
        keyward keys list --owner 1
    """
    cli_ctx: CLIContext = ctx.obj

    try:
        keys = cli_ctx.run(lambda service: service.list_keys(owner))
    except KeywardError as e:
        _fail(cli_ctx, f"Failed to list keys: {e.message}")

    cli_ctx.formatter.print_list(
        [key.to_dict() for key in keys],
        columns=KEY_COLUMNS,
        title=f"Keys of owner {owner}",
        no_headers=no_headers,
    )


@app.command("show")
def show_key(
    ctx: typer.Context,
    key_id: int = typer.Argument(..., help="Key id"),
):
    """Show one key."""
    cli_ctx: CLIContext = ctx.obj

    try:
        key = cli_ctx.run(lambda service: service.get_key(key_id))
    except KeyNotFoundError:
        _fail(cli_ctx, f"Key {key_id} not found")

    cli_ctx.formatter.print_detail(key.to_dict(), title=f"Key {key_id}")


@app.command("rename")
def rename_key(
    ctx: typer.Context,
    key_id: int = typer.Argument(..., help="Key id"),
    name: str = typer.Argument(..., help="New key name"),
):
    """Rename a key. The key material itself cannot change."""
    cli_ctx: CLIContext = ctx.obj

    try:
        key = cli_ctx.run(lambda service: service.update_key(key_id, name))
    except KeyNotFoundError:
        _fail(cli_ctx, f"Key {key_id} not found")
    except KeywardError as e:
        _fail(cli_ctx, f"Failed to rename key: {e.message}")

    cli_ctx.formatter.print_success(f"Key {key.id} renamed to '{key.name}'")


@app.command("delete")
def delete_key(
    ctx: typer.Context,
    key_id: int = typer.Argument(..., help="Key id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """
    Delete a key and remove it from authorized_keys.

    Example:
        keyward keys delete 42 --yes
    """
    cli_ctx: CLIContext = ctx.obj

    if not yes and not Confirm.ask(f"Delete key {key_id}?", console=cli_ctx.console):
        cli_ctx.formatter.print_warning("Aborted")
        raise typer.Exit(1)

    try:
        key = cli_ctx.run(lambda service: service.delete_key(key_id))
    except KeyNotFoundError:
        _fail(cli_ctx, f"Key {key_id} not found")
    except KeywardError as e:
        _fail(cli_ctx, f"Failed to delete key: {e.message}")

    cli_ctx.formatter.print_success(f"Key '{key.name}' deleted")


@app.command("rebuild")
def rebuild_keys(ctx: typer.Context):
    """
    Rewrite authorized_keys from every registered key.

    Use after a crash or manual edits left the file out of sync.
    """
    cli_ctx: CLIContext = ctx.obj

    try:
        count = cli_ctx.run(lambda service: service.rebuild_authorized_keys())
    except KeywardError as e:
        _fail(cli_ctx, f"Failed to rebuild authorized_keys: {e.message}")

    cli_ctx.formatter.print_success(
        f"Rebuilt {cli_ctx.settings.authorized_keys_path} with {count} keys"
    )
