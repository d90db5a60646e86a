"""keyward Management CLI Tool."""

import sys
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console

from keyward import __version__
from keyward.cli.commands import keys
from keyward.cli.utils.context import CLIContext
from keyward.cli.utils.output import OutputFormatter
from keyward.core.config import Settings
from keyward.infrastructure.logging import bind_context, clear_context, setup_logging
from keyward.infrastructure.ssh_keygen import find_ssh_keygen

app = typer.Typer(
    name="keyward",
    help="keyward - SSH public key registry and authorized_keys maintenance",
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
    pretty_exceptions_enable=False,
)

console = Console()


def version_callback(value: bool):
    """Display version and exit."""
    if value:
        console.print(f"keyward v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        "-d",
        help="Enable debug output",
    ),
    output_format: str = typer.Option(
        "table",
        "--output",
        "-o",
        help="Output format: table, json, yaml",
    ),
    env_file: Optional[Path] = typer.Option(
        None,
        "--env-file",
        "-c",
        help="Path to a .env file with KEYWARD_* settings",
    ),
):
    """
    keyward Management CLI

    Register, inspect and revoke SSH public keys and keep authorized_keys in sync.
    """
    try:
        settings = Settings(_env_file=env_file) if env_file else Settings()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)

    if debug:
        settings.log_level = "DEBUG"

    # Logs go to stderr so command output stays parseable
    setup_logging(settings, stream=sys.stderr)
    clear_context()
    bind_context(command=ctx.invoked_subcommand)

    ctx.obj = CLIContext(
        debug=debug,
        settings=settings,
        formatter=OutputFormatter(output_format, console=console),
        console=console,
    )


app.add_typer(keys.app, name="keys", help="Manage SSH public keys")


@app.command("doctor")
def doctor_command(ctx: typer.Context):
    """
    Diagnose keyward configuration.
    """
    cli_ctx: CLIContext = ctx.obj
    settings = cli_ctx.settings
    problems = 0

    console.print("[bold]keyward doctor[/bold]\n")

    ssh_keygen = find_ssh_keygen(settings.ssh_keygen_path)
    if ssh_keygen:
        console.print(f"  [green]✓[/green] ssh-keygen found: {ssh_keygen}")
    else:
        problems += 1
        console.print(f"  [red]✗[/red] ssh-keygen not found: {settings.ssh_keygen_path}")

    if settings.ssh_dir.is_dir():
        console.print(f"  [green]✓[/green] SSH directory: {settings.ssh_dir}")
    else:
        console.print(f"  [yellow]⚠[/yellow] SSH directory will be created: {settings.ssh_dir}")

    authorized_keys = settings.authorized_keys_path
    if authorized_keys.is_file():
        mode = authorized_keys.stat().st_mode & 0o777
        if settings.is_windows or not mode & 0o177:
            console.print(f"  [green]✓[/green] {authorized_keys} ({oct(mode)})")
        else:
            problems += 1
            console.print(
                f"  [red]✗[/red] {authorized_keys} has permissions {oct(mode)}, expected 0o600"
            )
    else:
        console.print(f"  [yellow]⚠[/yellow] {authorized_keys} does not exist yet")

    console.print(f"  [dim]Forced command: {settings.app_path} --config='{settings.config_path}'[/dim]")

    if problems:
        console.print(f"\n[red]{problems} problem(s) found[/red]")
        raise typer.Exit(1)
    console.print("\n[green]No problems found[/green]")


if __name__ == "__main__":
    app()
