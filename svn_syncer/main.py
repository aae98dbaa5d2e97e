"""
CLI entry point for svn_syncer.

Provides the command-line interface for replaying Subversion revisions into
a Git repository and for inspecting or correcting the sync history.
"""

import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from .config import DEFAULT_CONFIG_FILE, SyncConfig, create_default_config, default_git_dir
from .errors import RecordNotFoundError, SyncError
from .gate import AutoConfirm, ConsoleConfirmation
from .history import HistoryStore
from .syncer import SvnSyncer

console = Console()


def setup_logging(verbose: int = 0) -> None:
    """
    Route diagnostic logging to stderr through rich.

    Args:
        verbose: 0 for warnings only, 1 for info, 2 or more for debug
    """
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose >= 2,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # GitPython logs every command at debug level
    logging.getLogger("git").setLevel(max(level, logging.INFO))


def load_config(ctx: click.Context) -> SyncConfig:
    """Load the configuration named on the command line (defaults if absent)."""
    config_path: Path = ctx.obj["config_path"]
    try:
        config = SyncConfig.load_or_default(config_path)
    except Exception as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise SystemExit(1)

    if ctx.obj.get("history_file") is not None:
        config.history_file = ctx.obj["history_file"]
    return config


def choose_known_pair(config: SyncConfig) -> None:
    """
    Offer the source/destination pairs found in the sync history.

    Fills ``svn_dir`` and ``git_dir`` from the chosen pair; choosing 0 (or
    an empty history) leaves both unset so they are prompted for.
    """
    try:
        pairs = HistoryStore(config.history_file).pairs()
    except SyncError as e:
        console.print(f"[red]Sync error: {e}[/red]")
        raise SystemExit(1)
    if not pairs:
        return

    console.print("[bold]Previously synced:[/bold]")
    for number, (source, destination) in enumerate(pairs, start=1):
        console.print(f"  {number}. {source} → {destination}")
    console.print("  0. Sync a new pair")

    choice = click.prompt("Choose", type=click.IntRange(0, len(pairs)), default=1)
    if choice:
        source, destination = pairs[choice - 1]
        config.svn_dir = source
        config.git_dir = Path(destination)


@click.group()
@click.version_option(package_name="svn-syncer")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_FILE,
    help="Path to the sync configuration file (optional)",
)
@click.option(
    "--history-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to the sync history file (overrides the config file)",
)
@click.option("--verbose", "-v", count=True, help="Show more logging (-vv for debug)")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, history_file: Path | None, verbose: int):
    """SVN Syncer - Replay Subversion history into a Git repository."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["history_file"] = history_file


@cli.command()
@click.option(
    "--svn-dir",
    "-s",
    type=str,
    default=None,
    help="Subversion working copy or repository URL",
)
@click.option(
    "--git-dir",
    "-g",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Git repository that receives the commits",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show the pending revisions without making changes",
)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Replay at most this many revisions",
)
@click.option(
    "--init",
    "init_repo",
    is_flag=True,
    help="Create the Git repository if it does not exist",
)
@click.option("--svn-username", default=None, help="Subversion username")
@click.option(
    "--svn-password",
    envvar="SVN_SYNCER_PASSWORD",
    default=None,
    help="Subversion password (or set SVN_SYNCER_PASSWORD env var)",
)
@click.pass_context
def sync(
    ctx: click.Context,
    svn_dir: str | None,
    git_dir: Path | None,
    dry_run: bool,
    yes: bool,
    limit: int | None,
    init_repo: bool,
    svn_username: str | None,
    svn_password: str | None,
):
    """Replay pending Subversion revisions as Git commits."""
    config = load_config(ctx)

    if svn_dir:
        config.svn_dir = svn_dir
    if git_dir:
        config.git_dir = git_dir
    if limit:
        config.max_revisions = limit
    if svn_username:
        config.svn_username = svn_username
    if svn_password:
        config.svn_password = svn_password

    if not config.svn_dir and config.git_dir is None:
        choose_known_pair(config)
    if not config.svn_dir:
        config.svn_dir = click.prompt("Subversion working copy or URL", type=str)
    if config.git_dir is None:
        config.git_dir = click.prompt(
            "Git repository directory",
            default=str(default_git_dir(config.svn_dir)),
            type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
        )

    gate = AutoConfirm() if yes else ConsoleConfirmation()
    syncer = SvnSyncer(config, gate=gate)

    try:
        outcome = syncer.sync(dry_run=dry_run, init=init_repo)
    except SyncError as e:
        console.print(f"[red]Sync error: {e}[/red]")
        raise SystemExit(1)

    if not outcome.success:
        raise SystemExit(1)


@cli.group()
def history():
    """Inspect or correct the sync history."""
    pass


@history.command(name="list")
@click.pass_context
def list_records(ctx: click.Context):
    """List all sync records and the resulting checkpoint."""
    syncer = SvnSyncer(load_config(ctx))
    try:
        syncer.show_history()
    except SyncError as e:
        console.print(f"[red]Error reading sync history: {e}[/red]")
        raise SystemExit(1)


@history.command(name="delete")
@click.argument("record_id", type=int)
@click.pass_context
def delete_record(ctx: click.Context, record_id: int):
    """Delete a sync record so its revisions are replayed again.

    Deleting the latest completed record rewinds the checkpoint to where
    that run started. Examples:

        svn-syncer history list
        svn-syncer history delete 3
    """
    syncer = SvnSyncer(load_config(ctx))
    try:
        syncer.delete_record(record_id)
    except RecordNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)
    except SyncError as e:
        console.print(f"[red]Error updating sync history: {e}[/red]")
        raise SystemExit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """Show current sync status."""
    syncer = SvnSyncer(load_config(ctx))
    syncer.status()


@cli.command()
@click.option(
    "--svn-dir",
    "-s",
    type=str,
    default=None,
    help="Subversion working copy or repository URL",
)
@click.option(
    "--git-dir",
    "-g",
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Git repository that receives the commits",
)
@click.option(
    "--author",
    "-a",
    "authors",
    multiple=True,
    help="Author mapping 'svnuser=Name <email>' (can be specified multiple times)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output config file path (defaults to --config)",
)
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
@click.pass_context
def init(
    ctx: click.Context,
    svn_dir: str | None,
    git_dir: Path | None,
    authors: tuple[str, ...],
    output: Path | None,
    force: bool,
):
    """Initialize a new sync configuration file."""
    output = output or ctx.obj["config_path"]
    if output.exists() and not force:
        console.print(f"[yellow]Config file already exists: {output}[/yellow]")
        console.print("Use --force to overwrite it.")
        raise SystemExit(1)

    author_map = {}
    for entry in authors:
        username, sep, identity = entry.partition("=")
        if not sep or not username.strip():
            console.print(f"[red]Invalid author mapping (expected user=Name <email>): {entry}[/red]")
            raise SystemExit(1)
        author_map[username.strip()] = identity.strip()

    if svn_dir and git_dir is None:
        git_dir = default_git_dir(svn_dir)

    try:
        config = create_default_config(svn_dir=svn_dir, git_dir=git_dir, authors=author_map)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise SystemExit(1)

    config.to_yaml(output)
    console.print(f"[green]Created configuration file: {output}[/green]")
    if svn_dir:
        console.print(f"  Subversion source: {svn_dir}")
    if git_dir:
        console.print(f"  Git destination: {git_dir}")
    if author_map:
        console.print(f"  Authors: {len(author_map)}")
    console.print("\nEdit this file to map more authors and customize settings.")


if __name__ == "__main__":
    cli()
