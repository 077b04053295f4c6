"""Command-line interface for repokit."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from repokit import __version__
from repokit.config import ConfigurationError, RepoKitSettings
from repokit.process import ProcessError
from repokit.vcs import Repository, VCSError, VCSFactory

app = typer.Typer(
    name="repokit",
    help="Inspect Git and Mercurial repositories through one interface",
    add_completion=False,
)
console = Console()

# Help text constants
VERBOSE_OUTPUT_HELP = "Verbose output"
ENV_FILE_HELP = "Path to custom environment file (default: .env.repokit or .env)"
REPO_HELP = "Path inside the repository (default: current directory)"


def setup_logging(verbose: bool) -> None:
    """Setup logging configuration.

    Args:
        verbose: If True, enable debug logging
    """
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


@contextmanager
def handle_errors(verbose: bool) -> Iterator[None]:
    """Report failures in red and exit with status 1."""
    try:
        yield
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)
    except (VCSError, ProcessError) as e:
        console.print(f"[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


def open_repository(repo: str | None, env_file: str | None) -> Repository:
    """Open the repository containing ``repo``.

    Raises:
        ConfigurationError: If the settings are invalid
        NotARepositoryError: If no repository contains the path
    """
    settings = RepoKitSettings(env_file=env_file)
    return VCSFactory.get(repo, settings)


RepoOption = typer.Option(None, "--repo", "-C", help=REPO_HELP)
EnvFileOption = typer.Option(None, "--env-file", help=ENV_FILE_HELP)
VerboseOption = typer.Option(False, "--verbose", "-v", help=VERBOSE_OUTPUT_HELP)


@app.command()
def log(
    revisions: str | None = typer.Argument(None, help="Native revision range (default: all commits)"),
    limit: int | None = typer.Option(None, "--limit", "-n", help="Show only the newest N commits"),
    reverse: bool = typer.Option(False, "--reverse", help="Show oldest first"),
    repo: str | None = RepoOption,
    env_file: str | None = EnvFileOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show commit history."""
    setup_logging(verbose)

    with handle_errors(verbose):
        with open_repository(repo, env_file) as repository:
            for metadata in repository.commit_metadata(revisions, limit=limit, reverse=reverse):
                console.print(
                    f"[yellow]{metadata.hash.abbreviate()}[/yellow]  "
                    f"{metadata.timestamp:%Y-%m-%d %H:%M}  [cyan]{metadata.author}[/cyan]  {metadata.title}",
                    highlight=False,
                )


@app.command()
def diff(
    source: str = typer.Argument(..., help="Source revision"),
    target: str | None = typer.Argument(None, help="Target revision (default: working directory)"),
    stat: bool = typer.Option(False, "--stat", help="Show per-file line counts only"),
    repo: str | None = RepoOption,
    env_file: str | None = EnvFileOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show changes between revisions."""
    setup_logging(verbose)

    with handle_errors(verbose):
        with open_repository(repo, env_file) as repository:
            from_hash = repository.resolve(source)
            to_hash = repository.resolve(target) if target is not None else None
            if from_hash is None or (target is not None and to_hash is None):
                console.print(f"[red]Unknown revision: {source if from_hash is None else target}[/red]")
                sys.exit(1)

            changes = repository.diff(from_hash, to_hash)
            if not stat:
                # raw bytes, file content need not be UTF-8
                typer.echo(changes.render().encode("utf-8", errors="surrogateescape"), nl=False)
                return

            table = Table("Status", "Path", "Added", "Removed", "Modified")
            for patch in changes.patches:
                table.add_row(
                    patch.status.value,
                    str(patch.path),
                    "bin" if patch.is_binary else str(patch.added),
                    "bin" if patch.is_binary else str(patch.removed),
                    "bin" if patch.is_binary else str(patch.modified),
                )
            console.print(table)
            console.print(
                f"{len(changes.patches)} files, {changes.added} added, "
                f"{changes.removed} removed, {changes.modified} modified"
            )


@app.command()
def branches(
    repo: str | None = RepoOption,
    env_file: str | None = EnvFileOption,
    verbose: bool = VerboseOption,
) -> None:
    """List branches."""
    setup_logging(verbose)

    with handle_errors(verbose):
        with open_repository(repo, env_file) as repository:
            current = repository.current_branch()
            for branch in repository.branches():
                marker = "*" if branch == current else " "
                console.print(f"{marker} {branch.name}", highlight=False)


@app.command()
def tags(
    repo: str | None = RepoOption,
    env_file: str | None = EnvFileOption,
    verbose: bool = VerboseOption,
) -> None:
    """List tags."""
    setup_logging(verbose)

    with handle_errors(verbose):
        with open_repository(repo, env_file) as repository:
            for tag in repository.tags():
                console.print(tag.name, highlight=False)


@app.command()
def status(
    repo: str | None = RepoOption,
    env_file: str | None = EnvFileOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show repository state."""
    setup_logging(verbose)

    with handle_errors(verbose):
        with open_repository(repo, env_file) as repository:
            head = repository.head()
            branch = repository.current_branch()
            console.print("[bold]Repository:[/bold]\n")
            console.print(f"  Root: {repository.root()}")
            console.print(f"  Head: {head.hex if head else '(none)'}")
            console.print(f"  Branch: {branch.name if branch else '(detached)'}")
            console.print(f"  Clean: {repository.is_clean()}")
            console.print(f"  Healthy: {repository.is_healthy()}")


@app.command()
def clean(
    repo: str | None = RepoOption,
    env_file: str | None = EnvFileOption,
    verbose: bool = VerboseOption,
) -> None:
    """Discard all local modifications and untracked files."""
    setup_logging(verbose)

    with handle_errors(verbose):
        with open_repository(repo, env_file) as repository:
            repository.clean()
            console.print("[green]Working directory cleaned[/green]")


@app.command("merge-base")
def merge_base(
    first: str = typer.Argument(..., help="First revision"),
    second: str = typer.Argument(..., help="Second revision"),
    repo: str | None = RepoOption,
    env_file: str | None = EnvFileOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show the common ancestor of two revisions."""
    setup_logging(verbose)

    with handle_errors(verbose):
        with open_repository(repo, env_file) as repository:
            hashes = [repository.resolve(first), repository.resolve(second)]
            for name, commit_hash in zip((first, second), hashes, strict=True):
                if commit_hash is None:
                    console.print(f"[red]Unknown revision: {name}[/red]")
                    sys.exit(1)
            console.print(repository.merge_base(*hashes).hex, highlight=False)  # type: ignore[arg-type]


@app.command()
def config(
    env_file: str | None = EnvFileOption,
) -> None:
    """Show current configuration."""
    try:
        settings = RepoKitSettings(env_file=env_file)
        console.print("[bold]Current Configuration:[/bold]\n")
        console.print(f"  Mercurial command: {settings.hg_command}")
        console.print(f"  Git command: {settings.git_command}")
        console.print(f"  Default VCS: {settings.default_vcs.display_name}")
        console.print(f"  Temporary directory: {settings.temp_dir or '(system default)'}")
        env_path = RepoKitSettings.find_env_file() if env_file is None else env_file
        console.print(f"  Environment file: {env_path or '(none)'}")
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"repokit version {__version__}")


if __name__ == "__main__":
    app()
