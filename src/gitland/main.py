from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from types import FrameType

import click
import typer
from rich import box
from rich.markup import escape
from rich.panel import Panel
from typer.core import TyperCommand

from . import __version__
from .core.config import LandSettings, load_config
from .core.console import console, setup_logging
from .core.decorators import handle_exceptions
from .core.result import Err, Ok
from .git import AsyncRepo
from .land import (
    LandOutcome,
    LandStatus,
    LandWorkflow,
    make_confirmer,
    resolve_workflow_config,
)

app = typer.Typer(
    help="land: squash a feature branch onto the target branch.",
    add_completion=False,
    context_settings={"help_option_names": []},
)
logger = logging.getLogger(__name__)


class ApplicationLifecycle:
    """Turns SIGTERM into SystemExit so the land marker is released on the way out."""

    def __init__(self) -> None:
        self._shutdown_requested: bool = False

    def handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        if self._shutdown_requested:
            console.print("\n[red]Force exit - check `git status` and remove the land marker.[/red]")
            raise SystemExit(128 + signum)

        self._shutdown_requested = True
        console.print("\n[yellow]Interrupted; check `git status` before landing again.[/yellow]")
        raise SystemExit(128 + signum)

    def register_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self.handle_shutdown)


class LandCommand(TyperCommand):
    """Usage errors exit 1 like every other failure of the land command."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            exc.exit_code = 1
            raise


def _help_callback(ctx: typer.Context, value: bool) -> None:
    if not value or ctx.resilient_parsing:
        return
    typer.echo(ctx.get_help())
    raise typer.Exit(code=1)


def _version_callback(value: bool) -> None:
    if not value:
        return
    console.print(__version__)
    raise typer.Exit()


def render_outcome(outcome: LandOutcome) -> None:
    """Print the result of a land for the operator."""
    landing, target = escape(outcome.landing), escape(outcome.target)

    if outcome.status is LandStatus.NOOP:
        console.print(f"[yellow]{landing} is the target branch; nothing to land.[/yellow]")
    elif outcome.status is LandStatus.LANDED:
        sha = f" ({outcome.commit[:12]})" if outcome.commit else ""
        console.print(f"[green]Landed {landing} onto {target}{sha}.[/green]")
    else:
        step = f" at {outcome.failed_step.value}" if outcome.failed_step else ""
        console.print(f"[red]Land failed{step}: {escape(outcome.error or 'unknown error')}[/red]")
        if outcome.restored_branch:
            console.print(f"[dim]Checked out {escape(outcome.restored_branch)} again.[/dim]")

    for warning in outcome.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    if outcome.manual_commands:
        console.print(
            Panel(
                "\n".join(escape(command) for command in outcome.manual_commands),
                title="Finish by hand",
                box=box.SIMPLE,
            )
        )


async def _run_land(
    repo_path: Path,
    settings: LandSettings,
    *,
    comment: str | None,
    branch: str | None,
    remote: str | None,
    target: str | None,
    push: bool,
    verbose: bool,
    paranoid: bool,
    force: bool,
) -> LandOutcome:
    match await AsyncRepo.open(repo_path):
        case Err(err):
            raise err
        case Ok(repo):
            pass

    match await resolve_workflow_config(
        repo,
        settings,
        comment=comment,
        branch=branch,
        remote=remote,
        target=target,
        push=push,
        verbose=verbose,
        paranoid=paranoid,
        force_lock=force,
    ):
        case Err(err):
            raise err
        case Ok(config):
            pass

    logger.debug(
        "Landing %s onto %s via %s (push=%s, paranoid=%s)",
        config.landing_branch,
        config.target_branch,
        config.remote,
        config.push,
        config.paranoid,
    )
    workflow = LandWorkflow(repo, config, confirm=make_confirmer(console), console=console)
    return await workflow.run()


@app.command(cls=LandCommand, context_settings={"help_option_names": []})
@handle_exceptions
def land(
    args: list[str] | None = typer.Argument(
        None,
        metavar="[COMMENT [BRANCH]]",
        help="Land commit message (default 'Landed branch <branch>') and branch to land "
        "(default: the current branch).",
        show_default=False,
    ),
    push: bool = typer.Option(
        False, "--push", help="Push the target branch and delete the landed branch remotely."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Print each git step before running it."
    ),
    paranoid: bool = typer.Option(
        False, "--paranoid", help="Ask for confirmation before every git step that changes state."
    ),
    repo_path: Path = typer.Option(Path("."), "--repo", "-C", help="Repository path."),
    remote: str | None = typer.Option(None, "--remote", help="Remote to fetch from and push to."),
    target: str | None = typer.Option(None, "--target", help="Branch to land onto."),
    force: bool = typer.Option(
        False, "--force", help="Proceed even if another land's marker file is present."
    ),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to a land settings file (TOML or JSON)."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        expose_value=False,
        help="Print the gitland version.",
    ),
    show_help: bool = typer.Option(
        False,
        "--help",
        "-h",
        callback=_help_callback,
        is_eager=True,
        expose_value=False,
        help="Show this message and exit.",
    ),
) -> None:
    """Squash-merge a branch onto the target branch, then delete it."""
    positional = list(args or [])
    if len(positional) > 2:
        console.print(f"[red]Too many arguments: {escape(' '.join(positional[2:]))}[/red]")
        console.print(escape("Usage: land [OPTIONS] [COMMENT [BRANCH]]"))
        raise typer.Exit(code=1)
    comment = positional[0] if positional else None
    branch = positional[1] if len(positional) > 1 else None

    settings, meta = load_config(config_path=config)
    setup_logging(level=settings.log_level, verbose=verbose)
    if meta.error:
        console.print(
            Panel(
                f"[bold red]Configuration Error - Safe Mode Active[/bold red]\n\n"
                f"Failed to load {escape(str(meta.path))}:\n{escape(meta.error)}\n\n"
                f"[yellow]Using default settings.[/yellow]",
                border_style="red",
            )
        )
    else:
        logger.debug(
            "Loaded settings from %s (file loaded: %s, env overrides: %s)",
            meta.path,
            meta.file_loaded,
            sorted(meta.env_overrides),
        )

    ApplicationLifecycle().register_signal_handlers()

    outcome = asyncio.run(
        _run_land(
            repo_path.expanduser(),
            settings,
            comment=comment,
            branch=branch,
            remote=remote,
            target=target,
            push=push,
            verbose=verbose,
            paranoid=paranoid,
            force=force,
        )
    )
    render_outcome(outcome)
    if not outcome.ok:
        raise typer.Exit(code=1)


def cli() -> None:
    app()


if __name__ == "__main__":
    cli()
