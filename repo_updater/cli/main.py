"""CLI entry point for repo-updater."""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from typer import Exit

from repo_updater.core.config import UpdaterConfig, build_config, load_config
from repo_updater.core.errors import UpdaterError, ValidationError
from repo_updater.core.periodic import PeriodicChecker
from repo_updater.core.result import OperationResult
from repo_updater.core.updater import Updater
from repo_updater.models.release import ReleaseTag
from repo_updater.ui.rich_ui import RichUI

DEFAULT_CONFIG_PATH = Path("~/.config/repo-updater/config.toml")

app = typer.Typer(
    name="repo-updater",
    help="Check, apply and switch updates of a tracked git repository",
    no_args_is_help=True,
)


def _setup_logging(verbose: bool) -> None:  # noqa: FBT001
    """Route logs to stderr only when asked, so each command prints one outcome."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")


def _load(config_file: Path | None, path: str | None) -> UpdaterConfig:
    repo_path = Path(path) if path else None
    if config_file is None and DEFAULT_CONFIG_PATH.expanduser().exists():
        config_file = DEFAULT_CONFIG_PATH.expanduser()
    if config_file is not None:
        return load_config(config_file, repo_path=repo_path)
    return build_config(repo_path=str(repo_path or Path.cwd()))


def _session(ctx: typer.Context) -> tuple[Updater, RichUI]:
    return ctx.obj


def _finish(ui: RichUI, result: OperationResult) -> None:
    ui.print_result(result)
    if result.status == "fatal":
        raise Exit(code=3)
    if result.status == "failed":
        raise Exit(code=1)


@app.callback()
def cli(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="TOML configuration file (default: ~/.config/repo-updater/config.toml when present)",
    ),
    path: str | None = typer.Option(
        None,
        "--path",
        "-p",
        help="Repository to track; overrides repo_path from the configuration",
    ),
    verbose: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--verbose",
        "-v",
        help="Log every git command and state transition to stderr",
    ),
) -> None:
    """Check, apply and switch updates of a tracked git repository."""
    _setup_logging(verbose)
    try:
        updater_config = _load(config, path)
    except ValidationError as e:
        RichUI().print_error(str(e))
        raise Exit(code=2) from e
    ctx.obj = (Updater(updater_config), RichUI(max_items=updater_config.max_section_items))


@app.command()
def status(ctx: typer.Context) -> None:
    """Refresh and show the repository, release and plugin status."""
    updater, ui = _session(ctx)
    with ui.create_progress_context() as progress:
        progress.add_task("Checking for updates...", total=None)
        result = asyncio.run(updater.refresh())
    if not result.ok:
        _finish(ui, result)
        return
    ui.print_status(updater.state)


@app.command()
def check(ctx: typer.Context) -> None:
    """Check for updates quietly. Exits 1 when updates are available."""
    updater, ui = _session(ctx)
    has_updates = asyncio.run(updater.check_updates_silent())
    if updater.state.repo.error:
        ui.print_error("Could not determine repository status")
        raise Exit(code=1)
    if has_updates:
        ui.print_warning(f"Updates available: {updater.state.update_text()}")
        raise Exit(code=1)
    ui.print_info("Up to date")


@app.command()
def update(
    ctx: typer.Context,
    plugins: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--plugins",
        help="Also restore plugins from the updated lockfile",
    ),
) -> None:
    """Merge or pull the upstream main branch, rolling back on conflicts."""
    updater, ui = _session(ctx)
    operation = updater.update_repo_and_plugins() if plugins else updater.update_repo()
    with ui.create_progress_context() as progress:
        progress.add_task("Pulling latest changes...", total=None)
        result = asyncio.run(operation)
    _finish(ui, result)


@app.command("install-plugins")
def install_plugins(ctx: typer.Context) -> None:
    """Restore plugins from the lockfile."""
    updater, ui = _session(ctx)
    with ui.create_progress_context() as progress:
        progress.add_task("Restoring plugins...", total=None)
        result = asyncio.run(updater.install_plugin_updates())
    _finish(ui, result)


@app.command()
def versions(ctx: typer.Context) -> None:
    """List release tags, newest first."""
    updater, ui = _session(ctx)

    async def _collect() -> tuple[list[ReleaseTag], str | None]:
        return await updater.release_tags(), await updater.query.head_tag()

    tags, current = asyncio.run(_collect())
    ui.print_versions(tags, current)


@app.command()
def release(ctx: typer.Context, tag: str = typer.Argument(..., help="Release tag to describe")) -> None:
    """Show what changed in one release."""
    updater, ui = _session(ctx)
    try:
        details = asyncio.run(updater.release_details(tag))
    except UpdaterError as e:
        ui.print_error(str(e))
        raise Exit(code=1) from e
    ui.print_release_details(details)


@app.command()
def switch(
    ctx: typer.Context,
    tag: str | None = typer.Argument(None, help="Release tag to check out"),
    latest: bool = typer.Option(  # noqa: FBT001
        False,  # noqa: FBT003
        "--latest",
        help="Check out the newest release tag",
    ),
) -> None:
    """Check out a release tag, then restore plugins and tools."""
    updater, ui = _session(ctx)
    if latest == (tag is not None):
        ui.print_error("Give either a TAG or --latest")
        raise Exit(code=2)
    operation = updater.switch_to_latest() if latest else updater.switch_to_version(tag or "")
    with ui.create_progress_context() as progress:
        progress.add_task("Switching version...", total=None)
        result = asyncio.run(operation)
    _finish(ui, result)


async def _watch(updater: Updater, ui: RichUI) -> None:
    checker = PeriodicChecker(updater, on_updates=ui.print_warning)
    await checker.startup_check()
    checker.start()
    try:
        await asyncio.Event().wait()
    finally:
        checker.stop()


@app.command()
def watch(ctx: typer.Context) -> None:
    """Check at startup and then periodically until interrupted."""
    updater, ui = _session(ctx)
    ui.print_info(f"Watching {updater.config.repo_path} (Ctrl+C to stop)")
    try:
        asyncio.run(_watch(updater, ui))
    except KeyboardInterrupt:
        ui.print_info("Stopped")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
