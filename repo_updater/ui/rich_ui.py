"""Rich-based UI implementation for repo-updater."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from repo_updater.core.result import OperationResult
    from repo_updater.core.state import UpdaterState
    from repo_updater.models.release import ReleaseDetails, ReleaseTag
    from repo_updater.models.status import Commit, PluginUpdate

_STATUS_STYLES = {
    "success": "[green]✓[/green]",
    "skipped": "[yellow]⊘[/yellow]",
    "failed": "[red]✗[/red]",
    "fatal": "[bold red]✗✗[/bold red]",
}


class RichUI:
    """Renders resolved status snapshots and operation results."""

    def __init__(self, console: Console | None = None, max_items: int = 10) -> None:
        """Initialize Rich UI."""
        self.console = console or Console()
        self.max_items = max_items

    def print_info(self, message: str) -> None:
        self.console.print(message)

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[red]Error:[/red] {message}")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow]{message}[/yellow]")

    def create_progress_context(self) -> AbstractContextManager[Progress]:
        """Create a transient spinner for a running operation."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=True,
        )

    def print_result(self, result: OperationResult) -> None:
        """Print the one message of an operation, followed by its warnings."""
        icon = _STATUS_STYLES.get(result.status, result.status)
        self.console.print(f"{icon} {result.message}")
        for warning in result.warnings:
            self.print_warning(f"  Warning: {warning}")

    def _commit_table(self, title: str, commits: list[Commit], contained: dict[str, bool] | None = None) -> Table:
        table = Table(title=title, show_header=True, header_style="bold magenta", title_justify="left")
        table.add_column("Commit", style="cyan", no_wrap=True)
        table.add_column("Message")
        table.add_column("Author", style="green")
        table.add_column("Date", style="dim")
        for commit in commits[: self.max_items]:
            marker = " [green]✓[/green]" if contained and contained.get(commit.hash) else ""
            table.add_row(commit.hash, f"{commit.message}{marker}", commit.author, commit.date)
        if len(commits) > self.max_items:
            table.caption = f"... and {len(commits) - self.max_items} more"
        return table

    def _plugin_table(self, title: str, updates: list[PluginUpdate]) -> Table:
        table = Table(title=title, show_header=True, header_style="bold magenta", title_justify="left")
        table.add_column("Plugin", style="cyan")
        table.add_column("Installed")
        table.add_column("Lockfile")
        table.add_column("Branch", style="dim")
        for update in updates:
            table.add_row(update.name, update.installed_commit, update.lockfile_commit, update.branch)
        return table

    def print_status(self, state: UpdaterState) -> None:
        """Print the full status view."""
        repo = state.repo
        if repo.error:
            self.print_error("Could not determine repository status")
            return

        header = f"[bold]Branch:[/bold] {repo.branch}"
        if repo.current_commit:
            header += f" @ {repo.current_commit[:7]}"
        if state.release.current_tag:
            header += f" [cyan]({state.release.current_tag}, {state.version_mode})[/cyan]"
        self.console.print(header)
        if state.remote_url:
            self.console.print(f"[bold]Remote:[/bold] {state.remote_url}")
        self.console.print(f"Ahead: {repo.ahead_count}  Behind: {repo.behind_count}")

        if state.needs_update:
            self.console.print(f"[yellow]Updates available: {state.update_text()}[/yellow]")
        elif not state.has_plugin_updates:
            self.console.print("[green]✓ Up to date[/green]")

        self._print_releases(state)

        if state.remote_commits and state.log_type == "local":
            self.console.print(
                self._commit_table("Incoming commits", state.remote_commits, state.commits_in_branch)
            )
        title = "Incoming commits" if state.log_type == "remote" else "Recent commits"
        if state.commits:
            self.console.print(self._commit_table(title, state.commits, state.commits_in_branch))

        if state.plugins.behind:
            self.console.print(self._plugin_table("Plugins behind lockfile", state.plugins.behind))
        if state.plugins.ahead:
            self.console.print(self._plugin_table("Plugins ahead of lockfile", state.plugins.ahead))

        if state.has_recent_updates():
            self.print_warning("Restart your editor to load the updated configuration.")

    def _print_releases(self, state: UpdaterState) -> None:
        release = state.release
        if not (release.current_release or release.latest_release):
            return
        self.console.print(
            f"[bold]Release:[/bold] {release.current_release or 'none'}"
            f"  [bold]Latest:[/bold] {release.latest_release or 'none'}"
        )
        if release.releases_since_current:
            names = ", ".join(release.releases_since_current[: self.max_items])
            self.console.print(f"[yellow]New releases:[/yellow] {names}")
        if release.commits_since_release:
            self.console.print(f"{release.commits_since_release} commit(s) since {release.current_release}")

    def print_versions(self, tags: list[ReleaseTag], current: str | None = None) -> None:
        if not tags:
            self.print_warning("No release tags found")
            return
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Tag", style="cyan", no_wrap=True)
        table.add_column("Date", style="dim")
        table.add_column("Title")
        for tag in tags:
            name = f"{tag.name} [green]← current[/green]" if tag.name == current else tag.name
            title = (tag.github.name if tag.github else None) or (tag.commit.message if tag.commit else "")
            if tag.github and tag.github.prerelease:
                title = f"{title} [yellow](prerelease)[/yellow]"
            table.add_row(name, tag.date or "", title)
        self.console.print(table)

    def print_release_details(self, details: ReleaseDetails) -> None:
        title = details.title or details.tag
        self.console.print(f"[bold]{title}[/bold] ({details.tag})")
        if details.date:
            self.console.print(f"Released {details.date}")
        if details.url:
            self.console.print(details.url)
        if details.previous_tag:
            self.console.print(
                f"Since {details.previous_tag}: {details.files_changed} files, "
                f"+{details.lines_added}/-{details.lines_deleted}, "
                f"{details.plugin_changes} plugin and {details.tool_changes} tool lockfile changes"
            )
        if details.description:
            self.console.print(details.description)
