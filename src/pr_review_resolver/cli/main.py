"""Command-line interface for pr-review-resolver."""

import hashlib
import logging
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from pr_review_resolver import __version__
from pr_review_resolver.config.exceptions import ConfigError
from pr_review_resolver.config.runtime_config import PRESET_NAMES, RuntimeConfig
from pr_review_resolver.core.coordinator import ConflictResolutionCoordinator, CoordinatorState
from pr_review_resolver.core.merge_hunks import Choice, accept_all, apply_resolutions, split_hunks
from pr_review_resolver.core.exceptions import (
    ConflictDetectionAmbiguous,
    ReviewEngineError,
    TransportError,
)
from pr_review_resolver.core.models import (
    ConflictFile,
    DiffLine,
    LineKind,
    MergeStatus,
    ParsedFileDiff,
    ReviewEvent,
    Side,
)
from pr_review_resolver.diff.comment_index import LineCommentIndex
from pr_review_resolver.diff.patch_parser import parse_file_entries
from pr_review_resolver.integrations.github import GitHubClient
from pr_review_resolver.review.pending_review import PendingReviewAccumulator

console = Console()
logger = logging.getLogger(__name__)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Review pull requests and resolve their merge conflicts from the terminal.

    Defines the top-level `cli` command group with a version option and registers the
    `status`, `update-branch`, `diff`, `review`, and `resolve` subcommands.
    """


MAX_GITHUB_USERNAME_LENGTH = 39
MAX_GITHUB_REPO_LENGTH = 100

CONFLICT_MARKER = "<<<<<<<"

# Compiled pattern for detecting control characters only.
_INJECTION_PATTERN = re.compile(r"[\x00-\x1f\x7f]")  # Control chars only

_LINE_STYLES = {
    LineKind.ADDITION: ("+", "green"),
    LineKind.DELETION: ("-", "red"),
    LineKind.CONTEXT: (" ", "white"),
}

_STATE_MESSAGES = {
    CoordinatorState.CLEAN: "[green]✅ Branch is up to date and merges cleanly[/green]",
    CoordinatorState.BEHIND: (
        "[yellow]⚠ Branch is behind its base; run `update-branch` to bring it up to date[/yellow]"
    ),
    CoordinatorState.HAS_CONFLICTS: (
        "[red]❌ Branch has merge conflicts; run `resolve` to fix them[/red]"
    ),
    CoordinatorState.UNKNOWN: (
        "[yellow]⚠ GitHub is still computing mergeability; try again shortly[/yellow]"
    ),
}


def sanitize_for_output(value: str) -> str:
    """Redact control characters before printing.

    Detects control characters (null bytes, line breaks, etc.) and returns
    a redacted placeholder if any are present. Logs safe metadata (length and
    hash) at debug level for troubleshooting without exposing the original value.

    Note: This function does NOT remove visible shell metacharacters (;, |, $, etc.).
    Only control characters are detected and trigger redaction.

    Args:
        value (str): The string to sanitize for terminal output.

    Returns:
        str: "[REDACTED]" if control characters are found; otherwise the original string.
    """
    if _INJECTION_PATTERN.search(value):
        # Compute SHA-256 hash to avoid logging sensitive content
        value_bytes = value.encode("utf-8")
        value_hash = hashlib.sha256(value_bytes).hexdigest()
        logger.debug(
            "Redacting value containing control characters: length=%d, hash=%s",
            len(value),
            value_hash,
        )
        return "[REDACTED]"
    return value


def validate_github_username(ctx: click.Context, param: click.Parameter, value: str) -> str:
    """Validate GitHub username for safety.

    Enforces GitHub username rules: A-Za-z0-9 and hyphen only, 1-39 chars,
    cannot start/end with hyphen, no consecutive hyphens.

    Raises:
        click.BadParameter: If username validation fails.
    """
    if not isinstance(value, str) or not value.strip():
        raise click.BadParameter("username required", param=param, ctx=ctx)

    if len(value) > MAX_GITHUB_USERNAME_LENGTH:
        raise click.BadParameter(
            f"username too long (max {MAX_GITHUB_USERNAME_LENGTH})", param=param, ctx=ctx
        )

    if "/" in value or "\\" in value or any(ch.isspace() for ch in value):
        raise click.BadParameter(
            "username must be a single segment (no slashes or spaces)", param=param, ctx=ctx
        )

    # Starts with alphanum, hyphens only between alphanums
    if not re.fullmatch(r"^[A-Za-z0-9]([A-Za-z0-9]|-(?=[A-Za-z0-9]))*$", value):
        raise click.BadParameter(
            "username contains invalid characters or format; "
            "allowed: A-Za-z0-9 and hyphen, cannot start/end with hyphen, "
            "no consecutive hyphens",
            param=param,
            ctx=ctx,
        )
    return value


def validate_github_repo(ctx: click.Context, param: click.Parameter, value: str) -> str:
    """Validate GitHub repository name for safety.

    Enforces length and character constraints for repository names:
    letters, digits, dot, underscore, hyphen. Max 100 characters.

    Raises:
        click.BadParameter: If repository name validation fails.
    """
    if not isinstance(value, str) or not value.strip():
        raise click.BadParameter("repository name required", param=param, ctx=ctx)

    if len(value) > MAX_GITHUB_REPO_LENGTH:
        raise click.BadParameter(
            f"repository name too long (max {MAX_GITHUB_REPO_LENGTH})", param=param, ctx=ctx
        )

    if "/" in value or "\\" in value or any(ch.isspace() for ch in value):
        raise click.BadParameter(
            "identifier must be a single segment (no slashes or spaces)",
            param=param,
            ctx=ctx,
        )

    if not re.fullmatch(r"[A-Za-z0-9._-]+", value):
        raise click.BadParameter(
            "repository name contains invalid characters; "
            "allowed: letters, digits, dot, underscore, hyphen",
            param=param,
            ctx=ctx,
        )

    if value in (".", ".."):
        raise click.BadParameter("repository name cannot be '.' or '..'", param=param, ctx=ctx)

    if value.lower().endswith(".git"):
        raise click.BadParameter("repository name cannot end with '.git'", param=param, ctx=ctx)

    return value


def validate_pr_number(ctx: click.Context, param: click.Parameter, value: int) -> int:
    """Validate that PR number is positive.

    Raises:
        click.BadParameter: If PR number is less than 1.
    """
    if value < 1:
        raise click.BadParameter(
            "PR number must be positive (>= 1)",
            ctx=ctx,
            param=param,
        )
    return value


def parse_comment_specs(
    ctx: click.Context, param: click.Parameter, values: tuple[str, ...]
) -> list[tuple[str, int, Side, str]]:
    """Parse ``PATH:LINE:SIDE:BODY`` review comment options.

    Returns:
        list[tuple[str, int, Side, str]]: One ``(path, line, side, body)`` per option.

    Raises:
        click.BadParameter: If an option is malformed.
    """
    parsed = []
    for raw in values:
        parts = raw.split(":", 3)
        if len(parts) != 4:
            raise click.BadParameter(
                f"expected PATH:LINE:SIDE:BODY, got {sanitize_for_output(raw)!r}",
                param=param,
                ctx=ctx,
            )
        path, line_str, side_str, body = parts
        try:
            line = int(line_str)
        except ValueError as e:
            raise click.BadParameter(
                f"line must be an integer, got {line_str!r}", param=param, ctx=ctx
            ) from e
        try:
            side = Side(side_str.upper())
        except ValueError as e:
            raise click.BadParameter(
                f"side must be LEFT or RIGHT, got {side_str!r}", param=param, ctx=ctx
            ) from e
        parsed.append((path, line, side, body))
    return parsed


def target_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the repository, PR and configuration options shared by all commands."""
    decorators = [
        click.option(
            "--pr", required=True, type=int, callback=validate_pr_number, help="Pull request number"
        ),
        click.option(
            "--owner",
            required=True,
            callback=validate_github_username,
            help="Repository owner",
        ),
        click.option(
            "--repo",
            required=True,
            callback=validate_github_repo,
            help="Repository name",
        ),
        click.option(
            "--config",
            type=str,
            help=(
                "Configuration preset name (conservative/balanced/fast) "
                "or path to configuration file (YAML/TOML)"
            ),
        ),
        click.option(
            "--log-level",
            type=click.Choice(
                ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
            ),
            help="Logging level (default: INFO)",
        ),
        click.option(
            "--log-file",
            type=click.Path(dir_okay=False),
            help="Path to log file (default: stderr only)",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def load_runtime_config(config: str | None, **cli_overrides: Any) -> RuntimeConfig:  # noqa: ANN401
    """Build the runtime configuration and configure logging.

    Precedence: CLI flags > environment variables > config file or preset > defaults.

    Raises:
        click.Abort: If the configuration is invalid.
    """
    try:
        if config and config.lower() in PRESET_NAMES:
            base = RuntimeConfig.from_preset(config)
        elif config:
            base = RuntimeConfig.from_file(Path(config))
        else:
            base = RuntimeConfig.from_defaults()
        runtime_config = RuntimeConfig.from_env(base).merge_with_cli(**cli_overrides)
    except ConfigError as e:
        console.print(f"[red]❌ Configuration error: {escape(str(e))}[/red]")
        raise click.Abort() from e

    log_handler = (
        logging.FileHandler(runtime_config.log_file)
        if runtime_config.log_file
        else logging.StreamHandler()
    )
    logging.basicConfig(
        level=getattr(logging, runtime_config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[log_handler],
        force=True,
    )
    return runtime_config


def create_client(owner: str, repo: str, runtime_config: RuntimeConfig) -> GitHubClient:
    """Create a GitHub client from the runtime configuration."""
    return GitHubClient(
        owner,
        repo,
        token=runtime_config.github_token,
        base_url=runtime_config.github_api_url,
        _timeout=runtime_config.request_timeout,
        retries=runtime_config.request_retries,
    )


def create_coordinator(
    client: GitHubClient, pr: int, runtime_config: RuntimeConfig
) -> ConflictResolutionCoordinator:
    """Create a conflict-resolution coordinator bound to one pull request."""
    return ConflictResolutionCoordinator(
        client,
        pr,
        parallel_fetch=runtime_config.parallel_fetch,
        max_workers=runtime_config.max_workers,
    )


def _report_error(action: str, error: Exception) -> None:
    """Print an engine error with whatever context it carries."""
    console.print(f"[red]❌ Error {action}: {escape(str(error))}[/red]")
    if isinstance(error, TransportError) and error.committed_count is not None:
        console.print(
            f"[yellow]{error.committed_count} file(s) were committed before the failure; "
            "re-run `resolve` to continue from the current branch state[/yellow]"
        )


def _status_table(status: MergeStatus) -> Table:
    table = Table(title="Merge Status", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Base", escape(sanitize_for_output(status.base_ref or "?")))
    table.add_row("Head", escape(sanitize_for_output(status.head_ref or "?")))
    table.add_row("Ahead by", str(status.ahead_by))
    table.add_row("Behind by", str(status.behind_by))
    table.add_row("Mergeable", "unknown" if status.mergeable is None else str(status.mergeable))
    table.add_row("Mergeable state", escape(status.mergeable_state))
    return table


@cli.command()
@target_options
def status(
    pr: int,
    owner: str,
    repo: str,
    config: str | None,
    log_level: str | None,
    log_file: str | None,
) -> None:
    """Show how a pull request's branch relates to its base.

    Raises:
        click.Abort: If the status cannot be loaded.
    """
    runtime_config = load_runtime_config(config, log_level=log_level, log_file=log_file)
    coordinator = create_coordinator(create_client(owner, repo, runtime_config), pr, runtime_config)

    safe_owner = sanitize_for_output(owner)
    safe_repo = sanitize_for_output(repo)
    console.print(f"Checking merge status of PR #{pr} in {safe_owner}/{safe_repo}")

    try:
        merge_status = coordinator.load_status()
    except ReviewEngineError as e:
        _report_error("loading merge status", e)
        logger.exception("Failed to load merge status")
        raise click.Abort() from e

    console.print(_status_table(merge_status))
    console.print(_STATE_MESSAGES[coordinator.state])


@cli.command("update-branch")
@target_options
def update_branch(
    pr: int,
    owner: str,
    repo: str,
    config: str | None,
    log_level: str | None,
    log_file: str | None,
) -> None:
    """Merge the base branch into a pull request that is behind but conflict-free.

    Raises:
        click.Abort: If the update fails.
    """
    runtime_config = load_runtime_config(config, log_level=log_level, log_file=log_file)
    coordinator = create_coordinator(create_client(owner, repo, runtime_config), pr, runtime_config)

    try:
        coordinator.load_status()
        if coordinator.state is not CoordinatorState.BEHIND:
            console.print(_STATE_MESSAGES[coordinator.state])
            return
        coordinator.update_branch()
    except ReviewEngineError as e:
        _report_error("updating branch", e)
        logger.exception("Failed to update branch")
        raise click.Abort() from e

    console.print(f"✅ Updated PR #{pr} with the latest changes from its base branch")
    console.print(_STATE_MESSAGES[coordinator.state])


def _render_row(row: DiffLine) -> str:
    if row.kind is LineKind.HUNK_HEADER:
        return f"[cyan]{escape(row.content)}[/cyan]"
    marker, style = _LINE_STYLES[row.kind]
    old = "" if row.old_line_number is None else str(row.old_line_number)
    new = "" if row.new_line_number is None else str(row.new_line_number)
    return f"[dim]{old:>5} {new:>5}[/dim] [{style}]{marker}{escape(row.content)}[/{style}]"


def _render_file(file_diff: ParsedFileDiff, index: LineCommentIndex) -> None:
    title = escape(sanitize_for_output(file_diff.path))
    if file_diff.previous_path:
        title = f"{escape(sanitize_for_output(file_diff.previous_path))} → {title}"
    console.print(
        f"\n[bold]{title}[/bold] [dim]({file_diff.status.value}, "
        f"+{file_diff.additions} -{file_diff.deletions})[/dim]"
    )
    if file_diff.is_binary:
        console.print("[dim]Binary file or diff too large to display[/dim]")
        return
    if file_diff.degraded:
        console.print("[yellow]⚠ Patch was truncated or malformed; some lines are missing[/yellow]")

    for row in file_diff.rows():
        console.print(_render_row(row), highlight=False)
        existing, _ = index.threads_for(row)
        for comment in existing:
            author = escape(comment.author or "unknown")
            console.print(
                Panel(escape(comment.body), title=f"💬 {author}", border_style="blue"),
            )

    for comment in index.unplaced(file_diff.rows()):
        author = escape(comment.author or "unknown")
        console.print(Panel(escape(comment.body), title=f"💬 {author} (outdated)", border_style="dim"))


@cli.command()
@target_options
@click.option("--file", "file_filter", help="Only show the diff of this path")
def diff(
    pr: int,
    owner: str,
    repo: str,
    config: str | None,
    log_level: str | None,
    log_file: str | None,
    file_filter: str | None,
) -> None:
    """Show a pull request's diff with existing review comments inline.

    Raises:
        click.Abort: If the diff or comments cannot be fetched.
    """
    runtime_config = load_runtime_config(config, log_level=log_level, log_file=log_file)
    client = create_client(owner, repo, runtime_config)

    try:
        entries = client.list_pr_files(pr)
        comments = client.list_review_comments(pr)
    except ReviewEngineError as e:
        _report_error("fetching diff", e)
        logger.exception("Failed to fetch diff")
        raise click.Abort() from e

    file_diffs = parse_file_entries(entries)
    if file_filter:
        file_diffs = [f for f in file_diffs if f.path == file_filter]
        if not file_diffs:
            console.print(f"[yellow]No changes to {escape(sanitize_for_output(file_filter))}[/yellow]")
            return

    for file_diff in file_diffs:
        _render_file(file_diff, LineCommentIndex(comments, (), file_diff.path))

    console.print(f"\n📊 {len(file_diffs)} file(s), {len(comments)} review comment(s)")


@cli.command()
@target_options
@click.option(
    "--comment",
    "comment_specs",
    multiple=True,
    callback=parse_comment_specs,
    help="Inline comment as PATH:LINE:SIDE:BODY (repeatable)",
)
@click.option(
    "--event",
    type=click.Choice([e.value for e in ReviewEvent], case_sensitive=False),
    default=ReviewEvent.COMMENT.value,
    show_default=True,
    help="Review verdict",
)
@click.option("--body", default="", help="Review summary")
@click.option(
    "--retain-draft/--no-retain-draft",
    default=None,
    help="Keep drafted comments if GitHub rejects the review",
)
def review(
    pr: int,
    owner: str,
    repo: str,
    config: str | None,
    log_level: str | None,
    log_file: str | None,
    comment_specs: list[tuple[str, int, Side, str]],
    event: str,
    body: str,
    retain_draft: bool | None,
) -> None:
    """Submit a review with a verdict, summary and inline comments as one batch.

    Raises:
        click.Abort: If the review is invalid or GitHub rejects it.
    """
    runtime_config = load_runtime_config(
        config,
        log_level=log_level,
        log_file=log_file,
        retain_draft_on_failure=retain_draft,
    )
    client = create_client(owner, repo, runtime_config)
    accumulator = PendingReviewAccumulator(
        client, pr, retain_draft_on_failure=runtime_config.retain_draft_on_failure
    )

    try:
        for path, line, side, comment_body in comment_specs:
            accumulator.add_comment(path, line, side, comment_body)
        result = accumulator.submit(event.upper(), body)
    except ReviewEngineError as e:
        _report_error("submitting review", e)
        if accumulator.has_pending_review:
            console.print(
                f"[dim]{len(accumulator.comments)} drafted comment(s) were kept[/dim]"
            )
        logger.exception("Failed to submit review")
        raise click.Abort() from e

    url = result.get("html_url")
    console.print(f"✅ Submitted {event.upper()} review on PR #{pr}")
    if url:
        console.print(f"[dim]{escape(url)}[/dim]")


_HUNK_ANSWERS = ("ours", "theirs", "all-ours", "all-theirs", "quit")


def _resolve_by_hunk(conflict_file: ConflictFile) -> str | None:
    """Prompt for a side per differing hunk; return the assembled text or None on quit."""
    hunks = split_hunks(conflict_file)
    conflicts = [h for h in hunks if h.is_conflict]
    choices: dict[int, Choice] = {}
    for number, hunk in enumerate(conflicts, start=1):
        console.print(
            f"[bold]Hunk {number}/{len(conflicts)}[/bold] [dim]({hunk.kind.value}, "
            f"head line {hunk.ours_start}, base line {hunk.theirs_start})[/dim]"
        )
        for line in hunk.ours_lines:
            console.print(f"[green]ours   | {escape(line)}[/green]", highlight=False)
        for line in hunk.theirs_lines:
            console.print(f"[blue]theirs | {escape(line)}[/blue]", highlight=False)
        answer = click.prompt(
            "Keep", type=click.Choice(_HUNK_ANSWERS), default="ours", show_choices=True
        )
        if answer == "quit":
            return None
        if answer.startswith("all-"):
            return accept_all(conflict_file, Choice(answer.removeprefix("all-")))
        choices[hunk.id] = Choice(answer)
    return apply_resolutions(conflict_file, hunks, choices)


def _choose_resolution(conflict_file: ConflictFile, side: str | None, by_hunk: bool = False) -> str | None:
    """Return the resolved text of one file, or None if the user gave up."""
    if side is not None:
        return accept_all(conflict_file, Choice(side))
    if by_hunk:
        return _resolve_by_hunk(conflict_file)

    edited = click.edit(conflict_file.with_markers(), extension=Path(conflict_file.path).suffix or ".txt")
    if edited is None:
        return None
    if CONFLICT_MARKER in edited and not click.confirm(
        f"{conflict_file.path} still contains conflict markers. Commit anyway?", default=False
    ):
        return None
    return edited


@cli.command()
@target_options
@click.option(
    "--ours",
    "side",
    flag_value="ours",
    help="Resolve every file by keeping the pull request's version",
)
@click.option(
    "--theirs",
    "side",
    flag_value="theirs",
    help="Resolve every file by taking the base branch's version",
)
@click.option(
    "--by-hunk",
    is_flag=True,
    help="Choose the head or base side for each differing hunk instead of editing the file",
)
@click.option("--parallel/--no-parallel", default=None, help="Fetch candidate files concurrently")
def resolve(
    pr: int,
    owner: str,
    repo: str,
    config: str | None,
    log_level: str | None,
    log_file: str | None,
    side: str | None,
    by_hunk: bool,
    parallel: bool | None,
) -> None:
    """Resolve a pull request's merge conflicts file by file and commit the results.

    Each conflicting file opens in $EDITOR with conflict markers unless
    --ours or --theirs is given, or --by-hunk asks for a side per hunk.
    Nothing is committed until every file is resolved.

    Raises:
        click.Abort: If resolution is cancelled or a commit fails.
    """
    runtime_config = load_runtime_config(
        config, log_level=log_level, log_file=log_file, parallel_fetch=parallel
    )
    coordinator = create_coordinator(create_client(owner, repo, runtime_config), pr, runtime_config)

    try:
        coordinator.load_status()
        if coordinator.state is not CoordinatorState.HAS_CONFLICTS:
            console.print(_STATE_MESSAGES[coordinator.state])
            return
        session = coordinator.begin_resolution()
    except ConflictDetectionAmbiguous as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        if e.recommendation:
            console.print(
                Panel(escape(e.recommendation), title="Resolve locally", border_style="yellow")
            )
        raise click.Abort() from e
    except ReviewEngineError as e:
        _report_error("detecting conflicts", e)
        logger.exception("Failed to detect conflicts")
        raise click.Abort() from e

    console.print(f"Found {session.total} conflicting file(s)")
    outcome = None
    try:
        while coordinator.current_file is not None:
            current = coordinator.current_file
            done, total = coordinator.progress
            console.print(f"[{done + 1}/{total}] {escape(sanitize_for_output(current.path))}")
            content = _choose_resolution(current, side, by_hunk)
            if content is None:
                coordinator.cancel()
                console.print("[yellow]Resolution cancelled; nothing was committed[/yellow]")
                raise click.Abort()
            outcome = coordinator.resolve_current(content)
    except ReviewEngineError as e:
        _report_error("committing resolved files", e)
        logger.exception("Failed to commit resolved files")
        raise click.Abort() from e

    if outcome is not None:
        console.print(f"✅ Committed {len(outcome.committed)} resolved file(s) to PR #{pr}")
        if coordinator.state in _STATE_MESSAGES:
            console.print(_STATE_MESSAGES[coordinator.state])


if __name__ == "__main__":
    cli()
