"""Unit tests for CLI commands in pr_review_resolver.cli.main."""

import logging
from collections.abc import Generator
from typing import Any
from unittest.mock import Mock, patch

import click
import pytest
from click.testing import CliRunner

from pr_review_resolver.cli.main import (
    cli,
    create_client,
    parse_comment_specs,
    sanitize_for_output,
    validate_github_repo,
    validate_github_username,
    validate_pr_number,
)
from pr_review_resolver.config import RuntimeConfig
from pr_review_resolver.core.exceptions import TransportError
from pr_review_resolver.core.models import (
    FileDiffEntry,
    FileStatus,
    MergeStatus,
    ReviewComment,
    Side,
)

TARGET = ["--owner", "owner", "--repo", "repo", "--pr", "7"]


@pytest.fixture(autouse=True)
def restore_root_logging() -> Generator[None, None, None]:
    """Undo the logging.basicConfig call each command makes."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def runner() -> CliRunner:
    """Provide a Click test runner."""
    return CliRunner()


def _with_host(host: Any):
    return patch("pr_review_resolver.cli.main.create_client", return_value=host)


def test_validate_pr_number_rejects_non_positive() -> None:
    """validate_pr_number should reject values less than 1."""
    with pytest.raises(click.BadParameter, match="PR number must be positive"):
        validate_pr_number(Mock(), Mock(), 0)


def test_sanitize_for_output_redacts_control_chars() -> None:
    """sanitize_for_output should redact control characters."""
    assert sanitize_for_output("safe-value") == "safe-value"
    assert sanitize_for_output("\x00unsafe\n") == "[REDACTED]"


def test_validate_github_username_rules() -> None:
    """validate_github_username enforces GitHub naming rules."""
    ctx = Mock()
    param = Mock()
    assert validate_github_username(ctx, param, "octo-cat") == "octo-cat"
    for bad in ["", "-octo", "octo-", "oc--to", "a/b", "x" * 40]:
        with pytest.raises(click.BadParameter):
            validate_github_username(ctx, param, bad)


def test_validate_github_repo_rules() -> None:
    """validate_github_repo enforces repository naming rules."""
    ctx = Mock()
    param = Mock()
    assert validate_github_repo(ctx, param, "my_repo.v2") == "my_repo.v2"
    for bad in ["", "..", "repo.git", "a b", "a/b", "r" * 101]:
        with pytest.raises(click.BadParameter):
            validate_github_repo(ctx, param, bad)


def test_parse_comment_specs() -> None:
    """Comment options split into path, line, side and a body that may contain colons."""
    parsed = parse_comment_specs(Mock(), Mock(), ("src/a.py:12:left:why: this?",))
    assert parsed == [("src/a.py", 12, Side.LEFT, "why: this?")]

    for bad in ("a.py:12:RIGHT", "a.py:x:RIGHT:body", "a.py:1:UP:body"):
        with pytest.raises(click.BadParameter):
            parse_comment_specs(Mock(), Mock(), (bad,))


class TestStatus:
    """Tests for the status command."""

    def test_clean(self, runner: CliRunner, fake_host: Any) -> None:
        fake_host.status = MergeStatus(ahead_by=2, behind_by=0, mergeable=True, mergeable_state="clean")
        with _with_host(fake_host):
            result = runner.invoke(cli, ["status", *TARGET])

        assert result.exit_code == 0, result.output
        assert "merges cleanly" in result.output

    def test_conflicts(self, runner: CliRunner, fake_host: Any) -> None:
        with _with_host(fake_host):
            result = runner.invoke(cli, ["status", *TARGET])

        assert result.exit_code == 0
        assert "merge conflicts" in result.output

    def test_transport_error_aborts(self, runner: CliRunner, fake_host: Any) -> None:
        fake_host.status_error = TransportError("service unavailable", status_code=503)
        with _with_host(fake_host):
            result = runner.invoke(cli, ["status", *TARGET])

        assert result.exit_code == 1
        assert "service unavailable" in result.output

    def test_invalid_owner(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["status", "--owner", "-bad", "--repo", "repo", "--pr", "7"])
        assert result.exit_code == 2

    def test_bad_config_file(self, runner: CliRunner, tmp_path: Any) -> None:
        result = runner.invoke(cli, ["status", *TARGET, "--config", str(tmp_path / "missing.yaml")])

        assert result.exit_code == 1
        assert "Configuration error" in result.output


def test_update_branch(runner: CliRunner, fake_host: Any) -> None:
    """update-branch merges the base into a behind branch."""
    fake_host.status = MergeStatus(
        ahead_by=1, behind_by=3, mergeable=True, mergeable_state="behind", head_sha="abc"
    )
    with _with_host(fake_host):
        result = runner.invoke(cli, ["update-branch", *TARGET])

    assert result.exit_code == 0, result.output
    assert ("update_branch", 7, "abc") in fake_host.calls


def test_update_branch_skips_when_not_behind(runner: CliRunner, fake_host: Any) -> None:
    with _with_host(fake_host):
        result = runner.invoke(cli, ["update-branch", *TARGET])

    assert result.exit_code == 0
    assert not any(call[0] == "update_branch" for call in fake_host.calls)


def test_diff_shows_lines_and_comments(runner: CliRunner, fake_host: Any) -> None:
    """diff renders parsed hunks with existing comments attached."""
    fake_host.list_pr_files = Mock(
        return_value=[
            FileDiffEntry(
                path="src/app.py",
                status=FileStatus.MODIFIED,
                additions=2,
                deletions=1,
                patch="@@ -1,3 +1,4 @@\n a\n-b\n+b2\n+c\n d",
            ),
            FileDiffEntry(path="logo.png", status=FileStatus.ADDED),
        ]
    )
    fake_host.list_review_comments = Mock(
        return_value=[
            ReviewComment(path="src/app.py", line=2, side=Side.RIGHT, body="Rename b2", author="alice")
        ]
    )
    with _with_host(fake_host):
        result = runner.invoke(cli, ["diff", *TARGET])

    assert result.exit_code == 0, result.output
    assert "@@ -1,3 +1,4 @@" in result.output
    assert "+b2" in result.output
    assert "Rename b2" in result.output
    assert "Binary file" in result.output


class TestReview:
    """Tests for the review command."""

    def test_submit_with_comments(self, runner: CliRunner, fake_host: Any) -> None:
        with _with_host(fake_host):
            result = runner.invoke(
                cli,
                [
                    "review",
                    *TARGET,
                    "--comment",
                    "src/app.py:3:right:Needs a test",
                    "--comment",
                    "src/app.py:2:LEFT:Why remove this?",
                    "--event",
                    "approve",
                ],
            )

        assert result.exit_code == 0, result.output
        assert len(fake_host.reviews) == 1
        review = fake_host.reviews[0]
        assert review["event"] == "APPROVE"
        assert [c["side"] for c in review["comments"]] == ["RIGHT", "LEFT"]

    def test_empty_comment_review_rejected(self, runner: CliRunner, fake_host: Any) -> None:
        with _with_host(fake_host):
            result = runner.invoke(cli, ["review", *TARGET, "--event", "COMMENT"])

        assert result.exit_code == 1
        assert fake_host.reviews == []

    def test_malformed_comment_option(self, runner: CliRunner, fake_host: Any) -> None:
        with _with_host(fake_host):
            result = runner.invoke(cli, ["review", *TARGET, "--comment", "nope"])

        assert result.exit_code == 2


class TestResolve:
    """Tests for the resolve command."""

    def test_resolve_with_ours(self, runner: CliRunner, conflicting_host: Any) -> None:
        with _with_host(conflicting_host):
            result = runner.invoke(cli, ["resolve", *TARGET, "--ours"])

        assert result.exit_code == 0, result.output
        assert [w["content"] for w in conflicting_host.writes] == [
            "head fileA.txt\n",
            "head fileB.txt\n",
            "head fileC.txt\n",
        ]
        assert "Committed 3" in result.output

    def test_resolve_in_editor(self, runner: CliRunner, conflicting_host: Any) -> None:
        with _with_host(conflicting_host), patch("click.edit", return_value="merged\n") as mock_edit:
            result = runner.invoke(cli, ["resolve", *TARGET])

        assert result.exit_code == 0, result.output
        assert mock_edit.call_count == 3
        assert "<<<<<<< head" in mock_edit.call_args_list[0].args[0]
        assert {w["content"] for w in conflicting_host.writes} == {"merged\n"}

    def test_editor_closed_without_saving_cancels(self, runner: CliRunner, conflicting_host: Any) -> None:
        with _with_host(conflicting_host), patch("click.edit", return_value=None):
            result = runner.invoke(cli, ["resolve", *TARGET])

        assert result.exit_code == 1
        assert "nothing was committed" in result.output
        assert conflicting_host.writes == []

    def test_resolve_by_hunk(self, runner: CliRunner, conflicting_host: Any) -> None:
        with _with_host(conflicting_host):
            result = runner.invoke(cli, ["resolve", *TARGET, "--by-hunk"], input="theirs\nours\nall-theirs\n")

        assert result.exit_code == 0, result.output
        assert [w["content"] for w in conflicting_host.writes] == [
            "base fileA.txt\n",
            "head fileB.txt\n",
            "base fileC.txt\n",
        ]
        assert "Hunk 1/1" in result.output

    def test_resolve_by_hunk_quit_cancels(self, runner: CliRunner, conflicting_host: Any) -> None:
        with _with_host(conflicting_host):
            result = runner.invoke(cli, ["resolve", *TARGET, "--by-hunk"], input="quit\n")

        assert result.exit_code == 1
        assert conflicting_host.writes == []

    def test_no_candidates_prints_recommendation(self, runner: CliRunner, fake_host: Any) -> None:
        fake_host.compare_entries = [FileDiffEntry(path="new.txt", status=FileStatus.ADDED)]
        with _with_host(fake_host):
            result = runner.invoke(cli, ["resolve", *TARGET])

        assert result.exit_code == 1
        assert "git merge main" in result.output

    def test_stale_write_reports_progress(self, runner: CliRunner, conflicting_host: Any) -> None:
        conflicting_host.write_errors["fileB.txt"] = TransportError("conflict", status_code=409)
        with _with_host(conflicting_host):
            result = runner.invoke(cli, ["resolve", *TARGET, "--theirs"])

        assert result.exit_code == 1
        assert "1 file(s) were committed" in result.output

    def test_clean_branch_has_nothing_to_resolve(self, runner: CliRunner, fake_host: Any) -> None:
        fake_host.status = MergeStatus(ahead_by=1, behind_by=0, mergeable=True, mergeable_state="clean")
        with _with_host(fake_host):
            result = runner.invoke(cli, ["resolve", *TARGET])

        assert result.exit_code == 0
        assert fake_host.writes == []


def test_create_client_applies_retry_setting() -> None:
    """Read retries are off unless configured."""
    default = create_client("owner", "repo", RuntimeConfig())
    assert default.session.get_adapter("https://api.github.com").max_retries.total == 0

    configured = create_client("owner", "repo", RuntimeConfig(request_retries=2))
    assert configured.session.get_adapter("https://api.github.com").max_retries.total == 2


def test_diff_shows_left_context_and_outdated_comments(runner: CliRunner, fake_host: Any) -> None:
    """Comments on the old side of unchanged lines and outside the diff are still printed."""
    fake_host.list_pr_files = Mock(
        return_value=[
            FileDiffEntry(path="src/app.py", status=FileStatus.MODIFIED, patch="@@ -1,2 +1,2 @@\n a\n-b\n+c")
        ]
    )
    fake_host.list_review_comments = Mock(
        return_value=[
            ReviewComment(path="src/app.py", line=1, side=Side.LEFT, body="Old side note"),
            ReviewComment(path="src/app.py", line=30, side=Side.RIGHT, body="Stale thread"),
        ]
    )
    with _with_host(fake_host):
        result = runner.invoke(cli, ["diff", *TARGET])

    assert result.exit_code == 0, result.output
    assert "Old side note" in result.output
    assert "Stale thread" in result.output
    assert "(outdated)" in result.output
