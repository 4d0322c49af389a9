"""Tests for the GitHub REST client."""

import base64
import io
import time
from typing import Any
from unittest.mock import Mock, patch

import pytest
from requests import RequestException

from pr_review_resolver.core.exceptions import (
    ContentFetchFailure,
    StaleShaConflict,
    TransportError,
)
from pr_review_resolver.core.models import (
    FileStatus,
    PendingComment,
    ReviewEvent,
    Side,
)
from pr_review_resolver.integrations.github import GitHubClient

API = "https://api.github.com/repos/owner/repo"


def _response(status: int = 200, payload: Any = None, headers: dict[str, str] | None = None) -> Mock:
    response = Mock()
    response.status_code = status
    response.headers = headers or {}
    response.reason = "Error" if status >= 400 else "OK"
    response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def client() -> GitHubClient:
    """Provide a client for owner/repo with a dummy token."""
    return GitHubClient("owner", "repo", token="test-token")  # noqa: S106


class TestSessionSetup:
    """Tests for session configuration."""

    def test_headers(self, client: GitHubClient) -> None:
        assert client.session.headers["Authorization"] == "Bearer test-token"
        assert client.session.headers["X-GitHub-Api-Version"] == "2022-11-28"
        assert client.session.headers["Accept"] == "application/vnd.github+json"

    def test_token_from_environment(self) -> None:
        with patch.dict("os.environ", {"GITHUB_TOKEN": "env-token"}):
            assert GitHubClient("owner", "repo").token == "env-token"

    def test_writes_are_never_retried(self, client: GitHubClient) -> None:
        retries = client.session.get_adapter("https://api.github.com").max_retries
        assert list(retries.allowed_methods) == ["GET"]
        assert retries.total == 0

    def test_read_retries_are_opt_in(self) -> None:
        client = GitHubClient("owner", "repo", token="t", retries=2)  # noqa: S106
        retries = client.session.get_adapter("https://api.github.com").max_retries
        assert retries.total == 2
        assert list(retries.allowed_methods) == ["GET"]


class TestReads:
    """Tests for read operations."""

    def test_get_merge_status_combines_pr_and_compare(self, client: GitHubClient) -> None:
        pr = {
            "mergeable": False,
            "mergeable_state": "dirty",
            "base": {"ref": "main"},
            "head": {"ref": "feature", "sha": "abc"},
        }
        with patch.object(client.session, "request") as mock_request:
            mock_request.side_effect = [
                _response(payload=pr),
                _response(payload={"ahead_by": 2, "behind_by": 5, "files": []}),
            ]
            status = client.get_merge_status(7)

        assert status.has_conflicts
        assert (status.ahead_by, status.behind_by) == (2, 5)
        assert (status.base_ref, status.head_ref, status.head_sha) == ("main", "feature", "abc")
        assert mock_request.call_args_list[1].args == ("GET", f"{API}/compare/main...feature")

    def test_get_merge_status_tolerates_compare_failure(self, client: GitHubClient) -> None:
        pr = {"mergeable": True, "mergeable_state": "clean", "base": {"ref": "main"}, "head": {"ref": "f"}}
        with patch.object(client.session, "request") as mock_request:
            mock_request.side_effect = [_response(payload=pr), _response(status=404)]
            status = client.get_merge_status(7)

        assert (status.ahead_by, status.behind_by) == (0, 0)
        assert status.mergeable is True

    def test_compare_maps_files(self, client: GitHubClient) -> None:
        files = [
            {"filename": "a.py", "status": "modified", "additions": 1, "deletions": 2, "patch": "@@"},
            {"filename": "b.py", "status": "renamed", "previous_filename": "old.py"},
            {"filename": "c.py", "status": "mystery"},
        ]
        with patch.object(client.session, "request", return_value=_response(payload={"files": files})):
            entries = client.compare("main", "feature")

        assert [(e.path, e.status) for e in entries] == [
            ("a.py", FileStatus.MODIFIED),
            ("b.py", FileStatus.RENAMED),
            ("c.py", FileStatus.CHANGED),
        ]
        assert entries[0].patch == "@@"
        assert entries[1].previous_path == "old.py"

    def test_review_comments_follow_pagination(self, client: GitHubClient) -> None:
        first = _response(
            payload=[{"id": 1, "path": "a.py", "line": 1, "side": "RIGHT", "body": "x"}],
            headers={"Link": f'<{API}/pulls/7/comments?page=2>; rel="next"'},
        )
        second = _response(payload=[{"id": 2, "path": "a.py", "position": 3, "body": "y"}])
        with patch.object(client.session, "request", side_effect=[first, second]) as mock_request:
            comments = client.list_review_comments(7)

        assert [(c.id, c.line, c.side) for c in comments] == [(1, 1, Side.RIGHT), (2, 3, Side.RIGHT)]
        assert mock_request.call_args_list[1].args[1] == f"{API}/pulls/7/comments?page=2"
        assert mock_request.call_args_list[1].kwargs["params"] == {}

    def test_read_file_decodes_content(self, client: GitHubClient) -> None:
        encoded = base64.encodebytes("héllo\n".encode()).decode()
        payload = {"type": "file", "sha": "blob1", "encoding": "base64", "content": encoded}
        with patch.object(client.session, "request", return_value=_response(payload=payload)) as mock_request:
            descriptor = client.read_file("docs/a b.md", "feature")

        assert descriptor.content == "héllo\n"
        assert descriptor.version_token == "blob1"
        assert mock_request.call_args.args[1] == f"{API}/contents/docs/a%20b.md"
        assert mock_request.call_args.kwargs["params"] == {"ref": "feature"}

    def test_read_missing_file(self, client: GitHubClient) -> None:
        with patch.object(client.session, "request", return_value=_response(status=404)):
            with pytest.raises(ContentFetchFailure) as exc_info:
                client.read_file("a.txt", "main")

        assert exc_info.value.ref == "main"
        assert exc_info.value.status_code == 404

    def test_read_directory_is_rejected(self, client: GitHubClient) -> None:
        with patch.object(client.session, "request", return_value=_response(payload=[{"name": "x"}])):
            with pytest.raises(ContentFetchFailure, match="not a file"):
                client.read_file("src", "main")

    def test_large_file_is_read_from_its_blob(self, client: GitHubClient) -> None:
        """Files the contents endpoint does not inline are fetched through the blob API."""
        contents = {"type": "file", "sha": "big1", "encoding": "none", "content": "", "size": 2_000_000}
        blob = {"sha": "big1", "encoding": "base64", "content": base64.b64encode(b"x" * 10).decode()}
        with patch.object(
            client.session, "request", side_effect=[_response(payload=contents), _response(payload=blob)]
        ) as mock_request:
            descriptor = client.read_file("data.csv", "feature")

        assert descriptor.content == "x" * 10
        assert descriptor.version_token == "big1"
        assert mock_request.call_args_list[1].args == ("GET", f"{API}/git/blobs/big1")

    def test_large_file_without_readable_blob_fails(self, client: GitHubClient) -> None:
        contents = {"type": "file", "sha": "big1", "encoding": "none", "content": "", "size": 2_000_000}
        with patch.object(
            client.session, "request", side_effect=[_response(payload=contents), _response(status=404)]
        ):
            with pytest.raises(ContentFetchFailure, match="not found"):
                client.read_file("data.csv", "feature")

    def test_empty_content_with_size_is_rejected(self, client: GitHubClient) -> None:
        payload = {"type": "file", "sha": "b", "encoding": "base64", "content": "", "size": 12}
        with patch.object(client.session, "request", return_value=_response(payload=payload)):
            with pytest.raises(ContentFetchFailure, match="no content"):
                client.read_file("a.txt", "main")

    def test_empty_file_reads_as_empty_text(self, client: GitHubClient) -> None:
        payload = {"type": "file", "sha": "e69de29", "encoding": "base64", "content": "", "size": 0}
        with patch.object(client.session, "request", return_value=_response(payload=payload)):
            assert client.read_file("empty.txt", "main").content == ""

    def test_non_json_body_is_a_fetch_failure(self, client: GitHubClient) -> None:
        response = _response()
        response.json.side_effect = ValueError("Expecting value")
        with patch.object(client.session, "request", return_value=response):
            with pytest.raises(ContentFetchFailure, match="Unreadable response"):
                client.read_file("a.txt", "main")

    def test_missing_sha_is_a_fetch_failure(self, client: GitHubClient) -> None:
        payload = {"type": "file", "encoding": "base64", "content": ""}
        with patch.object(client.session, "request", return_value=_response(payload=payload)):
            with pytest.raises(ContentFetchFailure, match="No blob sha"):
                client.read_file("a.txt", "main")


class TestWrites:
    """Tests for write operations."""

    def test_write_file_encodes_and_guards(self, client: GitHubClient) -> None:
        with patch.object(
            client.session, "request", return_value=_response(payload={"commit": {"sha": "c1"}})
        ) as mock_request:
            sha = client.write_file("a.txt", "feature", "z\n", "blob1", "Resolve merge conflict in a.txt")

        assert sha == "c1"
        method, url = mock_request.call_args.args
        assert (method, url) == ("PUT", f"{API}/contents/a.txt")
        body = mock_request.call_args.kwargs["json"]
        assert body == {
            "message": "Resolve merge conflict in a.txt",
            "content": base64.b64encode(b"z\n").decode(),
            "sha": "blob1",
            "branch": "feature",
        }

    @pytest.mark.parametrize(
        ("status", "message"), [(409, "a.txt does not match blob1"), (422, "sha wasn't supplied.")]
    )
    def test_stale_sha(self, client: GitHubClient, status: int, message: str) -> None:
        response = _response(status=status, payload={"message": message})
        with patch.object(client.session, "request", return_value=response):
            with pytest.raises(StaleShaConflict) as exc_info:
                client.write_file("a.txt", "feature", "z", "blob1", "msg")

        assert exc_info.value.expected_token == "blob1"
        assert exc_info.value.status_code == status

    def test_other_validation_errors_are_not_stale(self, client: GitHubClient) -> None:
        """A 422 that does not concern the sha is a plain transport error."""
        response = _response(status=422, payload={"message": "Branch does not exist"})
        with patch.object(client.session, "request", return_value=response):
            with pytest.raises(TransportError, match="Branch does not exist") as exc_info:
                client.write_file("a.txt", "gone", "z", "blob1", "msg")

        assert not isinstance(exc_info.value, StaleShaConflict)
        assert exc_info.value.status_code == 422

    def test_submit_review_payload(self, client: GitHubClient) -> None:
        comments = [PendingComment(local_id="l1", path="a.py", line=3, side=Side.LEFT, body="why?")]
        with patch.object(client.session, "request", return_value=_response(payload={"id": 99})) as mock_request:
            review = client.submit_review(7, ReviewEvent.REQUEST_CHANGES, None, comments)

        assert review == {"id": 99}
        assert mock_request.call_args.args == ("POST", f"{API}/pulls/7/reviews")
        assert mock_request.call_args.kwargs["json"] == {
            "event": "REQUEST_CHANGES",
            "comments": [{"path": "a.py", "line": 3, "side": "LEFT", "body": "why?"}],
        }

    def test_update_branch_sends_expected_sha(self, client: GitHubClient) -> None:
        with patch.object(client.session, "request", return_value=_response(status=202)) as mock_request:
            client.update_branch(7, "abc")

        assert mock_request.call_args.args == ("PUT", f"{API}/pulls/7/update-branch")
        assert mock_request.call_args.kwargs["json"] == {"expected_head_sha": "abc"}

    def test_http_error_maps_to_transport_error(self, client: GitHubClient) -> None:
        with patch.object(
            client.session, "request", return_value=_response(status=422, payload={"message": "Validation Failed"})
        ):
            with pytest.raises(TransportError, match="Validation Failed") as exc_info:
                client.submit_review(7, ReviewEvent.COMMENT, "body", [])

        assert exc_info.value.status_code == 422


class TestTransport:
    """Tests for transport failures and rate limiting."""

    def test_request_exception_is_wrapped(self, client: GitHubClient) -> None:
        with patch.object(client.session, "request", side_effect=RequestException("connection reset")):
            with pytest.raises(TransportError, match="connection reset"):
                client.get_pull_request(7)

    def test_token_not_exposed_in_logs(self, client: GitHubClient, github_logger_capture: io.StringIO) -> None:
        with patch.object(client.session, "request", return_value=_response(payload=[])):
            client.list_pr_files(7)

        assert "test-token" not in github_logger_capture.getvalue()

    def test_rate_limit_headers_tracked(self, client: GitHubClient) -> None:
        headers = {
            "x-ratelimit-limit": "5000",
            "x-ratelimit-remaining": "42",
            "x-ratelimit-reset": "1700000000",
            "x-ratelimit-used": "4958",
        }
        with patch.object(client.session, "request", return_value=_response(payload={}, headers=headers)):
            client.get_pull_request(7)

        assert client.rate_limit.remaining == 42
        assert client.rate_limit.reset == 1700000000

    def test_exhausted_rate_limit_blocks_requests(self, client: GitHubClient) -> None:
        client.rate_limit.remaining = 0
        client.rate_limit.reset = int(time.time()) + 600
        with patch.object(client.session, "request") as mock_request:
            with pytest.raises(TransportError, match="Rate limited"):
                client.get_pull_request(7)

        mock_request.assert_not_called()

    def test_rate_limited_response(self, client: GitHubClient) -> None:
        headers = {"x-ratelimit-remaining": "0", "x-ratelimit-reset": str(int(time.time()) + 60)}
        with patch.object(client.session, "request", return_value=_response(status=403, headers=headers)):
            with pytest.raises(TransportError, match="Rate limited") as exc_info:
                client.get_pull_request(7)

        assert exc_info.value.status_code == 403
