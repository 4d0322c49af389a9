"""GitHub integration for pull-request reviews and conflict resolution.

This module provides the GitHubClient class, which implements every
collaborator protocol in ``integrations.base`` for a single repository over
the GitHub REST API.
"""

import base64
import logging
import os
import time
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..core.exceptions import ContentFetchFailure, StaleShaConflict, TransportError
from ..core.models import (
    ContentDescriptor,
    FileDiffEntry,
    FileStatus,
    MergeStatus,
    PendingComment,
    RateLimit,
    ReviewComment,
    ReviewEvent,
)

logger = logging.getLogger(__name__)

# GitHub answers a contents write with an outdated sha with 409, or with a
# 422 whose message names the sha
_STALE_SHA_STATUS = 409


class GitHubClient:
    """Talks to the GitHub REST API on behalf of one repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        _timeout: int = 30,
        retries: int = 0,
    ) -> None:
        """Initialize the client with an optional GitHub token and API base URL.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            token: Personal access token to authenticate GitHub API requests.
                If None, the value is read from the GITHUB_TOKEN environment variable.
            base_url: Base URL for the GitHub API endpoints (defaults to "https://api.github.com").
            _timeout: Request timeout in seconds (defaults to 30).
            retries: Automatic retries of GET requests that fail with 429 or a
                5xx status. Defaults to 0, so failures reach the caller at once.
        """
        self.owner = owner
        self.repo = repo
        self.token = token or os.getenv("GITHUB_TOKEN")
        self.base_url = base_url.rstrip("/")
        self._timeout = _timeout
        self.rate_limit = RateLimit()
        self.session = requests.Session()

        # Retry idempotent reads only; writes must fail loudly
        retry_strategy = Retry(
            total=retries,
            status_forcelist=[429, 500, 502, 503, 504],
            backoff_factor=1,
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "pr-review-resolver/0.1.0",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self.session.headers.update(headers)

    @property
    def repo_url(self) -> str:
        """API URL of the repository."""
        return f"{self.base_url}/repos/{self.owner}/{self.repo}"

    # ------------------------------------------------------------- transport

    def _check_rate_limit(self) -> None:
        if self.rate_limit.is_exhausted(time.time()):
            reset_at = datetime.fromtimestamp(self.rate_limit.reset, tz=timezone.utc)
            raise TransportError(f"Rate limited. Resets at {reset_at.isoformat()}")

    def _update_rate_limit(self, headers: Mapping[str, str]) -> None:
        for field_name in ("limit", "remaining", "reset", "used"):
            value = headers.get(f"x-ratelimit-{field_name}")
            if value is not None:
                try:
                    setattr(self.rate_limit, field_name, int(value))
                except ValueError:
                    logger.debug(f"Ignoring malformed x-ratelimit-{field_name} header: {value!r}")

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> requests.Response:
        """Send one request, tracking rate limits and mapping transport failures.

        Raises:
            TransportError: If rate limited, or the request could not be completed.
        """
        self._check_rate_limit()
        try:
            response = self.session.request(
                method, url, params=params, json=json, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e
        self._update_rate_limit(response.headers)
        return response

    def _check(self, response: requests.Response, context: str) -> None:
        """Raise TransportError for an unsuccessful response."""
        status = response.status_code
        if status < 400:
            return
        if status in (403, 429) and self.rate_limit.remaining <= 0:
            reset_at = datetime.fromtimestamp(self.rate_limit.reset, tz=timezone.utc)
            raise TransportError(
                f"Rate limited. Resets at {reset_at.isoformat()}", status_code=status
            )
        raise TransportError(
            f"{context} failed with HTTP {status}: {_error_message(response)}",
            status_code=status,
        )

    def _get_json(self, url: str, context: str, params: dict[str, Any] | None = None) -> Any:
        response = self._send("GET", url, params=params)
        self._check(response, context)
        return response.json()

    def _get_all_pages(
        self, url: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Fetch all pages from a paginated GitHub API endpoint.

        Args:
            url: The API endpoint URL to fetch from.
            params: Optional query parameters to include in the request.

        Returns:
            list[dict[str, Any]]: Combined results from all pages.

        Raises:
            TransportError: When any API request fails.
        """
        all_results: list[dict[str, Any]] = []
        current_url: str | None = url
        params = dict(params or {})

        # Set per_page to maximum allowed by GitHub API
        params.setdefault("per_page", 100)

        while current_url:
            logger.debug(f"Fetching page: {current_url}")
            response = self._send("GET", current_url, params=params)
            self._check(response, f"GET {current_url}")

            data = response.json()
            if isinstance(data, list):
                all_results.extend(data)
            elif isinstance(data, dict):
                all_results.append(data)

            current_url = _next_link(response.headers.get("Link", ""))
            # Clear params for subsequent requests since they're in the URL
            params = {}

        logger.debug(f"Fetched {len(all_results)} total items from {url}")
        return all_results

    # ----------------------------------------------------------------- reads

    def get_pull_request(self, pr_number: int) -> dict[str, Any]:
        """Fetch metadata for a pull request.

        Returns:
            dict[str, Any]: Pull request metadata as returned by the GitHub API.

        Raises:
            TransportError: When the API request fails.
        """
        data = self._get_json(f"{self.repo_url}/pulls/{pr_number}", f"Fetching PR #{pr_number}")
        if not isinstance(data, dict):
            raise TransportError(f"Expected dict response from GitHub API, got {type(data)}")
        return data

    def get_merge_status(self, target_id: int) -> MergeStatus:
        """Return mergeability and ahead/behind counts for a pull request.

        The counts come from a base...head comparison. A failed comparison is
        tolerated and reported as zero commits ahead and behind.
        """
        pr = self.get_pull_request(target_id)
        base_ref = (pr.get("base") or {}).get("ref")
        head = pr.get("head") or {}
        head_ref = head.get("ref")

        ahead_by = behind_by = 0
        if base_ref and head_ref:
            try:
                comparison = self._compare_raw(base_ref, head_ref)
                ahead_by = int(comparison.get("ahead_by") or 0)
                behind_by = int(comparison.get("behind_by") or 0)
            except TransportError as e:
                logger.warning(f"Could not compare {base_ref}...{head_ref}: {e}")

        return MergeStatus(
            ahead_by=ahead_by,
            behind_by=behind_by,
            mergeable=pr.get("mergeable"),
            mergeable_state=pr.get("mergeable_state") or "unknown",
            base_ref=base_ref,
            head_ref=head_ref,
            head_sha=head.get("sha"),
        )

    def _compare_raw(self, base_ref: str, head_ref: str) -> dict[str, Any]:
        url = f"{self.repo_url}/compare/{quote(base_ref, safe='')}...{quote(head_ref, safe='')}"
        data = self._get_json(url, f"Comparing {base_ref}...{head_ref}")
        return data if isinstance(data, dict) else {}

    def compare(self, base_ref: str, head_ref: str) -> list[FileDiffEntry]:
        """Return the files changed between two refs."""
        comparison = self._compare_raw(base_ref, head_ref)
        return [_file_entry(f) for f in comparison.get("files") or []]

    def list_pr_files(self, pr_number: int) -> list[FileDiffEntry]:
        """Return the files changed by a pull request, with their patches."""
        return [_file_entry(f) for f in self._get_all_pages(f"{self.repo_url}/pulls/{pr_number}/files")]

    def list_review_comments(self, pr_number: int) -> list[ReviewComment]:
        """Return the existing inline review comments of a pull request."""
        payloads = self._get_all_pages(f"{self.repo_url}/pulls/{pr_number}/comments")
        return [ReviewComment.from_api(p) for p in payloads]

    def read_file(self, path: str, ref: str) -> ContentDescriptor:
        """Return a file's decoded text and blob sha at ``ref``.

        Files over 1 MB are not inlined by the contents endpoint; their text
        is read from the git blob named by the returned sha instead.

        Raises:
            ContentFetchFailure: If the path is missing at ``ref``, is not a
                file, or the response does not carry decodable text.
            TransportError: For other API failures.
        """
        url = f"{self.repo_url}/contents/{quote(path)}"
        response = self._send("GET", url, params={"ref": ref})
        if response.status_code == 404:
            raise ContentFetchFailure(
                f"{path} not found at {ref}", path=path, ref=ref, status_code=404
            )
        self._check(response, f"Reading {path} at {ref}")

        data = _json_body(response, path, ref)
        if not isinstance(data, dict) or data.get("type") != "file":
            raise ContentFetchFailure(f"{path} is not a file at {ref}", path=path, ref=ref)
        sha = data.get("sha")
        if not sha:
            raise ContentFetchFailure(f"No blob sha for {path} at {ref}", path=path, ref=ref)

        if data.get("encoding") != "base64":
            logger.debug(f"{path} at {ref} is not inlined ({data.get('size')} bytes); reading its blob")
            data = self._read_blob(sha, path, ref)
        return ContentDescriptor(path=path, version_token=sha, content=_decode(data, path, ref))

    def _read_blob(self, sha: str, path: str, ref: str) -> dict[str, Any]:
        response = self._send("GET", f"{self.repo_url}/git/blobs/{sha}")
        if response.status_code == 404:
            raise ContentFetchFailure(
                f"Blob {sha} of {path} not found", path=path, ref=ref, status_code=404
            )
        self._check(response, f"Reading blob of {path} at {ref}")
        data = _json_body(response, path, ref)
        if not isinstance(data, dict) or data.get("encoding") != "base64":
            raise ContentFetchFailure(
                f"Blob of {path} at {ref} has no base64 content", path=path, ref=ref
            )
        return data

    # ---------------------------------------------------------------- writes

    def write_file(
        self,
        path: str,
        branch: str,
        content: str,
        expected_token: str,
        message: str,
    ) -> str:
        """Commit ``content`` to ``branch``, guarded by the blob sha ``expected_token``.

        Returns:
            str: Sha of the created commit.

        Raises:
            StaleShaConflict: If the file changed since ``expected_token`` was read.
            TransportError: For other API failures.
        """
        url = f"{self.repo_url}/contents/{quote(path)}"
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "sha": expected_token,
            "branch": branch,
        }
        response = self._send("PUT", url, json=payload)
        if response.status_code == _STALE_SHA_STATUS or (
            response.status_code == 422 and "sha" in _error_message(response).lower()
        ):
            raise StaleShaConflict(
                f"{path} changed on {branch} since it was read: {_error_message(response)}",
                path=path,
                expected_token=expected_token,
                status_code=response.status_code,
            )
        self._check(response, f"Writing {path} to {branch}")
        commit = response.json().get("commit") or {}
        return commit.get("sha") or ""

    def submit_review(
        self,
        target_id: int,
        event: ReviewEvent,
        body: str | None,
        comments: Sequence[PendingComment],
    ) -> dict[str, Any]:
        """Create a review with a verdict, optional summary and inline comments."""
        payload: dict[str, Any] = {
            "event": ReviewEvent(event).value,
            "comments": [c.to_api() for c in comments],
        }
        if body:
            payload["body"] = body
        response = self._send("POST", f"{self.repo_url}/pulls/{target_id}/reviews", json=payload)
        self._check(response, f"Submitting review for PR #{target_id}")
        return response.json()

    def update_branch(self, target_id: int, expected_head_sha: str | None = None) -> dict[str, Any]:
        """Merge the base branch into the pull request's head branch."""
        payload = {"expected_head_sha": expected_head_sha} if expected_head_sha else {}
        response = self._send(
            "PUT", f"{self.repo_url}/pulls/{target_id}/update-branch", json=payload
        )
        self._check(response, f"Updating branch of PR #{target_id}")
        return response.json()


def _next_link(link_header: str) -> str | None:
    """Return the rel="next" URL of a Link header, if any."""
    for link in link_header.split(","):
        link = link.strip()
        if 'rel="next"' in link:
            # Extract URL from <url>; rel="next"
            start = link.find("<") + 1
            end = link.find(">")
            if start > 0 and end > start:
                return link[start:end]
    return None


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.reason or ""
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason or ""


def _json_body(response: requests.Response, path: str, ref: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ContentFetchFailure(
            f"Unreadable response for {path} at {ref}", path=path, ref=ref
        ) from e


def _decode(data: Mapping[str, Any], path: str, ref: str) -> str:
    """Decode the base64 ``content`` of a contents or blob payload as UTF-8."""
    encoded = data.get("content") or ""
    size = data.get("size")
    if not encoded and size:
        raise ContentFetchFailure(
            f"{path} at {ref} has {size} bytes but no content", path=path, ref=ref
        )
    try:
        return base64.b64decode(encoded).decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise ContentFetchFailure(f"{path} at {ref} is not UTF-8 text", path=path, ref=ref) from e


def _file_entry(payload: Mapping[str, Any]) -> FileDiffEntry:
    raw_status = payload.get("status") or "modified"
    try:
        status = FileStatus(raw_status)
    except ValueError:
        logger.debug(f"Unknown file status {raw_status!r}; treating as changed")
        status = FileStatus.CHANGED
    return FileDiffEntry(
        path=payload["filename"],
        status=status,
        additions=int(payload.get("additions") or 0),
        deletions=int(payload.get("deletions") or 0),
        patch=payload.get("patch"),
        previous_path=payload.get("previous_filename"),
        version_token=payload.get("sha"),
    )
