"""API client for a Tragarz server."""

from __future__ import annotations

import logging
import os
import random
import tempfile
import time
from contextlib import ExitStack
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from .exceptions import (
    TragarzAPIError,
    TragarzAuthenticationError,
    TragarzAuthExpiredError,
    TragarzConflictError,
    TragarzError,
    TragarzInvalidResponseError,
    TragarzIOError,
    TragarzNetworkError,
    TragarzNotFoundError,
    TragarzPermissionError,
    TragarzRateLimitError,
    TragarzTransferError,
)
from .sync.tree import TreeNode, parse_tree
from .utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY, normalize_url

if TYPE_CHECKING:
    from .sync.scanner import LocalFile

logger = logging.getLogger(__name__)


class TragarzClient:
    """Client for interacting with a Tragarz server."""

    def __init__(
        self,
        server_url: str,
        token: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
    ):
        """Initialize Tragarz API client.

        Args:
            server_url: Base URL of the server
            token: Session token (obtain one with ``authenticate``)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
        """
        self.server_url = normalize_url(server_url)
        self.token = token
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.server_url,
                headers={"User-Agent": "tragarz-client"},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    def _auth_headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> TragarzClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    @staticmethod
    def _error_message(response: httpx.Response) -> str | None:
        """Pull the server's error text out of a response body, if any."""
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            message = data.get("error") or data.get("message") or data.get("detail")
            if message:
                return str(message)
        return None

    def _map_status_error(self, e: httpx.HTTPStatusError) -> TragarzError:
        """Translate an HTTP error status into our exception hierarchy."""
        status_code = e.response.status_code
        message = self._error_message(e.response)
        detail = f": {message}" if message else ""

        if status_code == 401:
            if message and "expired" in message.lower():
                return TragarzAuthExpiredError(
                    "Session expired - authenticate again"
                )
            return TragarzAuthenticationError(f"Unauthorized{detail}")
        elif status_code == 403:
            return TragarzPermissionError(f"Access forbidden{detail}")
        elif status_code == 404:
            return TragarzNotFoundError(message or "Resource not found")
        elif status_code == 409:
            return TragarzConflictError(message or "Conflict")
        elif status_code == 429:
            return TragarzRateLimitError("Rate limit exceeded - please try again later")
        return TragarzAPIError(f"Server error ({status_code}){detail}")

    def _should_retry(self, error: Exception, attempt: int) -> bool:
        """Retry network errors, rate limits and 5xx while attempts remain."""
        if attempt >= self.max_retries:
            return False
        if isinstance(error, (TragarzNetworkError, TragarzRateLimitError)):
            return True
        cause = error.__cause__
        if isinstance(cause, httpx.HTTPStatusError):
            return 500 <= cause.response.status_code < 600
        return False

    def _send(self, method: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        """Send a request with retry logic and return the raw response.

        Raises:
            TragarzAPIError: If the request fails after all retries
        """
        client = self._get_client()
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        last_exception: TragarzError | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, endpoint, headers=headers, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                error = self._map_status_error(e)
                error.__cause__ = e
                last_exception = error
                if self._should_retry(error, attempt):
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after and retry_after.isdigit():
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        f"{method} {endpoint} failed ({e.response.status_code}), "
                        f"retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except httpx.RequestError as e:
                error = TragarzNetworkError(f"Connection failed: {e}")
                last_exception = error
                if self._should_retry(error, attempt):
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(f"{method} {endpoint} failed ({e}), retrying in {delay:.1f}s")
                    time.sleep(delay)
                    continue
                raise error from e

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise TragarzAPIError("Request failed after all retry attempts")

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request and decode the JSON body."""
        response = self._send(method, endpoint, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TragarzInvalidResponseError(
                "Invalid JSON response from server"
            ) from e

    @staticmethod
    def _file_endpoint(project_name: str, relative_path: str) -> str:
        return f"/projects/{project_name}/files/{quote(relative_path, safe='')}"

    # =========================
    # Authentication
    # =========================

    def authenticate(self, password: str) -> dict[str, Any]:
        """Exchange the server password for a session token.

        The token is kept on the client for later requests.
        """
        result: dict[str, Any] = self._request("POST", "/auth", json={"password": password})
        token = result.get("token")
        if not token:
            raise TragarzInvalidResponseError("Server did not return a token")
        self.token = token
        return result

    def test_connection(self) -> bool:
        """Check that the server is reachable and accepts our token."""
        try:
            self._request("GET", "/projects")
        except TragarzError as e:
            logger.debug(f"Connection test failed: {e}")
            return False
        return True

    # =========================
    # Projects
    # =========================

    def list_projects(self) -> list[dict[str, Any]]:
        result = self._request("GET", "/projects")
        return list(result.get("projects", []))

    def create_project(self, name: str, description: str = "") -> dict[str, Any]:
        result = self._request("POST", f"/projects/{name}", json={"description": description})
        return dict(result.get("project", {}))

    def get_project_info(self, name: str) -> dict[str, Any]:
        result = self._request("GET", f"/projects/{name}/info")
        return dict(result.get("project", {}))

    def get_project_files(self, name: str) -> tuple[TreeNode, ...]:
        """Fetch the project's file tree.

        Raises:
            TragarzInvalidPathError: If the listing contains an unsafe path
        """
        result = self._request("GET", f"/projects/{name}/files")
        return parse_tree(result.get("files", []))

    # =========================
    # File transfer
    # =========================

    def upload_files(
        self, project_name: str, files: list[LocalFile]
    ) -> dict[str, str | None]:
        """Upload a batch of files in one multipart request.

        Args:
            project_name: Target project
            files: Local files to send; their relative paths become the
                stored names

        Returns:
            Map of stored relative path to the hash the server computed
            (None if the server did not report one)

        Raises:
            TragarzIOError: If a file can no longer be read; nothing is sent
        """
        with ExitStack() as stack:
            parts = []
            for local_file in files:
                try:
                    handle = stack.enter_context(open(local_file.path, "rb"))
                except OSError as e:
                    raise TragarzIOError(
                        f"Cannot read {local_file.relative_path}: {e}"
                    ) from e
                parts.append(
                    ("files", (local_file.relative_path, handle, "application/octet-stream"))
                )
            result = self._request(
                "POST",
                f"/projects/{project_name}/files",
                files=parts,
                timeout=None,
            )

        stored: dict[str, str | None] = {}
        for item in result.get("uploaded", []):
            path = item.get("path")
            if path:
                stored[str(path).replace("\\", "/")] = item.get("hash")
        return stored

    def download_file(
        self, project_name: str, relative_path: str, output_path: Path
    ) -> Path:
        """Download a file, streaming it to ``output_path``.

        Content goes to a temporary file next to the destination that is
        renamed into place once complete, so an interrupted download never
        leaves a truncated file behind.

        Raises:
            TragarzTransferError: If the stream breaks or cannot be written
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        client = self._get_client()
        endpoint = self._file_endpoint(project_name, relative_path)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{output_path.name}.", suffix=".part", dir=output_path.parent
        )
        try:
            with os.fdopen(fd, "wb") as f:
                with client.stream(
                    "GET", endpoint, headers=self._auth_headers(), timeout=None
                ) as response:
                    try:
                        response.raise_for_status()
                    except httpx.HTTPStatusError as e:
                        response.read()
                        raise self._map_status_error(e) from e
                    for chunk in response.iter_bytes():
                        f.write(chunk)
            os.replace(tmp_name, output_path)
        except httpx.RequestError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise TragarzTransferError(f"Failed to download {relative_path}: {e}") from e
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise TragarzTransferError(f"Failed to write {output_path}: {e}") from e
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        return output_path

    def delete_file(self, project_name: str, relative_path: str) -> dict[str, Any]:
        result: dict[str, Any] = self._request(
            "DELETE", self._file_endpoint(project_name, relative_path)
        )
        return result

    # =========================
    # Snapshots
    # =========================

    def create_snapshot(self, project_name: str, description: str = "") -> dict[str, Any]:
        result = self._request(
            "POST", f"/projects/{project_name}/snapshot", json={"description": description}
        )
        return dict(result.get("snapshot", {}))

    def list_snapshots(self, project_name: str) -> list[dict[str, Any]]:
        result = self._request("GET", f"/projects/{project_name}/snapshots")
        return list(result.get("snapshots", []))

    def restore_snapshot(
        self, project_name: str, snapshot_id: str, backup: bool = True
    ) -> dict[str, Any]:
        """Restore a snapshot on the server.

        Returns:
            Dictionary with ``restored`` (snapshot metadata) and ``backupId``
        """
        result: dict[str, Any] = self._request(
            "POST",
            f"/projects/{project_name}/restore/{snapshot_id}",
            json={"backup": backup},
        )
        return result
