"""
HTTP client for the Bitbucket Cloud REST API v2.

Authenticates with the credentials resolved from the config store (see
bb_cli.auth): HTTP Basic Auth for API tokens and app passwords, a Bearer
header for repository access tokens.

Handles authentication, repository scoping, pagination, and error
translation for the endpoints the bb commands use.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel

from bb_cli.auth import BitbucketCredentials
from bb_cli.models import PaginatedResponse

logger = logging.getLogger(__name__)

BITBUCKET_API_BASE_URL = "https://api.bitbucket.org/2.0"
REQUEST_TIMEOUT_SECONDS = 30.0

ModelT = TypeVar("ModelT", bound=BaseModel)


class BitbucketApiError(Exception):
    """
    Raised when the Bitbucket API returns a non-2xx response.

    Includes the HTTP status code and response body for debugging. When the
    body carries a Bitbucket error object, its message is used instead of
    the raw body.
    """

    def __init__(self, status_code: int, response_body: str, message: str | None = None) -> None:
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(
            f"Bitbucket API error (HTTP {status_code}): {message or response_body}"
        )


def _error_message(response: httpx.Response) -> str | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("error"), dict):
        return None

    error = payload["error"]
    parts = [part for part in (error.get("message"), error.get("detail")) if part]
    return " - ".join(str(part) for part in parts) or None


class BitbucketClient:
    """
    Thin wrapper over httpx.Client for the Bitbucket Cloud API.

    Args:
        credentials: Resolved credentials used for every request.
        repo_path_resolver: Called lazily, at most once, to get the
            "owner/repo" prefix for repository-scoped requests.
        transport: Optional httpx transport (tests pass an
            httpx.MockTransport).
    """

    def __init__(
        self,
        credentials: BitbucketCredentials,
        repo_path_resolver: Callable[[], str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._repo_path_resolver = repo_path_resolver
        self._repo_path: str | None = None
        self._http_client = httpx.Client(
            base_url=BITBUCKET_API_BASE_URL,
            auth=credentials.http_auth(),
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    def __enter__(self) -> BitbucketClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http_client.close()

    @property
    def repo_path(self) -> str:
        if self._repo_path is None:
            if self._repo_path_resolver is None:
                raise ValueError("This client was created without a repository.")
            self._repo_path = self._repo_path_resolver()
        return self._repo_path

    def _build_url(self, path: str, repo_scoped: bool) -> str:
        if path.startswith("https://"):
            return path
        if repo_scoped:
            return f"/repositories/{self.repo_path}{path}"
        return path

    def request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        repo_scoped: bool = True,
        params: dict[str, str] | None = None,
    ) -> Any:
        """
        Send one API request.

        Args:
            method: HTTP method.
            path: Path relative to the repository ("/pullrequests") when
                repo_scoped, relative to the API root ("/user") otherwise,
                or an absolute URL (pagination links).
            payload: JSON body for POST/PUT requests.
            repo_scoped: Whether to prefix path with /repositories/owner/repo.
            params: Query string parameters.

        Returns:
            The decoded JSON body, {} for an empty body, or the raw text
            for non-JSON bodies (e.g. diffs).

        Raises:
            BitbucketApiError: If the API returns a non-2xx HTTP status code.
            httpx.RequestError: If a network-level error occurs (connection
                refused, DNS failure, timeout, etc.).
        """
        url = self._build_url(path, repo_scoped)
        logger.debug("%s %s", method, url)

        response = self._http_client.request(method, url, json=payload, params=params)

        if not response.is_success:
            raise BitbucketApiError(
                status_code=response.status_code,
                response_body=response.text,
                message=_error_message(response),
            )

        if not response.content:
            return {}
        if "json" not in response.headers.get("content-type", ""):
            return response.text
        return response.json()

    def get_model(
        self,
        model: type[ModelT],
        path: str,
        repo_scoped: bool = True,
    ) -> ModelT:
        return model.model_validate(self.request("GET", path, repo_scoped=repo_scoped))

    def fetch_all(
        self,
        model: type[ModelT],
        path: str,
        params: dict[str, str] | None = None,
        repo_scoped: bool = True,
    ) -> list[ModelT]:
        """
        Fetch every item of a paginated list endpoint.

        Iterates through all pages by following the 'next' URL in each
        paginated response until no more pages remain.

        Args:
            model: Model each item of 'values' is validated against.
            path: List endpoint path.
            params: Query parameters for the first request. Later pages use
                the 'next' URL from the API, which already carries them.
            repo_scoped: See request().

        Returns:
            Complete list of items across all pages.
        """
        items: list[ModelT] = []

        # next_url is either the initial path (first request) or the 'next'
        # link from the previous paginated response. None means no more pages.
        next_url: str | None = path
        page_params = params

        while next_url is not None:
            page = PaginatedResponse[model].model_validate(  # type: ignore[valid-type]
                self.request("GET", next_url, repo_scoped=repo_scoped, params=page_params)
            )
            items.extend(page.values)
            next_url = page.next
            page_params = None

        return items
