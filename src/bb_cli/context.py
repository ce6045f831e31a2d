"""
Per-invocation state shared by the bb command groups.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from bb_cli.api_client import BitbucketClient
from bb_cli.auth import BitbucketCredentials, resolve_credentials
from bb_cli.config import ConfigStore
from bb_cli.output import Output
from bb_cli.repository import resolve_repo_path


@dataclass
class CliContext:
    """
    Everything a command needs: the config store, the renderer, and a lazily
    created API client.

    Attributes:
        store: User config store.
        output: Renderer for command results.
        project: Value of --project, or None to use the git origin remote.
        client_factory: Builds an API client from credentials. Tests replace
            it with one backed by httpx.MockTransport.
    """

    store: ConfigStore
    output: Output
    project: str | None = None
    client_factory: Callable[[CliContext, BitbucketCredentials], BitbucketClient] | None = None
    _client: BitbucketClient | None = field(default=None, init=False, repr=False)

    @property
    def client(self) -> BitbucketClient:
        if self._client is None:
            self._client = self._build_client(resolve_credentials(self.store))
        return self._client

    def _build_client(self, credentials: BitbucketCredentials) -> BitbucketClient:
        factory = self.client_factory or default_client_factory
        return factory(self, credentials)

    def use_credentials(self, credentials: BitbucketCredentials) -> BitbucketClient:
        """
        Replace the API client with one authenticated by the given credentials.

        The BITBUCKET_EMAIL/BITBUCKET_API_TOKEN override does not apply.
        """
        self.reset_client()
        self._client = self._build_client(credentials)
        return self._client

    def reset_client(self) -> None:
        """Drop the API client so the next use picks up freshly saved credentials."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def repo_path(self) -> str:
        return resolve_repo_path(self.project)


def default_client_factory(
    context: CliContext, credentials: BitbucketCredentials
) -> BitbucketClient:
    return BitbucketClient(
        credentials=credentials,
        repo_path_resolver=context.repo_path,
    )


class CommandError(Exception):
    """
    Raised by a command to stop with a user-facing message and exit code 1.
    """
