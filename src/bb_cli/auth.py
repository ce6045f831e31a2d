"""
Credential resolution for Bitbucket Cloud API authentication.

Three credential kinds are supported, matching what "bb auth" can store:

    api_token          Atlassian account email + API token, HTTP Basic Auth.
    app_password       Bitbucket username + app password, HTTP Basic Auth
                       (deprecated by Atlassian, still accepted).
    repo_access_token  Repository access token, sent as a Bearer token.

See: https://support.atlassian.com/bitbucket-cloud/docs/api-tokens/

Resolves credentials using a priority chain: environment variables take
precedence over the stored config. Raises CredentialError with actionable
messages when credentials cannot be resolved.
"""

from __future__ import annotations

import enum
import os
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

import httpx

from bb_cli.config import SECRET_FIELDS, ConfigStore

BITBUCKET_EMAIL_ENV_VAR = "BITBUCKET_EMAIL"
BITBUCKET_API_TOKEN_ENV_VAR = "BITBUCKET_API_TOKEN"

MASKED_SECRET = "*" * 8


class CredentialError(Exception):
    """
    Raised when Bitbucket credentials cannot be resolved.

    The message includes actionable instructions for the user to provide
    credentials via "bb auth" or environment variables.
    """


class AuthType(str, enum.Enum):
    """
    Kinds of credentials stored under the "auth" config section.

    Using str mixin so the enum serializes cleanly to/from JSON strings.
    """

    API_TOKEN = "api_token"
    APP_PASSWORD = "app_password"
    REPO_ACCESS_TOKEN = "repo_access_token"


class BearerAuth(httpx.Auth):
    """httpx auth flow that sends a static Bearer token."""

    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


@dataclass(frozen=True)
class BitbucketCredentials:
    """
    Immutable container for resolved Bitbucket credentials.

    For Basic Auth kinds, username is the email (API token) or the
    Bitbucket username (app password). Repo access tokens have no username.
    """

    auth_type: AuthType
    secret: str
    username: str = ""

    def http_auth(self) -> httpx.Auth:
        """
        Build the httpx auth object for these credentials.

        Returns:
            BearerAuth for repo access tokens, httpx.BasicAuth otherwise.
        """
        if self.auth_type is AuthType.REPO_ACCESS_TOKEN:
            return BearerAuth(self.secret)
        return httpx.BasicAuth(username=self.username, password=self.secret)


def credentials_from_auth_section(auth: dict[str, Any]) -> BitbucketCredentials:
    """
    Build credentials from a decrypted "auth" config section.

    Args:
        auth: The section as returned by ConfigStore.read("auth").

    Returns:
        BitbucketCredentials for the stored auth type.

    Raises:
        CredentialError: If the type is unknown or a required field is empty.
    """
    try:
        auth_type = AuthType(auth.get("type") or AuthType.APP_PASSWORD.value)
    except ValueError as unknown_type_error:
        raise CredentialError(
            f"Unknown auth type '{auth.get('type')}' in config. Run 'bb auth' to reconfigure."
        ) from unknown_type_error

    if auth_type is AuthType.API_TOKEN:
        username, secret = auth.get("email") or "", auth.get("apiToken") or ""
    elif auth_type is AuthType.REPO_ACCESS_TOKEN:
        username, secret = "", auth.get("repoToken") or ""
    else:
        username, secret = auth.get("username") or "", auth.get("appPassword") or ""

    if not secret or (auth_type is not AuthType.REPO_ACCESS_TOKEN and not username):
        raise CredentialError("Incomplete credentials. Run 'bb auth token' to reconfigure.")

    return BitbucketCredentials(auth_type=auth_type, secret=secret, username=username)


def resolve_credentials(store: ConfigStore) -> BitbucketCredentials:
    """
    Resolve Bitbucket credentials from the environment or the config store.

    Priority order:
        1. Environment variables (BITBUCKET_EMAIL, BITBUCKET_API_TOKEN),
           used only when both are set.
        2. The "auth" section of the config store.

    Args:
        store: Config store to fall back to.

    Returns:
        BitbucketCredentials for the first source that provides them.

    Raises:
        CredentialError: If no source provides usable credentials.
        CorruptSecretError: If the stored secret cannot be decrypted.
    """
    env_email = os.environ.get(BITBUCKET_EMAIL_ENV_VAR)
    env_api_token = os.environ.get(BITBUCKET_API_TOKEN_ENV_VAR)
    if env_email and env_api_token:
        return BitbucketCredentials(
            auth_type=AuthType.API_TOKEN, secret=env_api_token, username=env_email
        )

    auth = store.read("auth")
    if not isinstance(auth, dict) or not auth:
        raise CredentialError(
            "Not authenticated. Run 'bb auth token' first, or set "
            f"{BITBUCKET_EMAIL_ENV_VAR} and {BITBUCKET_API_TOKEN_ENV_VAR}."
        )

    return credentials_from_auth_section(auth)


def mask_auth_section(auth: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the auth section with every secret field masked."""
    return {
        field_name: MASKED_SECRET if field_name in SECRET_FIELDS["auth"] else value
        for field_name, value in auth.items()
    }
