"""
Git credential helper backed by the bb-cli config store.

Git runs the helper with one operation argument (get, store or erase) and
writes "key=value" lines on stdin, terminated by a blank line or EOF. For
"get", the helper answers with "username=..." and "password=..." lines, or
with no output at all to signal that it has nothing for this request.

Only credentials the user configured through "bb auth" are served; the
helper never persists credentials learned from git.

See: https://git-scm.com/docs/gitcredentials#_custom_helpers
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Any, TextIO

from bb_cli.config import ConfigIOError, ConfigStore
from bb_cli.crypto import CorruptSecretError

logger = logging.getLogger(__name__)

BITBUCKET_HOST = "bitbucket.org"

REPO_ACCESS_TOKEN_USERNAME = "x-token-auth"
API_TOKEN_USERNAME = "x-bitbucket-api-token-auth"


@dataclass(frozen=True)
class CredentialRequest:
    """The part of a git credential request the helper cares about."""

    host: str | None


@dataclass(frozen=True)
class GitCredentials:
    """A username/password pair ready to hand back to git."""

    username: str
    password: str

    def to_protocol_lines(self) -> str:
        # Each attribute is one newline-terminated line; embedded CR/LF
        # would let a value inject extra attributes.
        username = _strip_line_breaks(self.username)
        password = _strip_line_breaks(self.password)
        return f"username={username}\npassword={password}\n"


def _strip_line_breaks(value: str) -> str:
    return value.replace("\r", "").replace("\n", "")


def parse_credential_request(input_stream: TextIO) -> CredentialRequest:
    """
    Read git's key=value lines up to the first blank line or EOF.

    Args:
        input_stream: Stream git writes the request to (stdin).

    Returns:
        CredentialRequest with the host, if one was sent.
    """
    host: str | None = None
    for raw_line in input_stream:
        line = raw_line.rstrip()
        if line == "":
            break
        attribute, separator, value = line.partition("=")
        if separator and attribute == "host":
            host = value
    return CredentialRequest(host=host)


def select_credentials(auth: dict[str, Any]) -> GitCredentials | None:
    """
    Map the stored auth section to the username/password git should use.

    Args:
        auth: The decrypted "auth" config section.

    Returns:
        GitCredentials, or None if the stored auth has no usable password.
    """
    auth_type = auth.get("type") or ""

    if auth_type == "repo_access_token":
        username = REPO_ACCESS_TOKEN_USERNAME
        password = auth.get("repoToken") or ""
    elif auth_type == "api_token":
        username = API_TOKEN_USERNAME
        password = auth.get("apiToken") or ""
    else:
        username = auth.get("username") or ""
        password = auth.get("appPassword") or ""

    if not password:
        return None
    return GitCredentials(username=str(username), password=str(password))


class CredentialHelper:
    """
    Answers git credential helper requests from a ConfigStore.

    Args:
        store: Config store holding the "auth" section.
    """

    def __init__(self, store: ConfigStore) -> None:
        self._store = store

    def get(self, request: CredentialRequest) -> GitCredentials | None:
        if request.host != BITBUCKET_HOST:
            logger.debug("Ignoring credential request for host %r", request.host)
            return None

        auth = self._store.read("auth")
        if not isinstance(auth, dict) or not auth:
            return None

        return select_credentials(auth)

    def handle(
        self,
        operation: str | None,
        input_stream: TextIO,
        output_stream: TextIO,
        error_stream: TextIO | None = None,
    ) -> int:
        """
        Run one helper invocation.

        Args:
            operation: The operation git passed as the first argument.
            input_stream: Request stream (stdin).
            output_stream: Response stream (stdout).
            error_stream: Stream for user-facing diagnostics (stderr).

        Returns:
            The process exit code, always 0. Having no credentials is not an
            error under the protocol.
        """
        if operation != "get":
            return 0

        request = parse_credential_request(input_stream)

        try:
            credentials = self.get(request)
        except (CorruptSecretError, ConfigIOError) as store_error:
            # Git falls back to prompting when the helper stays silent.
            print(f"bb-cli: {store_error}", file=error_stream or sys.stderr)
            return 0

        if credentials is not None:
            output_stream.write(credentials.to_protocol_lines())
            output_stream.flush()
        return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point for the git-credential-bb executable."""
    arguments = sys.argv[1:] if argv is None else argv
    operation = arguments[0] if arguments else None

    helper = CredentialHelper(ConfigStore())
    sys.exit(helper.handle(operation, sys.stdin, sys.stdout, sys.stderr))


if __name__ == "__main__":
    main()
