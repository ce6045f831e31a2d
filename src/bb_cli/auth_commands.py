"""
"bb auth" commands: save, verify, export and show the stored credentials.

API tokens are the long-term replacement for app passwords.
See: https://support.atlassian.com/bitbucket-cloud/docs/api-tokens/
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from bb_cli.api_client import BitbucketApiError
from bb_cli.auth import CredentialError, credentials_from_auth_section, mask_auth_section
from bb_cli.config import write_private_file
from bb_cli.context import CliContext, CommandError
from bb_cli.credential_helper import API_TOKEN_USERNAME
from bb_cli.crypto import CorruptSecretError

logger = logging.getLogger(__name__)

COMPOSER_HOST = "bitbucket.org"

# Non-secret "auth" fields that survive an undecryptable secret.
REUSABLE_AUTH_FIELDS = ("type", "email", "username")


def get_user_input(
    question: str,
    default: str = "",
    prompt: Callable[[str], str] = input,
) -> str:
    """
    Ask the user a question, returning default on an empty answer or EOF.

    Args:
        question: Prompt text.
        default: Shown in brackets and returned when nothing is entered.
        prompt: Function that reads one answer (input or getpass.getpass).
    """
    prompt_text = f"{question} [{default}]: " if default else f"{question} "
    try:
        answer = prompt(prompt_text)
    except EOFError:
        return default
    return answer or default


class AuthCommands:
    """
    Implements the "bb auth" subcommands.

    Args:
        context: Invocation context.
        prompt: Reads visible answers (emails, usernames, confirmations).
        secret_prompt: Reads secrets without echoing them.
    """

    def __init__(
        self,
        context: CliContext,
        prompt: Callable[[str], str] = input,
        secret_prompt: Callable[[str], str] = getpass.getpass,
    ) -> None:
        self.context = context
        self.store = context.store
        self.output = context.output
        self._prompt = prompt
        self._secret_prompt = secret_prompt

    def _existing_auth(self) -> dict[str, Any]:
        auth = self.store.read("auth")
        return auth if isinstance(auth, dict) else {}

    def _reusable_auth(self) -> dict[str, Any]:
        """
        Stored auth used as prompt defaults when saving new credentials.

        Secrets that cannot be decrypted are left out so the user can
        overwrite them instead of hitting the same error again.
        """
        try:
            return self._existing_auth()
        except CorruptSecretError as corrupt_error:
            logger.warning("Ignoring undecryptable stored credentials: %s", corrupt_error.detail)
            self.output.emit(
                "Stored credentials cannot be decrypted on this machine; enter them again.",
                "yellow",
            )

        reusable: dict[str, Any] = {}
        for field_name in REUSABLE_AUTH_FIELDS:
            value = self.store.read(f"auth.{field_name}")
            if value is not None:
                reusable[field_name] = value
        return reusable

    def _ask_secret(self, label: str, existing_value: str) -> str:
        keep_hint = " (leave empty to keep existing):" if existing_value else ":"
        secret = get_user_input(f"{label}{keep_hint}", prompt=self._secret_prompt)
        return secret or existing_value

    def _save(self, auth: dict[str, Any] | None) -> None:
        if not self.store.write("auth", auth):
            raise CommandError(f"Cannot save file to: {self.store.path}")

    def _verify(self, auth: dict[str, Any], verify: Callable[[], str]) -> None:
        """
        Run a verification request against the freshly saved credentials.

        On failure the user may keep the credentials anyway; otherwise they
        are discarded and the command fails.
        """
        try:
            self.context.use_credentials(credentials_from_auth_section(auth))
            message = verify()
        except (BitbucketApiError, CredentialError, httpx.RequestError) as verification_error:
            self.output.emit(f"Credential verification failed: {verification_error}", "red")
            save_anyway = get_user_input("Save anyway? [y/N]:", prompt=self._prompt)
            if save_anyway.strip().lower() != "y":
                self._save(None)
                raise CommandError("Auth info discarded.") from verification_error
            self.output.emit("Auth info saved (unverified).", "yellow")
            return

        self.output.emit(message, "green")
        self.output.emit("Auth info saved.", "green")

    def save_api_token(self) -> None:
        """Save Atlassian account email + API token, then verify them via GET /user."""
        self.output.emit("This action requires a Bitbucket API token:", "yellow")
        self.output.emit("Create one at: Profile Settings > Security > API Tokens", "yellow")
        self.output.emit("https://support.atlassian.com/bitbucket-cloud/docs/api-tokens/", "green")

        existing = self._reusable_auth()
        email = get_user_input(
            "Atlassian account email:", existing.get("email") or "", prompt=self._prompt
        )
        api_token = self._ask_secret("API token", existing.get("apiToken") or "")

        auth = {"type": "api_token", "email": email, "apiToken": api_token}
        self._save(auth)

        self.output.emit("Verifying credentials...", "cyan")

        def verify() -> str:
            user = self.context.client.request("GET", "/user", repo_scoped=False)
            return f"Authenticated as: {user.get('display_name')} ({user.get('account_id')})"

        self._verify(auth, verify)

    def save_repo_token(self) -> None:
        """Save a repository access token, then verify it against the current repository."""
        self.output.emit("This action requires a Bitbucket repository access token:", "yellow")
        self.output.emit("Create one at: Repository Settings > Security > Access tokens", "yellow")
        self.output.emit("Repo access tokens are scoped to a single repository.", "yellow")

        existing = self._reusable_auth()
        repo_token = self._ask_secret("Repo access token", existing.get("repoToken") or "")

        auth = {"type": "repo_access_token", "repoToken": repo_token}
        self._save(auth)

        self.output.emit("Verifying repository access...", "cyan")

        def verify() -> str:
            repository = self.context.client.request("GET", "")
            repo_name = repository.get("full_name") or self.context.client.repo_path
            return f"Repository access token verified for: {repo_name}"

        self._verify(auth, verify)

    def save_login_info(self) -> None:
        """Save a username + app password (deprecated; kept for existing setups)."""
        self.output.emit('App passwords are being deprecated. Use "bb auth token" instead.', "yellow")
        self.output.emit("https://support.atlassian.com/bitbucket-cloud/docs/app-passwords/", "green")

        existing = self._reusable_auth()
        username = get_user_input(
            "Username:", existing.get("username") or "", prompt=self._prompt
        )
        app_password = self._ask_secret("App password", existing.get("appPassword") or "")

        self._save({"type": "app_password", "username": username, "appPassword": app_password})
        self.output.emit("Auth info saved.", "green")

    def composer_auth(self, output_path: str | None = None) -> None:
        """
        Generate a Composer auth.json for pulling private Bitbucket packages.

        Args:
            output_path: Where to write the file (mode 0600). Printed to
                stdout when omitted.
        """
        auth = self._existing_auth()
        if not auth:
            raise CommandError('Not authenticated. Run "bb auth token" first.')

        auth_type = auth.get("type") or ""
        if auth_type == "api_token":
            username, password = API_TOKEN_USERNAME, auth.get("apiToken") or ""
        elif auth_type == "app_password":
            username, password = auth.get("username") or "", auth.get("appPassword") or ""
        else:
            raise CommandError(
                "Repo access tokens are scoped to a single repository and cannot be used "
                'for Composer. Run "bb auth token" to configure an account-wide API token.'
            )

        if not username or not password:
            raise CommandError('Incomplete credentials. Run "bb auth token" to reconfigure.')

        composer_json = json.dumps(
            {"http-basic": {COMPOSER_HOST: {"username": username, "password": password}}},
            indent=4,
        ) + "\n"

        if output_path is None:
            self.output.raw(composer_json)
            return

        try:
            write_private_file(Path(output_path), composer_json)
        except OSError as io_error:
            raise CommandError(f"Cannot write {output_path}: {io_error}") from io_error
        self.output.emit(f"Composer auth.json written to: {output_path}", "green")
        self.output.emit("Add to .gitignore if not already there.", "yellow")

    def show(self) -> None:
        """Show the stored auth section with secrets masked."""
        auth = self._existing_auth()
        if not auth:
            raise CommandError('Not authenticated. Run "bb auth token" first.')
        self.output.emit(mask_auth_section(auth))


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("auth", help="Save and inspect Bitbucket credentials.")
    parser.set_defaults(group_handler=lambda context, args: AuthCommands(context).save_api_token())
    commands = parser.add_subparsers(title="commands", metavar="COMMAND")

    commands.add_parser("token", help="Save an Atlassian email + API token (default).").set_defaults(
        handler=lambda context, args: AuthCommands(context).save_api_token()
    )
    commands.add_parser("repo-token", help="Save a repository access token.").set_defaults(
        handler=lambda context, args: AuthCommands(context).save_repo_token()
    )
    commands.add_parser("save", help="Save a username + app password (deprecated).").set_defaults(
        handler=lambda context, args: AuthCommands(context).save_login_info()
    )

    composer = commands.add_parser("composer-auth", help="Generate a Composer auth.json.")
    composer.add_argument("output_path", nargs="?", default=None, help="File to write.")
    composer.set_defaults(
        handler=lambda context, args: AuthCommands(context).composer_auth(args.output_path)
    )

    commands.add_parser("show", help="Show stored credentials (secrets masked).").set_defaults(
        handler=lambda context, args: AuthCommands(context).show()
    )
