"""
CLI entrypoint for bb, a command-line client for Bitbucket Cloud.

Parses command-line arguments, builds the invocation context (config store,
renderer, lazily created API client), dispatches to the selected command
group, and translates failures into an error message and exit code 1.

Usage:
    bb [--json] [--project OWNER/REPO] [--verbose] GROUP [COMMAND] [ARGS...]

Groups: auth, pr, env, git. Running a group without a command runs its
default command (auth token, pr list, env list, git setup).
"""

from __future__ import annotations

import argparse
import logging
import sys

import httpx

from bb_cli import auth_commands, env_commands, git_commands, pr_commands
from bb_cli.api_client import BitbucketApiError
from bb_cli.auth import CredentialError
from bb_cli.config import ConfigIOError, ConfigStore
from bb_cli.context import CliContext, CommandError
from bb_cli.crypto import CorruptSecretError, CryptoError
from bb_cli.output import Output, error
from bb_cli.repository import RepositoryError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

# Failures reported as "Error: <message>" with exit code 1.
USER_FACING_ERRORS: tuple[type[Exception], ...] = (
    BitbucketApiError,
    CommandError,
    ConfigIOError,
    CorruptSecretError,
    CredentialError,
    CryptoError,
    RepositoryError,
)


def _build_argument_parser() -> argparse.ArgumentParser:
    """
    Build the argparse parser with all CLI arguments and command groups.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="bb",
        description="Work with Bitbucket Cloud pull requests, environments and credentials.",
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as a single JSON document instead of colored text.",
    )
    parser.add_argument(
        "--project",
        "-p",
        type=str,
        default=None,
        help=(
            "Repository to act on: 'owner/repo' or a bitbucket.org URL. "
            "If omitted, the origin remote of the current git repository is used."
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug information to stderr.",
    )

    subparsers = parser.add_subparsers(title="groups", metavar="GROUP")
    for command_module in (auth_commands, pr_commands, env_commands, git_commands):
        command_module.register(subparsers)

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    Main entrypoint: parse args -> build context -> run command -> flush output.

    Exits with code 1 on credential, config, API, or network errors. Error
    messages go to stderr so they do not interfere with JSON on stdout.
    """
    parser = _build_argument_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )

    handler = getattr(args, "handler", None) or getattr(args, "group_handler", None)
    if handler is None:
        parser.print_help(sys.stderr)
        sys.exit(1)

    output = Output(json_mode=args.json)
    context = CliContext(store=ConfigStore(), output=output, project=args.project)

    try:
        handler(context, args)
    except USER_FACING_ERRORS as command_error:
        output.flush()
        error(str(command_error))
        sys.exit(1)
    except httpx.RequestError as network_error:
        error(f"Network request failed: {network_error}")
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)
    finally:
        context.reset_client()

    output.flush()


if __name__ == "__main__":
    main()
