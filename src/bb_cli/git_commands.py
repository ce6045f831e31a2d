"""
"bb git" commands: register bb-cli as git's credential helper for Bitbucket.

Once set up, git asks git-credential-bb (see bb_cli.credential_helper) for
bitbucket.org credentials, so HTTPS clones and pushes use the token saved
with "bb auth". The registration is scoped to https://bitbucket.org only.

See: https://support.atlassian.com/bitbucket-cloud/docs/using-api-tokens/
"""

from __future__ import annotations

import argparse
import logging
import shlex
import shutil
import subprocess
import sys
from collections.abc import Callable

from bb_cli.context import CliContext, CommandError

logger = logging.getLogger(__name__)

HELPER_EXECUTABLE = "git-credential-bb"
HELPER_CONFIG_KEY = "credential.https://bitbucket.org.helper"


def run_git(arguments: list[str]) -> int:
    try:
        completed = subprocess.run(["git", *arguments], check=False)
    except OSError as git_error:
        logger.debug("Cannot run git: %s", git_error)
        return 127
    return completed.returncode


def helper_command() -> str:
    """
    The credential.helper value pointing at this installation's helper.

    Uses the installed git-credential-bb script when it is on PATH, and a
    shell snippet running the module with the current interpreter otherwise.
    git runs the value through the shell, so paths are quoted.
    """
    helper_path = shutil.which(HELPER_EXECUTABLE)
    if helper_path:
        return shlex.quote(helper_path)
    return f"!{shlex.quote(sys.executable)} -m bb_cli.credential_helper"


class GitCommands:
    """
    Implements the "bb git" subcommands.

    Args:
        context: Invocation context.
        git: Runs git with the given arguments and returns its exit code.
    """

    def __init__(self, context: CliContext, git: Callable[[list[str]], int] = run_git) -> None:
        self.context = context
        self.output = context.output
        self._git = git

    def setup(self) -> None:
        if not self.context.store.read("auth"):
            raise CommandError('No bb-cli auth configured. Run "bb auth" first.')

        command = helper_command()
        if self._git(["config", "--global", HELPER_CONFIG_KEY, command]) != 0:
            raise CommandError("Failed to register credential helper in git config.")

        self.output.emit(f"Credential helper installed: {command}", "green")
        self.output.emit(f"Scoped to: {HELPER_CONFIG_KEY}", "green")
        self.output.emit("Git will now use your bb-cli token automatically for Bitbucket repos.", "green")

    def remove(self) -> None:
        # git exits 5 when the key was not set; either way it is gone now.
        exit_code = self._git(["config", "--global", "--unset", HELPER_CONFIG_KEY])
        if exit_code not in (0, 5):
            raise CommandError("Failed to unregister credential helper from git config.")
        self.output.emit("Credential helper unregistered.", "green")


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("git", help="Configure git to use bb-cli credentials.")
    parser.set_defaults(group_handler=lambda context, args: GitCommands(context).setup())
    commands = parser.add_subparsers(title="commands", metavar="COMMAND")

    commands.add_parser("setup", help="Register the credential helper (default).").set_defaults(
        handler=lambda context, args: GitCommands(context).setup()
    )
    commands.add_parser("remove", help="Unregister the credential helper.").set_defaults(
        handler=lambda context, args: GitCommands(context).remove()
    )
