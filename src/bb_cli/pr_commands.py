"""
"bb pr" commands: list, inspect, review, merge and create pull requests.

See: https://developer.atlassian.com/cloud/bitbucket/rest/api-group-pullrequests/
"""

from __future__ import annotations

import argparse
import logging
import subprocess

from bb_cli.context import CliContext, CommandError
from bb_cli.models import (
    Account,
    Commit,
    DiffStat,
    PullRequestComment,
    PullRequestResource,
    PullRequestState,
    PullRequestSummary,
)

logger = logging.getLogger(__name__)


def current_branch() -> str:
    completed = subprocess.run(
        ["git", "symbolic-ref", "--short", "HEAD"],
        capture_output=True,
        text=True,
        check=False,
    )
    branch = completed.stdout.strip()
    if not branch:
        raise CommandError("Cannot determine the current git branch.")
    return branch


class PullRequestCommands:
    """Implements the "bb pr" subcommands against the context's repository."""

    def __init__(self, context: CliContext) -> None:
        self.context = context
        self.output = context.output

    def _open_pull_requests(self) -> list[PullRequestResource]:
        return self.context.client.fetch_all(
            PullRequestResource,
            "/pullrequests",
            params={"state": PullRequestState.OPEN.value},
        )

    def _pull_request(self, pr_number: int) -> PullRequestResource:
        return self.context.client.get_model(PullRequestResource, f"/pullrequests/{pr_number}")

    def list_open(self, destination: str | None = None) -> None:
        """
        List open pull requests, optionally only those targeting destination.

        Each PR is fetched again individually because the list endpoint does
        not include reviewers and participants.
        """
        summaries: list[PullRequestSummary] = []
        for pull_request in self._open_pull_requests():
            if destination and pull_request.destination_branch_name != destination:
                continue
            detail = self._pull_request(pull_request.id)
            summaries.append(PullRequestSummary.from_api_resource(pull_request, detail))

        if not summaries:
            self.output.emit("No open pull requests.", "gray")
            return

        self.output.records([summary.to_display() for summary in summaries])

    def view(self, pr_number: int) -> None:
        pull_request = self._pull_request(pr_number)
        summary = PullRequestSummary.from_api_resource(pull_request)
        self.output.emit(summary.to_display(), "yellow")

    def diff(self, pr_number: int) -> None:
        self.output.emit(
            self.context.client.request("GET", f"/pullrequests/{pr_number}/diff"), "yellow"
        )

    def files(self, pr_number: int) -> None:
        diff_stats = self.context.client.fetch_all(DiffStat, f"/pullrequests/{pr_number}/diffstat")
        self.output.emit([diff_stat.path for diff_stat in diff_stats], "yellow")

    def commits(self, pr_number: int) -> None:
        commits = self.context.client.fetch_all(Commit, f"/pullrequests/{pr_number}/commits")
        self.output.emit(
            [(commit.summary.raw or "").replace("\\n", "\n").strip() for commit in commits],
            "yellow",
        )

    def comments(self, pr_number: int) -> None:
        comments = self.context.client.fetch_all(
            PullRequestComment, f"/pullrequests/{pr_number}/comments"
        )
        if not comments:
            self.output.emit("No comments.", "gray")
            return

        records = []
        for comment in comments:
            record: dict[str, object] = {
                "id": comment.id,
                "author": comment.author.display_name if comment.author else None,
                "created": comment.created_on[:10],
                "content": comment.content.raw,
            }
            if comment.inline is not None:
                record["file"] = comment.inline.path
                if comment.inline.to is not None:
                    record["line"] = comment.inline.to
            records.append(record)

        self.output.records(records)

    def approve(self, pr_numbers: list[int]) -> None:
        """
        Approve pull requests. A single 0 approves every open pull request.
        """
        if not pr_numbers:
            raise CommandError("Pr number required.")

        if pr_numbers[0] == 0:
            pr_numbers = [pull_request.id for pull_request in self._open_pull_requests()]
            if not pr_numbers:
                raise CommandError("Pr not found.")

        for pr_number in pr_numbers:
            self.context.client.request("POST", f"/pullrequests/{pr_number}/approve")
            self.output.emit(f"{pr_number} Approved.", "green")

    def un_approve(self, pr_number: int) -> None:
        self.output.emit(self.context.client.request("DELETE", f"/pullrequests/{pr_number}/approve"))

    def request_changes(self, pr_number: int) -> None:
        self.output.emit(
            self.context.client.request("POST", f"/pullrequests/{pr_number}/request-changes")
        )

    def un_request_changes(self, pr_number: int) -> None:
        self.output.emit(
            self.context.client.request("DELETE", f"/pullrequests/{pr_number}/request-changes")
        )

    def decline(self, pr_number: int) -> None:
        self.context.client.request("POST", f"/pullrequests/{pr_number}/decline")
        self.output.emit("OK.", "green")

    def merge(self, pr_number: int) -> None:
        response = self.context.client.request("POST", f"/pullrequests/{pr_number}/merge")
        self.output.emit(response.get("state"), "green")

    def create(
        self,
        from_branch: str,
        to_branch: str | None = None,
        add_default_reviewers: bool = True,
    ) -> None:
        """
        Create one pull request per comma-separated destination branch.

        With a single branch argument, it is the destination and the current
        git branch is the source.
        """
        if not to_branch:
            to_branch = from_branch
            from_branch = current_branch()

        reviewers = self._default_reviewers() if add_default_reviewers else []

        created = []
        for destination in to_branch.split(","):
            response = self.context.client.request(
                "POST",
                "/pullrequests",
                {
                    "title": f"Merge {from_branch} into {destination}",
                    "source": {"branch": {"name": from_branch}},
                    "destination": {"branch": {"name": destination}},
                    "reviewers": reviewers,
                },
            )
            pull_request = PullRequestResource.model_validate(response)
            created.append(
                {
                    "id": pull_request.id,
                    "link": pull_request.links.html.href if pull_request.links.html else None,
                }
            )

        self.output.emit({"pullRequests": created})

    def _default_reviewers(self) -> list[dict[str, str]]:
        """Default reviewers of the repository, minus the current user."""
        current_user = Account.model_validate(
            self.context.client.request("GET", "/user", repo_scoped=False)
        )
        reviewers = self.context.client.fetch_all(Account, "/default-reviewers")
        return [
            {"uuid": reviewer.uuid}
            for reviewer in reviewers
            if reviewer.uuid and reviewer.uuid != current_user.uuid
        ]


def _add_pr_number(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument("pr_number", type=int, help="Pull request id.")
    return parser


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("pr", help="Work with pull requests.")
    parser.set_defaults(group_handler=lambda context, args: PullRequestCommands(context).list_open())
    commands = parser.add_subparsers(title="commands", metavar="COMMAND")

    list_parser = commands.add_parser("list", aliases=["l"], help="List open pull requests.")
    list_parser.add_argument("destination", nargs="?", default=None, help="Destination branch.")
    list_parser.set_defaults(
        handler=lambda context, args: PullRequestCommands(context).list_open(args.destination)
    )

    single_pr_commands = [
        ("view", ["show"], "Show pull request details.", "view"),
        ("diff", ["d"], "Show the pull request diff.", "diff"),
        ("files", [], "List changed files.", "files"),
        ("comments", [], "List comments.", "comments"),
        ("commits", ["checks", "c"], "List commits.", "commits"),
        ("no-approve", ["na"], "Remove your approval.", "un_approve"),
        ("request-changes", ["rc"], "Request changes.", "request_changes"),
        ("no-request-changes", ["nrc"], "Withdraw a change request.", "un_request_changes"),
        ("decline", ["close"], "Decline the pull request.", "decline"),
        ("merge", ["m"], "Merge the pull request.", "merge"),
    ]
    for name, aliases, help_text, method_name in single_pr_commands:
        command_parser = _add_pr_number(commands.add_parser(name, aliases=aliases, help=help_text))
        command_parser.set_defaults(
            handler=lambda context, args, method_name=method_name: getattr(
                PullRequestCommands(context), method_name
            )(args.pr_number)
        )

    approve_parser = commands.add_parser("approve", aliases=["a"], help="Approve pull requests.")
    approve_parser.add_argument(
        "pr_numbers", type=int, nargs="+", help="Pull request ids; 0 approves all open ones."
    )
    approve_parser.set_defaults(
        handler=lambda context, args: PullRequestCommands(context).approve(args.pr_numbers)
    )

    create_parser = commands.add_parser("create", help="Create pull requests.")
    create_parser.add_argument("from_branch", help="Source branch, or destination if alone.")
    create_parser.add_argument(
        "to_branch", nargs="?", default=None, help="Destination branch(es), comma-separated."
    )
    create_parser.add_argument(
        "--no-default-reviewers",
        action="store_true",
        help="Do not add the repository's default reviewers.",
    )
    create_parser.set_defaults(
        handler=lambda context, args: PullRequestCommands(context).create(
            args.from_branch, args.to_branch, not args.no_default_reviewers
        )
    )
