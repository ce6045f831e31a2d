"""
"bb env" commands: deployment environments and their variables.

See: https://developer.atlassian.com/cloud/bitbucket/rest/api-group-deployments/
"""

from __future__ import annotations

import argparse

from bb_cli.context import CliContext
from bb_cli.models import DeploymentVariable, DeploymentVariableSummary, Environment


def _variables_path(environment_uuid: str) -> str:
    return f"/deployments_config/environments/{environment_uuid}/variables"


class EnvironmentCommands:
    """Implements the "bb env" subcommands against the context's repository."""

    def __init__(self, context: CliContext) -> None:
        self.context = context
        self.output = context.output

    def environments(self) -> None:
        environments = self.context.client.fetch_all(Environment, "/environments")
        self.output.records(
            [{"uuid": environment.uuid, "name": environment.name} for environment in environments]
        )

    def variables(self, environment_uuid: str) -> None:
        variables = self.context.client.fetch_all(
            DeploymentVariable, _variables_path(environment_uuid)
        )
        self.output.records(
            [DeploymentVariableSummary.from_api_resource(variable).model_dump() for variable in variables]
        )

    def create_variable(
        self, environment_uuid: str, key: str, value: str, secured: bool = False
    ) -> None:
        response = self.context.client.request(
            "POST",
            _variables_path(environment_uuid),
            {"key": key, "value": value, "secured": secured},
        )
        self._show_variable(response)

    def update_variable(
        self,
        environment_uuid: str,
        variable_uuid: str,
        key: str,
        value: str,
        secured: bool = False,
    ) -> None:
        response = self.context.client.request(
            "PUT",
            f"{_variables_path(environment_uuid)}/{variable_uuid}",
            {"key": key, "value": value, "secured": secured},
        )
        self._show_variable(response)

    def _show_variable(self, response: dict) -> None:
        variable = DeploymentVariable.model_validate(response)
        self.output.emit(DeploymentVariableSummary.from_api_resource(variable).model_dump(), "yellow")


def _add_variable_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("key", help="Variable name.")
    parser.add_argument("value", help="Variable value.")
    parser.add_argument("--secured", action="store_true", help="Store the value as secured.")


def register(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("env", help="Work with deployment environments.")
    parser.set_defaults(
        group_handler=lambda context, args: EnvironmentCommands(context).environments()
    )
    commands = parser.add_subparsers(title="commands", metavar="COMMAND")

    commands.add_parser("list", aliases=["l"], help="List environments.").set_defaults(
        handler=lambda context, args: EnvironmentCommands(context).environments()
    )

    variables_parser = commands.add_parser(
        "variables", aliases=["v"], help="List variables of an environment."
    )
    variables_parser.add_argument("environment_uuid", help="Environment UUID.")
    variables_parser.set_defaults(
        handler=lambda context, args: EnvironmentCommands(context).variables(args.environment_uuid)
    )

    create_parser = commands.add_parser(
        "create-variable", aliases=["c"], help="Create an environment variable."
    )
    create_parser.add_argument("environment_uuid", help="Environment UUID.")
    _add_variable_arguments(create_parser)
    create_parser.set_defaults(
        handler=lambda context, args: EnvironmentCommands(context).create_variable(
            args.environment_uuid, args.key, args.value, args.secured
        )
    )

    update_parser = commands.add_parser(
        "update-variable", aliases=["u"], help="Update an environment variable."
    )
    update_parser.add_argument("environment_uuid", help="Environment UUID.")
    update_parser.add_argument("variable_uuid", help="Variable UUID.")
    _add_variable_arguments(update_parser)
    update_parser.set_defaults(
        handler=lambda context, args: EnvironmentCommands(context).update_variable(
            args.environment_uuid, args.variable_uuid, args.key, args.value, args.secured
        )
    )
