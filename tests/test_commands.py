"""Tests for the bb command groups against a mocked Bitbucket API."""

import base64
import json
import re
import stat
import sys

import httpx
import pytest

from bb_cli.auth_commands import AuthCommands, get_user_input
from bb_cli.context import CommandError
from bb_cli.env_commands import EnvironmentCommands
from bb_cli.git_commands import HELPER_CONFIG_KEY, GitCommands, helper_command
from bb_cli.pr_commands import PullRequestCommands

REPO_PREFIX = "/2.0/repositories/team/repo"

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*m")

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX file modes")


def plain(text):
    return ANSI_ESCAPE.sub("", text)


def answers(*values):
    """Prompt stand-in returning the given answers in order."""
    remaining = iter(values)
    return lambda prompt_text: next(remaining)


class FakeBitbucket:
    """Routes (method, path) to canned JSON responses and records requests."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": {"message": "Not found"}})
        status_code, body = route
        return httpx.Response(status_code, json=body)

    def bodies(self, method, path):
        return [
            json.loads(request.content)
            for request in self.requests
            if request.method == method and request.url.path == path
        ]


API_TOKEN_AUTH = {"type": "api_token", "email": "me@example.com", "apiToken": "tok"}


class TestGetUserInput:
    def test_returns_answer(self):
        assert get_user_input("Name:", prompt=answers("bob")) == "bob"

    def test_empty_answer_returns_default(self):
        assert get_user_input("Name:", "alice", prompt=answers("")) == "alice"

    def test_eof_returns_default(self):
        def closed_stdin(prompt_text):
            raise EOFError

        assert get_user_input("Name:", "alice", prompt=closed_stdin) == "alice"


class TestAuthCommands:
    def test_save_api_token_verifies_and_saves(self, make_context, store, stdout_buffer):
        api = FakeBitbucket(
            {("GET", "/2.0/user"): (200, {"display_name": "Me", "account_id": "123"})}
        )
        commands = AuthCommands(
            make_context(api), prompt=answers("me@example.com"), secret_prompt=answers("new-token")
        )

        commands.save_api_token()

        assert store.read("auth") == {
            "type": "api_token",
            "email": "me@example.com",
            "apiToken": "new-token",
        }
        output = plain(stdout_buffer.getvalue())
        assert "Authenticated as: Me (123)" in output
        assert "Auth info saved." in output

    def test_empty_answers_keep_existing_values(self, make_context, store):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket({("GET", "/2.0/user"): (200, {"display_name": "Me"})})
        commands = AuthCommands(make_context(api), prompt=answers(""), secret_prompt=answers(""))

        commands.save_api_token()

        assert store.read("auth") == API_TOKEN_AUTH

    def test_failed_verification_discards_on_no(self, make_context, store):
        api = FakeBitbucket({("GET", "/2.0/user"): (401, {"error": {"message": "Unauthorized"}})})
        commands = AuthCommands(
            make_context(api),
            prompt=answers("me@example.com", "n"),
            secret_prompt=answers("bad-token"),
        )

        with pytest.raises(CommandError, match="Auth info discarded"):
            commands.save_api_token()

        assert store.read("auth") is None

    def test_failed_verification_kept_on_yes(self, make_context, store, stdout_buffer):
        api = FakeBitbucket({("GET", "/2.0/user"): (401, {})})
        commands = AuthCommands(
            make_context(api),
            prompt=answers("me@example.com", "y"),
            secret_prompt=answers("unverified"),
        )

        commands.save_api_token()

        assert store.read("auth.apiToken") == "unverified"
        assert "unverified" in plain(stdout_buffer.getvalue())

    def test_save_repo_token_verifies_against_repository(self, make_context, store, stdout_buffer):
        api = FakeBitbucket({("GET", REPO_PREFIX): (200, {"full_name": "team/repo"})})
        commands = AuthCommands(make_context(api), secret_prompt=answers("repo-token"))

        commands.save_repo_token()

        assert store.read("auth") == {"type": "repo_access_token", "repoToken": "repo-token"}
        assert "verified for: team/repo" in plain(stdout_buffer.getvalue())
        assert api.requests[0].headers["Authorization"] == "Bearer repo-token"

    def test_saving_over_undecryptable_token_replaces_it(
        self, make_context, store, cipher, config_path, stdout_buffer
    ):
        iv_segment = cipher.encrypt("anything").split(":")[0]
        garbage = base64.b64encode(b"GARBAGE_GARBAGE_GARBAGE_GARBAGE_").decode("ascii")
        config_path.parent.mkdir(parents=True)
        config_path.write_text(
            json.dumps(
                {"auth": {"type": "api_token", "email": "a@b.c", "apiToken": f"{iv_segment}:{garbage}"}}
            )
        )
        api = FakeBitbucket({("GET", "/2.0/user"): (200, {"display_name": "Me"})})
        commands = AuthCommands(make_context(api), prompt=answers(""), secret_prompt=answers("new-token"))

        commands.save_api_token()

        assert store.read("auth") == {"type": "api_token", "email": "a@b.c", "apiToken": "new-token"}
        assert "cannot be decrypted" in plain(stdout_buffer.getvalue())

    def test_verification_ignores_environment_credentials(self, make_context, store, monkeypatch):
        monkeypatch.setenv("BITBUCKET_EMAIL", "env@example.com")
        monkeypatch.setenv("BITBUCKET_API_TOKEN", "env-token")
        api = FakeBitbucket({("GET", "/2.0/user"): (200, {"display_name": "Me"})})
        commands = AuthCommands(
            make_context(api), prompt=answers("me@example.com"), secret_prompt=answers("new-token")
        )

        commands.save_api_token()

        expected = base64.b64encode(b"me@example.com:new-token").decode("ascii")
        assert api.requests[0].headers["Authorization"] == f"Basic {expected}"

    def test_save_login_info(self, make_context, store):
        commands = AuthCommands(
            make_context(), prompt=answers("myuser"), secret_prompt=answers("mypass")
        )

        commands.save_login_info()

        assert store.read("auth") == {
            "type": "app_password",
            "username": "myuser",
            "appPassword": "mypass",
        }

    def test_show_masks_secrets(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        context = make_context(json_mode=True)

        AuthCommands(context).show()
        context.output.flush()

        assert json.loads(stdout_buffer.getvalue()) == {
            "type": "api_token",
            "email": "me@example.com",
            "apiToken": "********",
        }

    def test_show_without_auth_raises(self, make_context):
        with pytest.raises(CommandError, match="Not authenticated"):
            AuthCommands(make_context()).show()


class TestComposerAuth:
    def test_prints_api_token_auth_json(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)

        AuthCommands(make_context()).composer_auth()

        assert json.loads(stdout_buffer.getvalue()) == {
            "http-basic": {
                "bitbucket.org": {"username": "x-bitbucket-api-token-auth", "password": "tok"}
            }
        }

    def test_app_password_uses_username(self, make_context, store, stdout_buffer):
        store.write("auth", {"type": "app_password", "username": "me", "appPassword": "pw"})

        AuthCommands(make_context()).composer_auth()

        credentials = json.loads(stdout_buffer.getvalue())["http-basic"]["bitbucket.org"]
        assert credentials == {"username": "me", "password": "pw"}

    @posix_only
    def test_writes_private_file(self, make_context, store, tmp_path):
        store.write("auth", API_TOKEN_AUTH)
        target = tmp_path / "auth.json"

        AuthCommands(make_context()).composer_auth(str(target))

        assert json.loads(target.read_text())["http-basic"]["bitbucket.org"]["password"] == "tok"
        assert stat.S_IMODE(target.stat().st_mode) == 0o600

    def test_rejects_repo_access_token(self, make_context, store):
        store.write("auth", {"type": "repo_access_token", "repoToken": "rt"})
        with pytest.raises(CommandError, match="Composer"):
            AuthCommands(make_context()).composer_auth()

    def test_requires_auth(self, make_context):
        with pytest.raises(CommandError, match="Not authenticated"):
            AuthCommands(make_context()).composer_auth()


LIST_ITEM = {
    "id": 1,
    "title": "Add feature",
    "state": "OPEN",
    "author": {"nickname": "alice", "display_name": "Alice"},
    "source": {"branch": {"name": "feature"}},
    "destination": {"branch": {"name": "main"}},
    "links": {"html": {"href": "https://bitbucket.org/team/repo/pull-requests/1"}},
}

DETAIL = dict(
    LIST_ITEM,
    reviewers=[{"display_name": "Bob"}],
    participants=[{"user": {"display_name": "Bob"}, "state": "approved", "approved": True}],
)


class TestPullRequestCommands:
    def test_list_combines_list_and_detail(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket(
            {
                ("GET", f"{REPO_PREFIX}/pullrequests"): (200, {"values": [LIST_ITEM]}),
                ("GET", f"{REPO_PREFIX}/pullrequests/1"): (200, DETAIL),
            }
        )
        context = make_context(api, json_mode=True)

        PullRequestCommands(context).list_open()
        context.output.flush()

        assert json.loads(stdout_buffer.getvalue()) == [
            {
                "id": 1,
                "title": "Add feature",
                "state": "OPEN",
                "author": "alice",
                "source": "feature",
                "destination": "main",
                "link": "https://bitbucket.org/team/repo/pull-requests/1",
                "reviewers": "Bob",
                "participants": "Bob → approved",
            }
        ]
        assert api.requests[0].url.params["state"] == "OPEN"

    def test_list_filters_by_destination(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket({("GET", f"{REPO_PREFIX}/pullrequests"): (200, {"values": [LIST_ITEM]})})

        PullRequestCommands(make_context(api)).list_open("develop")

        assert "No open pull requests." in plain(stdout_buffer.getvalue())
        assert len(api.requests) == 1

    def test_view(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket({("GET", f"{REPO_PREFIX}/pullrequests/1"): (200, DETAIL)})

        PullRequestCommands(make_context(api)).view(1)

        output = plain(stdout_buffer.getvalue())
        assert "Title: Add feature" in output
        assert "Destination: main" in output

    def test_files_uses_old_path_for_deleted_files(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket(
            {
                ("GET", f"{REPO_PREFIX}/pullrequests/1/diffstat"): (
                    200,
                    {
                        "values": [
                            {"status": "modified", "old": {"path": "a.py"}, "new": {"path": "a.py"}},
                            {"status": "removed", "old": {"path": "gone.py"}, "new": None},
                        ]
                    },
                )
            }
        )

        PullRequestCommands(make_context(api)).files(1)

        assert plain(stdout_buffer.getvalue()).splitlines() == ["a.py", "gone.py"]

    def test_approve_posts_each_number(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket(
            {
                ("POST", f"{REPO_PREFIX}/pullrequests/3/approve"): (200, {"approved": True}),
                ("POST", f"{REPO_PREFIX}/pullrequests/4/approve"): (200, {"approved": True}),
            }
        )

        PullRequestCommands(make_context(api)).approve([3, 4])

        assert plain(stdout_buffer.getvalue()).splitlines() == ["3 Approved.", "4 Approved."]

    def test_approve_zero_approves_all_open(self, make_context, store):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket(
            {
                ("GET", f"{REPO_PREFIX}/pullrequests"): (
                    200,
                    {"values": [{"id": 7}, {"id": 8}]},
                ),
                ("POST", f"{REPO_PREFIX}/pullrequests/7/approve"): (200, {}),
                ("POST", f"{REPO_PREFIX}/pullrequests/8/approve"): (200, {}),
            }
        )

        PullRequestCommands(make_context(api)).approve([0])

        approved = [request.url.path for request in api.requests if request.method == "POST"]
        assert approved == [
            f"{REPO_PREFIX}/pullrequests/7/approve",
            f"{REPO_PREFIX}/pullrequests/8/approve",
        ]

    def test_approve_zero_without_open_prs_raises(self, make_context, store):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket({("GET", f"{REPO_PREFIX}/pullrequests"): (200, {"values": []})})

        with pytest.raises(CommandError, match="Pr not found"):
            PullRequestCommands(make_context(api)).approve([0])

    def test_create_adds_default_reviewers_except_self(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket(
            {
                ("GET", "/2.0/user"): (200, {"uuid": "{me}"}),
                ("GET", f"{REPO_PREFIX}/default-reviewers"): (
                    200,
                    {"values": [{"uuid": "{me}"}, {"uuid": "{bob}"}]},
                ),
                ("POST", f"{REPO_PREFIX}/pullrequests"): (
                    201,
                    {"id": 5, "links": {"html": {"href": "https://bitbucket.org/team/repo/pull-requests/5"}}},
                ),
            }
        )
        context = make_context(api, json_mode=True)

        PullRequestCommands(context).create("feature", "main")
        context.output.flush()

        [body] = api.bodies("POST", f"{REPO_PREFIX}/pullrequests")
        assert body == {
            "title": "Merge feature into main",
            "source": {"branch": {"name": "feature"}},
            "destination": {"branch": {"name": "main"}},
            "reviewers": [{"uuid": "{bob}"}],
        }
        assert json.loads(stdout_buffer.getvalue()) == {
            "pullRequests": [{"id": 5, "link": "https://bitbucket.org/team/repo/pull-requests/5"}]
        }

    def test_create_for_each_destination_without_reviewers(self, make_context, store):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket({("POST", f"{REPO_PREFIX}/pullrequests"): (201, {"id": 9})})

        PullRequestCommands(make_context(api)).create("feature", "main,develop", add_default_reviewers=False)

        bodies = api.bodies("POST", f"{REPO_PREFIX}/pullrequests")
        assert [body["destination"]["branch"]["name"] for body in bodies] == ["main", "develop"]
        assert all(body["reviewers"] == [] for body in bodies)


class TestEnvironmentCommands:
    def test_variables(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        api = FakeBitbucket(
            {
                ("GET", f"{REPO_PREFIX}/deployments_config/environments/env-1/variables"): (
                    200,
                    {
                        "values": [
                            {"uuid": "v1", "key": "SECRET", "secured": True},
                            {"uuid": "v2", "key": "MODE", "value": "prod", "secured": False},
                        ]
                    },
                )
            }
        )
        context = make_context(api, json_mode=True)

        EnvironmentCommands(context).variables("env-1")
        context.output.flush()

        assert json.loads(stdout_buffer.getvalue()) == [
            {"uuid": "v1", "key": "SECRET", "value": "", "secured": "Yes"},
            {"uuid": "v2", "key": "MODE", "value": "prod", "secured": "No"},
        ]

    def test_create_variable_sends_secured_flag(self, make_context, store):
        store.write("auth", API_TOKEN_AUTH)
        path = f"{REPO_PREFIX}/deployments_config/environments/env-1/variables"
        api = FakeBitbucket(
            {("POST", path): (201, {"uuid": "v3", "key": "TOKEN", "secured": True})}
        )

        EnvironmentCommands(make_context(api)).create_variable("env-1", "TOKEN", "s3cret", secured=True)

        assert api.bodies("POST", path) == [{"key": "TOKEN", "value": "s3cret", "secured": True}]


class TestHelperCommand:
    def test_installed_script_path_is_quoted(self, monkeypatch):
        monkeypatch.setattr(
            "bb_cli.git_commands.shutil.which", lambda name: "/opt/my tools/bin/git-credential-bb"
        )
        assert helper_command() == "'/opt/my tools/bin/git-credential-bb'"

    def test_plain_path_is_unchanged(self, monkeypatch):
        monkeypatch.setattr("bb_cli.git_commands.shutil.which", lambda name: "/usr/bin/git-credential-bb")
        assert helper_command() == "/usr/bin/git-credential-bb"

    def test_falls_back_to_module(self, monkeypatch):
        monkeypatch.setattr("bb_cli.git_commands.shutil.which", lambda name: None)
        command = helper_command()
        assert command.startswith("!")
        assert command.endswith(" -m bb_cli.credential_helper")


class TestGitCommands:
    def test_setup_registers_helper(self, make_context, store, stdout_buffer):
        store.write("auth", API_TOKEN_AUTH)
        calls = []

        def fake_git(arguments):
            calls.append(arguments)
            return 0

        GitCommands(make_context(), git=fake_git).setup()

        assert calls[0][:3] == ["config", "--global", HELPER_CONFIG_KEY]
        assert "Credential helper installed" in plain(stdout_buffer.getvalue())

    def test_setup_requires_auth(self, make_context):
        with pytest.raises(CommandError, match="bb auth"):
            GitCommands(make_context(), git=lambda arguments: 0).setup()

    def test_setup_reports_git_failure(self, make_context, store):
        store.write("auth", API_TOKEN_AUTH)
        with pytest.raises(CommandError, match="Failed to register"):
            GitCommands(make_context(), git=lambda arguments: 1).setup()

    @pytest.mark.parametrize("exit_code", [0, 5])
    def test_remove_accepts_missing_key(self, make_context, stdout_buffer, exit_code):
        GitCommands(make_context(), git=lambda arguments: exit_code).remove()
        assert "unregistered" in plain(stdout_buffer.getvalue())

    def test_remove_reports_git_failure(self, make_context):
        with pytest.raises(CommandError, match="Failed to unregister"):
            GitCommands(make_context(), git=lambda arguments: 1).remove()
