"""Shared test fixtures for bb-cli."""

import io
from collections.abc import Callable

import httpx
import pytest

from bb_cli.api_client import BitbucketClient
from bb_cli.auth import BitbucketCredentials
from bb_cli.config import ConfigStore
from bb_cli.context import CliContext
from bb_cli.crypto import SecretCipher
from bb_cli.machine_key import KeyProvider
from bb_cli.output import Output

TEST_REPO_PATH = "team/repo"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Keep credentials and config paths from the real environment out of tests."""
    for variable in ("BB_CLI_CONFIG", "BITBUCKET_EMAIL", "BITBUCKET_API_TOKEN"):
        monkeypatch.delenv(variable, raising=False)


@pytest.fixture
def key_provider(tmp_path) -> KeyProvider:
    """Key provider pinned to a fake machine-id file."""
    machine_id_file = tmp_path / "machine-id"
    machine_id_file.write_text("0123456789abcdef0123456789abcdef\n")
    return KeyProvider(machine_id_files=(str(machine_id_file),), use_hardware_lookup=False)


@pytest.fixture
def cipher(key_provider) -> SecretCipher:
    return SecretCipher(key_provider)


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """Config file location under a not-yet-existing directory, exported as BB_CLI_CONFIG."""
    path = tmp_path / "data" / "bb-cli" / "config.json"
    monkeypatch.setenv("BB_CLI_CONFIG", str(path))
    return path


@pytest.fixture
def store(config_path, cipher) -> ConfigStore:
    return ConfigStore(path=config_path, cipher=cipher)


@pytest.fixture
def stdout_buffer() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def make_context(store, stdout_buffer):
    """
    Build a CliContext whose API client talks to an httpx.MockTransport.

    The client authenticates with whatever credentials the context resolves
    when it is first used, like the real one.
    """

    def _make(
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
        json_mode: bool = False,
    ) -> CliContext:
        def client_factory(
            context: CliContext, credentials: BitbucketCredentials
        ) -> BitbucketClient:
            return BitbucketClient(
                credentials=credentials,
                repo_path_resolver=lambda: TEST_REPO_PATH,
                transport=httpx.MockTransport(handler or (lambda request: httpx.Response(404))),
            )

        return CliContext(
            store=store,
            output=Output(json_mode=json_mode, stream=stdout_buffer),
            client_factory=client_factory,
        )

    return _make
