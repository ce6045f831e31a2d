"""
User config store: a JSON document on disk addressed by dot-separated keys.

Secret fields (see SECRET_FIELDS) are encrypted on write and decrypted on
read, so callers always see plaintext and never need to know which fields
are sensitive. Everything else in the file stays human-readable.

The file lives at:
    1. $BB_CLI_CONFIG, if set
    2. <user data dir>/bb-cli/config.json otherwise (on Linux,
       $XDG_DATA_HOME/bb-cli/config.json or ~/.local/share/bb-cli/config.json)

File mode is 0600 and the containing directory 0700.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from appdirs import user_data_dir

from bb_cli.crypto import SecretCipher

logger = logging.getLogger(__name__)

APP_NAME = "bb-cli"
CONFIG_FILE_NAME = "config.json"
CONFIG_PATH_ENV_VAR = "BB_CLI_CONFIG"
LEGACY_CONFIG_FILE_NAME = ".bitbucket-rest-cli-config.json"

CONFIG_FILE_MODE = 0o600
CONFIG_DIR_MODE = 0o700

# Top-level sections whose listed fields are encrypted at rest.
SECRET_FIELDS: dict[str, frozenset[str]] = {
    "auth": frozenset({"apiToken", "appPassword", "repoToken"}),
}

_MISSING = object()


class ConfigIOError(Exception):
    """Raised when the config file or its directory cannot be created or read."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Cannot access config file {path}: {reason}")


def default_config_path() -> Path:
    return Path(user_data_dir(APP_NAME, appauthor=False, roaming=False)) / CONFIG_FILE_NAME


def legacy_config_path() -> Path:
    return Path.home() / LEGACY_CONFIG_FILE_NAME


def resolve_config_path() -> Path:
    """
    Resolve the config file path from the environment.

    Returns:
        The $BB_CLI_CONFIG path when set, otherwise the default location
        under the user's data directory.
    """
    override = os.environ.get(CONFIG_PATH_ENV_VAR)
    if override:
        return Path(override)
    return default_config_path()


def get_path(data: Any, key: str | None, default: Any = None) -> Any:
    """
    Look up a dot-separated key in nested mappings.

    Args:
        data: The mapping to search.
        key: A key such as "destination.branch.name", or None for the
            whole mapping.
        default: Value returned when any segment is missing.

    Returns:
        The resolved value, or default.
    """
    if key is None:
        return data

    current = data
    for segment in key.split("."):
        if not isinstance(current, dict) or segment not in current:
            return default
        current = current[segment]
    return current


def _ensure_private_directory(directory: Path) -> None:
    if directory.is_dir():
        return
    directory.mkdir(mode=CONFIG_DIR_MODE, parents=True, exist_ok=True)
    directory.chmod(CONFIG_DIR_MODE)


def write_private_file(path: Path, text: str) -> None:
    file_descriptor = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CONFIG_FILE_MODE)
    with os.fdopen(file_descriptor, "w", encoding="utf-8") as config_file:
        config_file.write(text)
    path.chmod(CONFIG_FILE_MODE)


class ConfigStore:
    """
    Read/write access to the user config document.

    The parsed document is cached for the lifetime of the store; writes
    re-read the file first and replace one top-level key, so concurrent
    invocations resolve as last-writer-wins.

    Args:
        path: Config file path. Defaults to resolve_config_path().
        cipher: Cipher used for secret fields. Defaults to one bound to the
            process-wide machine key.
    """

    def __init__(self, path: Path | None = None, cipher: SecretCipher | None = None) -> None:
        self._uses_default_path = path is None and not os.environ.get(CONFIG_PATH_ENV_VAR)
        self.path = path if path is not None else resolve_config_path()
        self._cipher = cipher or SecretCipher()
        self._document: dict[str, Any] | None = None

    def invalidate(self) -> None:
        self._document = None

    def _migrate_legacy_file(self) -> None:
        legacy_path = legacy_config_path()
        if not self._uses_default_path or self.path.exists() or not legacy_path.is_file():
            return
        logger.info("Migrating legacy config %s to %s", legacy_path, self.path)
        _ensure_private_directory(self.path.parent)
        shutil.copyfile(legacy_path, self.path)
        self.path.chmod(CONFIG_FILE_MODE)

    def _load_from_disk(self) -> dict[str, Any]:
        try:
            self._migrate_legacy_file()
            _ensure_private_directory(self.path.parent)
            if not self.path.exists():
                write_private_file(self.path, "{}")
            raw_text = self.path.read_text(encoding="utf-8")
        except OSError as io_error:
            raise ConfigIOError(self.path, str(io_error)) from io_error

        try:
            document = json.loads(raw_text)
        except json.JSONDecodeError:
            logger.warning("Config file %s is not valid JSON; treating it as empty", self.path)
            return {}

        if not isinstance(document, dict):
            logger.warning("Config file %s does not hold a JSON object; treating it as empty", self.path)
            return {}
        return document

    def _loaded(self) -> dict[str, Any]:
        if self._document is None:
            self._document = self._load_from_disk()
        return self._document

    def _decrypt_value(self, value: Any) -> Any:
        if not isinstance(value, str) or value == "":
            return value
        plaintext = self._cipher.decrypt(value)
        return value if plaintext is None else plaintext

    def _decrypt_section(self, section_name: str, section: Any) -> Any:
        secret_fields = SECRET_FIELDS.get(section_name)
        if not secret_fields or not isinstance(section, dict):
            return section
        for field_name in section.keys() & secret_fields:
            section[field_name] = self._decrypt_value(section[field_name])
        return section

    def _encrypt_section(self, section_name: str, section: Any) -> Any:
        secret_fields = SECRET_FIELDS.get(section_name)
        if not secret_fields or not isinstance(section, dict):
            return section
        encrypted_section = dict(section)
        for field_name in encrypted_section.keys() & secret_fields:
            value = encrypted_section[field_name]
            if isinstance(value, str) and value:
                encrypted_section[field_name] = self._cipher.encrypt(value)
        return encrypted_section

    def read(self, key: str | None = None, default: Any = None) -> Any:
        """
        Read a value from the config document.

        Args:
            key: Dot-separated path (e.g. "auth.apiToken"), a top-level key,
                or None for the whole document.
            default: Returned when the path does not resolve.

        Returns:
            The value with any secret fields decrypted. Returned containers
            are copies; mutating them does not affect the store.

        Raises:
            ConfigIOError: If the file cannot be created or read.
            CorruptSecretError: If a secret field on the path fails to decrypt.
        """
        document = copy.deepcopy(self._loaded())

        if key is None:
            for section_name in SECRET_FIELDS:
                if section_name in document:
                    document[section_name] = self._decrypt_section(
                        section_name, document[section_name]
                    )
            return document

        value = get_path(document, key, _MISSING)
        if value is _MISSING:
            return default

        segments = key.split(".")
        if len(segments) == 1:
            return self._decrypt_section(segments[0], value)
        if len(segments) == 2 and segments[1] in SECRET_FIELDS.get(segments[0], ()):
            return self._decrypt_value(value)
        return value

    def write(self, key: str, value: Any) -> bool:
        """
        Replace one top-level key and save the document.

        Args:
            key: Top-level key, e.g. "auth".
            value: New value. Secret fields of a mapping under a declared
                section are encrypted before saving. None stores JSON null.

        Returns:
            True on success, False if the file could not be written.

        Raises:
            CryptoError: If a secret field cannot be encrypted.
        """
        stored_value = self._encrypt_section(key, value)

        try:
            document = self._load_from_disk()
        except ConfigIOError as io_error:
            logger.error("%s", io_error)
            return False

        document[key] = stored_value

        try:
            write_private_file(self.path, json.dumps(document, indent=4, ensure_ascii=False))
        except OSError as io_error:
            logger.error("Cannot save config file %s: %s", self.path, io_error)
            return False

        self._document = document
        logger.debug("Saved '%s' to %s", key, self.path)
        return True
