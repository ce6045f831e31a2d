"""
Machine-bound key derivation for the local credential store.

The key is never persisted. It is recomputed on every run from the invoking
OS user and a stable machine identifier, so a config file copied to another
machine (or read by another user) cannot be decrypted there.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import subprocess
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

KEY_NAMESPACE = "bb-cli"
KEY_LENGTH_BYTES = 32

DEFAULT_MACHINE_ID_FILES: tuple[str, ...] = (
    "/etc/machine-id",
    "/var/lib/dbus/machine-id",
)

FALLBACK_MACHINE_ID = "bb-cli-default-machine"

_IOREG_UUID_PATTERN = re.compile(r'"IOPlatformUUID"\s*=\s*"([^"]+)"')
_REG_MACHINE_GUID_PATTERN = re.compile(r"MachineGuid\s+REG_SZ\s+(\S+)")


def _current_user_id() -> str:
    """
    Return the numeric OS user id, or an environment-provided name where
    the platform has no getuid (Windows).
    """
    getuid = getattr(os, "getuid", None)
    if getuid is not None:
        return str(getuid())
    return os.environ.get("USERNAME") or os.environ.get("USER") or "0"


def _read_machine_id_file(path: str) -> str | None:
    try:
        machine_id = Path(path).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return machine_id or None


def _hardware_uuid() -> str | None:
    """
    Look up the host's hardware UUID via the OS tool for it.

    Returns:
        The identifier, or None on Linux (covered by the machine-id files)
        and whenever the lookup fails.
    """
    if sys.platform == "darwin":
        command = ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"]
        pattern = _IOREG_UUID_PATTERN
    elif sys.platform == "win32":
        command = [
            "reg",
            "query",
            r"HKLM\SOFTWARE\Microsoft\Cryptography",
            "/v",
            "MachineGuid",
        ]
        pattern = _REG_MACHINE_GUID_PATTERN
    else:
        return None

    try:
        completed = subprocess.run(
            command, capture_output=True, text=True, check=False, timeout=5
        )
    except (OSError, subprocess.SubprocessError) as lookup_error:
        logger.debug("Hardware UUID lookup failed: %s", lookup_error)
        return None

    match = pattern.search(completed.stdout)
    return match.group(1) if match else None


class KeyProvider:
    """
    Computes the machine key once and hands out the cached value.

    Args:
        machine_id_files: Files probed in order for a machine identifier.
        use_hardware_lookup: Whether to fall through to the OS hardware
            UUID lookup before the fixed fallback literal.
    """

    def __init__(
        self,
        machine_id_files: tuple[str, ...] = DEFAULT_MACHINE_ID_FILES,
        use_hardware_lookup: bool = True,
    ) -> None:
        self._machine_id_files = machine_id_files
        self._use_hardware_lookup = use_hardware_lookup
        self._cached_key: bytes | None = None

    def machine_id(self) -> str:
        for machine_id_file in self._machine_id_files:
            machine_id = _read_machine_id_file(machine_id_file)
            if machine_id is not None:
                return machine_id

        if self._use_hardware_lookup:
            hardware_id = _hardware_uuid()
            if hardware_id:
                return hardware_id

        logger.debug("No machine identifier found, using fallback literal")
        return FALLBACK_MACHINE_ID

    def derive(self) -> bytes:
        """
        Derive the key from scratch, bypassing the cache.

        Returns:
            The 32-byte SHA-256 digest of "bb-cli:<uid>:<machine id>".
        """
        identity = f"{KEY_NAMESPACE}:{_current_user_id()}:{self.machine_id()}"
        return hashlib.sha256(identity.encode("utf-8")).digest()

    def key(self) -> bytes:
        if self._cached_key is None:
            self._cached_key = self.derive()
        return self._cached_key


default_key_provider = KeyProvider()


def derive_machine_key() -> bytes:
    """Return the machine key from the process-wide default provider."""
    return default_key_provider.key()
