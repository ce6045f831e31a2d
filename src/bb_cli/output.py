"""
Terminal and JSON rendering of command results.

In terminal mode results are written immediately with ANSI colors:
mappings as "Key: value" lines, lists item by item, strings as-is. In JSON
mode (--json) structured results are collected and written as one JSON
document by flush(); plain status strings ("OK.", "Approved.") carry no
structured value for machine consumers and are dropped.
"""

from __future__ import annotations

import json
import sys
from typing import Any, TextIO

RESET = "\033[0m"

COLORS: dict[str, str] = {
    "nocolor": RESET,
    "red": "\033[0;31m",
    "green": "\033[0;32m",
    "yellow": "\033[0;33m",
    "blue": "\033[0;34m",
    "magenta": "\033[0;35m",
    "cyan": "\033[0;36m",
    "white": "\033[0;37m",
    "gray": "\033[0;90m",
}

SEPARATOR = "\033[2m\033[38;5;244m  " + "·" * 60 + RESET


class Output:
    """
    Renders command results to a text stream.

    Args:
        json_mode: Collect structured results for a single JSON document.
        stream: Writable text stream. Defaults to stdout.
    """

    def __init__(self, json_mode: bool = False, stream: TextIO | None = None) -> None:
        self.json_mode = json_mode
        self._stream = stream or sys.stdout
        self._collected: list[Any] = []

    def _write_line(self, text: str, color: str, prefix: str = "") -> None:
        self._stream.write(f"{COLORS[color]}{prefix}{text}{RESET}\n")

    def emit(self, data: Any, color: str = "white") -> None:
        """
        Render one result.

        Args:
            data: A mapping, a list, or a scalar.
            color: Color name from COLORS used for values.
        """
        if self.json_mode:
            if isinstance(data, (dict, list)):
                self._collected.append(data)
            return

        if isinstance(data, dict):
            for key, value in data.items():
                if isinstance(value, (dict, list)):
                    self.emit(value, color)
                else:
                    label = f"{COLORS['cyan']}{str(key)[:1].upper()}{str(key)[1:]}:{RESET} "
                    self._stream.write(f"{label}{COLORS['yellow']}{value}{RESET}\n")
        elif isinstance(data, list):
            for item in data:
                self.emit(item, color)
        else:
            self._write_line(str(data), color)

    def records(self, records: list[dict[str, Any]]) -> None:
        """Render a list of mappings, separated by a dotted rule in terminal mode."""
        if self.json_mode:
            self._collected.append(records)
            return

        for index, record in enumerate(records):
            if index:
                self._stream.write(SEPARATOR + "\n")
            self.emit(record)

    def raw(self, text: str) -> None:
        """Write text verbatim, bypassing color and JSON collection."""
        self._stream.write(text)

    def flush(self) -> None:
        """Write the collected JSON document. No-op in terminal mode."""
        if not self.json_mode:
            return

        document: Any = self._collected
        if len(self._collected) == 1:
            document = self._collected[0]
        self._stream.write(json.dumps(document, indent=4, ensure_ascii=False) + "\n")
        self._collected = []


def error(message: str) -> None:
    """Print a red error line to stderr."""
    sys.stderr.write(f"{COLORS['red']}Error: {message}{RESET}\n")
