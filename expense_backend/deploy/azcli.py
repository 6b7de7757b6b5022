"""Thin wrapper around the ``az`` command line."""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

LOGGER = logging.getLogger(__name__)

AZ_FALLBACK_PATHS = (
    r"C:\Program Files (x86)\Microsoft SDKs\Azure\CLI2\wbin\az.cmd",
    r"C:\Program Files\Microsoft SDKs\Azure\CLI2\wbin\az.cmd",
)

CommandRunner = Callable[[Sequence[str]], subprocess.CompletedProcess]


class AzureCliError(RuntimeError):
    """Raised when an ``az`` invocation exits with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str) -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(self.stderr or f"az exited with status {returncode}")


def find_az() -> Optional[str]:
    az_path = shutil.which("az")
    if az_path:
        return az_path
    for path in AZ_FALLBACK_PATHS:
        if Path(path).exists():
            return path
    return None


def _run_subprocess(command: Sequence[str]) -> subprocess.CompletedProcess:
    return subprocess.run(list(command), capture_output=True, text=True, check=False)


def _redact(args: Sequence[str], sensitive: Sequence[str]) -> str:
    shown = []
    for arg in args:
        shown.append("***" if any(secret and secret in arg for secret in sensitive) else arg)
    return " ".join(shown)


class AzureCli:
    """Runs ``az`` commands; the runner is injectable for tests."""

    def __init__(self, runner: Optional[CommandRunner] = None, az_path: Optional[str] = None) -> None:
        self._runner = runner or _run_subprocess
        self._az = az_path or find_az() or "az"

    def run(self, *args: str, sensitive: Sequence[str] = ()) -> str:
        command = [self._az, *args]
        LOGGER.debug("$ az %s", _redact(args, sensitive))
        completed = self._runner(command)
        if completed.returncode != 0:
            raise AzureCliError(args, completed.returncode, completed.stderr or "")
        return (completed.stdout or "").strip()

    def json(self, *args: str, sensitive: Sequence[str] = ()) -> Any:
        output = self.run(*args, "--output", "json", sensitive=sensitive)
        if not output:
            return None
        return json.loads(output)
