"""Detect whether the deployment runs at a developer's terminal or in CI."""

from __future__ import annotations

import enum
import os
from typing import Mapping, Optional

# Variables set by GitHub Actions, Azure Pipelines and most other CI runners.
CI_MARKERS = ("GITHUB_ACTIONS", "TF_BUILD", "CI", "BUILD_BUILDID")


class ExecutionMode(str, enum.Enum):
    INTERACTIVE = "interactive"
    UNATTENDED = "unattended"


def _is_set(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() not in {"", "0", "false", "no", "off"}


def detect_execution_mode(environ: Optional[Mapping[str, str]] = None) -> ExecutionMode:
    env = os.environ if environ is None else environ
    if any(_is_set(env.get(marker)) for marker in CI_MARKERS):
        return ExecutionMode.UNATTENDED
    return ExecutionMode.INTERACTIVE
