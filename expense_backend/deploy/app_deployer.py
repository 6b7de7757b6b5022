"""Package the application and upload it to the provisioned web app."""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .azcli import AzureCli
from .configurator import AppConfigurator
from .context import DeploymentContext

LOGGER = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
PACKAGE_DIRS = ("expense_backend",)
PACKAGE_FILES = ("pyproject.toml",)
EXCLUDED_PARTS = {"__pycache__", "tests", ".pytest_cache"}
EXCLUDED_SUFFIXES = {".pyc", ".pyo", ".lock"}
# App Service installs the project itself from the uploaded sources.
REQUIREMENTS = ".\n"


def _iter_package_files(root: Path, directories: Iterable[str]) -> Iterator[Path]:
    for directory in directories:
        for path in sorted((root / directory).rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(root)
            if EXCLUDED_PARTS.intersection(relative.parts):
                continue
            if path.suffix in EXCLUDED_SUFFIXES:
                continue
            yield path


def build_package(output_path: Path, project_root: Path = PROJECT_ROOT) -> Path:
    """Write a zip with the application sources and a requirements file."""

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    count = 0
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for path in _iter_package_files(project_root, PACKAGE_DIRS):
            archive.write(path, path.relative_to(project_root).as_posix())
            count += 1
        for name in PACKAGE_FILES:
            candidate = project_root / name
            if candidate.exists():
                archive.write(candidate, name)
                count += 1
        archive.writestr("requirements.txt", REQUIREMENTS)
    LOGGER.info("Packaged %d files into %s", count, output_path)
    return output_path


class ApplicationDeployer:
    def __init__(self, cli: AzureCli, configurator: Optional[AppConfigurator] = None) -> None:
        self._cli = cli
        self._configurator = configurator or AppConfigurator(cli)

    def deploy(
        self,
        context: DeploymentContext,
        package_path: Path,
        *,
        configure_settings: bool = False,
        project_root: Path = PROJECT_ROOT,
    ) -> str:
        if configure_settings:
            self._configurator.apply(context)
        build_package(package_path, project_root)
        LOGGER.info("Uploading %s to %s", package_path, context.web_app_name)
        self._cli.json(
            "webapp",
            "deploy",
            "--resource-group",
            context.resource_group,
            "--name",
            context.web_app_name,
            "--src-path",
            str(package_path),
            "--type",
            "zip",
        )
        LOGGER.info("Application available at %s", context.web_app_url)
        return context.web_app_url
