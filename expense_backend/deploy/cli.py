"""Command line entry-point: ``expense-deploy infra`` and ``expense-deploy app``."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional

from .azcli import AzureCli
from .context import DEFAULT_CONTEXT_FILE
from .orchestrator import (
    DEFAULT_WAIT_SECONDS,
    DeploymentError,
    InfraOptions,
    InfrastructureOrchestrator,
    deploy_application,
)

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="expense-deploy",
        description="Provision Azure resources for the expense API and deploy the application.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    infra = subparsers.add_parser("infra", help="Provision infrastructure and prepare the database.")
    infra.add_argument("--resource-group", required=True, help="Target resource group name.")
    infra.add_argument("--location", required=True, help="Azure region, e.g. uksouth.")
    infra.add_argument(
        "--base-name",
        required=True,
        help="Prefix used to derive deterministic resource names.",
    )
    infra.add_argument(
        "--deploy-genai",
        action="store_true",
        help="Also deploy Azure OpenAI and AI Search for the chat assistant.",
    )
    infra.add_argument(
        "--skip-database-setup",
        action="store_true",
        help="Do not apply the schema, identity user or stored procedures.",
    )
    infra.add_argument(
        "--wait-seconds",
        type=float,
        default=DEFAULT_WAIT_SECONDS,
        help=f"Pause before connecting to the new database (default: {DEFAULT_WAIT_SECONDS:.0f}).",
    )

    app = subparsers.add_parser("app", help="Package and deploy the application code.")
    app.add_argument(
        "--configure-settings",
        action="store_true",
        help="Re-apply app settings from the context file before uploading.",
    )
    app.add_argument("--package-path", type=Path, help="Where to write the zip package.")

    for sub in (infra, app):
        sub.add_argument(
            "--context-file",
            type=Path,
            default=DEFAULT_CONTEXT_FILE,
            help=f"Deployment context file (default: {DEFAULT_CONTEXT_FILE}).",
        )
        sub.add_argument(
            "--verbose",
            action="store_true",
            help="Log every az command.",
        )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None, cli: Optional[AzureCli] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)
    cli = cli or AzureCli()

    try:
        if args.command == "infra":
            run = InfrastructureOrchestrator(cli).run(
                InfraOptions(
                    resource_group=args.resource_group,
                    location=args.location,
                    base_name=args.base_name,
                    deploy_genai=args.deploy_genai,
                    skip_database_setup=args.skip_database_setup,
                    context_file=args.context_file,
                    wait_seconds=max(args.wait_seconds, 0.0),
                )
            )
            LOGGER.info("Infrastructure ready: %s", run.context.web_app_url)
            LOGGER.info("Next: expense-deploy app --context-file %s", run.context_path)
        else:
            url = deploy_application(
                cli,
                context_file=args.context_file,
                configure_settings=args.configure_settings,
                package_path=args.package_path,
            )
            LOGGER.info("Deployed to %s", url)
    except DeploymentError as exc:
        LOGGER.error("Deployment failed at stage %s: %s", exc.stage.value, exc.cause)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
