"""Run the infrastructure and application deployment stages in order."""

from __future__ import annotations

import enum
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Optional, TypeVar

from .app_deployer import ApplicationDeployer
from .azcli import AzureCli
from .configurator import AppConfigurator
from .context import DEFAULT_CONTEXT_FILE, DeploymentContext, read_context, write_context
from .database_setup import DatabaseInitializer
from .environment import ExecutionMode, detect_execution_mode
from .identity import AdminIdentity, resolve_admin_identity
from .provisioner import ProvisioningOutputs, ProvisioningRequest, ResourceProvisioner

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WAIT_SECONDS = 30.0


class Stage(str, enum.Enum):
    START = "start"
    IDENTITY_RESOLVED = "identity_resolved"
    RESOURCES_PROVISIONED = "resources_provisioned"
    DATABASE_INITIALIZED = "database_initialized"
    APP_CONFIGURED = "app_configured"
    CONTEXT_WRITTEN = "context_written"
    APP_DEPLOYED = "app_deployed"


class DeploymentError(RuntimeError):
    """A stage failed; ``stage`` names the stage that was being attempted."""

    def __init__(self, stage: Stage, cause: BaseException) -> None:
        super().__init__(f"{stage.value} failed: {cause}")
        self.stage = stage
        self.cause = cause


@dataclass(frozen=True)
class InfraOptions:
    resource_group: str
    location: str
    base_name: str
    deploy_genai: bool = False
    skip_database_setup: bool = False
    context_file: Path = DEFAULT_CONTEXT_FILE
    wait_seconds: float = DEFAULT_WAIT_SECONDS


@dataclass
class DeploymentRun:
    mode: ExecutionMode
    stage: Stage = Stage.START
    completed: List[Stage] = field(default_factory=list)
    skipped: List[Stage] = field(default_factory=list)
    admin: Optional[AdminIdentity] = None
    outputs: Optional[ProvisioningOutputs] = None
    context: Optional[DeploymentContext] = None
    context_path: Optional[Path] = None

    def advance(self, stage: Stage) -> None:
        self.stage = stage
        self.completed.append(stage)
        LOGGER.info("Stage complete: %s", stage.value)


def build_context(options: InfraOptions, outputs: ProvisioningOutputs) -> DeploymentContext:
    return DeploymentContext(
        resource_group=options.resource_group,
        location=options.location,
        web_app_name=outputs.web_app_name,
        web_app_url=outputs.web_app_url,
        sql_server_name=outputs.sql_server_name,
        sql_server_fqdn=outputs.sql_server_fqdn,
        database_name=outputs.database_name,
        managed_identity_name=outputs.managed_identity_name,
        managed_identity_client_id=outputs.managed_identity_client_id,
        managed_identity_principal_id=outputs.managed_identity_principal_id,
        app_insights_connection_string=outputs.app_insights_connection_string,
        genai_enabled=options.deploy_genai,
        openai_endpoint=outputs.openai_endpoint if options.deploy_genai else None,
        openai_model_name=outputs.openai_model_name if options.deploy_genai else None,
        search_endpoint=outputs.search_endpoint if options.deploy_genai else None,
        deployment_name=outputs.deployment_name,
    )


class InfrastructureOrchestrator:
    """Linear workflow from identity resolution to the context hand-off file."""

    def __init__(
        self,
        cli: AzureCli,
        *,
        provisioner: Optional[ResourceProvisioner] = None,
        database: Optional[DatabaseInitializer] = None,
        configurator: Optional[AppConfigurator] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._cli = cli
        self._provisioner = provisioner or ResourceProvisioner(cli)
        self._database = database or DatabaseInitializer(cli)
        self._configurator = configurator or AppConfigurator(cli)
        self._environ = os.environ if environ is None else environ

    @staticmethod
    def _attempt(stage: Stage, action: Callable[[], T]) -> T:
        try:
            return action()
        except Exception as exc:  # noqa: BLE001 - every stage failure is reported the same way
            LOGGER.error("Stage %s failed: %s", stage.value, exc)
            raise DeploymentError(stage, exc) from exc

    def run(self, options: InfraOptions) -> DeploymentRun:
        run = DeploymentRun(mode=detect_execution_mode(self._environ))
        LOGGER.info("Deploying infrastructure in %s mode", run.mode.value)

        run.admin = self._attempt(
            Stage.IDENTITY_RESOLVED,
            lambda: resolve_admin_identity(self._cli, run.mode, self._environ),
        )
        run.advance(Stage.IDENTITY_RESOLVED)

        request = ProvisioningRequest(
            resource_group=options.resource_group,
            location=options.location,
            base_name=options.base_name,
            admin=run.admin,
            deploy_genai=options.deploy_genai,
        )
        run.outputs = self._attempt(
            Stage.RESOURCES_PROVISIONED, lambda: self._provisioner.provision(request)
        )
        run.advance(Stage.RESOURCES_PROVISIONED)
        outputs = run.outputs

        if options.skip_database_setup:
            LOGGER.info("Skipping database setup as requested")
            run.skipped.append(Stage.DATABASE_INITIALIZED)
        else:
            self._attempt(
                Stage.DATABASE_INITIALIZED,
                lambda: self._database.initialize(
                    resource_group=options.resource_group,
                    server_name=outputs.sql_server_name,
                    server_fqdn=outputs.sql_server_fqdn,
                    database_name=outputs.database_name,
                    identity_name=outputs.managed_identity_name,
                    identity_client_id=outputs.managed_identity_client_id,
                    open_firewall=run.mode is ExecutionMode.INTERACTIVE,
                    wait_seconds=options.wait_seconds,
                ),
            )
            run.advance(Stage.DATABASE_INITIALIZED)

        run.context = build_context(options, outputs)
        self._attempt(Stage.APP_CONFIGURED, lambda: self._configurator.apply(run.context))
        run.advance(Stage.APP_CONFIGURED)

        run.context_path = self._attempt(
            Stage.CONTEXT_WRITTEN, lambda: write_context(run.context, options.context_file)
        )
        run.advance(Stage.CONTEXT_WRITTEN)
        return run


def deploy_application(
    cli: AzureCli,
    *,
    context_file: Path = DEFAULT_CONTEXT_FILE,
    configure_settings: bool = False,
    package_path: Optional[Path] = None,
    deployer: Optional[ApplicationDeployer] = None,
) -> str:
    """Separate invocation that ships the code to an already provisioned app."""

    try:
        context = read_context(context_file)
        deployer = deployer or ApplicationDeployer(cli)
        if package_path is not None:
            return deployer.deploy(context, package_path, configure_settings=configure_settings)
        with tempfile.TemporaryDirectory(prefix="expense-deploy-") as workdir:
            return deployer.deploy(
                context, Path(workdir) / "app.zip", configure_settings=configure_settings
            )
    except Exception as exc:  # noqa: BLE001
        LOGGER.error("Application deployment failed: %s", exc)
        raise DeploymentError(Stage.APP_DEPLOYED, exc) from exc
