"""Apply the Bicep template that creates every Azure resource the app needs."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .azcli import AzureCli, AzureCliError
from .identity import AdminIdentity

LOGGER = logging.getLogger(__name__)

DEFAULT_TEMPLATE = Path(__file__).resolve().parents[2] / "infra" / "main.bicep"
DEPLOYMENT_PREFIX = "expense"
SUCCEEDED = "Succeeded"


@dataclass(frozen=True)
class ProvisioningRequest:
    resource_group: str
    location: str
    base_name: str
    admin: AdminIdentity
    deploy_genai: bool = False


@dataclass(frozen=True)
class ProvisioningOutputs:
    deployment_name: str
    web_app_name: str
    web_app_url: str
    sql_server_name: str
    sql_server_fqdn: str
    database_name: str
    managed_identity_name: str
    managed_identity_client_id: str
    managed_identity_principal_id: str
    app_insights_connection_string: Optional[str] = None
    openai_endpoint: Optional[str] = None
    openai_model_name: Optional[str] = None
    search_endpoint: Optional[str] = None

    @classmethod
    def from_deployment_outputs(
        cls, deployment_name: str, outputs: Mapping[str, Any]
    ) -> "ProvisioningOutputs":
        values = {key: (item or {}).get("value") for key, item in (outputs or {}).items()}

        def required(key: str) -> str:
            value = values.get(key)
            if not value:
                raise ValueError(f"Deployment {deployment_name} did not return output {key!r}")
            return str(value)

        return cls(
            deployment_name=deployment_name,
            web_app_name=required("webAppName"),
            web_app_url=required("webAppUrl"),
            sql_server_name=required("sqlServerName"),
            sql_server_fqdn=required("sqlServerFqdn"),
            database_name=required("databaseName"),
            managed_identity_name=required("managedIdentityName"),
            managed_identity_client_id=required("managedIdentityClientId"),
            managed_identity_principal_id=required("managedIdentityPrincipalId"),
            app_insights_connection_string=values.get("appInsightsConnectionString") or None,
            openai_endpoint=values.get("openAIEndpoint") or None,
            openai_model_name=values.get("openAIModelName") or None,
            search_endpoint=values.get("searchEndpoint") or None,
        )


def deployment_name_for(base_name: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    return f"{DEPLOYMENT_PREFIX}-{base_name}-{stamp}"


class ResourceProvisioner:
    def __init__(self, cli: AzureCli, template_file: Path = DEFAULT_TEMPLATE) -> None:
        self._cli = cli
        self._template_file = template_file

    def ensure_resource_group(self, resource_group: str, location: str) -> None:
        exists = self._cli.run("group", "exists", "--name", resource_group)
        if exists.strip().lower() == "true":
            LOGGER.info("Resource group %s already exists", resource_group)
            return
        LOGGER.info("Creating resource group %s in %s", resource_group, location)
        self._cli.json("group", "create", "--name", resource_group, "--location", location)

    @staticmethod
    def template_parameters(request: ProvisioningRequest) -> Dict[str, str]:
        return {
            "location": request.location,
            "baseName": request.base_name,
            "adminLogin": request.admin.login,
            "adminObjectId": request.admin.object_id,
            "adminPrincipalType": request.admin.principal_type,
            "deployGenAI": "true" if request.deploy_genai else "false",
        }

    def provision(
        self,
        request: ProvisioningRequest,
        deployment_name: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> ProvisioningOutputs:
        """Deploy the template in Incremental mode and return its outputs."""

        started_at = started_at or datetime.now(timezone.utc)
        self.ensure_resource_group(request.resource_group, request.location)
        name = deployment_name or deployment_name_for(request.base_name, started_at)
        parameters = [f"{key}={value}" for key, value in self.template_parameters(request).items()]
        LOGGER.info(
            "Deploying %s to %s as %s (GenAI %s)",
            self._template_file.name,
            request.resource_group,
            name,
            "enabled" if request.deploy_genai else "disabled",
        )
        try:
            deployment = self._cli.json(
                "deployment",
                "group",
                "create",
                "--resource-group",
                request.resource_group,
                "--name",
                name,
                "--template-file",
                str(self._template_file),
                "--mode",
                "Incremental",
                "--parameters",
                *parameters,
            )
        except AzureCliError as exc:
            LOGGER.warning("Deployment %s reported an error: %s", name, exc)
            deployment = self.find_successful_deployment(request, name, started_at)
            if deployment is None:
                raise
            LOGGER.info(
                "Using outputs of succeeded deployment %s despite the reported error",
                deployment.get("name"),
            )

        return ProvisioningOutputs.from_deployment_outputs(
            deployment.get("name") or name, _outputs(deployment)
        )

    def find_successful_deployment(
        self, request: ProvisioningRequest, deployment_name: str, started_at: datetime
    ) -> Optional[Dict[str, Any]]:
        """Look for a succeeded deployment from this run after an inconclusive failure.

        Policy evaluation deployments that run concurrently in the resource
        group can make ``az deployment group create`` fail even though this
        deployment went through. Only the deployment with this run's name, or
        one of the template's deployments that finished after ``started_at``,
        counts; anything older would hand back stale outputs.
        """

        deployments: List[Dict[str, Any]] = (
            self._cli.json("deployment", "group", "list", "--resource-group", request.resource_group)
            or []
        )
        succeeded = [item for item in deployments if _state(item) == SUCCEEDED]
        for item in succeeded:
            if item.get("name") == deployment_name:
                return item

        prefix = f"{DEPLOYMENT_PREFIX}-{request.base_name}-"
        candidates = []
        for item in succeeded:
            if not str(item.get("name", "")).startswith(prefix):
                continue
            finished = parse_timestamp(_properties(item).get("timestamp"))
            if finished is not None and finished >= started_at:
                candidates.append((finished, item))
        if not candidates:
            return None
        return max(candidates, key=lambda pair: pair[0])[1]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ARM timestamp such as ``2025-01-02T03:04:05.1234567Z``."""

    if not value:
        return None
    text = str(value).strip().replace("Z", "+00:00")
    match = re.match(r"^(.*T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(.*)$", text)
    if match is None:
        return None
    base, fraction, offset = match.groups()
    if fraction:
        base = f"{base}.{fraction[:6].ljust(6, '0')}"
    try:
        parsed = datetime.fromisoformat(base + offset)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _properties(deployment: Mapping[str, Any]) -> Mapping[str, Any]:
    return deployment.get("properties") or {}


def _state(deployment: Mapping[str, Any]) -> Optional[str]:
    return _properties(deployment).get("provisioningState")


def _outputs(deployment: Mapping[str, Any]) -> Mapping[str, Any]:
    return _properties(deployment).get("outputs") or {}
