"""Write connection, identity and feature settings onto the web app."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .azcli import AzureCli
from .context import DeploymentContext
from .database_setup import identity_database_url

LOGGER = logging.getLogger(__name__)

STARTUP_COMMAND = (
    "python -m uvicorn expense_backend.app.main:app --host 0.0.0.0 --port 8000"
)


def build_app_settings(context: DeploymentContext) -> Dict[str, str]:
    settings = {
        "DATABASE_URL": identity_database_url(
            context.sql_server_fqdn, context.database_name, context.managed_identity_client_id
        ),
        "AZURE_CLIENT_ID": context.managed_identity_client_id,
        "USE_STORED_PROCEDURES": "true",
        "SCM_DO_BUILD_DURING_DEPLOYMENT": "true",
    }
    if context.app_insights_connection_string:
        settings["APPLICATIONINSIGHTS_CONNECTION_STRING"] = context.app_insights_connection_string
    if context.genai_enabled:
        optional = {
            "OPENAI_ENDPOINT": context.openai_endpoint,
            "OPENAI_MODEL_NAME": context.openai_model_name,
            "SEARCH_ENDPOINT": context.search_endpoint,
        }
        settings.update({key: value for key, value in optional.items() if value})
    return settings


class AppConfigurator:
    def __init__(self, cli: AzureCli) -> None:
        self._cli = cli

    def apply(
        self, context: DeploymentContext, startup_command: Optional[str] = STARTUP_COMMAND
    ) -> Dict[str, str]:
        settings = build_app_settings(context)
        LOGGER.info("Writing %d app settings to %s", len(settings), context.web_app_name)
        secrets = [
            value
            for key, value in settings.items()
            if key in {"APPLICATIONINSIGHTS_CONNECTION_STRING"}
        ]
        self._cli.json(
            "webapp",
            "config",
            "appsettings",
            "set",
            "--resource-group",
            context.resource_group,
            "--name",
            context.web_app_name,
            "--settings",
            *[f"{key}={value}" for key, value in settings.items()],
            sensitive=secrets,
        )
        if startup_command:
            self._cli.json(
                "webapp",
                "config",
                "set",
                "--resource-group",
                context.resource_group,
                "--name",
                context.web_app_name,
                "--startup-file",
                startup_command,
            )
        return settings
