from __future__ import annotations

import json

import pytest

from expense_backend.deploy.azcli import AzureCli
from expense_backend.deploy.context import read_context, write_context
from expense_backend.deploy.orchestrator import (
    DeploymentError,
    InfraOptions,
    InfrastructureOrchestrator,
    Stage,
    deploy_application,
)
from expense_backend.deploy.provisioner import ResourceProvisioner

OUTPUTS = {
    key: {"type": "String", "value": value}
    for key, value in {
        "webAppName": "app-expense-abc",
        "webAppUrl": "https://app-expense-abc.azurewebsites.net",
        "sqlServerName": "sql-expense-abc",
        "sqlServerFqdn": "sql-expense-abc.database.windows.net",
        "databaseName": "expenses",
        "managedIdentityName": "id-expense-abc",
        "managedIdentityClientId": "11111111-2222-3333-4444-555555555555",
        "managedIdentityPrincipalId": "principal-id",
    }.items()
}


class RecordingDatabase:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = []
        self.error = error

    def initialize(self, **kwargs) -> None:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error


def _deployment(genai: bool = False) -> str:
    outputs = dict(OUTPUTS)
    if genai:
        outputs["openAIEndpoint"] = {"type": "String", "value": "https://oai.example/"}
        outputs["openAIModelName"] = {"type": "String", "value": "gpt-4o"}
    return json.dumps(
        {"name": "expense-expense-1", "properties": {"provisioningState": "Succeeded", "outputs": outputs}}
    )


@pytest.fixture
def az(fake_az):
    fake_az.on(
        "ad", "signed-in-user", "show", stdout='{"id": "oid", "userPrincipalName": "dev@contoso.com"}'
    )
    fake_az.on("ad", "sp", "show", stdout='{"id": "sp-oid", "displayName": "expense-ci"}')
    fake_az.on("group", "exists", stdout="true")
    return fake_az


def _orchestrator(az, database, environ=None) -> InfrastructureOrchestrator:
    cli = AzureCli(az, "az")
    return InfrastructureOrchestrator(
        cli,
        provisioner=ResourceProvisioner(cli),
        database=database,
        environ=environ or {},
    )


def test_interactive_run_completes_every_stage(az, tmp_path) -> None:
    az.on("deployment", "group", "create", stdout=_deployment())
    database = RecordingDatabase()
    context_file = tmp_path / ".deployment-context.json"

    run = _orchestrator(az, database).run(
        InfraOptions(
            resource_group="rg-expense",
            location="uksouth",
            base_name="expense",
            context_file=context_file,
            wait_seconds=0,
        )
    )

    assert run.completed == [
        Stage.IDENTITY_RESOLVED,
        Stage.RESOURCES_PROVISIONED,
        Stage.DATABASE_INITIALIZED,
        Stage.APP_CONFIGURED,
        Stage.CONTEXT_WRITTEN,
    ]
    assert database.calls[0]["open_firewall"] is True
    assert database.calls[0]["identity_client_id"] == "11111111-2222-3333-4444-555555555555"
    assert az.called("webapp", "config", "appsettings", "set")
    context = read_context(context_file)
    assert context.web_app_name == "app-expense-abc"
    assert context.genai_enabled is False
    assert context.openai_endpoint is None


def test_unattended_run_skips_firewall_and_keeps_genai(az, tmp_path) -> None:
    az.on("deployment", "group", "create", stdout=_deployment(genai=True))
    database = RecordingDatabase()

    run = _orchestrator(
        az, database, environ={"GITHUB_ACTIONS": "true", "AZURE_CLIENT_ID": "ci-client"}
    ).run(
        InfraOptions(
            resource_group="rg-expense",
            location="uksouth",
            base_name="expense",
            deploy_genai=True,
            context_file=tmp_path / "ctx.json",
        )
    )

    assert run.admin.principal_type == "Application"
    assert database.calls[0]["open_firewall"] is False
    assert run.context.genai_enabled is True
    assert run.context.openai_endpoint == "https://oai.example/"
    create = az.called("deployment", "group", "create")[0]
    assert "deployGenAI=true" in create


def test_database_setup_can_be_skipped(az, tmp_path) -> None:
    az.on("deployment", "group", "create", stdout=_deployment())
    database = RecordingDatabase()

    run = _orchestrator(az, database).run(
        InfraOptions(
            resource_group="rg-expense",
            location="uksouth",
            base_name="expense",
            skip_database_setup=True,
            context_file=tmp_path / "ctx.json",
        )
    )

    assert database.calls == []
    assert run.skipped == [Stage.DATABASE_INITIALIZED]
    assert Stage.CONTEXT_WRITTEN in run.completed


def test_failed_stage_is_named(az, tmp_path) -> None:
    az.on("deployment", "group", "create", stdout=_deployment())
    context_file = tmp_path / "ctx.json"

    with pytest.raises(DeploymentError) as excinfo:
        _orchestrator(az, RecordingDatabase(RuntimeError("login timeout"))).run(
            InfraOptions(
                resource_group="rg-expense",
                location="uksouth",
                base_name="expense",
                context_file=context_file,
            )
        )

    assert excinfo.value.stage is Stage.DATABASE_INITIALIZED
    assert "login timeout" in str(excinfo.value)
    assert not context_file.exists()
    assert not az.called("webapp")


def test_provisioning_failure_stops_the_run(az, tmp_path) -> None:
    az.on("deployment", "group", "create", returncode=1, stderr="InvalidTemplate")
    az.on("deployment", "group", "list", stdout="[]")
    database = RecordingDatabase()

    with pytest.raises(DeploymentError) as excinfo:
        _orchestrator(az, database).run(
            InfraOptions(
                resource_group="rg-expense",
                location="uksouth",
                base_name="expense",
                context_file=tmp_path / "ctx.json",
            )
        )

    assert excinfo.value.stage is Stage.RESOURCES_PROVISIONED
    assert database.calls == []


def test_application_deployment_requires_context(tmp_path, fake_az) -> None:
    with pytest.raises(DeploymentError) as excinfo:
        deploy_application(AzureCli(fake_az, "az"), context_file=tmp_path / "missing.json")

    assert excinfo.value.stage is Stage.APP_DEPLOYED
    assert fake_az.commands == []


class RecordingDeployer:
    def __init__(self) -> None:
        self.packages = []

    def deploy(self, context, package_path, *, configure_settings=False) -> str:
        assert package_path.parent.is_dir()
        self.packages.append(package_path)
        return context.web_app_url


def test_application_package_directory_is_removed(tmp_path, fake_az, make_context) -> None:
    context_file = write_context(make_context(), tmp_path / "ctx.json")
    deployer = RecordingDeployer()

    url = deploy_application(AzureCli(fake_az, "az"), context_file=context_file, deployer=deployer)

    assert url == "https://app-expense-abc.azurewebsites.net"
    assert deployer.packages[0].name == "app.zip"
    assert not deployer.packages[0].parent.exists()
