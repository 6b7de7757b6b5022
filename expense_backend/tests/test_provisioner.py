from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from expense_backend.deploy.azcli import AzureCli, AzureCliError
from expense_backend.deploy.identity import AdminIdentity
from expense_backend.deploy.provisioner import (
    ProvisioningOutputs,
    ProvisioningRequest,
    ResourceProvisioner,
    deployment_name_for,
    parse_timestamp,
)

OUTPUTS = {
    "webAppName": {"type": "String", "value": "app-expense-abc"},
    "webAppUrl": {"type": "String", "value": "https://app-expense-abc.azurewebsites.net"},
    "sqlServerName": {"type": "String", "value": "sql-expense-abc"},
    "sqlServerFqdn": {"type": "String", "value": "sql-expense-abc.database.windows.net"},
    "databaseName": {"type": "String", "value": "expenses"},
    "managedIdentityName": {"type": "String", "value": "id-expense-abc"},
    "managedIdentityClientId": {"type": "String", "value": "11111111-2222-3333-4444-555555555555"},
    "managedIdentityPrincipalId": {"type": "String", "value": "principal-id"},
    "appInsightsConnectionString": {"type": "String", "value": "InstrumentationKey=abc"},
    "openAIEndpoint": {"type": "String", "value": ""},
    "openAIModelName": {"type": "String", "value": ""},
    "searchEndpoint": {"type": "String", "value": ""},
}


def deployment(name: str, state: str = "Succeeded", timestamp: str = "2025-01-01T00:00:00Z") -> dict:
    return {
        "name": name,
        "properties": {"provisioningState": state, "timestamp": timestamp, "outputs": OUTPUTS},
    }


@pytest.fixture
def request_() -> ProvisioningRequest:
    return ProvisioningRequest(
        resource_group="rg-expense",
        location="uksouth",
        base_name="expense",
        admin=AdminIdentity(login="dev@contoso.com", object_id="oid", principal_type="User"),
    )


def test_deployment_name_is_timestamped() -> None:
    now = datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    assert deployment_name_for("expense", now) == "expense-expense-20250304050607"


def test_outputs_require_core_values() -> None:
    outputs = ProvisioningOutputs.from_deployment_outputs("d1", OUTPUTS)
    assert outputs.web_app_name == "app-expense-abc"
    assert outputs.openai_endpoint is None
    assert outputs.app_insights_connection_string == "InstrumentationKey=abc"

    incomplete = {key: value for key, value in OUTPUTS.items() if key != "sqlServerFqdn"}
    with pytest.raises(ValueError, match="sqlServerFqdn"):
        ProvisioningOutputs.from_deployment_outputs("d1", incomplete)


def test_provision_creates_missing_group_and_deploys_incrementally(fake_az, request_) -> None:
    fake_az.on("group", "exists", stdout="false")
    fake_az.on("deployment", "group", "create", stdout=json.dumps(deployment("expense-expense-1")))

    outputs = ResourceProvisioner(AzureCli(fake_az, "az")).provision(request_, "expense-expense-1")

    assert outputs.deployment_name == "expense-expense-1"
    assert outputs.sql_server_fqdn == "sql-expense-abc.database.windows.net"
    assert fake_az.called("group", "create")
    create = fake_az.called("deployment", "group", "create")[0]
    assert create[create.index("--mode") + 1] == "Incremental"
    parameters = create[create.index("--parameters") + 1 :]
    assert "adminPrincipalType=User" in parameters
    assert "deployGenAI=false" in parameters


def test_existing_group_is_reused(fake_az, request_) -> None:
    fake_az.on("group", "exists", stdout="true")
    fake_az.on("deployment", "group", "create", stdout=json.dumps(deployment("d")))

    ResourceProvisioner(AzureCli(fake_az, "az")).provision(request_, "d")

    assert not fake_az.called("group", "create")


RUN_STARTED = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_failed_command_falls_back_to_deployment_from_this_run(fake_az, request_) -> None:
    fake_az.on("group", "exists", stdout="true")
    fake_az.on("deployment", "group", "create", returncode=1, stderr="PolicyEvaluation conflict")
    fake_az.on(
        "deployment",
        "group",
        "list",
        stdout=json.dumps(
            [
                deployment("expense-expense-old", timestamp="2024-12-01T00:00:00Z"),
                deployment("expense-expense-new", timestamp="2025-01-01T12:03:10.1234567Z"),
                deployment("expense-expense-failed", state="Failed", timestamp="2025-02-01T00:00:00Z"),
                deployment("PolicyDeployment", timestamp="2025-03-01T00:00:00Z"),
            ]
        ),
    )

    outputs = ResourceProvisioner(AzureCli(fake_az, "az")).provision(
        request_, "expense-expense-now", started_at=RUN_STARTED
    )

    assert outputs.deployment_name == "expense-expense-new"


def test_older_success_does_not_hide_a_failed_run(fake_az, request_) -> None:
    fake_az.on("group", "exists", stdout="true")
    fake_az.on(
        "deployment", "group", "create", returncode=1, stderr="InvalidTemplateDeployment: bad param"
    )
    fake_az.on(
        "deployment",
        "group",
        "list",
        stdout=json.dumps(
            [
                deployment("expense-expense-20240101000000", timestamp="2024-01-01T00:00:00Z"),
                deployment(
                    "expense-expense-20260101000000", state="Failed", timestamp="2026-01-01T00:00:00Z"
                ),
            ]
        ),
    )

    with pytest.raises(AzureCliError, match="InvalidTemplateDeployment: bad param"):
        ResourceProvisioner(AzureCli(fake_az, "az")).provision(
            request_,
            "expense-expense-20261019000000",
            started_at=datetime(2026, 10, 19, tzinfo=timezone.utc),
        )


@pytest.mark.parametrize(
    "value, expected",
    [
        ("2025-01-02T03:04:05Z", datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
        (
            "2025-01-02T03:04:05.1234567+00:00",
            datetime(2025, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc),
        ),
        ("2025-01-02T03:04:05", datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
        ("", None),
        (None, None),
        ("yesterday", None),
    ],
)
def test_parse_timestamp(value, expected) -> None:
    assert parse_timestamp(value) == expected


def test_exact_name_match_wins(fake_az, request_) -> None:
    fake_az.on("group", "exists", stdout="true")
    fake_az.on("deployment", "group", "create", returncode=1, stderr="conflict")
    fake_az.on(
        "deployment",
        "group",
        "list",
        stdout=json.dumps(
            [
                deployment("expense-expense-now", timestamp="2025-01-01T00:00:00Z"),
                deployment("expense-expense-later", timestamp="2025-06-01T00:00:00Z"),
            ]
        ),
    )

    outputs = ResourceProvisioner(AzureCli(fake_az, "az")).provision(request_, "expense-expense-now")

    assert outputs.deployment_name == "expense-expense-now"


def test_failure_without_succeeded_deployment_is_raised(fake_az, request_) -> None:
    fake_az.on("group", "exists", stdout="true")
    fake_az.on("deployment", "group", "create", returncode=1, stderr="InvalidTemplate")
    fake_az.on("deployment", "group", "list", stdout="[]")

    with pytest.raises(AzureCliError, match="InvalidTemplate"):
        ResourceProvisioner(AzureCli(fake_az, "az")).provision(request_, "d")
