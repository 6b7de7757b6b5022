from __future__ import annotations

import pytest

from expense_backend.deploy.azcli import AzureCli
from expense_backend.deploy.environment import ExecutionMode, detect_execution_mode
from expense_backend.deploy.identity import IdentityResolutionError, resolve_admin_identity


@pytest.mark.parametrize(
    ("environ", "expected"),
    [
        ({}, ExecutionMode.INTERACTIVE),
        ({"GITHUB_ACTIONS": "true"}, ExecutionMode.UNATTENDED),
        ({"TF_BUILD": "True"}, ExecutionMode.UNATTENDED),
        ({"CI": "1"}, ExecutionMode.UNATTENDED),
        ({"CI": "false"}, ExecutionMode.INTERACTIVE),
        ({"CI": ""}, ExecutionMode.INTERACTIVE),
    ],
)
def test_detect_execution_mode(environ, expected) -> None:
    assert detect_execution_mode(environ) is expected


def test_interactive_admin_is_the_signed_in_user(fake_az) -> None:
    fake_az.on(
        "ad",
        "signed-in-user",
        "show",
        stdout='{"id": "user-object-id", "userPrincipalName": "dev@contoso.com"}',
    )

    admin = resolve_admin_identity(AzureCli(fake_az, "az"), ExecutionMode.INTERACTIVE, {})

    assert admin.login == "dev@contoso.com"
    assert admin.object_id == "user-object-id"
    assert admin.principal_type == "User"


def test_unattended_admin_is_the_service_principal(fake_az) -> None:
    fake_az.on("ad", "sp", "show", stdout='{"id": "sp-object-id", "displayName": "expense-ci"}')

    admin = resolve_admin_identity(
        AzureCli(fake_az, "az"), ExecutionMode.UNATTENDED, {"AZURE_CLIENT_ID": "ci-client-id"}
    )

    assert admin.login == "expense-ci"
    assert admin.principal_type == "Application"
    assert fake_az.called("ad", "sp", "show")[0][:5] == ["ad", "sp", "show", "--id", "ci-client-id"]


def test_unattended_without_client_id_fails(fake_az) -> None:
    with pytest.raises(IdentityResolutionError):
        resolve_admin_identity(AzureCli(fake_az, "az"), ExecutionMode.UNATTENDED, {})
