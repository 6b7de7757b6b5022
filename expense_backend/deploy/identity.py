"""Resolve the principal registered as the SQL Server Entra administrator."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .azcli import AzureCli
from .environment import ExecutionMode

LOGGER = logging.getLogger(__name__)

CLIENT_ID_ENV = "AZURE_CLIENT_ID"


class IdentityResolutionError(RuntimeError):
    """The deploying principal could not be determined."""


@dataclass(frozen=True)
class AdminIdentity:
    login: str
    object_id: str
    principal_type: str  # "User" or "Application", as the SQL admin API expects


def _signed_in_user(cli: AzureCli) -> AdminIdentity:
    user = cli.json("ad", "signed-in-user", "show")
    if not user:
        raise IdentityResolutionError("No signed-in user; run 'az login' first")
    login = user.get("userPrincipalName") or user.get("mail") or user.get("displayName")
    return AdminIdentity(login=login, object_id=user["id"], principal_type="User")


def _service_principal(cli: AzureCli, client_id: str) -> AdminIdentity:
    principal = cli.json("ad", "sp", "show", "--id", client_id)
    if not principal:
        raise IdentityResolutionError(f"Service principal {client_id} was not found")
    return AdminIdentity(
        login=principal.get("displayName") or client_id,
        object_id=principal["id"],
        principal_type="Application",
    )


def resolve_admin_identity(
    cli: AzureCli,
    mode: ExecutionMode,
    environ: Optional[Mapping[str, str]] = None,
) -> AdminIdentity:
    env = os.environ if environ is None else environ
    if mode is ExecutionMode.INTERACTIVE:
        identity = _signed_in_user(cli)
    else:
        client_id = (env.get(CLIENT_ID_ENV) or "").strip()
        if not client_id:
            raise IdentityResolutionError(
                f"{CLIENT_ID_ENV} must name the automation service principal in CI"
            )
        identity = _service_principal(cli, client_id)
    LOGGER.info("Using %s %s as SQL administrator", identity.principal_type, identity.login)
    return identity
