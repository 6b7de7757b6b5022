"""Prepare the Azure SQL database: schema, identity user, permissions, procedures."""

from __future__ import annotations

import logging
import re
import struct
import time
from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import quote_plus

import httpx
from azure.identity import DefaultAzureCredential
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import NullPool

from ..app.migrations import upgrade_connection
from .azcli import AzureCli
from .sid import sid_literal

LOGGER = logging.getLogger(__name__)

SQL_SCOPE = "https://database.windows.net/.default"
SQL_COPT_SS_ACCESS_TOKEN = 1256
ODBC_DRIVER = "ODBC Driver 18 for SQL Server"
PUBLIC_IP_ENDPOINT = "https://api.ipify.org"
STORED_PROCEDURES_SCRIPT = Path(__file__).resolve().parents[1] / "sql" / "stored_procedures.sql"

_BATCH_SEPARATOR = re.compile(r"^\s*GO\s*;?\s*$", re.IGNORECASE | re.MULTILINE)

DATABASE_ROLES = ("db_datareader", "db_datawriter")


class DatabaseSetupError(RuntimeError):
    """Raised when the database cannot be prepared for the application."""


def split_batches(script: str) -> List[str]:
    """Split a T-SQL script on ``GO`` separator lines."""

    return [batch.strip() for batch in _BATCH_SEPARATOR.split(script) if batch.strip()]


def quote_identifier(name: str) -> str:
    return "[" + name.replace("]", "]]") + "]"


def identity_user_statements(identity_name: str, client_id: str) -> List[str]:
    """T-SQL that maps the managed identity to a database user with app permissions.

    The user is created from the identity's SID so no directory lookup (and no
    Directory Readers role on the server) is required.
    """

    user = quote_identifier(identity_name)
    literal_name = identity_name.replace("'", "''")
    statements = [
        f"IF NOT EXISTS (SELECT 1 FROM sys.database_principals WHERE name = N'{literal_name}') "
        f"CREATE USER {user} WITH SID = {sid_literal(client_id)}, TYPE = E",
    ]
    for role in DATABASE_ROLES:
        statements.append(
            f"IF IS_ROLEMEMBER('{role}', N'{literal_name}') = 0 ALTER ROLE {role} ADD MEMBER {user}"
        )
    statements.append(f"GRANT EXECUTE TO {user}")
    return statements


def lookup_public_ip(client: Optional[httpx.Client] = None, timeout: float = 10.0) -> str:
    try:
        if client is None:
            response = httpx.get(PUBLIC_IP_ENDPOINT, params={"format": "json"}, timeout=timeout)
        else:
            response = client.get(PUBLIC_IP_ENDPOINT, params={"format": "json"})
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise DatabaseSetupError(f"Could not determine the public IP address: {exc}") from exc
    return response.json()["ip"]


def _token_struct(credential) -> bytes:
    token_bytes = credential.get_token(SQL_SCOPE).token.encode("utf-16-le")
    return struct.pack(f"<I{len(token_bytes)}s", len(token_bytes), token_bytes)


def build_token_engine(server_fqdn: str, database_name: str, credential=None) -> Engine:
    """Engine whose connections authenticate with an Entra access token."""

    import pyodbc

    credential = credential or DefaultAzureCredential()
    connection_string = (
        f"Driver={{{ODBC_DRIVER}}};Server=tcp:{server_fqdn},1433;Database={database_name};"
        "Encrypt=yes;TrustServerCertificate=no;"
    )

    def connect():
        return pyodbc.connect(
            connection_string,
            attrs_before={SQL_COPT_SS_ACCESS_TOKEN: _token_struct(credential)},
            timeout=30,
        )

    return create_engine("mssql+pyodbc://", creator=connect, poolclass=NullPool)


def identity_database_url(server_fqdn: str, database_name: str, client_id: str) -> str:
    """SQLAlchemy URL the web app uses to connect as its user-assigned identity."""

    odbc = (
        f"Driver={{{ODBC_DRIVER}}};Server=tcp:{server_fqdn},1433;Database={database_name};"
        f"Authentication=ActiveDirectoryMsi;UID={client_id};"
        "Encrypt=yes;TrustServerCertificate=no;"
    )
    return f"mssql+pyodbc:///?odbc_connect={quote_plus(odbc)}"


EngineFactory = Callable[[str, str], Engine]


class DatabaseInitializer:
    def __init__(
        self,
        cli: AzureCli,
        *,
        engine_factory: EngineFactory = build_token_engine,
        ip_lookup: Callable[[], str] = lookup_public_ip,
        sleep: Callable[[float], None] = time.sleep,
        procedures_script: Path = STORED_PROCEDURES_SCRIPT,
        migrate: Callable[[Connection], None] = upgrade_connection,
    ) -> None:
        self._cli = cli
        self._engine_factory = engine_factory
        self._ip_lookup = ip_lookup
        self._sleep = sleep
        self._procedures_script = procedures_script
        self._migrate = migrate

    def wait_for_database(self, seconds: float) -> None:
        if seconds > 0:
            LOGGER.info("Waiting %.0f seconds for the SQL server to become ready", seconds)
            self._sleep(seconds)

    def open_firewall(self, resource_group: str, server_name: str) -> str:
        ip_address = self._ip_lookup()
        rule_name = "AllowDeployer-" + ip_address.replace(".", "-")
        LOGGER.info("Allowing %s through the firewall of %s", ip_address, server_name)
        self._cli.json(
            "sql",
            "server",
            "firewall-rule",
            "create",
            "--resource-group",
            resource_group,
            "--server",
            server_name,
            "--name",
            rule_name,
            "--start-ip-address",
            ip_address,
            "--end-ip-address",
            ip_address,
        )
        return rule_name

    def apply_stored_procedures(self, connection: Connection) -> int:
        batches = split_batches(self._procedures_script.read_text(encoding="utf-8"))
        for batch in batches:
            connection.exec_driver_sql(batch)
        LOGGER.info("Applied %d stored procedure batches", len(batches))
        return len(batches)

    def create_identity_user(
        self, connection: Connection, identity_name: str, client_id: str
    ) -> None:
        for statement in identity_user_statements(identity_name, client_id):
            connection.exec_driver_sql(statement)
        LOGGER.info("Database user %s has read, write and execute permissions", identity_name)

    def initialize(
        self,
        *,
        resource_group: str,
        server_name: str,
        server_fqdn: str,
        database_name: str,
        identity_name: str,
        identity_client_id: str,
        open_firewall: bool,
        wait_seconds: float = 0,
    ) -> None:
        self.wait_for_database(wait_seconds)
        if open_firewall:
            self.open_firewall(resource_group, server_name)

        engine = self._engine_factory(server_fqdn, database_name)
        try:
            with engine.begin() as connection:
                LOGGER.info("Applying schema migrations to %s", database_name)
                self._migrate(connection)
            with engine.begin() as connection:
                self.create_identity_user(connection, identity_name, identity_client_id)
            with engine.begin() as connection:
                self.apply_stored_procedures(connection)
        finally:
            engine.dispose()
