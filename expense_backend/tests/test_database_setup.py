from __future__ import annotations

from contextlib import contextmanager
from urllib.parse import unquote_plus

import httpx
import pytest

from expense_backend.deploy.azcli import AzureCli
from expense_backend.deploy.database_setup import (
    STORED_PROCEDURES_SCRIPT,
    DatabaseInitializer,
    DatabaseSetupError,
    identity_database_url,
    identity_user_statements,
    lookup_public_ip,
    split_batches,
)

CLIENT_ID = "00112233-4455-6677-8899-aabbccddeeff"


class RecordingConnection:
    def __init__(self, log) -> None:
        self.log = log

    def exec_driver_sql(self, statement):
        self.log.append(statement)


class RecordingEngine:
    def __init__(self) -> None:
        self.statements = []
        self.transactions = 0
        self.disposed = False

    @contextmanager
    def begin(self):
        self.transactions += 1
        yield RecordingConnection(self.statements)

    def dispose(self) -> None:
        self.disposed = True


def test_split_batches_on_go_lines() -> None:
    script = "CREATE VIEW a AS SELECT 1\nGO\n  go  \nCREATE PROCEDURE b AS SELECT 2\nGO;\nSELECT 'GOOD'\n"

    assert split_batches(script) == [
        "CREATE VIEW a AS SELECT 1",
        "CREATE PROCEDURE b AS SELECT 2",
        "SELECT 'GOOD'",
    ]


def test_procedures_script_has_a_batch_per_object() -> None:
    batches = split_batches(STORED_PROCEDURES_SCRIPT.read_text(encoding="utf-8"))

    assert len(batches) == 13
    assert all(batch.startswith(("CREATE OR ALTER", "--")) for batch in batches)


def test_identity_user_statements() -> None:
    statements = identity_user_statements("id-expense", CLIENT_ID)

    assert statements[0].endswith(
        "CREATE USER [id-expense] WITH SID = 0x33221100554477668899AABBCCDDEEFF, TYPE = E"
    )
    assert "ALTER ROLE db_datareader ADD MEMBER [id-expense]" in statements[1]
    assert "ALTER ROLE db_datawriter ADD MEMBER [id-expense]" in statements[2]
    assert statements[3] == "GRANT EXECUTE TO [id-expense]"


def test_identity_database_url_uses_managed_identity() -> None:
    url = identity_database_url("sql-x.database.windows.net", "expenses", CLIENT_ID)

    assert url.startswith("mssql+pyodbc:///?odbc_connect=")
    odbc = unquote_plus(url.split("=", 1)[1])
    assert "Server=tcp:sql-x.database.windows.net,1433" in odbc
    assert "Authentication=ActiveDirectoryMsi" in odbc
    assert f"UID={CLIENT_ID}" in odbc


def test_lookup_public_ip() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ip": "203.0.113.7"}))
    with httpx.Client(transport=transport) as client:
        assert lookup_public_ip(client) == "203.0.113.7"


def test_lookup_public_ip_failure() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503))
    with httpx.Client(transport=transport) as client:
        with pytest.raises(DatabaseSetupError):
            lookup_public_ip(client)


def test_initialize_runs_every_step(fake_az) -> None:
    engine = RecordingEngine()
    migrated = []
    slept = []
    initializer = DatabaseInitializer(
        AzureCli(fake_az, "az"),
        engine_factory=lambda fqdn, database: engine,
        ip_lookup=lambda: "203.0.113.7",
        sleep=slept.append,
        migrate=migrated.append,
    )

    initializer.initialize(
        resource_group="rg-expense",
        server_name="sql-expense",
        server_fqdn="sql-expense.database.windows.net",
        database_name="expenses",
        identity_name="id-expense",
        identity_client_id=CLIENT_ID,
        open_firewall=True,
        wait_seconds=5,
    )

    assert slept == [5]
    firewall = fake_az.called("sql", "server", "firewall-rule", "create")[0]
    assert firewall[firewall.index("--name") + 1] == "AllowDeployer-203-0-113-7"
    assert firewall[firewall.index("--start-ip-address") + 1] == "203.0.113.7"
    assert len(migrated) == 1
    assert engine.statements[:4] == identity_user_statements("id-expense", CLIENT_ID)
    assert len(engine.statements) == 4 + 13
    assert engine.transactions == 3
    assert engine.disposed is True


def test_initialize_without_firewall_or_wait(fake_az) -> None:
    engine = RecordingEngine()
    initializer = DatabaseInitializer(
        AzureCli(fake_az, "az"),
        engine_factory=lambda fqdn, database: engine,
        ip_lookup=lambda: pytest.fail("IP lookup is only needed for the firewall rule"),
        sleep=lambda seconds: pytest.fail("no wait requested"),
        migrate=lambda connection: None,
    )

    initializer.initialize(
        resource_group="rg-expense",
        server_name="sql-expense",
        server_fqdn="sql-expense.database.windows.net",
        database_name="expenses",
        identity_name="id-expense",
        identity_client_id=CLIENT_ID,
        open_firewall=False,
    )

    assert fake_az.commands == []
    assert engine.disposed is True
