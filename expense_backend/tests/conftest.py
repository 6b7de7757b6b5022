from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Callable, Generator, List, Sequence

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the project root (which exposes the ``expense_backend`` package) is on ``sys.path``
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from expense_backend.app import models
from expense_backend.app.config import AppSettings, get_settings
from expense_backend.app.database import Base, enable_sqlite_foreign_keys
from expense_backend.app.main import app
from expense_backend.app.procedures import ProcedureGateway, get_gateway
from expense_backend.app.services import ChatService, get_chat_service
from expense_backend.deploy.context import DeploymentContext

APP_ENV_VARS = (
    "DATABASE_URL",
    "AZURE_CLIENT_ID",
    "OPENAI_ENDPOINT",
    "OPENAI_MODEL_NAME",
    "SEARCH_ENDPOINT",
    "APPLICATIONINSIGHTS_CONNECTION_STRING",
    "RUN_MIGRATIONS_ON_STARTUP",
    "USE_STORED_PROCEDURES",
    "CHAT_MAX_TOOL_ROUNDS",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch) -> Generator[None, None, None]:
    for name in APP_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def seed_reference_data(session) -> None:
    """Mirror the rows the initial migration seeds."""

    session.add_all(
        [
            models.Role(id=1, name="Employee", description="Submits expenses"),
            models.Role(id=2, name="Manager", description="Reviews and approves expenses"),
        ]
    )
    session.add_all(
        [
            models.ExpenseStatus(id=index, name=name)
            for index, name in enumerate(("Draft", "Submitted", "Approved", "Rejected"), start=1)
        ]
    )
    session.add_all(
        [
            models.ExpenseCategory(id=index, name=name)
            for index, name in enumerate(
                ("Travel", "Meals", "Supplies", "Accommodation", "Other"), start=1
            )
        ]
    )
    session.add(models.User(id=2, name="Bob Manager", email="bob.manager@example.co.uk", role_id=2))
    session.flush()
    session.add(
        models.User(
            id=1, name="Alice Example", email="alice@example.co.uk", role_id=1, manager_id=2
        )
    )
    session.commit()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    with factory() as session:
        seed_reference_data(session)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def gateway(session_factory: sessionmaker) -> ProcedureGateway:
    return ProcedureGateway(lambda: session_factory, use_stored_procedures=False)


@pytest.fixture
def make_settings() -> Callable[..., AppSettings]:
    def factory(**overrides) -> AppSettings:
        values = dict(
            database_url=None,
            azure_client_id=None,
            openai_endpoint=None,
            openai_model_name="gpt-4o",
            openai_api_version="2024-06-01",
            search_endpoint=None,
            app_insights_connection_string=None,
            run_migrations_on_startup=False,
            use_stored_procedures=None,
            chat_max_tool_rounds=8,
            log_level="INFO",
        )
        values.update(overrides)
        return AppSettings(**values)

    return factory


@pytest.fixture
def chat_service(make_settings) -> ChatService:
    return ChatService(make_settings())


def _client_for(gateway: ProcedureGateway, chat: ChatService) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_chat_service] = lambda: chat
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_gateway, None)
        app.dependency_overrides.pop(get_chat_service, None)


@pytest.fixture
def client(gateway: ProcedureGateway, chat_service: ChatService) -> Generator[TestClient, None, None]:
    yield from _client_for(gateway, chat_service)


@pytest.fixture
def client_factory(chat_service: ChatService):
    """Build a client around any gateway, e.g. one whose database is unavailable."""

    clients: List[Generator[TestClient, None, None]] = []

    def factory(gateway: ProcedureGateway, chat: ChatService | None = None) -> TestClient:
        generator = _client_for(gateway, chat or chat_service)
        clients.append(generator)
        return next(generator)

    yield factory
    for generator in clients:
        generator.close()


class FakeAzureCli:
    """Runner for ``AzureCli`` that answers from a table of canned results."""

    def __init__(self, responses=None) -> None:
        self.commands: List[List[str]] = []
        self.responses = list(responses or [])

    def __call__(self, command: Sequence[str]) -> subprocess.CompletedProcess:
        args = list(command[1:])
        self.commands.append(args)
        for matcher, result in self.responses:
            if matcher(args):
                if callable(result):
                    result = result(args)
                returncode, stdout, stderr = result
                return subprocess.CompletedProcess(command, returncode, stdout, stderr)
        return subprocess.CompletedProcess(command, 0, "", "")

    def on(self, *prefix: str, stdout: str = "", returncode: int = 0, stderr: str = "") -> "FakeAzureCli":
        self.responses.append(
            (lambda args: args[: len(prefix)] == list(prefix), (returncode, stdout, stderr))
        )
        return self

    def called(self, *prefix: str) -> List[List[str]]:
        return [args for args in self.commands if args[: len(prefix)] == list(prefix)]


@pytest.fixture
def fake_az() -> FakeAzureCli:
    return FakeAzureCli()


@pytest.fixture
def make_context() -> Callable[..., DeploymentContext]:
    def factory(**overrides) -> DeploymentContext:
        values = dict(
            resource_group="rg-expense",
            location="uksouth",
            web_app_name="app-expense-abc",
            web_app_url="https://app-expense-abc.azurewebsites.net",
            sql_server_name="sql-expense-abc",
            sql_server_fqdn="sql-expense-abc.database.windows.net",
            database_name="expenses",
            managed_identity_name="id-expense-abc",
            managed_identity_client_id="00112233-4455-6677-8899-aabbccddeeff",
            managed_identity_principal_id="principal-id",
        )
        values.update(overrides)
        return DeploymentContext(**values)

    return factory
