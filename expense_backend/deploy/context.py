"""Hand-off record written after provisioning and read by the app deployer."""

from __future__ import annotations

import json
import logging
from dataclasses import MISSING, asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTEXT_FILE = Path(".deployment-context.json")


class ContextFileError(RuntimeError):
    """The deployment context file is missing or unreadable."""


@dataclass
class DeploymentContext:
    resource_group: str
    location: str
    web_app_name: str
    web_app_url: str
    sql_server_name: str
    sql_server_fqdn: str
    database_name: str
    managed_identity_name: str
    managed_identity_client_id: str
    managed_identity_principal_id: str
    app_insights_connection_string: Optional[str] = None
    genai_enabled: bool = False
    openai_endpoint: Optional[str] = None
    openai_model_name: Optional[str] = None
    search_endpoint: Optional[str] = None
    deployment_name: Optional[str] = None
    written_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeploymentContext":
        known = {field.name for field in fields(cls)}
        missing = [
            field.name
            for field in fields(cls)
            if field.default is MISSING and field.name not in data
        ]
        if missing:
            raise ContextFileError(f"Deployment context is missing {', '.join(sorted(missing))}")
        return cls(**{key: value for key, value in data.items() if key in known})


def write_context(context: DeploymentContext, path: Path = DEFAULT_CONTEXT_FILE) -> Path:
    """Overwrite ``path`` with ``context``, stamping the write time."""

    context.written_at = datetime.now(timezone.utc).isoformat()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(context.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    LOGGER.info("Deployment context written to %s", path)
    return path


def read_context(path: Path = DEFAULT_CONTEXT_FILE) -> DeploymentContext:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ContextFileError(
            f"{path} not found; run the infrastructure deployment first"
        ) from exc
    except json.JSONDecodeError as exc:
        raise ContextFileError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ContextFileError(f"{path} must contain a JSON object")
    return DeploymentContext.from_dict(data)
