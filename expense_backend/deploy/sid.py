"""SQL Server security identifiers for Microsoft Entra principals."""

from __future__ import annotations

import uuid


def sql_sid_from_client_id(client_id: str) -> bytes:
    """Return the SID SQL Server expects for an Entra application or identity.

    The SID is the client id GUID in its mixed-endian byte layout: the first
    three groups are byte-reversed and the last eight bytes keep their order.
    """

    return uuid.UUID(client_id.strip()).bytes_le


def sid_literal(client_id: str) -> str:
    """Render the SID as a T-SQL binary literal such as ``0x1A2B...``."""

    return "0x" + sql_sid_from_client_id(client_id).hex().upper()
