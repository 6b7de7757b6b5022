from __future__ import annotations

import pytest

from expense_backend.deploy.sid import sid_literal, sql_sid_from_client_id


def test_sid_reverses_the_first_three_guid_groups() -> None:
    sid = sql_sid_from_client_id("00112233-4455-6677-8899-aabbccddeeff")

    assert sid.hex() == "33221100554477668899aabbccddeeff"
    assert len(sid) == 16


def test_sid_literal_is_upper_case_hex() -> None:
    assert sid_literal(" 00112233-4455-6677-8899-AABBCCDDEEFF ") == "0x33221100554477668899AABBCCDDEEFF"


def test_invalid_client_id_is_rejected() -> None:
    with pytest.raises(ValueError):
        sql_sid_from_client_id("not-a-guid")
