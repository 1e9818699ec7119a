"""Tests for the engine module's session helpers."""

import pytest

from fulfillment_kernel.db.engine import get_engine, get_session, session_scope
from fulfillment_kernel.services.sequence_service import SequenceService


def test_scope_commits(session_factory):
    with session_scope() as s:
        SequenceService(s).next_value("scoped")

    check = get_session()
    try:
        assert SequenceService(check).current_value("scoped") == 1
    finally:
        check.close()


def test_scope_rolls_back_and_reraises(session_factory, captured_logs):
    with pytest.raises(RuntimeError, match="boom"):
        with session_scope(session_factory) as s:
            SequenceService(s).next_value("doomed")
            raise RuntimeError("boom")

    check = session_factory()
    try:
        assert SequenceService(check).current_value("doomed") is None
    finally:
        check.close()
    assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


def test_engine_reports_dialect(engine, database_url):
    assert get_engine() is engine
    assert engine.dialect.name == database_url.split(":")[0].split("+")[0]
