# tests/test_providers/test_replay_script.py

import json
import sys

import pytest

from app.core.exceptions import DataError
from scripts import replay_payment_event as script


def test_main_prints_summary(monkeypatch, capsys):
    seen = {}

    async def fake_replay(session_id, *, dry_run=False):
        seen.update(session_id=session_id, dry_run=dry_run)
        return {"sessionId": session_id, "created": ["E1"], "existing": []}

    monkeypatch.setattr(script, "replay", fake_replay)
    monkeypatch.setattr(sys, "argv", ["replay_payment_event.py", "cs_test_1", "--dry-run"])

    script.main()

    assert seen == {"session_id": "cs_test_1", "dry_run": True}
    assert json.loads(capsys.readouterr().out)["created"] == ["E1"]


def test_main_exits_nonzero_on_reconciliation_error(monkeypatch, capsys):
    async def failing(session_id, *, dry_run=False):
        raise DataError("Unable to resolve purchaser", code="unresolved_user")

    monkeypatch.setattr(script, "replay", failing)
    monkeypatch.setattr(sys, "argv", ["replay_payment_event.py", "cs_test_2"])

    with pytest.raises(SystemExit) as ei:
        script.main()

    assert ei.value.code == 1
    assert json.loads(capsys.readouterr().err)["code"] == "unresolved_user"
