from __future__ import annotations

import json
import logging
import sys

import pytest

from dcabot import cli
from dcabot.services.process_lock import single_instance_lock


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _run(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], *argv: str):
    monkeypatch.setattr(sys, "argv", ["dcabot", *argv])
    code = cli.main()
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def _error(err: str) -> str:
    # stderr interleaves JSON log lines with the command's error line
    for line in err.splitlines():
        payload = json.loads(line)
        if "level" not in payload:
            return payload["error"]
    raise AssertionError(f"no error line in stderr: {err!r}")


def _register_and_create(monkeypatch, capsys, *, amount: str = "10") -> tuple[str, str]:
    code, out, _ = _run(monkeypatch, capsys, "user-add", "--address", "inj1wallet")
    assert code == 0
    user_id = json.loads(out)["user_id"]

    code, out, _ = _run(
        monkeypatch,
        capsys,
        "plan-create",
        "--user-id",
        user_id,
        "--amount",
        amount,
        "--frequency",
        "minute",
        "--to-address",
        "inj1dest",
        "--risk-level",
        "medium_risk",
    )
    assert code == 0
    return user_id, json.loads(out)["plan_id"]


def test_user_add_is_idempotent_per_address(monkeypatch, capsys) -> None:
    _, first, _ = _run(monkeypatch, capsys, "user-add", "--address", "inj1wallet")
    _, second, _ = _run(monkeypatch, capsys, "user-add", "--address", " inj1wallet ")

    assert json.loads(first) == json.loads(second)
    assert json.loads(first)["address"] == "inj1wallet"


def test_plan_create_and_list(monkeypatch, capsys) -> None:
    user_id, plan_id = _register_and_create(monkeypatch, capsys)

    code, out, _ = _run(monkeypatch, capsys, "plan-list", "--user-id", user_id)

    assert code == 0
    plans = json.loads(out)
    assert [plan["plan_id"] for plan in plans] == [plan_id]
    assert plans[0]["amount"] == "10"
    assert plans[0]["frequency"] == "minute"
    assert plans[0]["risk_level"] == "medium_risk"
    assert plans[0]["is_active"] is True
    assert plans[0]["execution_count"] == 0


def test_plan_fire_then_history_and_total(monkeypatch, capsys) -> None:
    user_id, plan_id = _register_and_create(monkeypatch, capsys, amount="12.5")

    code, out, _ = _run(monkeypatch, capsys, "plan-fire", "--plan-id", plan_id)

    assert code == 0
    outcome = json.loads(out)
    assert outcome["status"] == "succeeded"
    assert outcome["amount"] == "12.5"
    assert outcome["tx_ref"].startswith("dryrun-")

    code, out, _ = _run(monkeypatch, capsys, "plan-total", "--user-id", user_id)
    assert code == 0
    assert json.loads(out) == {"user_id": user_id, "total_invested": "12.5"}

    code, out, _ = _run(monkeypatch, capsys, "plan-history", "--plan-id", plan_id, "--last", "5")
    assert code == 0
    assert [record["status"] for record in json.loads(out)] == ["succeeded"]


def test_plan_stop_is_reported(monkeypatch, capsys) -> None:
    _, plan_id = _register_and_create(monkeypatch, capsys)

    code, out, _ = _run(monkeypatch, capsys, "plan-stop", "--plan-id", plan_id)
    assert code == 0
    assert json.loads(out)["is_active"] is False

    code, out, _ = _run(monkeypatch, capsys, "plan-fire", "--plan-id", plan_id)
    assert code == 1
    assert json.loads(out)["status"] == "plan_inactive"


def test_invalid_plan_input_exits_2(monkeypatch, capsys) -> None:
    code, out, _ = _run(monkeypatch, capsys, "user-add", "--address", "inj1wallet")
    user_id = json.loads(out)["user_id"]

    code, out, err = _run(
        monkeypatch,
        capsys,
        "plan-create",
        "--user-id",
        user_id,
        "--amount",
        "10",
        "--frequency",
        "weekly",
        "--to-address",
        "inj1dest",
    )

    assert code == 2
    assert out == ""
    assert _error(err) == "PlanValidationError"


def test_unknown_plan_exits_2(monkeypatch, capsys) -> None:
    code, _, err = _run(monkeypatch, capsys, "plan-stop", "--plan-id", "missing")

    assert code == 2
    assert _error(err) == "PlanNotFoundError"


def test_invalid_configuration_exits_2(monkeypatch, capsys) -> None:
    monkeypatch.setenv("LEDGER_BACKEND", "sonic")

    code, _, err = _run(monkeypatch, capsys, "plan-list", "--user-id", "u-1")

    assert code == 2
    assert _error(err) == "invalid_configuration"


def test_plan_fire_refused_while_scheduler_holds_lock(monkeypatch, capsys, tmp_path) -> None:
    _, plan_id = _register_and_create(monkeypatch, capsys)

    with single_instance_lock(db_path=str(tmp_path / "state.db")):
        code, out, err = _run(monkeypatch, capsys, "plan-fire", "--plan-id", plan_id)

    assert code == 1
    assert out == ""
    assert _error(err) == "scheduler_running"


def test_serve_rejects_non_positive_resync(monkeypatch, capsys) -> None:
    code, _, err = _run(monkeypatch, capsys, "serve", "--resync-seconds", "0")

    assert code == 2
    assert _error(err) == "invalid_argument"


def test_serve_resyncs_faster_than_the_minute_cadence(monkeypatch, capsys) -> None:
    seen: list[float] = []

    def fake_run_serve(settings, *, resync_seconds):
        seen.append(resync_seconds)
        return 0

    monkeypatch.setattr(cli, "run_serve", fake_run_serve)

    code, _, _ = _run(monkeypatch, capsys, "serve")

    assert code == 0
    assert seen == [cli.DEFAULT_RESYNC_SECONDS]
    assert cli.DEFAULT_RESYNC_SECONDS < 60


def test_plan_create_help_mentions_serve_pickup_delay(monkeypatch, capsys) -> None:
    monkeypatch.setattr(sys, "argv", ["dcabot", "plan-create", "--help"])

    with pytest.raises(SystemExit) as excinfo:
        cli.main()

    assert excinfo.value.code == 0
    help_text = " ".join(capsys.readouterr().out.split())
    assert "arms it at its next resync" in help_text
