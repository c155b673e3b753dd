"""Tests for the esr-ico command line entry point."""

from __future__ import annotations

import json
import logging

import pytest
import yaml

from cli import main as cli
from esr_token.constants import ONE_ETHER, tokens

from conftest import ALICE, BOB, OWNER


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path, deployment_config):
    path = tmp_path / "deployment.yml"
    path.write_text(yaml.safe_dump(deployment_config))
    return path


def _script(tmp_path, steps, name="script.json"):
    path = tmp_path / name
    path.write_text(json.dumps({"steps": steps}))
    return path


def _lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.strip()]


def test_simulate_reports_each_step(tmp_path, config_file, capsys) -> None:
    script = _script(
        tmp_path,
        [
            {"op": "ico.start", "sender": OWNER, "args": {"end_at": "2019-06-01T00:00:00Z"}},
            {"op": "ico.whitelist", "sender": OWNER, "args": {"address": ALICE}},
            {"op": "ico.buy_tokens", "sender": ALICE, "value": "2 eth"},
            {"op": "ico.buy_tokens", "sender": BOB, "value": "1 eth", "expect_error": "NotWhitelisted"},
        ],
    )
    state_path = tmp_path / "out" / "state.json"

    exit_code = cli.main(
        [
            "simulate",
            "--config",
            str(config_file),
            "--script",
            str(script),
            "--state-path",
            str(state_path),
            "--log-level",
            "WARNING",
        ]
    )

    assert exit_code == 0
    lines = _lines(capsys.readouterr().out)
    assert [line["step"] for line in lines] == [1, 2, 3, 4]
    assert all(line["matched"] for line in lines)
    assert lines[2]["result"] == tokens(7200)
    assert lines[3]["error"]["code"] == "NotWhitelisted"
    state = json.loads(state_path.read_text())
    assert state["token"]["balances"][ALICE] == tokens(7200)
    assert state["funds"]["balances"][ALICE] == 98 * ONE_ETHER


def test_simulate_resumes_from_state(tmp_path, config_file, capsys) -> None:
    state_path = tmp_path / "state.json"
    first = _script(
        tmp_path,
        [{"op": "ico.start", "sender": OWNER, "args": {"end_at": "2019-06-01T00:00:00Z"}}],
        name="first.json",
    )
    assert (
        cli.main(
            ["simulate", "--config", str(config_file), "--script", str(first), "--state-path", str(state_path)]
        )
        == 0
    )
    second = _script(
        tmp_path,
        [{"op": "ico.touch", "sender": BOB, "at": "2019-06-01T00:00:00Z"}],
        name="second.json",
    )
    capsys.readouterr()

    exit_code = cli.main(
        ["simulate", "--config", str(config_file), "--script", str(second), "--resume", str(state_path)]
    )

    assert exit_code == 0
    (line,) = _lines(capsys.readouterr().out)
    assert line["result"] == "NOT_COMPLETED"
    assert line["logs"] == [{"event": "ICONotCompleted", "args": {}}]


def test_simulate_returns_one_on_mismatch(tmp_path, config_file, capsys) -> None:
    script = _script(tmp_path, [{"op": "ico.suspend", "sender": OWNER}])
    assert cli.main(["simulate", "--config", str(config_file), "--script", str(script)]) == 1
    (line,) = _lines(capsys.readouterr().out)
    assert line["error"]["code"] == "InvalidState"


def test_simulate_rejects_invalid_config(tmp_path, deployment_config) -> None:
    deployment_config["token"]["exchange_ratio"] = 0
    config = tmp_path / "bad.json"
    config.write_text(json.dumps(deployment_config))
    script = _script(tmp_path, [])
    assert cli.main(["simulate", "--config", str(config), "--script", str(script)]) == 2


def test_simulate_missing_files(tmp_path, config_file) -> None:
    assert (
        cli.main(["simulate", "--config", str(tmp_path / "nope.yml"), "--script", "x.json"])
        == 2
    )
    assert (
        cli.main(["simulate", "--config", str(config_file), "--script", str(tmp_path / "nope.json")])
        == 2
    )


def test_quote_uses_bonus_schedule(config_file, capsys) -> None:
    assert cli.main(["quote", "--config", str(config_file), "--eth", "2"]) == 0
    quote = json.loads(capsys.readouterr().out)
    assert quote == {
        "at": "2018-09-01T00:00:00Z",
        "wei": 2 * ONE_ETHER,
        "bonus_pct": 20,
        "tokens": tokens(7200),
        "tokens_display": "7200",
    }

    assert (
        cli.main(["quote", "--config", str(config_file), "--eth", "0.5", "--at", "2019-05-01T00:00:00Z"])
        == 0
    )
    quote = json.loads(capsys.readouterr().out)
    assert quote["bonus_pct"] == 0
    assert quote["tokens_display"] == "1500"


def test_quote_needs_an_ico_section(tmp_path, deployment_config) -> None:
    del deployment_config["ico"]
    config = tmp_path / "token.yml"
    config.write_text(yaml.safe_dump(deployment_config))
    assert cli.main(["quote", "--config", str(config), "--eth", "1"]) == 2


def test_load_document_formats(tmp_path) -> None:
    toml_file = tmp_path / "config.toml"
    toml_file.write_text('start_time = "2018-09-01T00:00:00Z"\n[token]\nowner = "0xowner"\n')
    assert cli.load_config(toml_file)["token"]["owner"] == "0xowner"

    ini_file = tmp_path / "config.ini"
    ini_file.write_text("[token]\n")
    with pytest.raises(ValueError, match="Unsupported file format"):
        cli.load_document(ini_file)
    broken = tmp_path / "broken.json"
    broken.write_text("{")
    with pytest.raises(ValueError, match="Invalid JSON"):
        cli.load_document(broken)
    listing = tmp_path / "list.yml"
    listing.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError, match="object mapping"):
        cli.load_config(listing)


def test_format_tokens() -> None:
    assert cli.format_tokens(tokens(7200)) == "7200"
    assert cli.format_tokens(tokens(1) // 4) == "0.25"
    assert cli.format_tokens(0) == "0"
