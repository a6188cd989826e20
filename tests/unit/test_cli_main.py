from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path

import pandas as pd
import pytest

from erp_import.cli.__main__ import EXIT_FATAL, EXIT_SUCCESS, _build_parser, main
from erp_import.logging.init import get_logger


@pytest.fixture()
def memory_mode(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


@pytest.fixture()
def grn_csv(temp_workdir: Path, grn_headers, grn_rows) -> Path:
    path = temp_workdir / "data" / "grn.csv"
    pd.DataFrame(grn_rows, columns=grn_headers).to_csv(path, index=False)
    return path


def test_parser_accepts_global_options_on_both_sides():
    args = _build_parser().parse_args(["--debug", "process", "s-1"])
    assert args.debug is True
    assert args.config == Path("config/import.yml")
    args = _build_parser().parse_args(["process", "s-1", "--config", "other.yml"])
    assert args.debug is False
    assert args.config == Path("other.yml")


def test_parser_requires_reviewer():
    with pytest.raises(SystemExit):
        _build_parser().parse_args(["approve", "s-1"])


def test_parser_rejects_bad_period():
    with pytest.raises(SystemExit):
        _build_parser().parse_args(["stage", "a.csv", "--period-start", "01/06/2024"])


def test_missing_config_is_fatal(temp_workdir: Path, capsys):
    code = main(["stage", "data/grn.csv"])
    assert code == EXIT_FATAL
    assert "ERROR config: config file not found" in capsys.readouterr().out


def test_stage_prints_session_id(write_config, memory_mode, grn_csv, capsys):
    code = main(["stage", "data/grn.csv", "--user", "asha"])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS
    assert "SUMMARY stage session=" in out
    assert "type=GRN rows=3" in out
    assert "INFO quality grade: " in out
    session_line = [line for line in out.splitlines() if not line.startswith(("INFO", "WARN", "SUMMARY", "DEBUG"))]
    assert len(session_line) == 1 and len(session_line[0]) == 36


def test_inspect_shows_mapping(write_config, grn_csv, capsys):
    code = main(["inspect", "data/grn.csv", "--rows", "1"])
    out = capsys.readouterr().out
    assert code == EXIT_SUCCESS
    assert "FILE: grn.csv type=GRN detected=GRN rows=3" in out
    assert "itemCode <- Item Code" in out
    assert "row 2:" in out and "row 3:" not in out


def test_unsupported_file_is_fatal(write_config, memory_mode, temp_workdir: Path, capsys):
    (temp_workdir / "data" / "grn.pdf").write_bytes(b"%PDF")
    code = main(["run", "data/grn.pdf", "--by", "asha"])
    assert code == EXIT_FATAL
    assert "ERROR run:" in capsys.readouterr().out


def test_unknown_session_is_fatal(write_config, memory_mode, capsys):
    code = main(["approve", "no-such-session", "--by", "asha"])
    assert code == EXIT_FATAL
    assert "ERROR approve: session not found: no-such-session" in capsys.readouterr().out


def test_debug_flag_after_subcommand(write_config, grn_csv):
    code = main(["inspect", "data/grn.csv", "--debug"])
    assert code == EXIT_SUCCESS
    assert get_logger().level == 10


def test_missing_required_column_is_fatal(write_config, memory_mode, temp_workdir: Path, grn_headers, grn_rows, capsys):
    headers = [h for h in grn_headers if h != "GRN Date"]
    rows = [[v for i, v in enumerate(r) if i != 3] for r in grn_rows]
    pd.DataFrame(rows, columns=headers).to_csv(temp_workdir / "data" / "grn.csv", index=False)
    code = main(["stage", "data/grn.csv", "--type", "GRN"])
    assert code == EXIT_FATAL
    assert "ERROR stage: grn.csv: missing required columns for GRN: date" in capsys.readouterr().out


def test_stage_reports_poor_quality_grade(write_config, memory_mode, temp_workdir: Path, grn_headers, capsys):
    recent = (date.today() - timedelta(days=3)).strftime("%d/%m/%Y")
    rows = [["GRN-1", None, "Acme", recent, 3, 1], ["GRN-2", None, "Acme", recent, 3, 1]]
    pd.DataFrame(rows, columns=grn_headers).to_csv(temp_workdir / "data" / "grn.csv", index=False)
    assert main(["stage", "data/grn.csv"]) == EXIT_SUCCESS
    out = capsys.readouterr().out
    assert "quality=44" in out
    assert "INFO quality grade: poor" in out
    assert "INFO recommendation: Review data source quality" in out
