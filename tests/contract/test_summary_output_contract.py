from __future__ import annotations

import re
from pathlib import Path

import pandas as pd

from erp_import.cli.__main__ import main as cli_main

"""SUMMARY line contract for ``run``: one stage line, then one commit line."""

STAGE_RE = re.compile(
    r"^SUMMARY stage session=[0-9a-f-]{36} type=[A-Z]+ rows=\d+ valid=\d+ warning=\d+ "
    r"invalid=\d+ duplicates=\d+ quality=\d{1,3}$"
)
COMMIT_RE = re.compile(
    r"^SUMMARY commit session=[0-9a-f-]{36} status=[a-z]+ processed=\d+ failed=\d+ skipped=\d+ "
    r"elapsed_sec=\d+(\.\d+)?$"
)


def test_summary_lines(temp_workdir: Path, write_config, grn_headers, grn_rows, monkeypatch, capsys):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    pd.DataFrame(grn_rows, columns=grn_headers).to_csv(temp_workdir / "data" / "grn.csv", index=False)

    assert cli_main(["run", "data/grn.csv", "--by", "asha"]) == 0

    summary = [line for line in capsys.readouterr().out.splitlines() if line.startswith("SUMMARY")]
    assert len(summary) == 2
    assert STAGE_RE.match(summary[0]), summary[0]
    assert COMMIT_RE.match(summary[1]), summary[1]
    stage_id = summary[0].split()[2]
    assert stage_id in summary[1]
