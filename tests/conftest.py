# Shared pytest fixtures
from __future__ import annotations

import tempfile
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from erp_import.config.loader import ImportConfig
from erp_import.db.store import MemoryImportStore
from erp_import.logging.error_log import ErrorLogBuffer
from erp_import.logging.init import reset_logging
from erp_import.services.orchestrator import ImportPipeline

TODAY = date(2024, 6, 30)

GRN_HEADERS = ["GRN Number", "Item Code", "Supplier Name", "GRN Date", "Quantity Received", "Unit Rate"]


@pytest.fixture(autouse=True)
def _clean_logging():
    # StreamHandler binds sys.stdout at creation; capsys swaps it per test
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """organization_id: org-001
max_rows: 100
stale_after_days: 365
outlier_factor: 3.0
logs_dir: logs
quality:
  review_source_below: 60
  good_score: 80
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "import.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture()
def write_sheet(tmp_path: Path):
    """Write header + rows to .csv or .xlsx via pandas and return the path."""

    def _write(name: str, headers: list[str], rows: list[list]) -> Path:
        path = tmp_path / name
        df = pd.DataFrame(rows, columns=headers)
        if path.suffix == ".csv":
            df.to_csv(path, index=False)
        else:
            df.to_excel(path, index=False, engine="openpyxl")
        return path

    return _write


@pytest.fixture()
def grn_rows() -> list[list]:
    return [
        ["GRN-001", "ITM-1", "Acme Mills", "01/06/2024", 10, 5.5],
        ["GRN-001", "ITM-2", "Acme Mills", "01/06/2024", 4, 12],
        ["GRN-002", "ITM-1", "Delta Yarns", "02/06/2024", 7, 5.5],
    ]


@pytest.fixture()
def config(tmp_path: Path) -> ImportConfig:
    return ImportConfig(organization_id="org-001", max_rows=100, logs_dir=str(tmp_path / "logs"))


@pytest.fixture()
def store() -> MemoryImportStore:
    return MemoryImportStore(items={"ITM-1", "ITM-2", "ITM-3"})


@pytest.fixture()
def pipeline(store: MemoryImportStore, config: ImportConfig, tmp_path: Path) -> ImportPipeline:
    return ImportPipeline(store, config, error_log=ErrorLogBuffer(tmp_path / "logs"), today=TODAY)


@pytest.fixture()
def grn_headers() -> list[str]:
    return list(GRN_HEADERS)


@pytest.fixture()
def today() -> date:
    return TODAY
