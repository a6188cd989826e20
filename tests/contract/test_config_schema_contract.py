from __future__ import annotations

import json
import shutil
from pathlib import Path

import jsonschema
import yaml

from erp_import.config.loader import SCHEMA_PATH, load_config

"""Config schema contract: the bundled schema is valid draft-07 and accepts the shipped example."""

PROJECT_ROOT = Path(__file__).resolve().parents[2]
EXAMPLE = PROJECT_ROOT / "config" / "import.example.yml"


def test_schema_is_valid_draft7():
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    jsonschema.Draft7Validator.check_schema(schema)
    assert schema["required"] == ["organization_id"]
    assert schema["additionalProperties"] is False


def test_example_config_validates():
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    data = yaml.safe_load(EXAMPLE.read_text(encoding="utf-8"))
    jsonschema.validate(data, schema)


def test_example_config_loads(tmp_path: Path):
    cfg_path = tmp_path / "import.yml"
    shutil.copy(EXAMPLE, cfg_path)
    cfg = load_config(cfg_path)
    assert cfg.import_types == ("GRN", "STOCK", "SALES", "PURCHASE", "VOUCHER", "PAYROLL")
    assert "#N/A" in cfg.null_sentinels
