from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..excel.coerce import DEFAULT_NULL_SENTINELS
from ..excel.reader import DEFAULT_MAX_ROWS
from ..models.quality_metrics import QualityThresholds

"""Config loader.

Responsibilities:
- Load YAML config (default config/import.yml)
- Validate against the bundled JSON schema (unknown keys rejected)
- Apply defaults for every optional key
"""

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "ImportConfig",
    "SCHEMA_PATH",
    "DEFAULT_CONFIG_PATH",
    "load_config",
    "default_config",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/import.yml")


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback.

    Environment variables (DATABASE_URL / PG*) take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    organization_id: str  # Tenant scope for sessions, history and master data
    max_rows: int = DEFAULT_MAX_ROWS  # Data-row ceiling per upload
    stale_after_days: int = 365  # Older dates get a warning
    outlier_factor: float = 3.0  # Multiple of the historical average that warns
    null_sentinels: frozenset[str] = DEFAULT_NULL_SENTINELS
    import_types: tuple[str, ...] | None = None  # None = every known type accepted
    logs_dir: str = "logs"
    quality: QualityThresholds = field(default_factory=QualityThresholds)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


def default_config(organization_id: str) -> ImportConfig:
    return ImportConfig(organization_id=organization_id)


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or not JSON, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")

    _validate_config_schema(data)

    quality_raw = data.get("quality", {})
    defaults = QualityThresholds()
    quality = QualityThresholds(
        review_source_below=float(quality_raw.get("review_source_below", defaults.review_source_below)),
        good_score=float(quality_raw.get("good_score", defaults.good_score)),
    )
    if quality.review_source_below > quality.good_score:
        raise ConfigError("quality.review_source_below must not exceed quality.good_score")

    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )

    sentinels = data.get("null_sentinels")
    import_types = data.get("import_types")
    return ImportConfig(
        organization_id=data["organization_id"],
        max_rows=data.get("max_rows", DEFAULT_MAX_ROWS),
        stale_after_days=data.get("stale_after_days", 365),
        outlier_factor=float(data.get("outlier_factor", 3.0)),
        null_sentinels=(
            frozenset(s.strip().upper() for s in sentinels) if sentinels is not None else DEFAULT_NULL_SENTINELS
        ),
        import_types=tuple(import_types) if import_types else None,
        logs_dir=data.get("logs_dir", "logs"),
        quality=quality,
        database=db,
    )
