"""
Configuration management and loading.

Reads ledger settings from a YAML file with strict validation.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

from ..storage.db import DEFAULT_BUSY_TIMEOUT, DEFAULT_DB_PATH
from ..storage.repository import DEFAULT_RETENTION_DAYS


@dataclass(frozen=True)
class LedgerConfig:
    """Settings for a UsageLedger deployment."""
    db_path: str = DEFAULT_DB_PATH
    retention_days: int = DEFAULT_RETENTION_DAYS
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT

    def __post_init__(self):
        """Validate values are usable."""
        if not self.db_path:
            raise ValueError("db_path cannot be empty")
        if self.retention_days <= 0:
            raise ValueError("retention_days must be > 0")
        if self.busy_timeout <= 0:
            raise ValueError("busy_timeout must be > 0")

    def with_overrides(self, **overrides: Any) -> "LedgerConfig":
        """Return a copy with every non-None override applied."""
        values = {
            "db_path": self.db_path,
            "retention_days": self.retention_days,
            "busy_timeout": self.busy_timeout,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return LedgerConfig(**values)


def load_ledger_config(path: str) -> LedgerConfig:
    """Load and validate ledger configuration from a YAML file.

    Expected layout::

        ledger:
          db_path: usage_ledger.db
          retention_days: 90
          busy_timeout: 30.0

    Missing keys take their defaults; unknown keys are errors.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated LedgerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Ledger config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}") from e

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - {'ledger'}
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    ledger_data = raw_config.get('ledger') or {}
    if not isinstance(ledger_data, dict):
        raise ValueError("'ledger' must be a dictionary")

    return _parse_ledger_config(ledger_data)


def _parse_ledger_config(data: Dict) -> LedgerConfig:
    """Parse and validate the 'ledger' section.

    Raises:
        ValueError: If the section is invalid
    """
    allowed_keys = {'db_path', 'retention_days', 'busy_timeout'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown ledger keys: {unknown_keys}")

    values = {}

    if 'db_path' in data:
        db_path = data['db_path']
        if not isinstance(db_path, str) or not db_path.strip():
            raise ValueError("'db_path' must be a non-empty string")
        values['db_path'] = db_path

    if 'retention_days' in data:
        retention_days = data['retention_days']
        if isinstance(retention_days, bool) or not isinstance(retention_days, int) or retention_days <= 0:
            raise ValueError("'retention_days' must be a positive integer")
        values['retention_days'] = retention_days

    if 'busy_timeout' in data:
        busy_timeout = data['busy_timeout']
        if isinstance(busy_timeout, bool) or not isinstance(busy_timeout, (int, float)) or busy_timeout <= 0:
            raise ValueError("'busy_timeout' must be > 0")
        values['busy_timeout'] = float(busy_timeout)

    return LedgerConfig(**values)
