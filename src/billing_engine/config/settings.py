"""
Centralized settings and path configuration for the billing engine.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


ENV_PREFIX = "BILLING_ENGINE_"


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 3 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _env_path(name: str, default: Path) -> Path:
    value = _env(name)
    return Path(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None or value.strip() == '':
        return default
    return int(value)


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path
    data_dir: Path

    # Rule files
    rules_csv: Path
    compiled_rules: Path
    rule_history: Path

    # Transaction and context tables
    transactions_csv: Path
    shipments_csv: Path
    orders_csv: Path

    # Batch tuning
    writer_max_workers: int = 8
    writer_batch_size: int = 100
    default_limit: int = 1000

    log_level: str = "INFO"

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the project structure and environment."""
        root = project_root or get_project_root()
        data_dir = _env_path('DATA_DIR', root / 'data')

        return cls(
            project_root=root,
            data_dir=data_dir,
            rules_csv=_env_path('RULES_CSV', data_dir / 'markup_rules.csv'),
            compiled_rules=_env_path('COMPILED_RULES', data_dir / 'compiled_rules.json'),
            rule_history=_env_path('RULE_HISTORY', data_dir / 'markup_rule_history.jsonl'),
            transactions_csv=_env_path('TRANSACTIONS_CSV', data_dir / 'transactions.csv'),
            shipments_csv=_env_path('SHIPMENTS_CSV', data_dir / 'shipments.csv'),
            orders_csv=_env_path('ORDERS_CSV', data_dir / 'orders.csv'),
            writer_max_workers=_env_int('WRITER_MAX_WORKERS', 8),
            writer_batch_size=_env_int('WRITER_BATCH_SIZE', 100),
            default_limit=_env_int('DEFAULT_LIMIT', 1000),
            log_level=_env('LOG_LEVEL', 'INFO'),
            api_host=_env('HOST', '0.0.0.0'),
            api_port=_env_int('PORT', 8000),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings():
    """Drop the cached settings so the next call reloads them."""
    global _settings
    _settings = None
