"""Application configuration loaded from environment and config files."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


# Default board definition shipped with the repository
DEFAULT_BOARD_PATH = Path(__file__).resolve().parents[3] / "config" / "board.yml"


class StateConfig(BaseSettings):
    """Where ledger, counter-proposal and phase state is persisted."""

    model_config = {"env_prefix": "BOARDROOM_STATE_"}

    directory: str = "data/state"


class AuditConfig(BaseSettings):
    """Audit archive configuration."""

    model_config = {"env_prefix": "BOARDROOM_AUDIT_"}

    log_dir: str = "data/audit"
    log_file: str = "access_audit.jsonl"
    hash_algorithm: str = "sha256"


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "BOARDROOM_"}

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    board_config_path: str = str(DEFAULT_BOARD_PATH)
    # Project root that governance asset patterns are resolved against
    base_dir: str = "."

    state: StateConfig = Field(default_factory=StateConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
