"""
Configuration schema models for the wallet ledger.

This module defines Pydantic models for validating and parsing the
ledger.config.yaml file.

Models:
    DatabaseSettings: Location of the wallet store and lock timeout
    MigrationSettings: Staging target and already-applied policy
    LoggingSettings: Log verbosity
    LedgerConfig: Root configuration model (validates entire YAML)
"""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class DatabaseSettings(BaseModel):
    """
    Wallet store settings.

    Attributes:
        path: Path to the SQLite wallet database
        busy_timeout_ms: How long to wait on a locked database. Range: 0-600000.
    """

    path: str
    busy_timeout_ms: int = 5000

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate path is non-empty."""
        if not v or v.isspace():
            raise ValueError("path cannot be empty")
        return v

    @field_validator("busy_timeout_ms")
    @classmethod
    def validate_busy_timeout_ms(cls, v: int) -> int:
        if not 0 <= v <= 600_000:
            raise ValueError(f"busy_timeout_ms must be between 0 and 600000 (got: {v})")
        return v


class MigrationSettings(BaseModel):
    """
    Migration run settings.

    Attributes:
        target: Only migrate far enough to apply this migration id.
                None applies every pending migration.
        on_already_applied: What to do when a migration is found recorded at
                the moment it would run (another process got there first)
    """

    target: UUID | None = None
    on_already_applied: Literal["skip", "fail"] = "skip"


class LoggingSettings(BaseModel):
    verbose: bool = False


class LedgerConfig(BaseModel):
    """
    Root configuration model for ledger.config.yaml.

    Example YAML:
        database:
          path: ./wallet.db
          busy_timeout_ms: 5000
        migrations:
          target: null
          on_already_applied: skip
        logging:
          verbose: false
    """

    database: DatabaseSettings
    migrations: MigrationSettings = Field(default_factory=MigrationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
