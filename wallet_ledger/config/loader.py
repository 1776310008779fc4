"""
Configuration loader for the wallet ledger.

Loads ledger.config.yaml and validates it with the Pydantic models in
schema.py.

Functions:
    load_config: Main entrypoint to load and validate ledger.config.yaml
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from wallet_ledger.exceptions import ConfigFileNotFoundError, ConfigValidationError

from .schema import LedgerConfig


def load_config(config_path: str | Path) -> LedgerConfig:
    """
    Load and validate ledger.config.yaml.

    A relative database.path is resolved against the directory holding the
    config file, so the same file works from any working directory.

    Args:
        config_path: Path to ledger.config.yaml (relative or absolute)

    Returns:
        LedgerConfig: Validated configuration

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist at the specified path
        ConfigValidationError: If YAML is invalid or config validation fails

    Example:
        >>> config = load_config("ledger.config.yaml")
        >>> config.migrations.on_already_applied
        'skip'

    Security:
        - Uses yaml.safe_load() to prevent code injection
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")

    try:
        config = LedgerConfig.model_validate(raw_config)
    except ValidationError as e:
        # Format validation errors in a user-friendly way
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            error_messages.append(f"  - {loc}: {msg}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e

    db_path = Path(config.database.path)
    if config.database.path != ":memory:" and not db_path.is_absolute():
        config.database.path = str(config_path.parent / db_path)

    return config
