"""Load and parse the worker and project configuration files."""

import logging
import secrets
import socket
from pathlib import Path

import yaml

from hwci.worker.models.check import ProjectConfig
from hwci.worker.models.provider_config import WorkerConfig

logger = logging.getLogger(__name__)

PROJECT_CONFIG_NAME = ".hwci.yml"


class ConfigError(Exception):
    """The worker configuration must be edited before the worker can run."""


def _read_yaml(path: Path) -> object:
    try:
        with path.open() as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e


def _rewrite(path: Path, config: WorkerConfig) -> None:
    """Fill in the missing values and save config to path."""
    if not config.webhook_secret:
        config.webhook_secret = secrets.token_urlsafe(32)
    if not config.name:
        config.name = socket.gethostname() or "hwci"
    path.write_text(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False))
    path.chmod(0o600)


def load_worker_config(path: Path) -> WorkerConfig:
    """Load the worker configuration.

    A missing or incomplete file is completed and written back, so that it is
    easy to edit.

    Raises:
        ConfigError: If the file was written and needs review
        ValueError: If YAML is invalid or doesn't match schema

    """
    if not path.exists():
        _rewrite(path, WorkerConfig())
        raise ConfigError(f"wrote new {path}")

    data = _read_yaml(path) or {}
    try:
        config = WorkerConfig.model_validate(data)
    except Exception as e:
        raise ValueError(f"Invalid worker configuration in {path}: {e}") from e

    if not config.name or not config.webhook_secret:
        _rewrite(path, config)
        raise ConfigError(f"wrote new {path}")
    return config


def validate_project_config(directory: Path) -> ProjectConfig:
    """Load the .hwci.yml of a checkout.

    Raises:
        FileNotFoundError: If .hwci.yml doesn't exist
        ValueError: If YAML is invalid, doesn't match schema or version

    """
    path = directory / PROJECT_CONFIG_NAME
    if not path.exists():
        raise FileNotFoundError(f"Project configuration not found: {path}")

    data = _read_yaml(path)
    if data is None:
        raise ValueError(f"Empty project configuration: {path}")

    try:
        config = ProjectConfig.model_validate(data)
    except Exception as e:
        raise ValueError(f"Invalid project configuration in {path}: {e}") from e

    if config.version != 1:
        raise ValueError(f"Unsupported version {config.version} in {path}")
    return config


def load_project_config(directory: Path) -> ProjectConfig | None:
    """Load the .hwci.yml of a checkout, or None if absent, unreadable or invalid."""
    try:
        return validate_project_config(directory)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring project configuration: {e}")
        return None
