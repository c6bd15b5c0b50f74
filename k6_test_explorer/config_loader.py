"""Load explorer configuration from YAML files."""

import asyncio
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from k6_test_explorer.models.config import ExplorerConfig

log = logging.getLogger(__name__)

CONFIG_FILE_NAME = "k6-test-explorer.yaml"


async def load_config(config_path: Path) -> ExplorerConfig:
    """Load and validate an explorer configuration file.

    Args:
        config_path: Path to a YAML file holding ExplorerConfig fields

    Returns:
        Parsed configuration

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty, is not valid YAML, or does not
            match the configuration schema

    """
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    content = await asyncio.to_thread(config_path.read_text, encoding="utf-8")

    try:
        data: Any = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty config file: {config_path}")

    if not isinstance(data, dict):
        raise ValueError(f"Invalid config schema in {config_path}: expected a mapping")

    try:
        return ExplorerConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid config schema in {config_path}: {e}") from e


async def find_config(workspace_roots: list[Path]) -> ExplorerConfig:
    """Load the first workspace-level config file, or defaults if none exists."""
    for root in workspace_roots:
        candidate = root / CONFIG_FILE_NAME
        if candidate.is_file():
            log.info("Loading config from %s", candidate)
            return await load_config(candidate)

    return ExplorerConfig()
