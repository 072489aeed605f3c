"""
Configuration loader for the model catalog.

Loads the YAML model catalog at startup.
"""
import logging
from pathlib import Path
from typing import Union

import yaml

from src.ai.registry import ModelInfo, ProviderType

logger = logging.getLogger(__name__)


def parse_model_entry(data: dict) -> ModelInfo:
    """Build a ModelInfo from one catalog entry."""
    return ModelInfo(
        id=str(data["id"]),
        name=str(data.get("name") or data["id"]),
        provider=ProviderType(str(data["provider"]).lower()),
        max_tokens=int(data.get("max_tokens", 4096)),
    )


def load_model_catalog(path: Union[str, Path]) -> list[ModelInfo]:
    """
    Load model catalog from a YAML file.

    Expected format:
        models:
          - id: claude-sonnet-4-20250514
            name: Claude Sonnet 4
            provider: anthropic
            max_tokens: 200000

    Invalid entries are skipped with an error log; a missing file
    yields an empty catalog.
    """
    path = Path(path)
    if not path.exists():
        logger.warning("Model catalog not found: %s", path)
        return []

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to read model catalog %s: %s", path, e)
        return []

    models = []
    for entry in data.get("models", []):
        try:
            models.append(parse_model_entry(entry))
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Skipping invalid model entry %r: %s", entry, e)

    logger.info("Loaded %d models from %s", len(models), path.name)
    return models
