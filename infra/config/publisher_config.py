"""
Publisher configuration loading and management.

The config lives at {project_dir}/publisher.yaml. Environment overrides
(optionally from a .env file) win over the file:

    DJVU_C44, DJVU_MINIDJVU, DJVU_DJVUMAKE, DJVU_DJVUSED, DJVU_DJVM
    DJVU_PAGES_PER_DICTIONARY
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

from .schemas import PublisherConfig, optional_int


CONFIG_FILENAME = "publisher.yaml"

ENCODER_ENV_OVERRIDES = {
    "c44": "DJVU_C44",
    "minidjvu": "DJVU_MINIDJVU",
    "djvumake": "DJVU_DJVUMAKE",
    "djvused": "DJVU_DJVUSED",
    "djvm": "DJVU_DJVM",
}


class PublisherConfigManager:
    """
    Usage:
        manager = PublisherConfigManager(project_dir)
        config = manager.load()  # Returns PublisherConfig
        manager.save(config)     # Persists to disk
    """

    def __init__(self, project_dir: Path):
        self.project_dir = Path(project_dir).expanduser().resolve()
        self.config_path = self.project_dir / CONFIG_FILENAME

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> PublisherConfig:
        """Returns defaults if the file doesn't exist."""
        if not self.config_path.exists():
            return PublisherConfig()

        with open(self.config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return PublisherConfig.model_validate(data)

    def save(self, config: PublisherConfig) -> None:
        self.project_dir.mkdir(parents=True, exist_ok=True)

        data = config.model_dump(mode="json", exclude_none=True)

        with open(self.config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def update(self, updates: dict) -> PublisherConfig:
        """
        Update specific fields in the config.

        Args:
            updates: Dict of fields to update (can be nested)

        Returns:
            Updated PublisherConfig
        """
        config = self.load()
        data = config.model_dump(mode="json")

        _deep_merge(data, updates)

        new_config = PublisherConfig.model_validate(data)
        self.save(new_config)
        return new_config


def _deep_merge(base: dict, updates: dict) -> None:
    """
    Deep merge updates into base dict (mutates base).
    """
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def apply_env_overrides(config: PublisherConfig) -> PublisherConfig:
    updates = {}
    encoders = {
        name: os.environ[var]
        for name, var in ENCODER_ENV_OVERRIDES.items()
        if os.environ.get(var)
    }
    if encoders:
        updates["encoders"] = encoders

    pages = optional_int(os.environ.get("DJVU_PAGES_PER_DICTIONARY"))
    if pages is not None:
        updates["pages_per_dictionary"] = pages

    if not updates:
        return config

    data = config.model_dump(mode="json")
    _deep_merge(data, updates)
    return PublisherConfig.model_validate(data)


def load_publisher_config(project_dir: Path) -> PublisherConfig:
    """
    Load publisher.yaml and apply environment overrides.

    Args:
        project_dir: Directory holding the project file

    Returns:
        PublisherConfig instance
    """
    load_dotenv()
    manager = PublisherConfigManager(project_dir)
    return apply_env_overrides(manager.load())
