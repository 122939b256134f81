"""
Configuration management for the DjVu publisher.

Usage:
    from infra.config import load_publisher_config

    config = load_publisher_config(project_dir)
    c44 = config.encoders.resolve("c44")
"""

from .schemas import (
    EncoderBinaries,
    PublisherConfig,
    resolve_env_vars,
)

from .publisher_config import (
    PublisherConfigManager,
    apply_env_overrides,
    load_publisher_config,
)


__all__ = [
    # Schemas
    "EncoderBinaries",
    "PublisherConfig",
    "resolve_env_vars",
    # Publisher config
    "PublisherConfigManager",
    "apply_env_overrides",
    "load_publisher_config",
]
