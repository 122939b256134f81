"""
Configuration schemas for the DjVu publisher.

Stored as publisher.yaml next to the project file. Encoder paths may use
${ENV_VAR} references, expanded when a binary is looked up.
"""

import os
import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from pipeline.publish.schemas import DjbzParams, PageSettings


class EncoderBinaries(BaseModel):
    """Executables of the DjVuLibre / minidjvu-mod tool set."""
    c44: str = Field("c44", description="Wavelet encoder for picture layers")
    minidjvu: str = Field("minidjvu-mod", description="Bitonal encoder with shared dictionaries")
    djvumake: str = Field("djvumake", description="Page assembler")
    djvused: str = Field("djvused", description="Page/document editor")
    djvm: str = Field("djvm", description="Multi-page bundler")

    def resolve(self, name: str) -> str:
        """Executable for a tool name, with ${ENV_VAR} expanded."""
        return resolve_env_vars(getattr(self, name))


class PublisherConfig(BaseModel):
    encoders: EncoderBinaries = Field(default_factory=EncoderBinaries)
    pages_per_dictionary: int = Field(
        20,
        description="Pages per shared dictionary; below 2 disables sharing"
    )
    dictionary_defaults: DjbzParams = Field(
        default_factory=DjbzParams,
        description="Encoder params of newly created dictionaries"
    )
    page_defaults: PageSettings = Field(
        default_factory=PageSettings,
        description="Output settings of pages seen for the first time"
    )
    pages_subfolder: str = Field("djvu", min_length=1)
    layers_subfolder: str = Field("layers", min_length=1)
    max_workers: int = Field(
        default_factory=lambda: os.cpu_count() or 1,
        ge=1,
        description="Parallel workers for per-page stages"
    )
    poll_interval_seconds: float = Field(
        0.25,
        gt=0,
        description="How often running encoders check for cancellation"
    )
    log_level: str = Field(
        default_factory=lambda: "DEBUG" if _env_flag("DEBUG") else "INFO"
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"Unknown log level: {v}")
        return v

    @property
    def sharing_enabled(self) -> bool:
        return self.pages_per_dictionary >= 2


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes", "on")


def resolve_env_vars(value: str) -> str:
    """
    Resolve ${ENV_VAR} references in a string.

    Examples:
        "${DJVU_HOME}/bin/c44" -> "/opt/djvu/bin/c44"
        "c44" -> "c44"
        "${MISSING_VAR}" -> "" (empty string if not set)
    """
    if not isinstance(value, str):
        return value

    pattern = r'\$\{([^}]+)\}'

    def replace(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    return re.sub(pattern, replace, value)


def optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)
