from infra.pipeline import (
    PipelineLogger,
    create_logger,
    ParallelProcessor,
    MetricsManager,
)
from infra.external_tool import CancelToken, ExternalToolRunner

__all__ = [
    "PipelineLogger",
    "create_logger",
    "ParallelProcessor",
    "MetricsManager",

    "CancelToken",
    "ExternalToolRunner",
]
