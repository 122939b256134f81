from infra.pipeline.logger import PipelineLogger, create_logger
from infra.pipeline.parallel import ParallelProcessor
from infra.pipeline.storage import MetricsManager

__all__ = [
    # Logger
    "PipelineLogger",
    "create_logger",

    # Worker pool
    "ParallelProcessor",

    # Storage
    "MetricsManager",
]
