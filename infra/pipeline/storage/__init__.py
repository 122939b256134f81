from infra.pipeline.storage.metrics import MetricsManager

__all__ = [
    "MetricsManager",
]
