"""
Shared fixtures for infra tests.

All tests use real filesystem operations with temporary directories.
No mocking - we test actual behavior.
"""

import pytest


@pytest.fixture
def metrics_file(tmp_path):
    """Create a temp path for metrics file."""
    return tmp_path / "metrics.json"


@pytest.fixture
def log_dir(tmp_path):
    """Create a temp directory for logs."""
    log_path = tmp_path / "logs"
    log_path.mkdir()
    return log_path


@pytest.fixture
def project_dir(tmp_path):
    """Directory holding a project file and its publisher.yaml."""
    path = tmp_path / "book"
    path.mkdir()
    return path
