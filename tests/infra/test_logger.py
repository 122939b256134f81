"""
Tests for infra/pipeline/logger.py

Key behaviors to verify:
1. Lazy initialization - no files created until first log
2. One append-only JSON lines file per project output directory
3. JSON formatting with project, stage and structured fields
4. Multiple log levels work
5. Close doesn't create files if nothing was logged
"""

import json

from infra.pipeline.logger import PipelineLogger, create_logger


class TestPipelineLoggerLazyInit:
    """Test that logger initializes lazily."""

    def test_no_file_created_on_init(self, tmp_path):
        """Logger should not create any files on instantiation."""
        log_dir = tmp_path / "logs"

        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir)

        assert not log_dir.exists(), "Log directory should not be created on init"
        assert logger.log_file is None, "Log file should be None before first log"

    def test_file_created_on_first_log(self, tmp_path):
        log_dir = tmp_path / "logs"
        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir)

        logger.info("First message")

        assert logger.log_file is not None
        assert logger.log_file.exists(), "Log file should exist after logging"

    def test_close_without_logging_creates_nothing(self, tmp_path):
        log_dir = tmp_path / "logs"
        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir)

        logger.close()

        assert not log_dir.exists(), "Close should not create directories"


class TestPipelineLoggerSingleFile:
    """Test single append-only file behavior."""

    def test_default_filename(self, log_dir):
        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir)
        logger.info("test")
        assert logger.log_file.name == "log.jsonl"

    def test_stages_share_one_file(self, log_dir):
        """Loggers of different stages append to the same file."""
        publish = PipelineLogger(project="book", stage="publish", log_dir=log_dir)
        publish.info("message from publish")
        publish.close()

        bundle = publish.for_stage("bundle")
        bundle.info("message from bundle")
        bundle.close()

        log_files = list(log_dir.glob("*.jsonl"))
        assert len(log_files) == 1, f"Should have 1 file, got: {[f.name for f in log_files]}"

        entries = [json.loads(line) for line in log_files[0].read_text().splitlines()]
        assert [e["stage"] for e in entries] == ["publish", "bundle"]


class TestPipelineLoggerJsonFormat:
    """Test JSON log formatting."""

    def test_log_entry_has_required_fields(self, log_dir):
        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir)

        logger.info("test message")
        logger.close()

        entry = json.loads(logger.log_file.read_text().splitlines()[0])
        assert "timestamp" in entry
        assert entry["level"] == "INFO"
        assert entry["message"] == "test message"
        assert entry["project"] == "book"
        assert entry["stage"] == "publish"

    def test_structured_fields(self, log_dir):
        """Known structured fields are copied into the entry."""
        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir)

        logger.info(
            "Dictionary 0001: 3 pages",
            dictionary="0001",
            pages=3,
            work_sets={"assemble": 3},
            needs_reprocess=True,
        )
        logger.close()

        entry = json.loads(logger.log_file.read_text().splitlines()[0])
        assert entry["dictionary"] == "0001"
        assert entry["pages"] == 3
        assert entry["work_sets"] == {"assemble": 3}
        assert entry["needs_reprocess"] is True

    def test_non_json_values_are_stringified(self, log_dir, tmp_path):
        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir)

        logger.info("page", page=tmp_path / "page001.png")
        logger.close()

        entry = json.loads(logger.log_file.read_text().splitlines()[0])
        assert entry["page"] == str(tmp_path / "page001.png")


class TestPipelineLoggerLevels:
    """Test different log levels."""

    def test_all_log_levels(self, log_dir):
        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir, level="DEBUG")

        logger.debug("debug msg")
        logger.info("info msg")
        logger.warning("warning msg")
        logger.error("error msg")
        logger.close()

        entries = [json.loads(line) for line in logger.log_file.read_text().splitlines()]
        assert [e["level"] for e in entries] == ["DEBUG", "INFO", "WARNING", "ERROR"]

    def test_level_filtering(self, log_dir):
        """Log level should filter out lower-priority messages."""
        logger = PipelineLogger(project="book", stage="publish", log_dir=log_dir, level="WARNING")

        logger.debug("should not appear")
        logger.info("should not appear")
        logger.warning("should appear")
        logger.error("should appear")
        logger.close()

        entries = [json.loads(line) for line in logger.log_file.read_text().splitlines()]
        assert [e["level"] for e in entries] == ["WARNING", "ERROR"]


class TestCreateLoggerHelper:
    """Test the create_logger factory function."""

    def test_create_logger_returns_pipeline_logger(self, log_dir):
        logger = create_logger("book", "publish", log_dir=log_dir)
        assert isinstance(logger, PipelineLogger)
