"""
Unit tests for the thread-aware logging setup.
"""

import threading

from logging_config import get_job_logger, get_logger, set_thread_name, setup_logging


class TestLoggingSetup:
    """Test handlers, namespaces and thread names."""

    def test_file_logging(self, tmp_path):
        """Test app and error logs are written with the thread name."""
        logger = setup_logging(app_name="gangsheet_engine_test", log_dir=tmp_path)
        try:
            logger.error("roll render failed")
            for handler in logger.handlers:
                handler.flush()

            app_log = (tmp_path / "gangsheet_engine_test.log").read_text(encoding="utf-8")
            error_log = (tmp_path / "gangsheet_engine_test_error.log").read_text(encoding="utf-8")
            assert f"[{threading.current_thread().name}]" in app_log
            assert "roll render failed" in error_log
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

    def test_console_only(self):
        """Test file handlers are skipped when disabled."""
        logger = setup_logging(app_name="gangsheet_engine_console", enable_file_logging=False)
        assert len(logger.handlers) == 1
        assert logger.propagate is False

    def test_logger_names(self):
        """Test module and job loggers share the namespace."""
        assert get_logger("modules.packer").name == "gangsheet_engine.modules.packer"
        assert get_logger("gangsheet_engine.app").name == "gangsheet_engine.app"
        assert get_job_logger("5f0c2a91-0000-4000").name == "gangsheet_engine.job.5f0c2a91"

    def test_set_thread_name(self):
        """Test worker threads can rename themselves."""
        names = []

        def worker():
            set_thread_name("Job-5f0c2a91")
            names.append(threading.current_thread().name)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert names == ["Job-5f0c2a91"]
