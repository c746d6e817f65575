#!/usr/bin/env python3
"""Tests for the agent entry point: startup, exit codes and logging setup."""

import io
import logging
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent))

from autopull.agent import StructuredFormatter, main, setup_logging
from autopull.config import Config
from autopull.errors import RecoveryError, RecoveryFailure
from autopull.git_sync.engine import Failed, UpToDate


CONFIG_TEXT = """
repo_path = "checkout"
target_branch = "main"
pat = "pat-123"
organization = "contoso"
project = "platform"
repository = "app"
log_file = "logs/agent.log"
"""


def make_engine(outcome):
    engine = MagicMock()
    engine.on_divergence = None
    engine.reconcile.return_value = outcome
    return engine


class AgentTestBase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config_path = self.temp_dir / "config.toml"

        env = {key: value for key, value in os.environ.items() if not key.startswith("AUTOPULL_")}
        env_patcher = patch.dict(os.environ, env, clear=True)
        env_patcher.start()
        self.addCleanup(env_patcher.stop)

        dotenv_patcher = patch("autopull.config.load_dotenv")
        dotenv_patcher.start()
        self.addCleanup(dotenv_patcher.stop)

        self.addCleanup(self._reset_logging)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _reset_logging(self):
        logger = logging.getLogger('autopull')
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)

    def run_main(self, *argv):
        stdout, stderr = io.StringIO(), io.StringIO()
        with patch("sys.stdout", stdout), patch("sys.stderr", stderr):
            code = main(list(argv))
        return code, stdout.getvalue(), stderr.getvalue()


class TestStartup(AgentTestBase):

    def test_missing_config_exits_non_zero(self):
        code, _, stderr = self.run_main("--config", str(self.config_path), "--no-prompt")

        self.assertEqual(code, 1)
        self.assertIn("Config file not found", stderr)
        self.assertIn(str(self.config_path), stderr)

    def test_invalid_config_exits_non_zero(self):
        self.config_path.write_text("target_branch = \n")

        code, _, stderr = self.run_main("--config", str(self.config_path), "--no-prompt")

        self.assertEqual(code, 1)
        self.assertIn("Invalid configuration", stderr)

    def test_wrongly_typed_value_exits_non_zero(self):
        self.config_path.write_text(CONFIG_TEXT + "log_level = 5\n")

        code, _, stderr = self.run_main("--config", str(self.config_path), "--no-prompt", "--once")

        self.assertEqual(code, 1)
        self.assertIn("log_level must be a string", stderr)

    def test_invalid_log_level_override_exits_non_zero(self):
        self.config_path.write_text(CONFIG_TEXT)

        code, _, stderr = self.run_main("--config", str(self.config_path), "--log-level", "chatty")

        self.assertEqual(code, 1)
        self.assertIn("Invalid log level", stderr)


@patch("autopull.agent.validate_configuration", return_value=[])
class TestSingleCycle(AgentTestBase):

    def setUp(self):
        super().setUp()
        self.config_path.write_text(CONFIG_TEXT)

    def test_up_to_date_cycle_exits_zero(self, _):
        engine = make_engine(UpToDate("abc123"))

        with patch("autopull.agent.build_engine", return_value=engine):
            code, stdout, _ = self.run_main("--config", str(self.config_path), "--once")

        self.assertEqual(code, 0)
        engine.reconcile.assert_called_once()
        engine.resolver.close.assert_called_once()
        self.assertIn("No new changes since", stdout)

    def test_failed_cycle_exits_two(self, _):
        engine = make_engine(Failed(RecoveryError(RecoveryFailure.FETCH_FAILED, "fetch failed: no route")))

        with patch("autopull.agent.build_engine", return_value=engine):
            code, _, _ = self.run_main("--config", str(self.config_path), "--once")

        self.assertEqual(code, 2)
        log_text = (self.temp_dir / "logs" / "agent.log").read_text()
        self.assertIn("fetch failed: no route", log_text)
        self.assertIn("[cycle_error]", log_text)

    def test_startup_is_logged_to_the_configured_file(self, _):
        with patch("autopull.agent.build_engine", return_value=make_engine(UpToDate("abc123"))):
            self.run_main("--config", str(self.config_path), "--once")

        log_text = (self.temp_dir / "logs" / "agent.log").read_text()
        self.assertIn("autopull agent", log_text)
        self.assertIn("branch: main", log_text)
        self.assertNotIn("pat-123", log_text)


class TestLogging(AgentTestBase):

    def make_config(self, **overrides):
        values = {
            "repo_path": self.temp_dir,
            "target_branch": "main",
            "pat": "tok",
            "organization": "contoso",
            "project": "platform",
            "repository": "app",
            "log_file": self.temp_dir / "app.log",
        }
        values.update(overrides)
        return Config(**values)

    def test_setup_logging_writes_to_the_log_file(self):
        setup_logging(self.make_config(log_level="WARNING"))

        logger = logging.getLogger('autopull.test')
        logger.info("hidden")
        logger.warning("visible", extra={'operation': 'fetch'})
        for handler in logging.getLogger('autopull').handlers:
            handler.flush()

        log_text = (self.temp_dir / "app.log").read_text()
        self.assertNotIn("hidden", log_text)
        self.assertIn("autopull.test - WARNING - [fetch] visible", log_text)

    def test_setup_logging_replaces_previous_handlers(self):
        setup_logging(self.make_config())
        setup_logging(self.make_config(), verbose=True)

        handlers = logging.getLogger('autopull').handlers
        self.assertEqual(len(handlers), 2)
        self.assertEqual(sum(isinstance(h, logging.FileHandler) for h in handlers), 1)

    def test_formatter_leaves_plain_records_alone(self):
        formatter = StructuredFormatter('%(levelname)s - %(message)s')
        record = logging.LogRecord("autopull", logging.INFO, __file__, 1, "hello", None, None)

        self.assertEqual(formatter.format(record), "INFO - hello")


if __name__ == "__main__":
    unittest.main(verbosity=2)
