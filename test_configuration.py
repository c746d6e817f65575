#!/usr/bin/env python3
"""Tests for loading and validating config.toml."""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent))

from autopull.config import (
    Config, load_configuration, resolve_config_path, validate_configuration
)
from autopull.errors import ConfigurationError, ConfigurationMissingError


BASE_CONFIG = """
repo_path = "checkout"
target_branch = "main"
pat = "pat-from-file"
organization = "contoso"
project = "platform"
repository = "app"
"""


def clean_environment():
    """Environment without any AUTOPULL_* variables."""
    return {key: value for key, value in os.environ.items() if not key.startswith("AUTOPULL_")}


class ConfigurationTestBase(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.config_path = self.temp_dir / "config.toml"

        env_patcher = patch.dict(os.environ, clean_environment(), clear=True)
        env_patcher.start()
        self.addCleanup(env_patcher.stop)

        dotenv_patcher = patch("autopull.config.load_dotenv")
        dotenv_patcher.start()
        self.addCleanup(dotenv_patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, text: str) -> Path:
        self.config_path.write_text(text)
        return self.config_path


class TestLoadConfiguration(ConfigurationTestBase):

    def test_loads_project_identifiers_with_defaults(self):
        config = load_configuration(self.write_config(BASE_CONFIG))

        self.assertEqual(config.target_branch, "main")
        self.assertEqual(config.pat, "pat-from-file")
        self.assertEqual(config.check_interval_seconds, 60)
        self.assertEqual(config.on_history_rewrite, "reset")
        self.assertEqual(config.log_level, "INFO")
        self.assertTrue(config.uses_project_identifiers)

    def test_relative_paths_resolve_against_the_config_directory(self):
        config = load_configuration(self.write_config(BASE_CONFIG))

        self.assertEqual(config.repo_path, (self.temp_dir / "checkout").resolve())
        self.assertEqual(config.log_file, self.temp_dir / "app.log")

    def test_missing_file_raises_missing_error(self):
        with self.assertRaises(ConfigurationMissingError) as ctx:
            load_configuration(self.temp_dir / "absent.toml")

        self.assertEqual(ctx.exception.path, self.temp_dir / "absent.toml")
        self.assertEqual(ctx.exception.error_code, "CONFIG_MISSING")

    def test_unparseable_file_is_invalid(self):
        with self.assertRaises(ConfigurationError) as ctx:
            load_configuration(self.write_config("repo_path = \n"))

        self.assertEqual(ctx.exception.error_code, "CONFIG_INVALID")

    def test_missing_required_key_is_invalid(self):
        text = BASE_CONFIG.replace('pat = "pat-from-file"\n', "")

        with self.assertRaises(ConfigurationError) as ctx:
            load_configuration(self.write_config(text))

        self.assertIn("pat", str(ctx.exception))

    def test_missing_remote_is_invalid(self):
        text = BASE_CONFIG.replace('repository = "app"\n', "")

        with self.assertRaises(ConfigurationError) as ctx:
            load_configuration(self.write_config(text))

        self.assertIn("Remote not configured", str(ctx.exception))

    def test_invalid_history_policy_is_rejected(self):
        with self.assertRaises(ConfigurationError):
            load_configuration(self.write_config(BASE_CONFIG + 'on_history_rewrite = "merge"\n'))

    def test_non_positive_interval_is_rejected(self):
        with self.assertRaises(ConfigurationError):
            load_configuration(self.write_config(BASE_CONFIG + "check_interval_seconds = 0\n"))

    def test_non_string_values_are_invalid(self):
        cases = {
            "log_level": "log_level = 5\n",
            "on_history_rewrite": "on_history_rewrite = 1\n",
            "api_host": "api_host = [\"dev.azure.com\"]\n",
        }
        for key, line in cases.items():
            with self.subTest(key=key):
                with self.assertRaises(ConfigurationError) as ctx:
                    load_configuration(self.write_config(BASE_CONFIG + line))

                self.assertIn(f"{key} must be a string", str(ctx.exception))

    def test_non_string_branch_is_invalid(self):
        text = BASE_CONFIG.replace('target_branch = "main"', "target_branch = 5")

        with self.assertRaises(ConfigurationError) as ctx:
            load_configuration(self.write_config(text))

        self.assertIn("target_branch must be a string", str(ctx.exception))

    def test_non_string_path_is_invalid(self):
        text = BASE_CONFIG.replace('repo_path = "checkout"', "repo_path = 42")

        with self.assertRaises(ConfigurationError) as ctx:
            load_configuration(self.write_config(text))

        self.assertIn("repo_path must be a path string", str(ctx.exception))

    def test_non_string_token_is_not_echoed(self):
        text = BASE_CONFIG.replace('pat = "pat-from-file"', "pat = 918273645")

        with self.assertRaises(ConfigurationError) as ctx:
            load_configuration(self.write_config(text))

        self.assertNotIn("918273645", str(ctx.exception))

    def test_unknown_keys_are_ignored(self):
        with self.assertLogs("autopull.config", level="WARNING") as logs:
            config = load_configuration(self.write_config(BASE_CONFIG + 'favourite_colour = "blue"\n'))

        self.assertEqual(config.target_branch, "main")
        self.assertTrue(any("favourite_colour" in line for line in logs.output))

    def test_environment_overrides_the_file(self):
        self.write_config(BASE_CONFIG)
        overrides = {
            "AUTOPULL_PAT": "pat-from-env",
            "AUTOPULL_TARGET_BRANCH": "release",
            "AUTOPULL_CHECK_INTERVAL_SECONDS": "15",
            "AUTOPULL_LOG_LEVEL": "debug",
        }

        with patch.dict(os.environ, overrides):
            config = load_configuration(self.config_path)

        self.assertEqual(config.pat, "pat-from-env")
        self.assertEqual(config.target_branch, "release")
        self.assertEqual(config.check_interval_seconds, 15)
        self.assertEqual(config.log_level, "DEBUG")

    def test_config_location_from_environment(self):
        self.write_config(BASE_CONFIG)

        with patch.dict(os.environ, {"AUTOPULL_CONFIG": str(self.config_path)}):
            self.assertEqual(resolve_config_path(), self.config_path)
            config = load_configuration()

        self.assertEqual(config.organization, "contoso")

    def test_default_location_is_config_toml(self):
        self.assertEqual(resolve_config_path(), Path("config.toml"))

    def test_url_variant(self):
        text = """
repo_path = "/srv/app"
target_branch = "main"
pat = "tok"
remote_url = "https://git.example.com/app.git"
commits_url = "https://git.example.com/api/commits?branch=main"
"""
        config = load_configuration(self.write_config(text))
        remote = config.remote_descriptor()

        self.assertFalse(config.uses_project_identifiers)
        self.assertEqual(remote.query_url, "https://git.example.com/api/commits?branch=main")
        self.assertEqual(remote.repository_url, "https://git.example.com/app.git")
        self.assertEqual(remote.branch, "main")

    def test_project_variant_descriptor(self):
        config = load_configuration(self.write_config(BASE_CONFIG + 'api_host = "devops.example.com"\n'))
        remote = config.remote_descriptor()

        self.assertEqual(remote.repository_url, "https://devops.example.com/contoso/platform/_git/app")
        self.assertEqual(remote.token, "pat-from-file")

    def test_token_is_not_in_repr(self):
        config = load_configuration(self.write_config(BASE_CONFIG))

        self.assertNotIn("pat-from-file", repr(config))


class TestValidateConfiguration(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_config(self, **overrides):
        values = {
            "repo_path": self.temp_dir,
            "target_branch": "main",
            "pat": "tok",
            "organization": "contoso",
            "project": "platform",
            "repository": "app",
        }
        values.update(overrides)
        return Config(**values)

    @patch("autopull.config.validate_git_availability", return_value=(True, None))
    def test_valid_working_copy_has_no_problems(self, _):
        (self.temp_dir / ".git").mkdir()

        self.assertEqual(validate_configuration(self.make_config()), [])

    @patch("autopull.config.validate_git_availability", return_value=(True, None))
    def test_reports_missing_and_non_repository_paths(self, _):
        missing = validate_configuration(self.make_config(repo_path=self.temp_dir / "missing"))
        plain = validate_configuration(self.make_config())

        self.assertTrue(missing[0].startswith("ERROR: Working copy path does not exist"))
        self.assertTrue(plain[0].startswith("ERROR: Working copy path is not a git repository"))

    @patch("autopull.config.validate_git_availability", return_value=(False, "Git executable not found"))
    def test_reports_missing_git(self, _):
        (self.temp_dir / ".git").mkdir()

        problems = validate_configuration(self.make_config())

        self.assertEqual(problems, ["ERROR: Git not available: Git executable not found"])

    @patch("autopull.config.validate_git_availability", return_value=(True, None))
    def test_warns_about_short_interval_and_non_http_urls(self, _):
        (self.temp_dir / ".git").mkdir()
        config = self.make_config(
            organization=None, project=None, repository=None,
            remote_url="/srv/git/app.git",
            commits_url="https://git.example.com/api/commits",
            check_interval_seconds=5
        )

        problems = validate_configuration(config)

        self.assertEqual(len(problems), 2)
        self.assertTrue(all(problem.startswith("WARNING") for problem in problems))

    def test_config_rejects_empty_branch(self):
        with self.assertRaises(ConfigurationError):
            self.make_config(target_branch="")

    def test_config_rejects_unknown_log_level(self):
        with self.assertRaises(ConfigurationError):
            self.make_config(log_level="chatty")


if __name__ == "__main__":
    unittest.main(verbosity=2)
