"""Configuration management for the autopull agent."""

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, List, Union
from urllib.parse import urlsplit

from dotenv import load_dotenv

from .errors import ConfigurationError, ConfigurationMissingError
from .platform import get_platform_specific_defaults, normalize_path, validate_git_availability


DEFAULT_CONFIG_PATH = Path("config.toml")
HISTORY_REWRITE_POLICIES = ("reset", "fail", "pull")
STRING_FIELDS = (
    "target_branch", "pat", "organization", "project", "repository", "api_host",
    "remote_url", "commits_url", "on_history_rewrite", "log_level",
)

# Environment variables that override keys of the config file
ENV_OVERRIDES = {
    "AUTOPULL_REPO_PATH": "repo_path",
    "AUTOPULL_TARGET_BRANCH": "target_branch",
    "AUTOPULL_PAT": "pat",
    "AUTOPULL_CHECK_INTERVAL_SECONDS": "check_interval_seconds",
    "AUTOPULL_LOG_LEVEL": "log_level",
    "AUTOPULL_LOG_FILE": "log_file",
}


@dataclass
class Config:
    """Configuration of the agent with validation and defaults."""

    # Working copy
    repo_path: Path
    target_branch: str
    pat: str = field(repr=False, default="")

    # Remote, either by identifiers...
    organization: Optional[str] = None
    project: Optional[str] = None
    repository: Optional[str] = None
    api_host: str = "dev.azure.com"

    # ...or by fully formed URLs
    remote_url: Optional[str] = None
    commits_url: Optional[str] = None

    # Scheduling and timeouts
    check_interval_seconds: int = 60
    command_timeout_seconds: float = 300.0
    request_timeout_seconds: float = 30.0
    on_history_rewrite: str = "reset"

    # Logging
    log_file: Path = field(default_factory=lambda: Path("app.log"))
    log_level: str = "INFO"

    def __post_init__(self):
        """Validate configuration after initialization."""
        for name in STRING_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(f"{name} must be a string, got {type(value).__name__}")

        if isinstance(self.repo_path, str):
            self.repo_path = Path(self.repo_path)
        self.repo_path = normalize_path(self.repo_path)

        if isinstance(self.log_file, str):
            self.log_file = Path(self.log_file)

        if not self.target_branch:
            raise ConfigurationError("target_branch must not be empty")

        self.log_level = self.log_level.upper()
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_log_levels:
            raise ConfigurationError(f"Invalid log level: {self.log_level}. Must be one of {valid_log_levels}")

        try:
            self.check_interval_seconds = int(self.check_interval_seconds)
            self.command_timeout_seconds = float(self.command_timeout_seconds)
            self.request_timeout_seconds = float(self.request_timeout_seconds)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}")

        if self.check_interval_seconds <= 0:
            raise ConfigurationError("check_interval_seconds must be positive")
        if self.command_timeout_seconds <= 0:
            raise ConfigurationError("command_timeout_seconds must be positive")
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError("request_timeout_seconds must be positive")

        self.on_history_rewrite = self.on_history_rewrite.lower()
        if self.on_history_rewrite not in HISTORY_REWRITE_POLICIES:
            raise ConfigurationError(
                f"Invalid on_history_rewrite: {self.on_history_rewrite}. Must be one of {list(HISTORY_REWRITE_POLICIES)}"
            )

        by_project = all((self.organization, self.project, self.repository))
        by_url = bool(self.remote_url and self.commits_url)
        if not (by_project or by_url):
            raise ConfigurationError(
                "Remote not configured: set organization, project and repository, "
                "or remote_url and commits_url"
            )

    @property
    def uses_project_identifiers(self) -> bool:
        return not (self.remote_url and self.commits_url)

    def remote_descriptor(self):
        """Build the remote descriptor for whichever remote form is configured."""
        from .git_sync.remote import RemoteDescriptor

        if self.uses_project_identifiers:
            return RemoteDescriptor.from_project(
                organization=self.organization,
                project=self.project,
                repository=self.repository,
                branch=self.target_branch,
                token=self.pat,
                host=self.api_host
            )
        return RemoteDescriptor.from_urls(
            query_url=self.commits_url,
            repository_url=self.remote_url,
            branch=self.target_branch,
            token=self.pat,
            username=self.organization or ""
        )


def resolve_config_path(path: Union[str, Path, None] = None) -> Path:
    """Path given explicitly, else AUTOPULL_CONFIG, else ./config.toml."""
    if path is not None:
        return Path(path)
    env_path = os.getenv("AUTOPULL_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_configuration(path: Union[str, Path, None] = None) -> Config:
    """
    Load configuration from the TOML file with environment overrides.

    Raises:
        ConfigurationMissingError: no file at the resolved location
        ConfigurationError: the file cannot be parsed or holds invalid values
    """
    logger = logging.getLogger('autopull.config')
    load_dotenv()  # Load .env file if it exists

    config_path = resolve_config_path(path)
    if not config_path.is_file():
        logger.error("Config file not found.")
        raise ConfigurationMissingError(config_path)

    try:
        with config_path.open("rb") as handle:
            raw = tomllib.load(handle)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Cannot parse {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}")

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")

    values = get_platform_specific_defaults()
    values.update({key: value for key, value in raw.items() if key in known})
    for env_name, key in ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if env_value:
            values[key] = env_value

    missing = [key for key in ("repo_path", "target_branch", "pat") if not values.get(key)]
    if missing:
        raise ConfigurationError(f"Missing required configuration keys: {', '.join(missing)}")

    # Relative paths are relative to the config file, not the cwd
    for key in ("repo_path", "log_file"):
        if not isinstance(values[key], (str, Path)):
            raise ConfigurationError(f"{key} must be a path string, got {type(values[key]).__name__}")
        value = Path(values[key]).expanduser()
        values[key] = value if value.is_absolute() else config_path.parent / value

    try:
        config = Config(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration: {e}")

    logger.info("Config file read successfully.")
    return config


def validate_configuration(config: Config) -> List[str]:
    """Check the environment against the configuration and return any errors or warnings."""
    errors = []

    if not config.repo_path.exists():
        errors.append(f"ERROR: Working copy path does not exist: {config.repo_path}")
    elif not (config.repo_path / ".git").exists():
        errors.append(f"ERROR: Working copy path is not a git repository: {config.repo_path}")

    git_available, git_error = validate_git_availability()
    if not git_available:
        errors.append(f"ERROR: Git not available: {git_error}")

    if not config.uses_project_identifiers:
        for name in ("remote_url", "commits_url"):
            url = getattr(config, name)
            if urlsplit(url).scheme not in ("http", "https"):
                errors.append(f"WARNING: {name} is not an http(s) URL: {url}")

    if config.check_interval_seconds < 10:
        errors.append("WARNING: check_interval_seconds below 10 may trigger remote rate limiting")

    return errors
