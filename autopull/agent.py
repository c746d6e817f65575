"""Process entry point for the autopull agent."""

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from . import __version__
from .config import Config, load_configuration, validate_configuration, resolve_config_path
from .errors import ConfigurationError, ConfigurationMissingError, ErrorHandler
from .git_sync import (
    Failed, GitCommandOperations, HistoryRewritePolicy, LocalCommitInspector,
    ReconciliationEngine, RemoteCommitResolver
)
from .git_sync.performance_logger import PerformanceLogger
from .platform import get_platform_info
from .scheduler import PollScheduler


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class StructuredFormatter(logging.Formatter):
    """Prefixes the message with the record's operation, when it has one."""

    def format(self, record):
        message = super().format(record)
        operation = getattr(record, 'operation', None)
        if operation:
            prefix = f"{record.levelname} - "
            message = message.replace(prefix, f"{prefix}[{operation}] ", 1)
        return message


def setup_logging(config: Config, verbose: bool = False) -> None:
    """Send autopull's log records to the log file, and to stderr when verbose."""
    formatter = StructuredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    logger = logging.getLogger('autopull')
    logger.setLevel(getattr(logging, config.log_level))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    config.log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(config.log_file, encoding='utf-8')
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if verbose:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)


def build_engine(config: Config, perf_logger: Optional[PerformanceLogger] = None) -> ReconciliationEngine:
    """Wire the resolver, inspector and git operations for the configured working copy."""
    remote = config.remote_descriptor()
    return ReconciliationEngine(
        remote=remote,
        resolver=RemoteCommitResolver(remote, timeout=config.request_timeout_seconds),
        inspector=LocalCommitInspector(config.repo_path),
        operations=GitCommandOperations(
            config.repo_path,
            timeout=config.command_timeout_seconds,
            secrets=(config.pat,)
        ),
        history_policy=HistoryRewritePolicy(config.on_history_rewrite),
        perf_logger=perf_logger
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="autopull",
        description="Keep a git working copy synchronized with a remote branch."
    )
    parser.add_argument("--config", help="Path to config.toml (default: ./config.toml or $AUTOPULL_CONFIG)")
    parser.add_argument("--once", action="store_true", help="Run a single reconciliation cycle and exit")
    parser.add_argument("--log-level", help="Override the configured log level")
    parser.add_argument("--verbose", action="store_true", help="Also write log records to stderr")
    parser.add_argument("--no-prompt", action="store_true", help="Never wait for Enter before exiting on errors")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _report_missing_configuration(error: ConfigurationMissingError, prompt: bool) -> None:
    print(
        f"Config file not found at '{error.path}'. "
        f"Please ensure 'config.toml' is present next to the agent or pass --config.",
        file=sys.stderr
    )
    if prompt and sys.stdin is not None and sys.stdin.isatty():
        try:
            input("Press Enter to exit...")
        except EOFError:
            pass


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit status."""
    args = parse_args(argv)

    try:
        config = load_configuration(args.config)
        if args.log_level:
            config = replace(config, log_level=args.log_level)
    except ConfigurationMissingError as e:
        _report_missing_configuration(e, prompt=not args.no_prompt)
        return 1
    except ConfigurationError as e:
        print(f"Invalid configuration in '{resolve_config_path(args.config)}': {e}", file=sys.stderr)
        return 1

    setup_logging(config, verbose=args.verbose)
    logger = logging.getLogger('autopull.startup')
    logger.info("=" * 60)
    logger.info(f"autopull agent {__version__}")
    logger.info(f"Working copy: {config.repo_path}, branch: {config.target_branch}")
    logger.info(f"Platform: {get_platform_info().get_platform_name()}")
    logger.info("=" * 60)

    for problem in validate_configuration(config):
        if problem.startswith("ERROR"):
            logger.error(problem)
        else:
            logger.warning(problem)

    perf_logger = PerformanceLogger()
    engine = build_engine(config, perf_logger)
    scheduler = PollScheduler(
        engine,
        config.check_interval_seconds,
        error_handler=ErrorHandler(secrets=(config.pat,))
    )

    try:
        if args.once:
            outcome = scheduler.run_once()
            print()
            return 2 if isinstance(outcome, Failed) else 0

        scheduler.install_signal_handlers()
        scheduler.run()
        print()
        return 0
    except KeyboardInterrupt:
        logger.info("Agent stopped by user (Ctrl+C)")
        return 0
    finally:
        engine.resolver.close()
        perf_logger.log_performance_summary()
