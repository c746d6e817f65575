"""Error taxonomy and error handling framework for autopull."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class ErrorCategory(Enum):
    """Categories of errors for structured error handling."""
    REMOTE_QUERY = "remote_query"
    LOCAL_INSPECTION = "local_inspection"
    RECOVERY = "recovery"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


class RemoteQueryErrorKind(Enum):
    """Reasons the remote head lookup can fail."""
    NETWORK = "network"
    TIMEOUT = "timeout"
    AUTH = "auth"
    HTTP_STATUS = "http_status"
    MALFORMED = "malformed"
    EMPTY_HISTORY = "empty_history"


class LocalInspectionErrorKind(Enum):
    """Reasons the local head lookup can fail."""
    NOT_A_REPOSITORY = "not_a_repository"
    NO_HEAD = "no_head"
    TOOL_UNAVAILABLE = "tool_unavailable"


class RecoveryFailure(Enum):
    """The recovery stage that failed."""
    FETCH_FAILED = "fetch_failed"
    BRANCH_VERIFY_FAILED = "branch_verify_failed"
    BRANCH_CREATE_FAILED = "branch_create_failed"
    CHECKOUT_FAILED = "checkout_failed"
    HISTORY_REWRITTEN = "history_rewritten"
    RESET_FAILED = "reset_failed"
    PULL_FAILED = "pull_failed"


_CREDENTIALS_IN_URL = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]*@")


def redact(text: Optional[str], *secrets: Optional[str]) -> str:
    """Strip URL userinfo and any of the given secrets from text."""
    if not text:
        return ""
    redacted = _CREDENTIALS_IN_URL.sub(r"\g<scheme>***@", text)
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "***")
    return redacted


class AutopullError(Exception):
    """Base class for every error autopull raises on purpose."""

    category = ErrorCategory.SYSTEM

    @property
    def error_code(self) -> str:
        return "AUTOPULL_ERROR"


class ConfigurationError(AutopullError):
    """The configuration file exists but cannot be used."""

    category = ErrorCategory.CONFIGURATION

    @property
    def error_code(self) -> str:
        return "CONFIG_INVALID"


class ConfigurationMissingError(ConfigurationError):
    """No configuration file at the expected location. Fatal at startup."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"Config file not found: {path}")

    @property
    def error_code(self) -> str:
        return "CONFIG_MISSING"


class RemoteQueryError(AutopullError):
    """The remote branch head could not be determined."""

    category = ErrorCategory.REMOTE_QUERY

    def __init__(self, kind: RemoteQueryErrorKind, message: str, status_code: Optional[int] = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)

    @property
    def error_code(self) -> str:
        return f"REMOTE_{self.kind.name}"


class LocalInspectionError(AutopullError):
    """The working copy head could not be read."""

    category = ErrorCategory.LOCAL_INSPECTION

    def __init__(self, kind: LocalInspectionErrorKind, message: str):
        self.kind = kind
        super().__init__(message)

    @property
    def error_code(self) -> str:
        return f"LOCAL_{self.kind.name}"


class RecoveryError(AutopullError):
    """A recovery stage failed; stdout and stderr are kept for diagnosis."""

    category = ErrorCategory.RECOVERY

    def __init__(
        self,
        failure: RecoveryFailure,
        message: str,
        stdout: str = "",
        stderr: str = "",
        returncode: Optional[int] = None
    ):
        self.failure = failure
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(message)

    @property
    def stage(self) -> str:
        return self.failure.value.rsplit("_failed", 1)[0]

    @property
    def error_code(self) -> str:
        return f"RECOVERY_{self.failure.name}"


class StageTimeoutError(RecoveryError):
    """A recovery stage was killed after exceeding its timeout."""

    @property
    def error_code(self) -> str:
        return f"RECOVERY_{self.failure.name}_TIMEOUT"


@dataclass
class ErrorResponse:
    """Standardized description of a failed cycle."""
    error: str
    error_code: str
    message: str
    timestamp: str
    category: str
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error response to dictionary format."""
        result = {
            "error": self.error,
            "error_code": self.error_code,
            "message": self.message,
            "timestamp": self.timestamp,
            "category": self.category
        }
        if self.context:
            result["context"] = self.context
        return result


class ErrorHandler:
    """Turns per-cycle failures into logged, structured error responses."""

    def __init__(self, secrets=()):
        self.logger = logging.getLogger('autopull.error_handler')
        self._secrets = tuple(s for s in secrets if s)
        from .git_sync.error_strategies import build_error_strategies
        self._strategies = build_error_strategies()

    def handle_cycle_error(self, error: Exception, context: Dict[str, Any] = None) -> ErrorResponse:
        """Log a failed reconciliation cycle and describe it."""
        context = dict(context or {})

        if isinstance(error, AutopullError):
            category = error.category
            error_code = error.error_code
        else:
            category = ErrorCategory.SYSTEM
            error_code = "UNEXPECTED_ERROR"

        if isinstance(error, RemoteQueryError):
            context['kind'] = error.kind.value
            if error.status_code is not None:
                context['status_code'] = error.status_code
        elif isinstance(error, LocalInspectionError):
            context['kind'] = error.kind.value
        elif isinstance(error, RecoveryError):
            context['stage'] = error.stage
            context['returncode'] = error.returncode
            context['timed_out'] = isinstance(error, StageTimeoutError)
            context['stdout'] = redact(error.stdout.strip(), *self._secrets)
            context['stderr'] = redact(error.stderr.strip(), *self._secrets)

        message = redact(str(error), *self._secrets)
        resolution = self._strategies.get(error_code) or self._strategies.get(category.value)

        response = ErrorResponse(
            error="Reconciliation cycle failed",
            error_code=error_code,
            message=message,
            timestamp=datetime.now().isoformat(),
            category=category.value,
            context=context
        )

        self.logger.error(
            f"{message} (code: {error_code})",
            extra={'operation': 'cycle_error', 'error_code': error_code, **context}
        )
        if isinstance(error, RecoveryError):
            if context.get('stdout'):
                self.logger.error(f"{error.stage} stdout: {context['stdout']}", extra={'operation': 'cycle_error'})
            if context.get('stderr'):
                self.logger.error(f"{error.stage} stderr: {context['stderr']}", extra={'operation': 'cycle_error'})
        if resolution:
            self.logger.info(
                f"{resolution.user_message}. Next steps: {'; '.join(resolution.resolution_steps)}",
                extra={'operation': 'cycle_error'}
            )
        if not isinstance(error, AutopullError):
            self.logger.debug("Unexpected error detail", exc_info=error)

        return response
